# これは「発注パイプラインと周辺コラボレータが使う共通の例外クラス」を定義するファイルです。
from __future__ import annotations


class ExchangeError(Exception):
    """取引所まわりの失敗の基底例外。kind は ApiResponse.kind と同じ分類名。"""

    kind: str = "network"


class ValidationError(ExchangeError):
    """ローカルのパラメータ検証に失敗した（ネットワークには一切出ていない）。"""

    kind = "validation"


class AuthError(ExchangeError):
    """アクセストークンの更新に失敗した（発注リクエストは送っていない）。"""

    kind = "auth"


class NetworkError(ExchangeError):
    """接続失敗/DNS失敗など、トランスポート層での失敗。再試行対象。"""

    kind = "network"


class DispatchTimeout(ExchangeError):
    """応答待ちが上限時間を超えた。送信済みだが結果は不明。再試行対象。"""

    kind = "timeout"


class ProtocolError(ExchangeError):
    """HTTP 200 以外、または HTTP 200 の中の error エンベロープ（取引所側の拒否）。"""

    kind = "protocol"

    def __init__(self, message: str, *, code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.body = body


class FormatError(ExchangeError):
    """リクエスト組み立ての失敗（エンコード後のパスが上限長を超えた等）。"""

    kind = "format"


class ConfigError(Exception):
    """設定ファイルや環境変数の不備があるときの例外。"""


class CredentialError(Exception):
    """APIキー/シークレットの読込・検証に失敗したときの例外。"""
