from __future__ import annotations

# アプリ設定用の Pydantic モデル群（v2 対応）。
from typing import Any

from pydantic import BaseModel


class ExchangeKeys(BaseModel):
    """取引所 API キー（.env で定義する想定）。未設定ならファイルから読む。"""

    api_key: str
    api_secret: str


class ExchangeConfig(BaseModel):
    """取引所接続の共通設定。"""

    # 既定は Deribit テストネット。本番は config/app*.yaml 側で base_url を上書きする。
    base_url: str = "https://test.deribit.com"
    dispatch_timeout_s: float = 5.0  # 1 回の送信で応答を待つ上限（秒）
    request_timeout_s: float = 10.0  # requests のソケットタイムアウト（秒）
    min_request_interval_ms: int = 100  # 送信間隔の下限（ms）。再試行・トークン更新も含む
    max_path_length: int = 2048  # エンコード後の path+query の上限文字数
    max_workers: int = 2  # HTTP ワーカースレッド数


class RetryConfig(BaseModel):
    """送信失敗時の再試行（network/timeout のみ対象）。"""

    max_attempts: int = 3
    base_delay_s: float = 0.1  # n 回目の失敗後に base * 2**n 秒待つ
    max_delay_s: float = 5.0
    jitter: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "logs"


class CredentialsConfig(BaseModel):
    """keys が無いときに読む資格情報ファイル。"""

    key_file: str = "client_key.txt"
    secret_file: str = "client_secret.txt"


class AppConfig(BaseModel):
    """アプリ全体の設定ルート（.env / YAML をマージして生成）。"""

    keys: ExchangeKeys | None = None
    exchange: ExchangeConfig = ExchangeConfig()
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()
    credentials: CredentialsConfig = CredentialsConfig()

    # Pydantic v2 用設定
    model_config = {
        "extra": "ignore",
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        """生 dict から AppConfig を構築する（サブモデルは pydantic が型付けする）。"""

        return cls.model_validate(dict(data))

    def to_dict(self) -> dict[str, Any]:
        """AppConfig をロギング等で扱いやすい dict 形式に変換する。"""

        return self.model_dump(mode="python")
