from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from oems.exchanges.types import RequestDescriptor, TransportOutcome

TransportCallback = Callable[[TransportOutcome], None]


@runtime_checkable
class TokenProvider(Protocol):
    """アクセストークンの持ち主（外部コラボレータ）。発注側は「期限切れか」「更新して」「今のトークン」だけを使う。"""

    def is_token_expired(self) -> bool: ...
    def refresh_token(self, key: str, secret: str) -> bool: ...
    def current_token(self) -> str: ...


@runtime_checkable
class CredentialProvider(Protocol):
    """検証済みの API キー/シークレットを返す外部コラボレータ。"""

    def read_key(self) -> str: ...
    def read_secret(self) -> str: ...


@runtime_checkable
class Transport(Protocol):
    """リクエストを非同期に送り、完了時にワーカースレッドから callback を呼ぶ。

    送信そのものに失敗した場合は NetworkError を送出する（callback は呼ばれない）。
    """

    def submit(self, descriptor: RequestDescriptor, callback: TransportCallback) -> None: ...
