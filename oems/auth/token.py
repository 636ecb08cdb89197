"""Deribit の client_credentials でアクセストークンを取得・更新するトークンマネージャ。

TokenProvider プロトコルの実装。送信は発注と同じ RequestDispatcher を使うので、
レート制限とタイムアウトも共有される。
"""

from __future__ import annotations

import json
import time
from typing import Callable

from loguru import logger

from oems.exchanges.dispatcher import RequestDispatcher
from oems.exchanges.types import RequestDescriptor

AUTH_PATH = "/api/v2/public/auth"
DEFAULT_EXPIRY_MARGIN_S = 30.0  # 期限ぎりぎりのトークンは期限切れ扱いにする


class DeribitTokenManager:
    """アクセストークンとリフレッシュトークンを保持する。期限は単調時計で管理する。"""

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        *,
        expiry_margin_s: float = DEFAULT_EXPIRY_MARGIN_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dispatcher = dispatcher
        self._margin = expiry_margin_s
        self._clock = clock
        self._access_token: str = ""
        self._refresh_token: str = ""
        self._expires_at: float | None = None

    def is_token_expired(self) -> bool:
        if not self._access_token or self._expires_at is None:
            return True
        return self._clock() >= self._expires_at - self._margin

    def current_token(self) -> str:
        return self._access_token

    def _auth_request(self, key: str, secret: str) -> RequestDescriptor:
        if self._refresh_token:
            params = (("grant_type", "refresh_token"), ("refresh_token", self._refresh_token))
        else:
            params = (("grant_type", "client_credentials"), ("client_id", key), ("client_secret", secret))
        return RequestDescriptor(path=AUTH_PATH, params=params, headers=(("Content-Type", "application/json"),))

    def refresh_token(self, key: str, secret: str) -> bool:
        """これは何をする関数？
        → トークンを取得/更新し、成功なら True。リフレッシュトークンが失効していたら資格情報で取り直します。
        """
        res = self._dispatcher.dispatch(self._auth_request(key, secret))
        if not res.success and self._refresh_token:
            logger.warning("refresh_token grant failed ({}); retrying with client_credentials", res.message)
            self._refresh_token = ""
            res = self._dispatcher.dispatch(self._auth_request(key, secret))
        if not res.success:
            logger.error("token refresh failed: {}", res.message)
            return False
        return self._store(res.data)

    def _store(self, body: str) -> bool:
        try:
            result = json.loads(body)["result"]
            access = str(result["access_token"])
            expires_in = float(result.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("token refresh: unexpected auth payload ({})", e)
            return False
        if not access:
            logger.error("token refresh: empty access_token")
            return False
        self._access_token = access
        self._refresh_token = str(result.get("refresh_token") or "")
        self._expires_at = self._clock() + expires_in
        logger.info("access token refreshed expires_in={}s", int(expires_in))
        return True
