"""requests.Session をワーカースレッドで動かし、完了をコールバックで通知するトランスポート。

- submit() はすぐ戻り、結果はワーカースレッドから callback(TransportOutcome) で届く
- 送信できなかった（停止済み等）ときは NetworkError を送出する
- shutdown Event がセットされたら新規送信を受け付けない
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor

import requests
from loguru import logger

from oems.core.errors import NetworkError

from .gateway_if import TransportCallback
from .types import RequestDescriptor, TransportOutcome

DEFAULT_BASE_URL = "https://test.deribit.com"


class RequestsTransport:
    """Transport プロトコルの requests 実装。"""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        request_timeout_s: float = 10.0,
        max_workers: int = 2,
        session: requests.Session | None = None,
        shutdown: threading.Event | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._request_timeout_s = request_timeout_s
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="oems-http")
        self._shutdown = shutdown or threading.Event()
        self._closed = False

    @property
    def base_url(self) -> str:
        return self._base_url

    def _send(self, descriptor: RequestDescriptor) -> TransportOutcome:
        url = self._base_url + descriptor.target
        try:
            resp = self._session.request(
                descriptor.method,
                url,
                headers=descriptor.header_dict(),
                timeout=self._request_timeout_s,
            )
        except requests.RequestException as e:
            return TransportOutcome.from_error(e)
        if resp is None:
            return TransportOutcome()
        return TransportOutcome.from_response(resp.status_code, resp.text)

    def submit(self, descriptor: RequestDescriptor, callback: TransportCallback) -> None:
        """これは何をする関数？
        → リクエストをワーカースレッドへ投げ、完了したら callback に結果を渡します。
        """
        if self._closed or self._shutdown.is_set():
            raise NetworkError("transport is shut down")

        def _done(fut: Future) -> None:
            if fut.cancelled():  # close() で未実行のまま取り消された
                outcome = TransportOutcome.from_error(NetworkError("request cancelled by shutdown"))
            elif fut.exception() is not None:
                outcome = TransportOutcome.from_error(fut.exception())
            else:
                outcome = fut.result()
            try:
                callback(outcome)
            except Exception:  # noqa: BLE001
                logger.exception("transport callback raised path={}", descriptor.path)

        try:
            future = self._executor.submit(self._send, descriptor)
        except RuntimeError as e:  # executor がすでに停止している
            raise NetworkError(f"submit failed: {e}") from e
        future.add_done_callback(_done)

    def close(self) -> None:
        """新規送信を止め、実行中のリクエストは待たずにセッションを閉じる。"""
        if self._closed:
            return
        self._closed = True
        self._shutdown.set()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()
        logger.info("transport closed base_url={}", self._base_url)

    def __enter__(self) -> "RequestsTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
