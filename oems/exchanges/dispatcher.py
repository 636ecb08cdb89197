# これは「非同期送信を、上限時間つきの同期待ちに橋渡しする RequestDispatcher」を提供するファイルです。
from __future__ import annotations

import threading

from loguru import logger

from oems.core.errors import DispatchTimeout, NetworkError
from oems.core.rate_limit import RateLimiter

from .classifier import classify_outcome
from .gateway_if import Transport
from .types import ApiResponse, RequestDescriptor, TransportOutcome

DEFAULT_DISPATCH_TIMEOUT_S = 5.0
TIMEOUT_MESSAGE = "Timeout waiting for response"


class Completion:
    """1 回だけ結果をセットできる完了レコード。

    dispatch 呼び出し側とコールバックの両方が同じインスタンスを参照する。
    呼び出し側がタイムアウトで去ったあと（abandon 済み）に届いた結果は記録せずログだけ残す。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._result: ApiResponse | None = None
        self._abandoned = False

    def resolve(self, result: ApiResponse) -> bool:
        """結果をセットする。最初の 1 回だけ有効で、セットできたら True。"""
        with self._lock:
            if self._abandoned:
                logger.debug("late response discarded success={} message={}", result.success, result.message)
                return False
            if self._result is not None:
                return False
            self._result = result
        self._event.set()
        return True

    def wait(self, timeout_s: float) -> ApiResponse | None:
        """結果を最大 timeout_s 秒待つ。間に合わなければ abandon して None を返す。"""
        self._event.wait(timeout_s)
        with self._lock:
            if self._result is None:
                self._abandoned = True
            return self._result

    @property
    def abandoned(self) -> bool:
        return self._abandoned


class RequestDispatcher:
    """1 リクエストを送り、同期っぽい ApiResponse を返す。

    手順: レートリミッタ acquire → トランスポートへ送信（完了レコードだけをコールバックに渡す）
    → 完了を最大 timeout_s 待つ。例外は外に出さない。
    """

    def __init__(
        self,
        transport: Transport,
        limiter: RateLimiter | None = None,
        *,
        timeout_s: float = DEFAULT_DISPATCH_TIMEOUT_S,
    ) -> None:
        self._transport = transport
        self._limiter = limiter or RateLimiter()
        self._timeout_s = timeout_s

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def dispatch(self, descriptor: RequestDescriptor) -> ApiResponse:
        """これは何をする関数？
        → descriptor を 1 回送信し、分類済みの ApiResponse を返します（タイムアウトは timeout 種別）。
        """
        self._limiter.acquire()

        completion = Completion()

        def _on_complete(outcome: TransportOutcome) -> None:
            completion.resolve(classify_outcome(outcome))

        logger.debug("dispatch {} {} headers={}", descriptor.method, descriptor.path, descriptor.redacted_headers())
        try:
            self._transport.submit(descriptor, _on_complete)
        except NetworkError as e:
            logger.warning("dispatch.submit_failed path={} error={}", descriptor.path, e)
            return ApiResponse.from_error(NetworkError("Network error"))
        except Exception as e:  # noqa: BLE001  # 想定外の送信失敗も network として返す
            logger.exception("dispatch.submit_raised path={} error={}", descriptor.path, e)
            return ApiResponse.from_error(NetworkError("Network error"))

        result = completion.wait(self._timeout_s)
        if result is None:
            logger.warning("dispatch.timeout path={} timeout_s={}", descriptor.path, self._timeout_s)
            return ApiResponse.from_error(DispatchTimeout(TIMEOUT_MESSAGE))
        if not result.success:
            logger.debug("dispatch.failed path={} kind={} message={}", descriptor.path, result.kind, result.message)
        return result
