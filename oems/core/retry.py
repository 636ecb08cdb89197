# これは「1回分のディスパッチを指数バックオフで再試行する RetryPolicy」を提供するファイルです。
from __future__ import annotations

import time
from typing import Callable

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    """これは何をする関数？
    → 次の再試行まで眠る直前に、関数名・試行回数・待機秒数を警告ログに出します。
    """
    fn_name = getattr(retry_state.fn, "__name__", str(retry_state.fn))
    wait_s = getattr(retry_state.next_action, "sleep", None)
    logger.warning(
        "retryable: {fn} attempt={attempt} failed next_wait={wait}s",
        fn=fn_name,
        attempt=retry_state.attempt_number,
        wait=round(wait_s, 3) if wait_s is not None else None,
    )


def _give_up(retry_state: RetryCallState) -> bool:
    logger.warning("retry.giveup attempts={}", retry_state.attempt_number)
    return False


class RetryPolicy:
    """試行関数を「成功するか、試行回数の上限に達するまで」繰り返す。

    - attempt_fn は 1 回分の dispatch+分類を行い、成功なら True を返す
    - 失敗した n 回目（1始まり）のあとに base_delay_s * 2**n 秒眠る（max_delay_s で頭打ち）
    - jitter=True なら tenacity のランダム指数待機に切り替える（サーバ側のスパイク回避）
    - 上限に達したら False。例外は外に出さない（呼び出し側は bool と最後の応答を見る）
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay_s: float = 0.1,
        max_delay_s: float = 5.0,
        jitter: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1: {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter = jitter
        self._sleep = sleep
        self.delays: list[float] = []  # 直近 execute() で実際に眠った秒数

    def backoff_s(self, attempt: int) -> float:
        """失敗した attempt 回目（1始まり）のあとの待機秒数（ジッタなしの値）。"""
        return min(self.base_delay_s * (2**attempt), self.max_delay_s)

    def _wait_policy(self):
        # tenacity は multiplier * 2**(attempt_number - 1) なので、multiplier を base*2 にして揃える
        if self.jitter:
            return wait_random_exponential(multiplier=self.base_delay_s * 2, max=self.max_delay_s)
        return wait_exponential(multiplier=self.base_delay_s * 2, max=self.max_delay_s)

    def execute(self, attempt_fn: Callable[[], bool], *, retry_if: Callable[[], bool] | None = None) -> bool:
        """これは何をする関数？
        → attempt_fn を最初の成功まで繰り返し、成功なら True、上限到達や再試行不可なら False を返します。
          retry_if が与えられた場合、失敗した試行を再試行してよいかをそれで判定します
          （例: 取引所の拒否は一時的な失敗ではないので再試行しない）。
        """
        self.delays = []

        def _sleep(seconds: float) -> None:
            self.delays.append(seconds)
            self._sleep(seconds)

        def _should_retry(ok: bool) -> bool:
            if ok:
                return False
            return retry_if() if retry_if is not None else True

        def _attempt() -> bool:
            try:
                return bool(attempt_fn())
            except Exception:  # noqa: BLE001
                logger.exception("retry.attempt raised; counted as a failed attempt")
                return False

        _attempt.__name__ = getattr(attempt_fn, "__name__", "attempt")

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait_policy(),
            retry=retry_if_result(_should_retry),
            sleep=_sleep,
            before_sleep=_log_before_sleep,
            retry_error_callback=_give_up,
        )
        return bool(retrying(_attempt))
