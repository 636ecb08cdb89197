# これは「送信間隔の下限（既定100ms）を守るレートリミッタ」を提供するファイルです。
from __future__ import annotations

import math
import threading
import time
from typing import Callable

from loguru import logger

DEFAULT_MIN_INTERVAL_S = 0.1  # Deribit への REST 送信は最低 100ms 空ける


class RateLimiter:
    """1インスタンスを共有する全ディスパッチ（再試行・トークン更新も含む）に最小送信間隔を強制する。

    - acquire(): 必要なら残り時間だけ眠ってから「最後の送信時刻」を記録する（失敗しない）
    - try_acquire(): 眠らずに判定だけ行い、通せるときだけ時刻を記録する

    最後の送信時刻は単調時計で持ち、成功した acquire でのみ前進する（巻き戻さない）。
    ロックは眠っている間も保持するので、複数スレッドから呼ばれても送信は直列になる。
    """

    def __init__(
        self,
        min_interval_s: float = DEFAULT_MIN_INTERVAL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_s < 0:
            raise ValueError(f"min_interval_s must be >= 0: {min_interval_s}")
        self._min_interval_s = float(min_interval_s)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: float | None = None  # 最後に送信を許可した単調時刻（未送信なら None）

    @property
    def min_interval_s(self) -> float:
        return self._min_interval_s

    @property
    def last_dispatch(self) -> float | None:
        return self._last

    def _record(self, now: float) -> None:
        # 時計が同値を返しても「厳密に単調増加」を保つ
        if self._last is not None and now <= self._last:
            now = math.nextafter(self._last, math.inf)
        self._last = now

    def acquire(self) -> None:
        """これは何をする関数？
        → 前回送信からの経過が下限未満なら残りを眠り、今の時刻を最後の送信時刻として記録します。
        """
        with self._lock:
            if self._last is not None:
                elapsed = self._clock() - self._last
                remaining = self._min_interval_s - elapsed
                if remaining > 0:
                    logger.debug("rate_limit.wait remaining_ms={:.1f}", remaining * 1000.0)
                    self._sleep(remaining)
            self._record(self._clock())

    def try_acquire(self) -> bool:
        """これは何をする関数？
        → 下限間隔がすでに経過していれば時刻を記録して True、まだなら状態を変えず False を返します。
        """
        with self._lock:
            now = self._clock()
            if self._last is not None and (now - self._last) < self._min_interval_s:
                return False
            self._record(now)
            return True
