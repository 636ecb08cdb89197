from __future__ import annotations

import pytest

pytest.importorskip("loguru")
pytest.importorskip("tenacity")

from oems.core.retry import RetryPolicy


def _policy(**kwargs) -> tuple[RetryPolicy, list[float]]:
    slept: list[float] = []
    return RetryPolicy(sleep=slept.append, **kwargs), slept


def test_retry_succeeds_after_two_failures() -> None:
    """2回失敗→3回目成功で True、待機は 0.2s → 0.4s と増えること"""
    policy, slept = _policy(max_attempts=3, base_delay_s=0.1)
    calls = {"n": 0}

    def flakey() -> bool:
        calls["n"] += 1
        return calls["n"] >= 3

    assert policy.execute(flakey) is True
    assert calls["n"] == 3
    assert slept == [pytest.approx(0.2), pytest.approx(0.4)]
    assert policy.delays == slept


def test_retry_gives_up_after_max_attempts() -> None:
    """常に失敗するときは上限ちょうどの回数だけ試して False"""
    policy, slept = _policy(max_attempts=3)
    calls = {"n": 0}

    def always_fail() -> bool:
        calls["n"] += 1
        return False

    assert policy.execute(always_fail) is False
    assert calls["n"] == 3
    assert len(slept) == 2


def test_first_success_does_not_sleep() -> None:
    """1回目で成功すれば眠らないこと"""
    policy, slept = _policy()
    assert policy.execute(lambda: True) is True
    assert slept == []


def test_retry_if_veto_stops_immediately() -> None:
    """retry_if が False を返した失敗は再試行しないこと"""
    policy, slept = _policy(max_attempts=5)
    calls = {"n": 0}

    def rejected() -> bool:
        calls["n"] += 1
        return False

    assert policy.execute(rejected, retry_if=lambda: False) is False
    assert calls["n"] == 1
    assert slept == []


def test_exception_counts_as_failed_attempt() -> None:
    """試行関数の例外は外に出さず、失敗1回として数えること"""
    policy, _ = _policy(max_attempts=2)
    calls = {"n": 0}

    def boom() -> bool:
        calls["n"] += 1
        raise RuntimeError("boom")

    assert policy.execute(boom) is False
    assert calls["n"] == 2


def test_backoff_is_capped_by_max_delay() -> None:
    """待機秒数は max_delay_s で頭打ちになること"""
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=3.0)
    assert policy.backoff_s(1) == 2.0
    assert policy.backoff_s(2) == 3.0


def test_jitter_delays_stay_within_cap() -> None:
    """ジッタ有効時も待機は 0〜max_delay_s に収まること"""
    policy, slept = _policy(max_attempts=4, base_delay_s=0.1, max_delay_s=0.3, jitter=True)
    assert policy.execute(lambda: False) is False
    assert len(slept) == 3
    assert all(0.0 <= s <= 0.3 for s in slept)


def test_max_attempts_must_be_positive() -> None:
    """max_attempts < 1 は ValueError"""
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
