# UTC 時刻ユーティリティ: 取引所タイムスタンプの解釈と表示、注文ラベルの採番。
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

_MS_THRESHOLD = 1e12  # これより大きいエポック値はミリ秒とみなす（Deribit はミリ秒）


def parse_exchange_ts(x: Any) -> datetime:
    """これは何をする関数？
    → エポック値（秒/ミリ秒、数字だけの文字列も可）・ISO8601 文字列・datetime を UTC の datetime にします。
      型が違えば TypeError、文字列が読めなければ ValueError。
    """
    if isinstance(x, datetime):
        return x.astimezone(timezone.utc) if x.tzinfo else x.replace(tzinfo=timezone.utc)
    if isinstance(x, bool):
        raise TypeError(f"unsupported timestamp type: {type(x)}")
    if isinstance(x, (int, float)):
        seconds = x / 1000.0 if x > _MS_THRESHOLD else float(x)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(x, str):
        text = x.strip()
        if text.isdigit():
            return parse_exchange_ts(int(text))
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).astimezone(timezone.utc)
        except ValueError as e:
            raise ValueError(f"unsupported timestamp format: {x}") from e
    raise TypeError(f"unsupported timestamp type: {type(x)}")


def format_timestamp_ms(timestamp_ms: Any) -> str:
    """creation_timestamp などを 'YYYY-MM-DD HH:MM:SS UTC' にする。読めない値は '[Error] Invalid timestamp'。"""
    try:
        dt = parse_exchange_ts(timestamp_ms)
    except (TypeError, ValueError, OverflowError, OSError):
        return "[Error] Invalid timestamp"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def make_label(prefix: str = "market", *, clock: Callable[[], float] = time.time) -> str:
    """これは何をする関数？
    → 注文ラベル（client order tag）を「接頭辞＋UNIX秒」で採番します。例: 'market1718000000'
    """
    return f"{prefix}{int(clock())}"
