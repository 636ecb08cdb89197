"""loguru の初期化と、標準 logging → loguru の橋渡し。

- logs/oems.log（人向け）と logs/oems.jsonl（JSON）を日次ローテーションで出す
- DEBUG で出した発注/建玉イベント（order.* / position.*）は INFO に昇格させて必ず残す
- Bearer トークンや client_secret はメッセージから伏せてからシンクに渡す
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Callable, Iterable

from loguru import logger

ORDER_EVENT_RE = re.compile(r"^(order\.(submit|placed|reject|cancel|amend)|position\.\w+)\b")

# 伏せる対象: Authorization ヘッダ値と、認証クエリの秘匿パラメータ
SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1***"),
    (re.compile(r"((?:client_secret|access_token|refresh_token)=)[^&\s]+"), r"\1***"),
)

ROTATION = "00:00"
RETENTION = 10
HUMAN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | {extra[origin]}:{extra[origin_func]}:{extra[origin_line]} | {message}"
)


def redact(text: str) -> str:
    """これは何をする関数？→ ログ文字列からトークン/シークレットを *** に置き換えます。"""
    for pattern, repl in SECRET_PATTERNS:
        text = pattern.sub(repl, text)
    return text


def _patch_record(record: dict) -> None:
    """全レコード共通のパッチャ: origin* 付与・秘匿情報の伏せ字・発注イベントの INFO 昇格。"""

    extra = record["extra"]
    extra.setdefault("origin", record["name"])
    extra.setdefault("origin_func", record["function"])
    extra.setdefault("origin_line", record["line"])
    record["message"] = redact(record["message"])
    if record["level"].name == "DEBUG" and ORDER_EVENT_RE.match(record["message"]):
        record["level"].name = "INFO"
        record["level"].no = logger.level("INFO").no


def _parse_debug_modules(raw: str | Iterable[str] | None) -> tuple[str, ...]:
    """LOG_DEBUG_MODULES（カンマ区切り）から、DEBUG を出すモジュール名の接頭辞を取り出す。"""

    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else [str(x) for x in raw]
    return tuple(x.strip() for x in items if x.strip())


def _level_filter(base_level_no: int, debug_modules: tuple[str, ...]) -> Callable[[dict], bool]:
    debug_no = logger.level("DEBUG").no

    def _filter(record: dict) -> bool:
        no = record["level"].no
        if no >= base_level_no:
            return True
        if no == debug_no and debug_modules:
            origin = record["extra"].get("origin") or record["name"] or ""
            return origin.startswith(debug_modules)
        return False

    return _filter


class InterceptHandler(logging.Handler):
    """標準 logging（Facade の監査ロガーや urllib3）のレコードを loguru へ転送する。"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(origin=record.name, origin_func=record.funcName, origin_line=record.lineno).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def setup_std_logging_bridge() -> None:
    root = logging.getLogger()
    if not any(isinstance(h, InterceptHandler) for h in root.handlers):
        root.addHandler(InterceptHandler())
    root.setLevel(logging.NOTSET)
    logging.captureWarnings(True)
    logging.getLogger("urllib3").setLevel(logging.WARNING)  # 接続ごとの DEBUG は不要


def _file_sink(path: Path, *, serialize: bool, level_filter: Callable[[dict], bool]) -> dict[str, Any]:
    opts: dict[str, Any] = {
        "sink": str(path),
        "level": "DEBUG",
        "rotation": ROTATION,
        "retention": RETENTION,
        "enqueue": True,
        "backtrace": True,
        "diagnose": False,  # 変数値（トークン含む）をトレースバックに出さない
        "encoding": "utf-8",
        "filter": level_filter,
    }
    if serialize:
        opts["serialize"] = True
    else:
        opts["format"] = HUMAN_FORMAT
    return opts


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: str = "logs",
    human_filename: str = "oems.log",
    json_filename: str = "oems.jsonl",
    debug_modules: Iterable[str] | None = None,
    console: bool = True,
) -> None:
    """Initialize loguru sinks for the order execution client.

    File sinks under `log_dir` (rotated daily, keep 10):
      1) `oems.log`: human-readable
      2) `oems.jsonl`: one JSON record per line
    A stderr console sink is added unless `console=False` (the menu CLI prints to stdout).
    """
    logger.remove()
    logger.configure(patcher=_patch_record)  # type: ignore[arg-type]

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    normalized = level.upper()
    try:
        base_level_no = logger.level(normalized).no
    except ValueError:
        normalized = "INFO"
        base_level_no = logger.level("INFO").no
    modules = _parse_debug_modules(debug_modules if debug_modules is not None else os.getenv("LOG_DEBUG_MODULES"))
    level_filter = _level_filter(base_level_no, modules)

    logger.add(**_file_sink(log_path / human_filename, serialize=False, level_filter=level_filter))
    logger.add(**_file_sink(log_path / json_filename, serialize=True, level_filter=level_filter))
    if console:
        logger.add(sys.stderr, level="DEBUG", format=HUMAN_FORMAT, filter=level_filter, diagnose=False)

    setup_std_logging_bridge()
    logger.info("logging init level={} dir={} debug_modules={}", normalized, log_dir, modules)
