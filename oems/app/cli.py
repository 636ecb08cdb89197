"""対話メニューで発注/照会を行う CLI（エントリポイント: oems）。

Ctrl+C は shutdown Event をセットし、メニューとトランスポートを順に止める。
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Callable

from loguru import logger

from oems.auth.credentials import credentials_from_config
from oems.auth.token import DeribitTokenManager
from oems.config.loader import load_config
from oems.config.models import AppConfig
from oems.core.errors import ConfigError, CredentialError
from oems.core.logging import setup_logging
from oems.core.rate_limit import RateLimiter
from oems.core.retry import RetryPolicy
from oems.core.time import make_label
from oems.exchanges.deribit import OrderExecution
from oems.exchanges.dispatcher import RequestDispatcher
from oems.exchanges.transport import RequestsTransport
from oems.exchanges.types import ApiResponse, OrderParams, OrderType, Side
from oems.monitor.render import render_order_book, render_order_response, render_positions

MENU = """
=== Trading System Menu ===
1. Get Order Book
2. Place Buy Order
3. Place Sell Order
4. Get Current Positions
5. Get Open Orders
6. Cancel Order
7. Modify Order
8. Exit"""


def build_order_execution(cfg: AppConfig, shutdown: threading.Event) -> tuple[OrderExecution, RequestsTransport]:
    """これは何をする関数？
    → 設定からトランスポート/リミッタ/ディスパッチャ/トークン/再試行を組み立て、Facade を返します。
      トランスポートは呼び出し側が close() する。
    """
    ex = cfg.exchange
    transport = RequestsTransport(
        ex.base_url,
        request_timeout_s=ex.request_timeout_s,
        max_workers=ex.max_workers,
        shutdown=shutdown,
    )
    limiter = RateLimiter(ex.min_request_interval_ms / 1000.0)
    dispatcher = RequestDispatcher(transport, limiter, timeout_s=ex.dispatch_timeout_s)
    retry = RetryPolicy(
        max_attempts=cfg.retry.max_attempts,
        base_delay_s=cfg.retry.base_delay_s,
        max_delay_s=cfg.retry.max_delay_s,
        jitter=cfg.retry.jitter,
    )
    execution = OrderExecution(
        dispatcher,
        DeribitTokenManager(dispatcher),
        credentials_from_config(cfg),
        retry=retry,
        max_path_length=ex.max_path_length,
    )
    return execution, transport


class MenuApp:
    """メニュー 1 周ぶんの入出力を持つ。入出力関数は差し替え可能（テスト用）。"""

    def __init__(
        self,
        execution: OrderExecution,
        shutdown: threading.Event,
        *,
        read: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ) -> None:
        self._ex = execution
        self._shutdown = shutdown
        self._read = read
        self._write = write

    def _ask(self, prompt: str) -> str:
        return self._read(prompt).strip()

    def _ask_float(self, prompt: str) -> float | None:
        raw = self._ask(prompt)
        try:
            return float(raw)
        except ValueError:
            self._write(f"Invalid number: {raw!r}")
            return None

    def _show(self, res: ApiResponse, render: Callable[[str], list[str]], title: str) -> None:
        if res.success:
            self._write(f"\n{title}:")
            for line in render(res.data):
                self._write(line)
        else:
            self._write(f"Failed: {res.message}")

    def _place(self, side: Side) -> None:
        instrument = self._ask("Enter instrument name: ")
        amount = self._ask_float("Enter amount: ")
        price = self._ask_float("Enter price: ")
        if amount is None or price is None:
            return
        params = OrderParams(
            instrument_name=instrument,
            amount=amount,
            price=price,
            label=make_label(),
            order_type=OrderType.LIMIT,
        )
        self._show(self._ex.place_order(params, side), render_order_response, f"{side.value.capitalize()} order placed")

    def handle(self, choice: str) -> bool:
        """これは何をする関数？→ 選択肢を 1 つ処理する。終了なら False を返す。"""
        if choice == "1":
            instrument = self._ask("Enter instrument name (e.g., ETH-PERPETUAL): ")
            self._show(self._ex.get_order_book(instrument), render_order_book, f"Order Book for {instrument}")
        elif choice == "2":
            self._place(Side.BUY)
        elif choice == "3":
            self._place(Side.SELL)
        elif choice == "4":
            currency = self._ask("Enter currency (e.g., ETH): ")
            self._show(self._ex.get_positions(currency, "future"), render_positions, "Current Positions")
        elif choice == "5":
            self._show(self._ex.get_open_orders(), render_order_response, "Open Orders")
        elif choice == "6":
            order_id = self._ask("Enter order id: ")
            self._show(self._ex.cancel_order(order_id), render_order_response, "Cancelled")
        elif choice == "7":
            order_id = self._ask("Enter order id: ")
            amount = self._ask_float("Enter new amount: ")
            price = self._ask_float("Enter new price: ")
            if amount is not None and price is not None:
                self._show(self._ex.modify_order(order_id, amount, price), render_order_response, "Modified Order")
        elif choice == "8":
            self._write("Exiting program...")
            return False
        else:
            self._write("Invalid choice. Please try again.")
        return True

    def run(self) -> None:
        while not self._shutdown.is_set():
            self._write(MENU)
            try:
                choice = self._ask("Enter your choice (1-8): ")
            except (EOFError, KeyboardInterrupt):
                self._shutdown.set()
                break
            if not self.handle(choice):
                break


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Deribit order execution menu")
    parser.add_argument("--config", type=str, default=None, help="YAML設定ファイルのパス(省略可)")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(level=cfg.logging.level, log_dir=cfg.logging.log_dir, console=False)

    shutdown = threading.Event()

    def _on_sigint(signum: int, _frame: object) -> None:
        logger.info("exit signal received: {}; shutting down", signum)
        shutdown.set()
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _on_sigint)

    try:
        execution, transport = build_order_execution(cfg, shutdown)
    except CredentialError as e:
        logger.error("failed to initialize API credentials: {}", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with transport:
        try:
            MenuApp(execution, shutdown).run()
        except KeyboardInterrupt:  # 操作の途中で Ctrl+C された
            shutdown.set()
    return 0


if __name__ == "__main__":
    sys.exit(main())
