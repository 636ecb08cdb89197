"""これは「取引所の JSON 応答を人が読めるテキスト行に整形する」モジュールです。

Facade は生の JSON を返すだけなので、CLI はここで整形してから表示する。
どの関数も例外は出さず、読めない応答は [Error] 行として返す。
"""

from __future__ import annotations

import json
from typing import Any

from oems.core.time import format_timestamp_ms
from oems.exchanges.classifier import parse_error_envelope

SEPARATOR = "-" * 40
POSITION_SEPARATOR = "=" * 44


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _load_result(response: str) -> tuple[Any, list[str]]:
    """本文を読み、(result, エラー行) を返す。エラー行が空でなければ result は使わない。"""
    envelope = parse_error_envelope(response)
    if envelope is not None:
        message, code = envelope
        return None, [f"[API Error] {message} (Code: {code})"]
    try:
        payload = json.loads(response)
    except (TypeError, ValueError) as e:
        return None, [f"[Error] JSON Parsing Failed: {e}"]
    if not isinstance(payload, dict) or "result" not in payload:
        return None, ["[Error] Unexpected JSON structure: 'result' field not found"]
    return payload["result"], []


def _order_lines(order: dict[str, Any], *, with_filled: bool = False) -> list[str]:
    lines = [
        f"Order ID: {order.get('order_id', '')}",
        f"Instrument: {order.get('instrument_name', '')}",
        f"Type: {order.get('order_type', '')}",
        f"State: {order.get('order_state', '')}",
        f"Direction: {order.get('direction', '')}",
        f"Amount: {_num(order.get('amount'))}",
    ]
    if with_filled:
        lines.append(f"Filled: {_num(order.get('filled_amount'))}")
    lines += [
        f"Price: {_num(order.get('price'))}",
        f"Time in Force: {order.get('time_in_force', '')}",
        f"Creation Time: {format_timestamp_ms(order.get('creation_timestamp'))}",
    ]
    return lines


def render_order_response(response: str) -> list[str]:
    """これは何をする関数？
    → 発注（result.order）/ 取消（result.order_id）/ 未約定一覧（result が配列）の応答を整形します。
    """
    result, errors = _load_result(response)
    if errors:
        return errors

    if isinstance(result, dict) and isinstance(result.get("order"), dict):
        return ["[Order Details]", *_order_lines(result["order"])]
    if isinstance(result, dict) and "order_id" in result:
        return [f"[Cancel Confirmation] Order ID: {result['order_id']} cancelled successfully"]
    if isinstance(result, list):
        lines = [f"[Open Orders Summary] Total Count: {len(result)}", SEPARATOR]
        for order in result:
            if isinstance(order, dict):
                lines += ["[Order]", *_order_lines(order, with_filled=True), SEPARATOR]
        return lines
    return ["[Warning] Unhandled JSON structure in result"]


def render_positions(response: str) -> list[str]:
    """これは何をする関数？→ get_positions の応答（result が配列）を建玉ごとに整形します。"""
    result, errors = _load_result(response)
    if errors:
        return errors
    if not isinstance(result, list):
        return ["[Error] Invalid position data structure"]

    lines = [f"[Current Positions Summary] Total Count: {len(result)}", POSITION_SEPARATOR]
    for p in result:
        if not isinstance(p, dict):
            continue
        lines += [
            "[Position Details]",
            f"Instrument: {p.get('instrument_name', '')}",
            f"Direction: {p.get('direction', '')}",
            f"Size: {_num(p.get('size'))}",
            f"Mark Price: {_num(p.get('mark_price'))}",
            f"Average Price: {_num(p.get('average_price'))}",
            f"Floating P&L: {_num(p.get('floating_profit_loss'))}",
            f"Total P&L: {_num(p.get('total_profit_loss'))}",
            f"Leverage: {_num(p.get('leverage'))}",
            f"Maintenance Margin: {_num(p.get('maintenance_margin'))}",
            f"Initial Margin: {_num(p.get('initial_margin'))}",
            f"Open Orders Margin: {_num(p.get('open_orders_margin'))}",
            f"Timestamp: {format_timestamp_ms(p.get('creation_timestamp'))}",
            POSITION_SEPARATOR,
        ]
    return lines


def _levels(title: str, levels: Any) -> list[str]:
    if not isinstance(levels, list):
        return []
    lines = [title]
    for level in levels:
        if isinstance(level, (list, tuple)) and len(level) >= 2:
            lines.append(f"Price: {_num(level[0])} | Amount: {_num(level[1])}")
    return lines


def render_order_book(response: str) -> list[str]:
    """これは何をする関数？→ get_order_book の応答を要約＋bids/asks の気配一覧に整形します。"""
    result, errors = _load_result(response)
    if errors:
        return errors
    if not isinstance(result, dict):
        return ["[Error] Invalid order book data structure"]

    lines = [
        "[Order Book Summary]",
        f"Instrument: {result.get('instrument_name', '')}",
        f"Best Bid: {_num(result.get('best_bid_price'))}",
        f"Best Ask: {_num(result.get('best_ask_price'))}",
        f"Mark Price: {_num(result.get('mark_price'))}",
        f"Index Price: {_num(result.get('index_price'))}",
    ]
    lines += _levels("[Bids]", result.get("bids"))
    lines += _levels("[Asks]", result.get("asks"))
    return lines


def render_response(response: str) -> str:
    """どの種類の応答か分からないときの汎用整形（JSON をインデント表示）。"""
    result, errors = _load_result(response)
    if errors:
        return "\n".join(errors)
    return json.dumps(result, indent=2, ensure_ascii=False)
