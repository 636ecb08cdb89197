"""これは「Deribit v2 REST への発注/照会を 1 操作ずつ実行する Facade」です。

各操作は同じ流れで進む:
    IDLE → VALIDATING → TOKEN_CHECK(private のみ) → DISPATCHING → {RETRYING → DISPATCHING}* → COMPLETED | FAILED

戻り値はすべて ApiResponse。例外は Facade の外に出さない。
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable

from loguru import logger

from oems.core.errors import AuthError, CredentialError, ExchangeError, FormatError, NetworkError, ValidationError
from oems.core.retry import RetryPolicy
from oems.core.time import make_label

from .dispatcher import RequestDispatcher
from .gateway_if import CredentialProvider, TokenProvider
from .types import ApiResponse, ErrorKind, OrderParams, RequestDescriptor, Side, TimeInForce

PRIVATE_API = "/api/v2/private/"
PUBLIC_API = "/api/v2/public/"

CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"
CONTENT_TYPE_JSON = "application/json"

DEFAULT_MAX_PATH_LENGTH = 2048  # エンコード後の path+query の上限文字数
AMOUNT_DECIMALS = 6
PRICE_DECIMALS = 2
STOP_TRIGGER = "last_price"  # stop 系注文のトリガ基準

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT})


class OperationState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    TOKEN_CHECK = "token_check"
    DISPATCHING = "dispatching"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


def _fmt(value: float, decimals: int) -> str:
    return f"{value:.{decimals}f}"


def _require_positive(name: str, value: float | None) -> None:
    # NaN も弾くため「> 0 でない」で判定する
    if value is None or not value > 0:
        raise ValidationError(f"Invalid {name}: {value}")


def _require_text(name: str, value: str | None) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"Invalid {name}: must not be empty")
    return text


class OrderExecution:
    """注文の発注/取消/修正と、板・建玉・未約定注文の照会を行う単一の入口。

    - order book は public、それ以外は private（Bearer トークン必須）
    - トークンは TokenProvider に問い合わせ、期限切れなら CredentialProvider のキーで更新してから使う
    - 送信は RetryPolicy で RequestDispatcher を包んで行い、network/timeout の失敗だけを再試行する
    - 1 インスタンスへの呼び出しはロックで直列化する（期限確認→更新→使用 を他スレッドと競合させない）
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        tokens: TokenProvider,
        credentials: CredentialProvider,
        *,
        retry: RetryPolicy | None = None,
        max_path_length: int = DEFAULT_MAX_PATH_LENGTH,
    ) -> None:
        self._dispatcher = dispatcher
        self._tokens = tokens
        self._credentials = credentials
        self._retry = retry or RetryPolicy()
        self._max_path_length = max_path_length
        self._lock = threading.Lock()
        self._log = logging.getLogger(__name__)  # 発注系の監査ログ出力口
        self.last_states: list[OperationState] = []  # 直近の呼び出しで通った状態

    # ---------- 発注/取消/修正 ----------

    def place_order(self, params: OrderParams, side: Side | str) -> ApiResponse:
        """これは何をする関数？
        → 買い/売り注文を /api/v2/private/{buy,sell} に送ります（label 未指定なら時刻から採番）。
        """
        holder: dict[str, str] = {}

        def validate() -> None:
            try:
                holder["side"] = Side(str(getattr(side, "value", side)).strip().lower()).value
            except ValueError:
                raise ValidationError(f"Invalid side: {side}") from None
            holder["instrument"] = _require_text("instrument name", params.instrument_name)
            _require_positive("amount", params.amount)
            if params.order_type.needs_price:
                _require_positive(f"price for {params.order_type.value} order", params.price)
            if params.order_type.needs_trigger:
                _require_positive(f"trigger price for {params.order_type.value} order", params.trigger_price)
            holder["label"] = params.label.strip() or make_label()

        def build(token: str | None) -> RequestDescriptor:
            query: list[tuple[str, str]] = [
                ("amount", _fmt(params.amount, AMOUNT_DECIMALS)),
                ("instrument_name", holder["instrument"]),
                ("label", holder["label"]),
            ]
            if params.order_type.needs_price:
                query.append(("price", _fmt(params.price, PRICE_DECIMALS)))
            query.append(("type", params.order_type.value))
            if params.order_type.needs_trigger and params.trigger_price is not None:
                query.append(("trigger_price", _fmt(params.trigger_price, PRICE_DECIMALS)))
                query.append(("trigger", STOP_TRIGGER))
            if params.time_in_force is not TimeInForce.GOOD_TIL_CANCELLED:
                query.append(("time_in_force", params.time_in_force.value))
            return self._private(holder["side"], query, token, content_type=CONTENT_TYPE_FORM)

        logger.debug(
            "order.submit side={} instrument={} type={} amount={} price={}",
            getattr(side, "value", side),
            params.instrument_name,
            params.order_type.value,
            params.amount,
            params.price,
        )
        res = self._run("place order", validate, build, private=True)
        if res.success:
            logger.debug(
                "order.placed side={} instrument={} label={}",
                holder.get("side"),
                params.instrument_name,
                holder.get("label"),
            )
        elif res.kind == ErrorKind.PROTOCOL:
            logger.debug("order.reject instrument={} reason={}", params.instrument_name, res.message)
        return res

    def buy(self, params: OrderParams) -> ApiResponse:
        return self.place_order(params, Side.BUY)

    def sell(self, params: OrderParams) -> ApiResponse:
        return self.place_order(params, Side.SELL)

    def cancel_order(self, order_id: str) -> ApiResponse:
        """これは何をする関数？→ 注文IDで取消する。"""
        holder: dict[str, str] = {}

        def validate() -> None:
            holder["order_id"] = _require_text("order id", order_id)

        def build(token: str | None) -> RequestDescriptor:
            return self._private("cancel", [("order_id", holder["order_id"])], token)

        res = self._run("cancel order", validate, build, private=True)
        if res.success:
            logger.debug("order.cancel order_id={}", order_id)
        return res

    def modify_order(self, order_id: str, amount: float, price: float) -> ApiResponse:
        """これは何をする関数？→ 既存注文の数量/価格を修正する（/edit）。"""
        holder: dict[str, str] = {}

        def validate() -> None:
            holder["order_id"] = _require_text("order id", order_id)
            _require_positive("amount", amount)
            _require_positive("price", price)

        def build(token: str | None) -> RequestDescriptor:
            query = [
                ("order_id", holder["order_id"]),
                ("amount", _fmt(amount, AMOUNT_DECIMALS)),
                ("price", _fmt(price, PRICE_DECIMALS)),
            ]
            return self._private("edit", query, token)

        res = self._run("modify order", validate, build, private=True)
        if res.success:
            logger.debug("order.amend order_id={} amount={} price={}", order_id, amount, price)
        return res

    # ---------- 照会 ----------

    def get_order_book(self, instrument_name: str) -> ApiResponse:
        """これは何をする関数？→ 板情報を取得する（public、認証なし）。"""
        holder: dict[str, str] = {}

        def validate() -> None:
            holder["instrument"] = _require_text("instrument name", instrument_name)

        def build(token: str | None) -> RequestDescriptor:
            return RequestDescriptor(
                path=PUBLIC_API + "get_order_book",
                params=(("instrument_name", holder["instrument"]),),
                headers=(("Content-Type", CONTENT_TYPE_JSON),),
            )

        return self._run("get order book", validate, build, private=False)

    def get_positions(self, currency: str, kind: str = "") -> ApiResponse:
        """これは何をする関数？→ 通貨ごとの建玉を取得する（kind は future/option など、省略可）。"""
        holder: dict[str, str] = {}

        def validate() -> None:
            holder["currency"] = _require_text("currency", currency)

        def build(token: str | None) -> RequestDescriptor:
            query = [("currency", holder["currency"])]
            if kind and kind.strip():
                query.append(("kind", kind.strip()))
            return self._private("get_positions", query, token)

        res = self._run("get positions", validate, build, private=True)
        if res.success:
            logger.debug("position.query currency={} kind={}", currency, kind or "-")
        return res

    def get_open_orders(self) -> ApiResponse:
        """これは何をする関数？→ 未約定注文の一覧を取得する。"""

        def build(token: str | None) -> RequestDescriptor:
            return self._private("get_open_orders", [], token)

        return self._run("get open orders", lambda: None, build, private=True)

    # ---------- 内部 ----------

    @staticmethod
    def _private(
        method: str,
        query: list[tuple[str, str]],
        token: str | None,
        *,
        content_type: str = CONTENT_TYPE_JSON,
    ) -> RequestDescriptor:
        return RequestDescriptor(
            path=PRIVATE_API + method,
            params=tuple(query),
            headers=(("Authorization", f"Bearer {token}"), ("Content-Type", content_type)),
            private=True,
        )

    def _enter(self, state: OperationState) -> None:
        self.last_states.append(state)
        logger.debug("op.state {}", state.value)

    def _ensure_token(self, op: str) -> str:
        """期限切れならキー/シークレットで更新し、今のアクセストークンを返す（失敗は AuthError）。"""
        if self._tokens.is_token_expired():
            logger.warning("access token expired; refreshing before {}", op)
            try:
                key = self._credentials.read_key()
                secret = self._credentials.read_secret()
                refreshed = self._tokens.refresh_token(key, secret)
            except CredentialError as e:
                self._log.error("credentials unavailable: %s", e)
                refreshed = False
            if not refreshed:
                raise AuthError(f"Failed to refresh access token; cannot {op} without valid token")
        token = self._tokens.current_token()
        if not token:
            raise AuthError(f"No access token available; cannot {op} without valid token")
        return token

    def _run(
        self,
        op: str,
        validate: Callable[[], None],
        build: Callable[[str | None], RequestDescriptor],
        *,
        private: bool,
    ) -> ApiResponse:
        with self._lock:
            self.last_states = [OperationState.IDLE]
            try:
                self._enter(OperationState.VALIDATING)
                validate()
                token: str | None = None
                if private:
                    self._enter(OperationState.TOKEN_CHECK)
                    token = self._ensure_token(op)
                self._enter(OperationState.DISPATCHING)
                descriptor = build(token)
                if len(descriptor.target) > self._max_path_length:
                    raise FormatError(
                        f"Request path too long: {len(descriptor.target)} > {self._max_path_length} characters"
                    )
            except ExchangeError as e:
                self._enter(OperationState.FAILED)
                self._log.warning("%s not sent: kind=%s reason=%s", op, e.kind, e)
                return ApiResponse.from_error(e)

            result = self._dispatch_with_retry(op, descriptor)
            self._enter(OperationState.COMPLETED if result.success else OperationState.FAILED)
            if not result.success:
                self._log.warning("%s failed: kind=%s reason=%s", op, result.kind, result.message)
            return result

    def _dispatch_with_retry(self, op: str, descriptor: RequestDescriptor) -> ApiResponse:
        responses: list[ApiResponse] = []

        def attempt() -> bool:
            if responses:
                self._enter(OperationState.RETRYING)
                self._enter(OperationState.DISPATCHING)
            try:
                res = self._dispatcher.dispatch(descriptor)
            except Exception:  # noqa: BLE001
                logger.exception("{} dispatch raised; treated as network failure", op)
                res = ApiResponse.from_error(NetworkError("Network error"))
            responses.append(res)
            return res.success

        attempt.__name__ = op.replace(" ", "_")

        def transient() -> bool:
            return bool(responses) and responses[-1].kind in RETRYABLE_KINDS

        self._retry.execute(attempt, retry_if=transient)
        if not responses:
            return ApiResponse.from_error(NetworkError("Network error"))
        return responses[-1]
