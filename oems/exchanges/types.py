from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict

from oems.core.errors import ExchangeError


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"
    STOP_LIMIT = "stop_limit"
    STOP_MARKET = "stop_market"

    @property
    def needs_price(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.STOP_LIMIT)

    @property
    def needs_trigger(self) -> bool:
        return self in (OrderType.STOP_LIMIT, OrderType.STOP_MARKET)


class TimeInForce(str, Enum):
    GOOD_TIL_CANCELLED = "good_til_cancelled"
    FILL_OR_KILL = "fill_or_kill"
    IMMEDIATE_OR_CANCEL = "immediate_or_cancel"


class ErrorKind(str, Enum):
    """失敗の分類。「未送信」(validation/auth/format)、「送信済みで拒否」(protocol)、「送信済みで結果不明」(timeout)を区別する。"""

    VALIDATION = "validation"
    AUTH = "auth"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    FORMAT = "format"


class OrderParams(BaseModel):
    """発注パラメータ。Facade に渡したあとは変更しない（frozen）。

    値の妥当性（amount>0 など）は Facade の検証ステップで見るので、ここでは型の正規化だけを行う。
    """

    model_config = ConfigDict(frozen=True)

    instrument_name: str  # e.g. "BTC-PERPETUAL", "ETH-28JUN24"
    amount: float  # base currency 建ての数量
    price: float = 0.0  # 指値系のみ必須
    label: str = ""  # client order tag（既定フローでは時刻から採番）
    order_type: OrderType = OrderType.LIMIT
    time_in_force: TimeInForce = TimeInForce.GOOD_TIL_CANCELLED
    trigger_price: float | None = None  # stop_limit / stop_market のトリガ価格


class ApiResponse(BaseModel):
    """1 回の取引所操作の結果。成功なら data に生の JSON 本文、失敗なら message に理由。"""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    data: str = ""
    kind: ErrorKind | None = None
    code: int | None = None  # 取引所の error.code（あれば）

    @classmethod
    def ok(cls, data: str, message: str = "Success") -> "ApiResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, *, data: str = "", code: int | None = None) -> "ApiResponse":
        return cls(success=False, message=message, data=data, kind=kind, code=code)

    @classmethod
    def from_error(cls, error: ExchangeError) -> "ApiResponse":
        """例外の kind と文言（ProtocolError なら code と本文も）を失敗応答に写す。"""
        return cls.fail(
            ErrorKind(error.kind),
            str(error),
            data=getattr(error, "body", ""),
            code=getattr(error, "code", None),
        )


@dataclass(frozen=True)
class RequestDescriptor:
    """1 回分の HTTP リクエスト記述子。再試行ではこれをそのまま再送する。"""

    path: str
    params: tuple[tuple[str, str], ...] = ()
    headers: tuple[tuple[str, str], ...] = ()
    method: str = "GET"
    private: bool = field(default=False, compare=False)

    @property
    def query(self) -> str:
        return urlencode(self.params)

    @property
    def target(self) -> str:
        """URL エンコード済みクエリ付きのパス（例: /api/v2/private/buy?amount=1.000000&...）。"""
        return f"{self.path}?{self.query}" if self.params else self.path

    def header_dict(self) -> dict[str, str]:
        return dict(self.headers)

    def redacted_headers(self) -> dict[str, str]:
        """ログ用。Bearer トークンは伏せる。"""
        return {k: ("Bearer ***" if k.lower() == "authorization" else v) for k, v in self.headers}


@dataclass(frozen=True)
class TransportOutcome:
    """トランスポートのコールバックに渡る生の結果（分類前）。"""

    error: BaseException | None = None  # 接続失敗など。None なら送受信自体は成功
    status: int | None = None
    body: str = ""
    has_response: bool = False

    @classmethod
    def from_error(cls, error: BaseException) -> "TransportOutcome":
        return cls(error=error)

    @classmethod
    def from_response(cls, status: int, body: str) -> "TransportOutcome":
        return cls(status=status, body=body, has_response=True)
