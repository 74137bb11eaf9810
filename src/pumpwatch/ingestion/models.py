"""
Data models for the ingestion layer.

These models represent:
- Domain events parsed from feed frames (create / trade / unrecognized)
- Bonding curve reserve snapshots
- Outbound subscription messages

Every event carries ``received_at``, the epoch-ms receipt time stamped by a
ReceiptClock when the frame is parsed. Upstream timestamps are not trusted
and are never read.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union


class TradeSide(str, Enum):
    """Side of a trade."""
    BUY = "buy"
    SELL = "sell"


class SubscriptionMethod(str, Enum):
    """Outbound feed methods."""
    SUBSCRIBE_NEW_TOKEN = "subscribeNewToken"
    SUBSCRIBE_TOKEN_TRADE = "subscribeTokenTrade"
    UNSUBSCRIBE_TOKEN_TRADE = "unsubscribeTokenTrade"
    SUBSCRIBE_ACCOUNT_TRADE = "subscribeAccountTrade"
    UNSUBSCRIBE_ACCOUNT_TRADE = "unsubscribeAccountTrade"


class MalformedEventError(ValueError):
    """A frame looked like a known event but could not be parsed."""
    pass


@dataclass(frozen=True)
class BondingCurveState:
    """
    Virtual reserves of a token's bonding curve.

    Attributes:
        key: Bonding curve account address (if known)
        sol_reserve: Virtual SOL in the curve
        token_reserve: Virtual tokens in the curve
    """
    key: Optional[str]
    sol_reserve: float
    token_reserve: float

    @property
    def price(self) -> float:
        """Spot price in SOL per token (0 when the token reserve is empty)."""
        if self.token_reserve <= 0:
            return 0.0
        return self.sol_reserve / self.token_reserve


@dataclass(frozen=True)
class CreatedEvent:
    """A new token was launched."""
    mint: str
    symbol: Optional[str]
    name: Optional[str]
    uri: Optional[str]
    bonding_curve: BondingCurveState
    trader_id: Optional[str]
    signature: Optional[str]
    initial_buy: float
    market_cap_sol: float
    received_at: int

    @property
    def kind(self) -> str:
        return "create"


@dataclass(frozen=True)
class TradeEvent:
    """
    A buy or sell on a token's bonding curve.

    price is the post-trade curve price; volume is token_amount x price in SOL.
    """
    mint: str
    side: TradeSide
    price: float
    volume: float
    token_amount: float
    new_token_balance: Optional[float]
    trader_id: Optional[str]
    signature: str
    bonding_curve: BondingCurveState
    market_cap_sol: Optional[float]
    received_at: int

    @property
    def kind(self) -> str:
        return self.side.value

    @property
    def timestamp(self) -> int:
        """Receipt time, so events and stored trades share one time axis."""
        return self.received_at

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY


@dataclass(frozen=True)
class UnrecognizedEvent:
    """A well-formed frame of a type this client does not handle (acks, errors)."""
    kind: str
    payload: dict = field(default_factory=dict)
    received_at: int = 0


DomainEvent = Union[CreatedEvent, TradeEvent, UnrecognizedEvent]


class ReceiptClock:
    """
    Strictly increasing epoch-millisecond clock.

    Never runs behind wall-clock ms, but two events parsed within the same
    millisecond still get distinct, ordered stamps.
    """

    def __init__(self, time_source: Optional[Callable[[], float]] = None) -> None:
        self._time_source = time_source or time.time
        self._last = 0

    def now(self) -> int:
        ms = int(self._time_source() * 1000)
        if ms <= self._last:
            ms = self._last + 1
        self._last = ms
        return ms


def _to_float(data: dict, key: str, default: Optional[float] = 0.0) -> Optional[float]:
    value = data.get(key)
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Field '{key}' is not numeric: {value!r}") from e
    if not math.isfinite(number):
        raise MalformedEventError(f"Field '{key}' is not finite: {value!r}")
    return number


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedEventError(f"Missing required field '{key}'")
    return value


def _curve_from(data: dict) -> BondingCurveState:
    return BondingCurveState(
        key=data.get("bondingCurveKey"),
        sol_reserve=_to_float(data, "vSolInBondingCurve"),
        token_reserve=_to_float(data, "vTokensInBondingCurve"),
    )


def parse_event(data: dict, received_at: int) -> DomainEvent:
    """
    Classify and parse one decoded feed object.

    The discriminant is ``txType`` (``side`` is accepted as an alias).
    Anything that is not a create or a buy/sell becomes an
    UnrecognizedEvent. Raises MalformedEventError when a create or trade
    frame is missing required fields or has non-numeric amounts.
    """
    kind = data.get("txType") or data.get("side")

    if kind == "create":
        curve = _curve_from(data)
        return CreatedEvent(
            mint=_require_str(data, "mint"),
            symbol=data.get("symbol"),
            name=data.get("name"),
            uri=data.get("uri"),
            bonding_curve=curve,
            trader_id=data.get("traderPublicKey"),
            signature=data.get("signature"),
            initial_buy=_to_float(data, "initialBuy"),
            market_cap_sol=_to_float(data, "marketCapSol", default=curve.sol_reserve),
            received_at=received_at,
        )

    if kind in ("buy", "sell"):
        curve = _curve_from(data)
        token_amount = _to_float(data, "tokenAmount")
        price = curve.price
        return TradeEvent(
            mint=_require_str(data, "mint"),
            side=TradeSide(kind),
            price=price,
            volume=token_amount * price,
            token_amount=token_amount,
            new_token_balance=_to_float(data, "newTokenBalance", default=None),
            trader_id=data.get("traderPublicKey"),
            signature=data.get("signature") or "",
            bonding_curve=curve,
            market_cap_sol=_to_float(data, "marketCapSol", default=None),
            received_at=received_at,
        )

    if kind is None:
        kind = "message" if "message" in data else "unknown"
    return UnrecognizedEvent(kind=str(kind), payload=data, received_at=received_at)


def build_message(
    method: SubscriptionMethod, keys: Optional[Iterable[str]] = None
) -> dict[str, Any]:
    """Build an outbound feed message."""
    message: dict[str, Any] = {"method": method.value}
    if keys is not None:
        message["keys"] = list(keys)
    return message
