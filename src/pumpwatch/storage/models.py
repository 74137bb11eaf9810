"""
Pydantic models matching the SQLite schema in storage/database.py.

Table names and field names match the database columns. Structured columns
(token metrics, wallet concentration, velocity series) are real nested
values here; the repositories encode them to JSON text on the way in and
decode them on the way out.

Timestamps are integer epoch milliseconds throughout.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WatchStatus(str, Enum):
    """Watch state of a token."""
    UNWATCHED = "unwatched"
    WATCHED = "watched"
    TRIGGERED = "triggered"


class SubscriptionStatus(str, Enum):
    """Durable intent recorded for a mint's trade subscription."""
    ACTIVE = "active"
    INACTIVE = "inactive"


# =============================================================================
# TOKENS
# =============================================================================


class TokenMetrics(BaseModel):
    """Derived snapshot embedded in a token row, overwritten on every trade."""

    last_price: float = 0.0
    price_change_24h: float = 0.0
    volume_24h: float = 0.0
    trades_24h: int = 0
    last_trade_time: int = 0
    market_cap: float = 0.0
    lp_balance: float = 0.0
    token_supply: float = 0.0
    volume_rate: float = 0.0
    trade_frequency: float = 0.0
    buy_ratio: float = 0.0


class TokenRecord(BaseModel):
    """A launched token, keyed by mint."""

    mint: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    uri: Optional[str] = None
    watch_status: WatchStatus = WatchStatus.UNWATCHED
    create_time: int
    last_update: int
    last_trade_time: Optional[int] = None
    bonding_curve_key: Optional[str] = None
    sol_reserve: float = 0.0
    token_reserve: float = 0.0
    last_price: float = 0.0
    market_cap_sol: float = 0.0
    metrics: Optional[TokenMetrics] = None

    @property
    def is_watched(self) -> bool:
        return self.watch_status != WatchStatus.UNWATCHED


# =============================================================================
# TRADES
# =============================================================================


class TradeRecord(BaseModel):
    """Append-only trade row. Identity is (token_mint, timestamp, signature)."""

    id: Optional[int] = None
    token_mint: str
    timestamp: int
    side: str  # 'buy' | 'sell'
    price: float = 0.0
    volume: float = 0.0
    token_amount: float = 0.0
    signature: str
    trader: Optional[str] = None
    bonding_curve_key: Optional[str] = None
    market_cap_sol: Optional[float] = None
    new_token_balance: Optional[float] = None
    sol_reserve: Optional[float] = None
    token_reserve: Optional[float] = None

    @property
    def is_buy(self) -> bool:
        return self.side == "buy"


# =============================================================================
# SUBSCRIPTIONS & SETTINGS
# =============================================================================


class SubscriptionRecord(BaseModel):
    """Last requested trade-subscription state for a mint."""

    mint: str
    subscribe_time: int
    status: SubscriptionStatus


class AppSettings(BaseModel):
    """User settings, stored as the singleton settings row 'app'."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = "app"
    auto_resubscribe: bool = False
    detailed_logging: bool = False
    prune_threshold_minutes: int = Field(default=0, ge=0)  # 0 = disabled
    watch_similar_names: bool = False


# =============================================================================
# AUTO-WATCH
# =============================================================================


class WatchMetrics(BaseModel):
    """Auto-watch heuristics state for one mint."""

    mint: str
    create_time: int
    watch_start_time: int = 0
    peak_volume: float = 0.0
    peak_price: float = 0.0
    last_price: Optional[float] = None
    volume_velocity: list[float] = Field(default_factory=list)
    trade_frequency: list[int] = Field(default_factory=list)
    buy_wall_strength: float = 0.0
    last_trade_time: int = 0
    manipulation_score: float = 0.0
    wallet_concentration: dict[str, float] = Field(default_factory=dict)
    last_update: int = 0
