"""
Repository exports.

All repositories for the pumpwatch dashboard.
"""
from pumpwatch.storage.repositories.base import BaseRepository
from pumpwatch.storage.repositories.subscription_repo import (
    SettingsRepository,
    SubscriptionRepository,
)
from pumpwatch.storage.repositories.token_repo import (
    TokenRepository,
    decode_metrics,
    encode_metrics,
)
from pumpwatch.storage.repositories.trade_repo import TradeRepository
from pumpwatch.storage.repositories.watch_metrics_repo import (
    WatchMetricsRepository,
    decode_wallet_concentration,
    encode_wallet_concentration,
)

__all__ = [
    "BaseRepository",
    "SettingsRepository",
    "SubscriptionRepository",
    "TokenRepository",
    "TradeRepository",
    "WatchMetricsRepository",
    "decode_metrics",
    "encode_metrics",
    "decode_wallet_concentration",
    "encode_wallet_concentration",
]
