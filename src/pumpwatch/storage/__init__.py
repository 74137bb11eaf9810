"""
Storage Layer - Local SQLite database and repositories.

This is the foundation layer that all other components depend on.
Built on aiosqlite so every query is awaitable from the event loop.

Public API:
    Database, DatabaseConfig, DatabaseError - Connection management

    Models (matching the schema in storage/database.py):
        TokenRecord, TokenMetrics, WatchStatus
        TradeRecord
        SubscriptionRecord, SubscriptionStatus
        AppSettings
        WatchMetrics

    Repositories:
        TokenRepository, TradeRepository
        SubscriptionRepository, SettingsRepository
        WatchMetricsRepository
"""
from pumpwatch.storage.database import Connection, Database, DatabaseConfig, DatabaseError
from pumpwatch.storage.models import (
    AppSettings,
    SubscriptionRecord,
    SubscriptionStatus,
    TokenMetrics,
    TokenRecord,
    TradeRecord,
    WatchMetrics,
    WatchStatus,
)
from pumpwatch.storage.repositories import (
    SettingsRepository,
    SubscriptionRepository,
    TokenRepository,
    TradeRepository,
    WatchMetricsRepository,
)

__all__ = [
    # Database
    "Connection",
    "Database",
    "DatabaseConfig",
    "DatabaseError",
    # Models
    "AppSettings",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "TokenMetrics",
    "TokenRecord",
    "TradeRecord",
    "WatchMetrics",
    "WatchStatus",
    # Repositories
    "SettingsRepository",
    "SubscriptionRepository",
    "TokenRepository",
    "TradeRepository",
    "WatchMetricsRepository",
]
