"""
Ingestion Layer - Live feed client, subscriptions and persistence of events.

This module provides:
    - FeedConnection: WebSocket client with state machine and backoff reconnect
    - FeedProcessor: Writes create/trade events to the database
    - SubscriptionManager: Batched per-mint trade subscriptions
    - SolPriceOracle: Cached SOL/USD price

Usage:
    from pumpwatch.ingestion import FeedConnection, FeedProcessor, SubscriptionManager

    connection = FeedConnection(settings=settings)
    processor = FeedProcessor(db)
    manager = SubscriptionManager(db, connection, settings)
    processor.set_subscriptions(manager)
    connection.set_handler(processor.process)

    await connection.connect()
    await manager.start()
"""

# Models
from .models import (
    BondingCurveState,
    CreatedEvent,
    DomainEvent,
    MalformedEventError,
    ReceiptClock,
    SubscriptionMethod,
    TradeEvent,
    TradeSide,
    UnrecognizedEvent,
    build_message,
    parse_event,
)

# WebSocket
from .websocket import ConnectionState, FeedConnection

# Processor
from .processor import FeedProcessor, ProcessorStats

# Subscriptions
from .subscriptions import (
    DrainResult,
    SubscriptionAction,
    SubscriptionIntent,
    SubscriptionManager,
)

# Price oracle
from .price_oracle import PriceOracleError, RateLimitError, SolPriceOracle

__all__ = [
    # Models
    "BondingCurveState",
    "CreatedEvent",
    "DomainEvent",
    "MalformedEventError",
    "ReceiptClock",
    "SubscriptionMethod",
    "TradeEvent",
    "TradeSide",
    "UnrecognizedEvent",
    "build_message",
    "parse_event",
    # WebSocket
    "ConnectionState",
    "FeedConnection",
    # Processor
    "FeedProcessor",
    "ProcessorStats",
    # Subscriptions
    "DrainResult",
    "SubscriptionAction",
    "SubscriptionIntent",
    "SubscriptionManager",
    # Price oracle
    "PriceOracleError",
    "RateLimitError",
    "SolPriceOracle",
]
