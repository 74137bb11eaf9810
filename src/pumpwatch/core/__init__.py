"""
Core Layer - Metrics, triggers and the watch-set.

This module provides:
    - IntervalTask: Fixed-interval async loop used by every periodic job
    - compute_metrics / MetricsCache / MetricsCalculator: Rolling-window figures
    - TriggerGroup / TriggerCondition: Frozen trigger rule models
    - TriggerGroupStore: JSON-file persistence for trigger groups
    - TriggerEvaluator: FIFO (group, event) evaluation and watch side effects
    - WatchlistService: Owner of the watch-set
    - StaleTokenPruner: Periodic removal of stale tokens and their trades
    - AutoWatchManager: Watch/unwatch heuristics over early trading

Data Flow:
    1. FeedConnection accepts an event (ingestion layer)
    2. TriggerEvaluator records trades and queues one item per enabled group
    3. drain() resolves metrics and evaluates AND/OR groups
    4. Matching groups watch or unwatch through WatchlistService
"""

# Background loops and metrics first: the ingestion layer imports them
from .background_tasks import IntervalTask
from .metrics import (
    MetricsCache,
    MetricsCalculator,
    WindowMetrics,
    ZERO_METRICS,
    compute_metrics,
)

# Trigger models and storage
from .trigger_models import (
    Comparison,
    TriggerCondition,
    TriggerGroup,
    TriggerMetric,
    TriggerOperator,
    TriggerType,
)
from .trigger_store import TriggerGroupStore, TriggerStoreError

# Watch-set
from .watchlist_service import WatchlistService

# Evaluation
from .trigger_evaluator import (
    Classifier,
    RollingTradeWindow,
    TriggerEvaluator,
    resolve_metric,
)

# Maintenance
from .pruner import PruneStats, StaleTokenPruner
from .auto_watch import AutoWatchConfig, AutoWatchManager, Decision, build_watch_metrics

__all__ = [
    # Background tasks
    "IntervalTask",
    # Metrics
    "MetricsCache",
    "MetricsCalculator",
    "WindowMetrics",
    "ZERO_METRICS",
    "compute_metrics",
    # Triggers
    "Comparison",
    "TriggerCondition",
    "TriggerGroup",
    "TriggerMetric",
    "TriggerOperator",
    "TriggerType",
    "TriggerGroupStore",
    "TriggerStoreError",
    # Watch-set
    "WatchlistService",
    # Evaluation
    "Classifier",
    "RollingTradeWindow",
    "TriggerEvaluator",
    "resolve_metric",
    # Maintenance
    "PruneStats",
    "StaleTokenPruner",
    "AutoWatchConfig",
    "AutoWatchManager",
    "Decision",
    "build_watch_metrics",
]
