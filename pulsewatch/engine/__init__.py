"""
Monitoring Engine

Check scheduling and probing for Pulsewatch.

Provides:
- Check and result models
- HTTP prober with timeout and status classification
- Priority-queue scheduler with bounded concurrency
- Registry that reconciles check definitions into the scheduler
- Result stores (in-memory and SQLite)
- Status transition events
"""

from pulsewatch.engine.models import (
    Check,
    CheckState,
    CheckStatus,
    ProbeMethod,
    ProbeOutcome,
    ProbeResult,
    ScheduleEntry,
    StatusPolicy,
    StatusTransition,
)
from pulsewatch.engine.prober import HttpProber
from pulsewatch.engine.scheduler import CheckScheduler
from pulsewatch.engine.registry import (
    CheckRegistry,
    ReconcileReport,
    validate_check,
)
from pulsewatch.engine.store import (
    CheckSource,
    MemoryCheckStore,
    ResultStore,
    SqliteCheckStore,
)
from pulsewatch.engine.events import (
    TransitionBus,
    log_transition,
)

__all__ = [
    # Models
    "Check",
    "CheckState",
    "CheckStatus",
    "ProbeMethod",
    "ProbeOutcome",
    "ProbeResult",
    "ScheduleEntry",
    "StatusPolicy",
    "StatusTransition",
    # Prober
    "HttpProber",
    # Scheduler
    "CheckScheduler",
    # Registry
    "CheckRegistry",
    "ReconcileReport",
    "validate_check",
    # Store
    "CheckSource",
    "MemoryCheckStore",
    "ResultStore",
    "SqliteCheckStore",
    # Events
    "TransitionBus",
    "log_transition",
]
