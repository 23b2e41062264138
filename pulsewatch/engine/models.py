"""
Engine Models

Data models for checks, probe outcomes, results and status transitions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class CheckStatus(str, Enum):
    """Observed status of a check."""

    UP = "UP"
    DOWN = "DOWN"


class StatusPolicy(str, Enum):
    """How an HTTP status code maps to UP/DOWN."""

    LENIENT = "lenient"  # UP for anything below 500
    STRICT = "strict"  # UP only for 2xx

    def classify(self, http_status: int) -> CheckStatus:
        """Classify a received status code."""
        if self == StatusPolicy.STRICT:
            up = 200 <= http_status < 300
        else:
            up = http_status < 500
        return CheckStatus.UP if up else CheckStatus.DOWN


class ProbeMethod(str, Enum):
    """HTTP method used for probes."""

    GET = "GET"
    HEAD = "HEAD"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Check(BaseModel):
    """
    A monitored HTTP endpoint.

    Check definitions are owned by the backing store. The engine only reads
    them, except for the cached ``last_status``/``last_checked_at`` pair which
    it writes after every probe.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    url: str
    interval_seconds: int
    alert_email: str | None = None
    is_active: bool = True

    # Cached projection, written by the engine
    last_status: CheckStatus | None = None
    last_checked_at: datetime | None = None

    def same_schedule(self, other: "Check") -> bool:
        """True if both definitions probe the same target the same way."""
        return (
            self.url == other.url
            and self.interval_seconds == other.interval_seconds
            and self.is_active == other.is_active
            and self.name == other.name
        )


class ProbeOutcome(BaseModel):
    """Classified outcome of a single probe."""

    status: CheckStatus
    http_status: int | None = None
    latency_ms: int | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "ProbeOutcome":
        """Outcome for a probe that got no response."""
        return cls(status=CheckStatus.DOWN, error=error)

    @model_validator(mode="after")
    def _check_consistency(self) -> "ProbeOutcome":
        if self.error is not None:
            if self.http_status is not None or self.latency_ms is not None:
                raise ValueError("failed probe cannot carry http_status or latency_ms")
            if self.status != CheckStatus.DOWN:
                raise ValueError("failed probe must be DOWN")
        elif self.http_status is None:
            raise ValueError("probe outcome needs either http_status or error")
        return self


class ProbeResult(ProbeOutcome):
    """A persisted probe result. Immutable once written."""

    model_config = {"frozen": True}

    id: int | None = None  # assigned by the store
    check_id: str
    checked_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_outcome(
        cls,
        check_id: str,
        outcome: ProbeOutcome,
        checked_at: datetime,
    ) -> "ProbeResult":
        """Attach a check id and completion time to a probe outcome."""
        return cls(
            check_id=check_id,
            checked_at=checked_at,
            **outcome.model_dump(),
        )


class StatusTransition(BaseModel):
    """Fired when a check flips between UP and DOWN."""

    check_id: str
    check_name: str = ""
    url: str = ""
    previous_status: CheckStatus
    status: CheckStatus
    occurred_at: datetime = Field(default_factory=_utcnow)
    http_status: int | None = None
    error: str | None = None

    @property
    def went_down(self) -> bool:
        return self.status == CheckStatus.DOWN


class CheckState(BaseModel):
    """Read-only view of the scheduler's state for one check."""

    check_id: str
    last_status: CheckStatus | None = None
    last_checked_at: datetime | None = None
    next_due_in: float | None = None  # seconds; None while in flight
    in_flight: bool = False


@dataclass(order=True)
class ScheduleEntry:
    """Heap entry: ordered by due time, ties broken by insertion order."""

    next_due_at: float
    sequence: int
    check_id: str = field(compare=False)
