"""Run outcome models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from ..ingest.models import ResourceAddress
from ..planning.models import ChangeKind


class OutcomeStatus(str, Enum):
    """Terminal outcome of one change."""
    APPLIED = "APPLIED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    NO_OP = "NO_OP"


@dataclass
class ChangeOutcome:
    """Terminal outcome of one change. Timestamps are ``time.monotonic()`` values."""
    address: ResourceAddress
    kind: ChangeKind
    status: OutcomeStatus
    reason: Optional[str] = None
    blocked_by: List[ResourceAddress] = field(default_factory=list)
    attempts: int = 0
    dispatched_at: Optional[float] = None
    committed_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def terminal_failure(self) -> bool:
        return self.status in (OutcomeStatus.FAILED, OutcomeStatus.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        duration = None
        if self.dispatched_at is not None and self.finished_at is not None:
            duration = round(self.finished_at - self.dispatched_at, 3)
        return {
            "address": str(self.address),
            "kind": self.kind.value,
            "status": self.status.value,
            "reason": self.reason,
            "blocked_by": [str(address) for address in self.blocked_by],
            "attempts": self.attempts,
            "duration_seconds": duration,
        }


@dataclass
class RunReport:
    """Outcome of every change in one run."""
    outcomes: Dict[ResourceAddress, ChangeOutcome] = field(default_factory=dict)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """True when no change failed or was skipped."""
        return not any(outcome.terminal_failure for outcome in self.outcomes.values())

    def get(self, address: ResourceAddress) -> Optional[ChangeOutcome]:
        return self.outcomes.get(address)

    def status_of(self, address: ResourceAddress) -> Optional[OutcomeStatus]:
        outcome = self.outcomes.get(address)
        return outcome.status if outcome else None

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes.values():
            counts[outcome.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "duration_seconds": round(self.duration_seconds, 3),
            "counts": self.counts(),
            "outcomes": [self.outcomes[address].to_dict() for address in sorted(self.outcomes)],
        }
