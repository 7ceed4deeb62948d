"""Pydantic models for apply results."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from ..planning.models import Operation


class ActionStatus(str, Enum):
    """Terminal status of one planned action."""
    APPLIED = "applied"
    NO_OP = "no-op"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ActionResult(BaseModel):
    """What happened to one action."""
    index: int
    address: str
    operation: Operation
    status: ActionStatus
    error: Optional[str] = Field(None, description="Underlying error for failed actions, or the cause of a skip")
    attempts: int = Field(0, ge=0, description="Provider calls made, retries included")


class ApplyReport(BaseModel):
    """Outcome of executing a plan."""
    results: List[ActionResult] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    cancelled: bool = False

    def summary(self) -> Dict[str, int]:
        counts = {"created": 0, "updated": 0, "destroyed": 0, "skipped": 0, "failed": 0, "cancelled": 0}
        applied_keys = {Operation.CREATE: "created", Operation.UPDATE: "updated", Operation.DELETE: "destroyed"}
        for result in self.results:
            if result.status == ActionStatus.APPLIED:
                counts[applied_keys[result.operation]] += 1
            elif result.status == ActionStatus.FAILED:
                counts["failed"] += 1
            elif result.status == ActionStatus.SKIPPED:
                counts["skipped"] += 1
            elif result.status == ActionStatus.CANCELLED:
                counts["cancelled"] += 1
        return counts

    def by_status(self, status: ActionStatus) -> List[ActionResult]:
        return [r for r in self.results if r.status == status]

    def status_of(self, address: str) -> List[ActionStatus]:
        return [r.status for r in self.results if r.address == address]

    @property
    def succeeded(self) -> bool:
        return not any(r.status in (ActionStatus.FAILED, ActionStatus.SKIPPED, ActionStatus.CANCELLED)
                       for r in self.results)

    @property
    def applied_any(self) -> bool:
        return any(r.status == ActionStatus.APPLIED for r in self.results)
