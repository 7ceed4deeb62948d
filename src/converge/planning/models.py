"""Pydantic models for plans."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Operation(str, Enum):
    """Planned operation on one resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_OP = "no-op"


class AttributeChange(BaseModel):
    """One attribute's before/after values."""
    name: str
    before: Any = None
    after: Any = None
    known: bool = Field(True, description="False when the new value is only known after apply")
    requires_replacement: bool = False


class Action(BaseModel):
    """A single step of a plan."""
    index: int = Field(..., ge=0, description="Position in the plan")
    address: str
    kind: str
    operation: Operation
    diff: List[AttributeChange] = Field(default_factory=list)
    depends_on: List[int] = Field(default_factory=list, description="Indices of actions that must succeed first")
    replace: bool = Field(False, description="Half of a delete/create replacement pair")
    reason: Optional[str] = None
    prior_id: Optional[str] = Field(None, description="Provider ID of the existing object, for update and delete")

    @property
    def is_change(self) -> bool:
        return self.operation != Operation.NO_OP


class Plan(BaseModel):
    """Ordered actions moving actual state to desired state. Consumed once."""
    actions: List[Action] = Field(default_factory=list)
    destroy: bool = False
    targets: List[str] = Field(default_factory=list)
    state_serial: int = Field(0, description="Serial of the state this plan was computed from")

    def counts(self) -> Dict[str, int]:
        counts = {op.value: 0 for op in Operation}
        for action in self.actions:
            counts[action.operation.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(action.is_change for action in self.actions)

    def actions_for(self, address: str) -> List[Action]:
        return [action for action in self.actions if action.address == address]
