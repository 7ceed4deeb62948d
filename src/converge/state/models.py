"""Pydantic models for the persisted state document."""

import hashlib
import json
import uuid
from typing import Any, Dict, List
from pydantic import BaseModel, Field

STATE_FORMAT_VERSION = 1


def hash_attributes(attributes: Dict[str, Any]) -> str:
    """Stable digest of resolved input attributes."""
    canonical = json.dumps(attributes, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResourceState(BaseModel):
    """Last-applied facts about one resource."""
    kind: str = Field(..., description="Resource kind")
    provider_id: str = Field(..., description="Identifier assigned by the provider")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Input attributes as last applied")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Computed attributes reported by the provider")
    input_hash: str = Field(..., description="hash_attributes(attributes) at apply time")
    dependencies: List[str] = Field(default_factory=list, description="Addresses this resource depended on when applied")

    def values(self) -> Dict[str, Any]:
        """Everything a reference can read: inputs, outputs, and ``id``."""
        return {**self.attributes, **self.outputs, "id": self.provider_id}


class StateDocument(BaseModel):
    """Versioned snapshot of actual state, keyed by resource address."""
    format_version: int = Field(default=STATE_FORMAT_VERSION)
    serial: int = Field(default=0, ge=0, description="Incremented on every successful save")
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Identity of this state's history")
    resources: Dict[str, ResourceState] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    deposed: Dict[str, List[ResourceState]] = Field(
        default_factory=dict,
        description="Objects replaced create-before-destroy whose deletion has not completed, by address",
    )
