"""Abstract provider interface: the capability that actually changes infrastructure."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
from pydantic import BaseModel, Field


class ProviderResult(BaseModel):
    """Outcome of a successful create."""
    id: str = Field(..., description="Provider-assigned identifier")
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Computed attributes reported by the provider")


class Provider(ABC):
    """
    Create/read/update/delete resources of a kind, plus side-effect-free queries.

    Implementations raise TransientProviderError for failures worth retrying
    (rate limiting, network trouble) and PermanentProviderError for the rest.
    ``read`` raises ResourceNotFoundError when the object is gone.
    Implementations must be safe to call from several threads.
    """

    name = "abstract"

    @abstractmethod
    def create(self, kind: str, attributes: Dict[str, Any]) -> ProviderResult:
        pass

    @abstractmethod
    def read(self, kind: str, resource_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update(self, kind: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete(self, kind: str, resource_id: str) -> None:
        pass

    @abstractmethod
    def query(self, kind: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return every object of ``kind`` matching ``filters``; must not change anything."""
        pass
