"""Pydantic models for engine settings."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class RetrySettings(BaseModel):
    """Bounded exponential backoff for transient provider failures."""
    max_attempts: int = Field(default=5, ge=1, description="Attempts per provider operation, first try included")
    backoff_min: float = Field(default=1.0, ge=0, description="Lower bound of the wait between attempts (seconds)")
    backoff_max: float = Field(default=30.0, ge=0, description="Upper bound of the wait between attempts (seconds)")


class StateSettings(BaseModel):
    """Where state lives and how its lock behaves."""
    path: str = Field(default="converge.state.json", description="State document path")
    lock_timeout: float = Field(default=0, ge=0, description="Seconds to wait for the lock before failing")
    stale_lock_timeout: float = Field(default=3600, gt=0, description="Age after which a lock may be force-released")


class ProviderSettings(BaseModel):
    """Provider selection."""
    type: str = Field(default="memory", description="Provider implementation: memory or http")
    endpoint: Optional[str] = Field(default=None, description="Base URL for the http provider")
    options: Dict[str, Any] = Field(default_factory=dict, description="Provider specific options")


class Settings(BaseModel):
    """Complete engine settings."""
    parallelism: int = Field(default=4, ge=1, description="Maximum concurrent provider operations")
    operation_timeout: float = Field(default=300, gt=0, description="Per provider operation timeout (seconds)")
    refresh: bool = Field(default=False, description="Read live provider state before planning")
    retry: RetrySettings = Field(default_factory=RetrySettings)
    state: StateSettings = Field(default_factory=StateSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
