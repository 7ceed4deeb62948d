"""Pydantic models for declared configuration."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"


class Lifecycle(BaseModel):
    """Per-resource lifecycle overrides."""
    create_before_destroy: Optional[bool] = Field(None, description="Override the kind's replacement policy")


class ResourceDeclaration(BaseModel):
    """A managed resource as written in configuration."""
    kind: str = Field(..., pattern=NAME_PATTERN, description="Resource kind, looked up in the kind registry")
    name: str = Field(..., pattern=NAME_PATTERN, description="Logical name, unique per kind within a module")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attribute name -> expression")
    depends_on: List[str] = Field(default_factory=list, description="Explicit dependencies (addresses)")
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)


class DataDeclaration(BaseModel):
    """A side-effect-free lookup against the provider."""
    kind: str = Field(..., pattern=NAME_PATTERN)
    name: str = Field(..., pattern=NAME_PATTERN)
    filters: Dict[str, Any] = Field(default_factory=dict, description="Query filters (expressions allowed)")
    most_recent: bool = Field(False, description="Pick the newest match instead of requiring exactly one")
    sort_key: str = Field("created_at", description="Result field ordering matches when most_recent is set")
    depends_on: List[str] = Field(default_factory=list)


class VariableDeclaration(BaseModel):
    """Input variable of the root configuration or of a module."""
    default: Any = None
    description: Optional[str] = None
    required: bool = False


class KindDeclaration(BaseModel):
    """Schema and replacement policy of one resource kind."""
    required: List[str] = Field(default_factory=list, description="Attributes every resource of this kind must set")
    requires_replacement: List[str] = Field(default_factory=list, description="Attributes that cannot change in place")
    create_before_destroy: bool = Field(False, description="Replacement order for this kind")


class ModuleDeclaration(BaseModel):
    """A namespaced group of declarations."""
    name: str = Field(..., pattern=NAME_PATTERN)
    source: Optional[str] = Field(None, description="Path of the module file, relative to the declaring file")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Variable name -> expression in the parent scope")
    configuration: "Configuration"


class Configuration(BaseModel):
    """One configuration file (root or module)."""
    variables: Dict[str, VariableDeclaration] = Field(default_factory=dict)
    kinds: Dict[str, KindDeclaration] = Field(default_factory=dict)
    data: List[DataDeclaration] = Field(default_factory=list)
    resources: List[ResourceDeclaration] = Field(default_factory=list)
    modules: List[ModuleDeclaration] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Output name -> expression")
    base_dir: str = Field(".", description="Directory that relative paths resolve against")

    @field_validator("variables", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        """Allow `name: value` as shorthand for `name: {default: value}`."""
        if not isinstance(value, dict):
            return value
        expanded = {}
        for name, declared in value.items():
            if isinstance(declared, dict) and set(declared) <= {"default", "description", "required"}:
                expanded[name] = declared
            else:
                expanded[name] = {"default": declared}
        return expanded


ModuleDeclaration.model_rebuild()
