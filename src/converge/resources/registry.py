"""Resource kind registry: per-kind attribute schema and replacement policy."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional
from ..ingest.models import KindDeclaration
from ..utils.errors import ParseError
from ..utils.logging import get_logger

logger = get_logger("resources.registry")


@dataclass(frozen=True)
class ResourceKind:
    """Schema of one kind of resource."""
    name: str
    required: FrozenSet[str] = field(default_factory=frozenset)
    requires_replacement: FrozenSet[str] = field(default_factory=frozenset)
    create_before_destroy: bool = False

    def validate(self, address: str, attributes: Iterable[str]) -> None:
        """Raise ParseError if a required attribute is missing."""
        missing = sorted(self.required - set(attributes))
        if missing:
            raise ParseError(f"Resource '{address}' of kind '{self.name}' is missing required attributes: {', '.join(missing)}")

    def forces_replacement(self, attribute: str) -> bool:
        return attribute in self.requires_replacement

    @classmethod
    def from_declaration(cls, name: str, decl: KindDeclaration) -> "ResourceKind":
        return cls(
            name=name,
            required=frozenset(decl.required),
            requires_replacement=frozenset(decl.requires_replacement),
            create_before_destroy=decl.create_before_destroy,
        )


class KindRegistry:
    """Lookup of ResourceKind by name; unknown kinds get the generic schema."""

    def __init__(self, kinds: Optional[Iterable[ResourceKind]] = None):
        self._kinds: Dict[str, ResourceKind] = {}
        for kind in kinds or []:
            self.register(kind)

    def register(self, kind: ResourceKind) -> None:
        existing = self._kinds.get(kind.name)
        if existing and existing != kind:
            raise ParseError(f"Kind '{kind.name}' is declared twice with different schemas")
        self._kinds[kind.name] = kind

    def get(self, name: str) -> ResourceKind:
        kind = self._kinds.get(name)
        if kind is None:
            logger.debug(f"No schema declared for kind '{name}', using generic schema")
            return ResourceKind(name=name)
        return kind

    def names(self) -> List[str]:
        return list(self._kinds)

    @classmethod
    def from_declarations(cls, declarations: Dict[str, KindDeclaration]) -> "KindRegistry":
        registry = cls()
        for name, decl in declarations.items():
            registry.register(ResourceKind.from_declaration(name, decl))
        return registry
