"""Custom exception classes for Converge."""

from typing import Any, Dict, List, Optional


class ConvergeError(Exception):
    """Base exception for all Converge errors."""
    pass


class ParseError(ConvergeError):
    """Raised when declarations or expressions are malformed."""
    pass


class ConfigError(ConvergeError):
    """Raised when engine settings are invalid or missing."""
    pass


class GraphConstructionError(ConvergeError):
    """Raised when the resource graph cannot be built."""
    pass


class DuplicateResourceError(GraphConstructionError):
    """Raised when two resources share a (kind, name) pair in one namespace."""

    def __init__(self, address: str, namespace: str):
        self.address = address
        self.namespace = namespace
        where = namespace or "root module"
        super().__init__(f"Duplicate resource '{address}' declared in {where}")


class UnresolvedReferenceError(GraphConstructionError):
    """Raised when a node references something that was never declared."""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"Resource '{source}' references undeclared '{target}'")


class CyclicDependencyError(GraphConstructionError):
    """Raised when the dependency graph contains one or more cycles."""

    def __init__(self, cycles: List[List[str]]):
        self.cycles = cycles
        rendered = "; ".join(", ".join(cycle) for cycle in cycles)
        super().__init__(f"Dependency cycle detected between: {rendered}")

    @property
    def members(self) -> List[str]:
        """All node addresses that sit on a cycle."""
        return [address for cycle in self.cycles for address in cycle]


class EvaluationError(ConvergeError):
    """Raised when an expression cannot be evaluated."""
    pass


class ValueNotAvailableError(EvaluationError):
    """Raised when a referenced value is only known after apply."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Value of '{reference}' is not known until apply")


class TemplateRenderError(EvaluationError):
    """Raised when a template references an undefined variable."""
    pass


class DataLookupError(EvaluationError):
    """Raised when a data lookup returns no usable result."""
    pass


class StateError(ConvergeError):
    """Raised when the state document cannot be read or written."""
    pass


class ConcurrentModificationError(StateError):
    """Raised when on-disk state changed since this run loaded it."""

    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(
            f"State was modified by another run (expected serial {expected}, found {found}). "
            "Re-run the command to plan against the latest state."
        )


class StateLockError(StateError):
    """Raised when the state lock is held by someone else."""

    def __init__(self, message: str, lock_info: Optional[Dict[str, Any]] = None):
        self.lock_info = lock_info or {}
        super().__init__(message)


class ProviderError(ConvergeError):
    """Base class for errors reported by a provider."""
    pass


class TransientProviderError(ProviderError):
    """Provider failure worth retrying (rate limiting, network, timeout)."""
    pass


class PermanentProviderError(ProviderError):
    """Provider failure that will not succeed on retry (validation, permissions)."""
    pass


class ResourceNotFoundError(PermanentProviderError):
    """Raised by Provider.read when the remote object no longer exists."""
    pass
