"""Custom exception classes for converge."""

from typing import List, Optional


class ConvergeError(Exception):
    """Base exception for all converge errors."""
    pass


class ConfigError(ConvergeError):
    """Raised when configuration is invalid or missing."""
    pass


class DeclarationLoadError(ConvergeError):
    """Raised when a declaration file cannot be loaded or is invalid."""
    pass


class GraphConstructionError(ConvergeError):
    """Raised when dependency graph construction fails unexpectedly."""
    pass


class ValidationError(ConvergeError):
    """Base class for errors that abort planning before any mutation."""

    kind = "validation"

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.address = address


class DeclarationError(ValidationError):
    """Raised when a resource record is malformed (bad reference syntax, bad count)."""

    kind = "declaration"


class DuplicateAddressError(ValidationError):
    """Raised when two declarations expand to the same address."""

    kind = "duplicate_address"


class UnresolvedReferenceError(ValidationError):
    """Raised when an expression names an address that is not declared."""

    kind = "unresolved_reference"

    def __init__(self, message: str, address: Optional[str] = None,
                 attribute_path: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, address)
        self.attribute_path = attribute_path
        self.target = target


class CycleError(ValidationError):
    """Raised when the dependency graph contains a cycle."""

    kind = "cycle"

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}",
                         self.cycle[0] if self.cycle else None)


class DanglingReferenceError(ValidationError):
    """Raised when a deletion would leave a surviving resource pointing at nothing."""

    kind = "dangling_reference"

    def __init__(self, message: str, address: Optional[str] = None,
                 referenced_by: Optional[List[str]] = None):
        super().__init__(message, address)
        self.referenced_by = list(referenced_by or [])


class ProviderError(ConvergeError):
    """Raised when a provider call fails permanently."""
    pass


class ProviderTransientError(ProviderError):
    """Raised for retryable provider failures (throttling, eventual consistency)."""
    pass


class ResourceNotFoundError(ProviderError):
    """Raised by a provider when the remote object does not exist."""
    pass


class StateConflictError(ConvergeError):
    """Raised when the state lock is unavailable or the snapshot is stale."""
    pass


class StateLockError(StateConflictError):
    """Raised when the state lock cannot be acquired or released."""
    pass


class StateStoreError(ConvergeError):
    """Raised when state cannot be read or written."""
    pass


class ApplyCancelled(ConvergeError):
    """Raised inside a worker when cancellation interrupts a retry backoff."""
    pass


class EvaluationError(ConvergeError):
    """Raised when a reference cannot be evaluated against applied state."""
    pass


class PlanLoadError(ConvergeError):
    """Raised when a saved plan file cannot be read or is invalid."""
    pass
