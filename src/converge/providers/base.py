"""Abstract provider interface: the remote API behind every resource type."""

from abc import ABC, abstractmethod
from typing import Any, Dict
from pydantic import BaseModel, Field


class ProviderResult(BaseModel):
    """Outcome of a successful create."""
    id: str = Field(..., description="Provider-assigned identifier")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes as reported by the provider")


class Provider(ABC):
    """
    Abstract interface for infrastructure providers.

    Each call is atomic from the engine's point of view: it either takes
    effect and returns, or raises without changing anything. Implementations
    signal retryable conditions (throttling, not-yet-visible resources) with
    ProviderTransientError, permanent failures with ProviderError, and
    missing remote objects with ResourceNotFoundError.
    """

    @abstractmethod
    def create(self, resource_type: str, attributes: Dict[str, Any]) -> ProviderResult:
        """
        Create a resource.

        Args:
            resource_type: Resource type tag
            attributes: Fully resolved desired attributes

        Returns:
            ProviderResult with the new identifier and reported attributes
        """
        pass

    @abstractmethod
    def read(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        """
        Read the live attributes of a resource.

        Raises:
            ResourceNotFoundError: If the resource no longer exists
        """
        pass

    @abstractmethod
    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a resource in place and return its reported attributes."""
        pass

    @abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""
        pass
