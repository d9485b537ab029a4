"""Provider interface, resource type registry and the in-memory simulator."""

from .base import Provider, ProviderResult
from .memory import InMemoryProvider
from .registry import ProviderRegistry

__all__ = ["Provider", "ProviderResult", "InMemoryProvider", "ProviderRegistry"]
