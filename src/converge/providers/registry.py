"""Registry of resource types: replacement schema and the provider serving each."""

from typing import Dict, Optional
from .base import Provider
from ..config.models import EngineConfig, ResourceTypeSchema
from ..utils.errors import ConfigError
from ..utils.logging import get_logger

logger = get_logger("providers.registry")


class ProviderRegistry:
    """Maps resource types to schemas and Provider instances."""

    def __init__(
        self,
        schemas: Optional[Dict[str, ResourceTypeSchema]] = None,
        default_schema: Optional[ResourceTypeSchema] = None,
        default_provider: Optional[Provider] = None,
    ):
        self._schemas: Dict[str, ResourceTypeSchema] = dict(schemas or {})
        self._default_schema = default_schema or ResourceTypeSchema(mutable_attributes=["tags"])
        self._providers: Dict[str, Provider] = {}
        self._default_provider = default_provider

    @classmethod
    def from_config(cls, config: EngineConfig, default_provider: Optional[Provider] = None) -> "ProviderRegistry":
        """Build a registry whose schemas come from engine configuration."""
        return cls(
            schemas=config.resource_types,
            default_schema=config.resource_defaults,
            default_provider=default_provider,
        )

    def register_schema(self, resource_type: str, schema: ResourceTypeSchema) -> None:
        self._schemas[resource_type] = schema

    def register_provider(self, resource_type: str, provider: Provider) -> None:
        self._providers[resource_type] = provider
        logger.debug(f"Registered provider {type(provider).__name__} for {resource_type}")

    def schema_for(self, resource_type: str) -> ResourceTypeSchema:
        return self._schemas.get(resource_type, self._default_schema)

    def provider_for(self, resource_type: str) -> Provider:
        """
        Provider responsible for a resource type.

        Raises:
            ConfigError: If no provider serves the type
        """
        provider = self._providers.get(resource_type, self._default_provider)
        if provider is None:
            raise ConfigError(f"No provider registered for resource type '{resource_type}'")
        return provider

    def has_provider(self, resource_type: str) -> bool:
        return resource_type in self._providers or self._default_provider is not None
