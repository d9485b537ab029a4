"""In-memory provider that simulates a cloud API, optionally persisted to JSON."""

import json
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
from .base import Provider, ProviderResult
from ..utils.errors import ProviderError, ResourceNotFoundError
from ..utils.logging import get_logger

logger = get_logger("providers.memory")


def _id_prefix(resource_type: str) -> str:
    parts = resource_type.split("_")
    # aws_security_group -> security-group
    return "-".join(parts[1:]) if len(parts) > 1 else resource_type


class InMemoryProvider(Provider):
    """
    Thread-safe simulated provider.

    Resources are kept in a dict keyed by identifier. With ``persist_path`` the
    store is reloaded on start and written after every mutation, which lets
    the CLI sandbox survive across runs.
    """

    def __init__(self, persist_path: Optional[str] = None, region: str = "local-1"):
        self.region = region
        self.persist_path = Path(persist_path) if persist_path else None
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._types: Dict[str, str] = {}
        self._mutex = threading.Lock()
        if self.persist_path and self.persist_path.exists():
            self._load()

    def create(self, resource_type: str, attributes: Dict[str, Any]) -> ProviderResult:
        resource_id = f"{_id_prefix(resource_type)}-{uuid.uuid4().hex[:12]}"
        reported = dict(attributes)
        reported["id"] = resource_id
        reported["arn"] = f"arn:converge:{self.region}:{resource_type}/{resource_id}"
        with self._mutex:
            self._resources[resource_id] = reported
            self._types[resource_id] = resource_type
            self._persist()
        logger.debug(f"Created {resource_type} {resource_id}")
        return ProviderResult(id=resource_id, attributes=dict(reported))

    def read(self, resource_type: str, resource_id: str) -> Dict[str, Any]:
        with self._mutex:
            self._check(resource_type, resource_id)
            return dict(self._resources[resource_id])

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._mutex:
            self._check(resource_type, resource_id)
            current = self._resources[resource_id]
            reported = dict(attributes)
            reported["id"] = resource_id
            reported["arn"] = current.get("arn")
            self._resources[resource_id] = reported
            self._persist()
        logger.debug(f"Updated {resource_type} {resource_id}")
        return dict(reported)

    def delete(self, resource_type: str, resource_id: str) -> None:
        with self._mutex:
            self._check(resource_type, resource_id)
            del self._resources[resource_id]
            del self._types[resource_id]
            self._persist()
        logger.debug(f"Deleted {resource_type} {resource_id}")

    def exists(self, resource_id: str) -> bool:
        with self._mutex:
            return resource_id in self._resources

    def count(self, resource_type: Optional[str] = None) -> int:
        with self._mutex:
            if resource_type is None:
                return len(self._resources)
            return sum(1 for t in self._types.values() if t == resource_type)

    def _check(self, resource_type: str, resource_id: str) -> None:
        if resource_id not in self._resources:
            raise ResourceNotFoundError(f"{resource_type} {resource_id} not found")
        if self._types[resource_id] != resource_type:
            raise ProviderError(
                f"{resource_id} is a {self._types[resource_id]}, not a {resource_type}"
            )

    def _persist(self) -> None:
        if self.persist_path is None:
            return
        self.persist_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            resource_id: {"type": self._types[resource_id], "attributes": attrs}
            for resource_id, attrs in self._resources.items()
        }
        with open(self.persist_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True)

    def _load(self) -> None:
        try:
            with open(self.persist_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderError(f"Could not load sandbox resources from {self.persist_path}: {e}")
        for resource_id, record in data.items():
            self._resources[resource_id] = record["attributes"]
            self._types[resource_id] = record["type"]
        logger.info(f"Loaded {len(self._resources)} sandbox resources from {self.persist_path}")
