"""Shared fixtures: a fault-injecting provider and engine wiring."""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Set, Tuple
import pytest
from converge.config import EngineConfig, load_engine_config
from converge.executor.retry import RetryPolicy
from converge.ingest.declaration_loader import parse_declarations
from converge.providers.base import ProviderResult
from converge.providers.memory import InMemoryProvider
from converge.providers.registry import ProviderRegistry
from converge.utils.errors import ProviderError, ProviderTransientError


class FaultyProvider(InMemoryProvider):
    """
    InMemoryProvider that can fail, stall, and count concurrent calls.

    Failures are keyed by the ``name`` attribute of the resource being created
    or updated; deletes are keyed by resource id.
    """

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay
        self.permanent: Set[str] = set()
        self.transient: Dict[str, int] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = threading.Lock()

    @contextmanager
    def _track(self, operation: str, resource_type: str, key: Optional[str]):
        with self._counter:
            self.calls.append((operation, resource_type, key))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)
            yield
        finally:
            with self._counter:
                self.in_flight -= 1

    def _maybe_fail(self, key: Optional[str]) -> None:
        if key in self.permanent:
            raise ProviderError(f"permanent failure for {key}")
        with self._counter:
            remaining = self.transient.get(key, 0)
            if remaining:
                self.transient[key] = remaining - 1
        if remaining:
            raise ProviderTransientError(f"throttled: {key}")

    def create(self, resource_type: str, attributes: Dict[str, Any]) -> ProviderResult:
        key = attributes.get("name")
        with self._track("create", resource_type, key):
            self._maybe_fail(key)
            return super().create(resource_type, attributes)

    def update(self, resource_type: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        key = attributes.get("name")
        with self._track("update", resource_type, key):
            self._maybe_fail(key)
            return super().update(resource_type, resource_id, attributes)

    def delete(self, resource_type: str, resource_id: str) -> None:
        with self._track("delete", resource_type, resource_id):
            self._maybe_fail(resource_id)
            super().delete(resource_type, resource_id)

    def operations(self, operation: str) -> List[Optional[str]]:
        return [key for op, _, key in self.calls if op == operation]


@pytest.fixture
def engine_config() -> EngineConfig:
    """Packaged defaults only, without user or project overrides."""
    return load_engine_config(use_user_config=False)


@pytest.fixture
def provider() -> FaultyProvider:
    return FaultyProvider()


@pytest.fixture
def registry(engine_config, provider) -> ProviderRegistry:
    return ProviderRegistry.from_config(engine_config, default_provider=provider)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def web_stack():
    """VPC, subnet, security group and instance wired by references."""
    return parse_declarations({
        "resources": [
            {"type": "aws_vpc", "name": "main",
             "attributes": {"name": "main", "cidr_block": "10.0.0.0/16"}},
            {"type": "aws_subnet", "name": "public",
             "attributes": {"name": "public", "vpc_id": {"ref": "aws_vpc.main.id"}, "cidr_block": "10.0.1.0/24"}},
            {"type": "aws_security_group", "name": "web",
             "attributes": {"name": "web", "vpc_id": {"ref": "aws_vpc.main.id"}, "ingress": [80]}},
            {"type": "aws_instance", "name": "web",
             "attributes": {
                 "name": "web-instance",
                 "ami": "ami-123",
                 "instance_type": "t3.micro",
                 "subnet_id": {"ref": "aws_subnet.public.id"},
                 "vpc_security_group_ids": [{"ref": "aws_security_group.web.id"}],
             }},
        ]
    })


@pytest.fixture
def slow_registry(engine_config):
    """Factory for (provider, registry) pairs whose provider calls take ``delay`` seconds."""
    def build(delay: float):
        slow = FaultyProvider(delay=delay)
        return slow, ProviderRegistry.from_config(engine_config, default_provider=slow)
    return build
