"""converge - Dependency-ordered provisioning engine for declarative infrastructure."""

from typing import List, Optional
from .config import EngineConfig, load_engine_config
from .contracts.apply_report import ApplyReport, ApplyResult
from .contracts.plan import Plan
from .engine import Engine
from .ingest.declaration_loader import load_declarations, parse_declarations
from .ingest.models import ResourceDeclaration
from .planner.planner import plan
from .providers.base import Provider, ProviderResult
from .providers.memory import InMemoryProvider
from .providers.registry import ProviderRegistry
from .state.models import StateSnapshot
from .state.store import MemoryStateStore, StateStore
from .utils.logging import setup_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    "Engine",
    "EngineConfig",
    "Plan",
    "ApplyReport",
    "ApplyResult",
    "Provider",
    "ProviderResult",
    "ProviderRegistry",
    "InMemoryProvider",
    "StateSnapshot",
    "StateStore",
    "MemoryStateStore",
    "ResourceDeclaration",
    "load_declarations",
    "parse_declarations",
    "load_engine_config",
    "plan",
    "plan_file",
]

setup_logging()
logger = get_logger("converge")


def plan_file(
    declarations_path: str,
    state: Optional[StateSnapshot] = None,
    config_path: Optional[str] = None,
) -> Plan:
    """Load a declarations file and plan it against ``state`` (empty by default)."""
    config = load_engine_config(config_path)
    declarations: List[ResourceDeclaration] = load_declarations(declarations_path)
    registry = ProviderRegistry.from_config(config)
    return plan(declarations, state or StateSnapshot(), registry)
