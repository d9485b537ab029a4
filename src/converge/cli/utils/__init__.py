"""CLI utilities package."""

from pathlib import Path
from typing import List, Optional
from ...config import EngineConfig, load_engine_config
from ...engine import Engine
from ...ingest.declaration_loader import load_declarations
from ...ingest.models import ResourceDeclaration
from ...providers.memory import InMemoryProvider
from ...providers.registry import ProviderRegistry
from ...state.file_store import FileStateStore
from ...utils.errors import DeclarationLoadError
from ...utils.logging import get_logger
from .file_resolver import resolve_file_path

logger = get_logger("cli.utils")

SANDBOX_FILE = "resources.json"

# apply exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INCOMPLETE = 2


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    error = f"Error: {message}"
    if suggestion:
        error += f"\nTip: {suggestion}"
    return error


def read_declarations(declarations_file: str) -> List[ResourceDeclaration]:
    """
    Resolve and load a declarations file.

    Raises:
        DeclarationLoadError: If the file is missing or malformed
    """
    try:
        path = resolve_file_path(declarations_file)
    except FileNotFoundError as e:
        raise DeclarationLoadError(str(e))
    return load_declarations(str(path))


def state_path_for(config: EngineConfig, state: Optional[str]) -> Path:
    return Path(state) if state else Path(config.state.path)


def build_engine(
    config: EngineConfig,
    state: Optional[str] = None,
    sandbox: Optional[str] = None,
) -> Engine:
    """
    Engine over the JSON state file, with the in-memory simulator as provider.

    The simulator persists under ``sandbox`` (default: a ``sandbox`` directory
    next to the state file) so successive runs see the same resources.
    """
    state_path = state_path_for(config, state)
    sandbox_dir = Path(sandbox) if sandbox else state_path.parent / "sandbox"
    provider = InMemoryProvider(persist_path=str(sandbox_dir / SANDBOX_FILE))
    registry = ProviderRegistry.from_config(config, default_provider=provider)
    logger.debug(f"Engine: state {state_path}, sandbox {sandbox_dir}")
    return Engine(FileStateStore(state_path), registry, config)


__all__ = [
    "resolve_file_path",
    "format_error",
    "read_declarations",
    "state_path_for",
    "build_engine",
    "load_engine_config",
    "EXIT_OK",
    "EXIT_ERROR",
    "EXIT_INCOMPLETE",
]
