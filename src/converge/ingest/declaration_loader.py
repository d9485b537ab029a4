"""Load and validate resource declaration documents (YAML or JSON)."""

import json
from pathlib import Path
from typing import Any, List
import yaml
from pydantic import ValidationError as PydanticValidationError
from .models import ResourceDeclaration
from ..utils.errors import DeclarationLoadError, DeclarationError
from ..utils.logging import get_logger

logger = get_logger("ingest.declaration_loader")


def load_declarations(path: str) -> List[ResourceDeclaration]:
    """
    Load resource declarations from a YAML or JSON file.

    Args:
        path: Path to the declaration document

    Returns:
        Parsed resource declarations in document order

    Raises:
        DeclarationLoadError: If file cannot be loaded or is invalid
    """
    file_path = Path(path)

    if not file_path.exists():
        raise DeclarationLoadError(
            f"Declaration file not found: {path}. "
            "Please check the file path and ensure the file exists."
        )

    if not file_path.is_file():
        raise DeclarationLoadError(f"Path is not a file: {path}")

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            if file_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except json.JSONDecodeError as e:
        raise DeclarationLoadError(f"Invalid JSON in declaration file: {e}")
    except yaml.YAMLError as e:
        raise DeclarationLoadError(f"Invalid YAML in declaration file: {e}")
    except OSError as e:
        raise DeclarationLoadError(f"Error reading declaration file: {e}")

    declarations = parse_declarations(data)
    logger.info(f"Loaded {len(declarations)} declarations from {path}")
    return declarations


def parse_declarations(data: Any) -> List[ResourceDeclaration]:
    """
    Validate an already-parsed declaration document.

    Raises:
        DeclarationLoadError: If the document structure is invalid
    """
    if data is None:
        return []

    if not isinstance(data, dict):
        raise DeclarationLoadError("Declaration document must contain a mapping")

    records = data.get("resources", [])
    if records is None:
        return []
    if not isinstance(records, list):
        raise DeclarationLoadError("'resources' must be a list")

    declarations = []
    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            raise DeclarationLoadError(f"Resource at index {idx} must be a mapping")
        try:
            declarations.append(ResourceDeclaration.from_dict(record))
        except DeclarationError as e:
            raise DeclarationLoadError(f"Invalid resource at index {idx}: {e}")
        except PydanticValidationError as e:
            raise DeclarationLoadError(f"Invalid resource at index {idx}: {e}")

    return declarations
