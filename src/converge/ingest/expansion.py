"""Expand counted declarations into concrete indexed resource nodes."""

from typing import Dict, List, Optional
from .models import ResourceDeclaration, ResourceNode
from .values import (
    COUNT_INDEX,
    CountIndexValue,
    ListValue,
    LiteralValue,
    MapValue,
    ReferenceValue,
    Value,
)
from ..utils.errors import DeclarationError, DuplicateAddressError, ValidationError
from ..utils.logging import get_logger

logger = get_logger("ingest.expansion")


def _substitute_index(value: Value, index: Optional[int], where: str) -> Value:
    """Replace count.index placeholders with the concrete expansion index."""
    if isinstance(value, CountIndexValue):
        if index is None:
            raise DeclarationError(f"count.index used outside a counted declaration in {where}")
        return LiteralValue(value=index)
    if isinstance(value, ReferenceValue) and value.index == COUNT_INDEX:
        if index is None:
            raise DeclarationError(f"count.index used outside a counted declaration in {where}")
        return value.model_copy(update={"index": index})
    if isinstance(value, ListValue):
        return ListValue(items=[_substitute_index(item, index, where) for item in value.items])
    if isinstance(value, MapValue):
        return MapValue(entries={k: _substitute_index(v, index, where) for k, v in value.entries.items()})
    return value


def expand_declaration(declaration: ResourceDeclaration) -> List[ResourceNode]:
    """
    Expand one declaration into its resource nodes.

    Without ``count`` the declaration yields a single node addressed
    ``type.name``; with ``count = N`` it yields ``type.name[0]`` through
    ``type.name[N-1]``.

    Raises:
        DeclarationError: If count is negative or count.index is misused
    """
    if declaration.count is not None and declaration.count < 0:
        raise DeclarationError(
            f"count must be non-negative for {declaration.address}, got {declaration.count}",
            declaration.address,
        )

    indices: List[Optional[int]] = [None] if declaration.count is None else list(range(declaration.count))
    nodes = []
    for index in indices:
        address = declaration.address if index is None else f"{declaration.address}[{index}]"
        attributes = {
            key: _substitute_index(value, index, f"{address}.{key}")
            for key, value in declaration.attributes.items()
        }
        nodes.append(ResourceNode(
            address=address,
            type=declaration.type,
            name=declaration.name,
            index=index,
            attributes=attributes,
            depends_on=list(declaration.depends_on),
        ))
    return nodes


def expand_declarations(declarations: List[ResourceDeclaration]) -> List[ResourceNode]:
    """
    Expand all declarations, in declaration order, before reference resolution.

    Raises:
        DuplicateAddressError: If two declarations share a type and name
        DeclarationError: If a declaration cannot be expanded
    """
    nodes, errors = expand_declarations_collecting(declarations)
    if errors:
        raise errors[0]
    return nodes


def expand_declarations_collecting(declarations: List[ResourceDeclaration]):
    """Expand declarations, returning (nodes, validation errors) instead of raising."""
    seen: Dict[str, ResourceDeclaration] = {}
    nodes: List[ResourceNode] = []
    errors: List[ValidationError] = []

    for declaration in declarations:
        if declaration.address in seen:
            errors.append(DuplicateAddressError(
                f"Duplicate resource declaration: {declaration.address}",
                declaration.address,
            ))
            continue
        seen[declaration.address] = declaration
        try:
            nodes.extend(expand_declaration(declaration))
        except DeclarationError as e:
            if e.address is None:
                e.address = declaration.address
            errors.append(e)

    logger.debug(f"Expanded {len(declarations)} declarations into {len(nodes)} nodes")
    return nodes, errors
