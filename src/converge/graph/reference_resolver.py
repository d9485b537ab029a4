"""Extract inter-resource references from attribute expressions."""

import re
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field
from ..ingest.models import ResourceDeclaration, ResourceNode
from ..ingest.values import SPLAT, ReferenceValue, iter_references
from ..utils.errors import UnresolvedReferenceError, ValidationError
from ..utils.logging import get_logger

logger = get_logger("graph.reference_resolver")

_ADDRESS_PATTERN = re.compile(r"^(?P<base>[A-Za-z][A-Za-z0-9_-]*\.[A-Za-z_][A-Za-z0-9_-]*)(?:\[(?P<index>\d+)\])?$")


class Reference(BaseModel):
    """Dependency edge: ``target`` must be applied before ``source``."""
    source: str = Field(..., description="Address of the referencing node")
    target: str = Field(..., description="Address of the referenced node")
    attribute_path: Optional[str] = Field(None, description="Attribute holding the expression; None for explicit depends_on")

    @property
    def explicit(self) -> bool:
        return self.attribute_path is None


class ResourceCatalog:
    """Address lookup over expanded nodes, aware of counted declarations."""

    def __init__(self, nodes: List[ResourceNode], declarations: Optional[List[ResourceDeclaration]] = None):
        self.nodes: Dict[str, ResourceNode] = {node.address: node for node in nodes}
        self._instances: Dict[str, List[ResourceNode]] = {}
        self._counted: Dict[str, bool] = {}

        for declaration in declarations or []:
            self._instances.setdefault(declaration.address, [])
            self._counted[declaration.address] = declaration.count is not None

        for node in nodes:
            self._instances.setdefault(node.base_address, []).append(node)
            self._counted[node.base_address] = self._counted.get(node.base_address, False) or node.index is not None

        for instances in self._instances.values():
            instances.sort(key=lambda n: -1 if n.index is None else n.index)

    def is_declared(self, base_address: str) -> bool:
        return base_address in self._instances

    def is_counted(self, base_address: str) -> bool:
        return self._counted.get(base_address, False)

    def instances(self, base_address: str) -> List[str]:
        """Addresses of every instance of a declaration, ordered by index."""
        return [node.address for node in self._instances.get(base_address, [])]

    def targets_for(self, ref: ReferenceValue) -> List[str]:
        """
        Concrete addresses a reference expression depends on.

        Raises:
            LookupError: With a human-readable reason if the target does not exist
        """
        base = ref.base_address
        if not self.is_declared(base):
            raise LookupError(f"resource '{base}' is not declared")

        if ref.index == SPLAT:
            return self.instances(base)

        if ref.index is None:
            if self.is_counted(base):
                raise LookupError(f"'{base}' has count set; reference an instance with [N] or all instances with [*]")
            return [base]

        if not isinstance(ref.index, int):
            raise LookupError(f"unsupported index '{ref.index}'")
        address = f"{base}[{ref.index}]"
        if address not in self.nodes:
            raise LookupError(f"instance '{address}' does not exist (count is {len(self.instances(base))})")
        return [address]

    def targets_for_address(self, address: str) -> List[str]:
        """Resolve an explicit depends_on address; unindexed counted addresses mean all instances."""
        match = _ADDRESS_PATTERN.match(address.strip())
        if not match:
            raise LookupError(f"'{address}' is not a valid resource address")
        base = match.group("base")
        if not self.is_declared(base):
            raise LookupError(f"resource '{base}' is not declared")
        if match.group("index") is None:
            return self.instances(base) if self.is_counted(base) else [base]
        concrete = f"{base}[{match.group('index')}]"
        if concrete not in self.nodes:
            raise LookupError(f"instance '{concrete}' does not exist")
        return [concrete]


def resolve_node_references(node: ResourceNode, catalog: ResourceCatalog) -> Tuple[List[Reference], List[ValidationError]]:
    """Walk one node's attribute expressions and explicit dependencies."""
    references: List[Reference] = []
    errors: List[ValidationError] = []

    for key, value in node.attributes.items():
        for attribute_path, ref in iter_references(value, key):
            try:
                targets = catalog.targets_for(ref)
            except LookupError as e:
                errors.append(UnresolvedReferenceError(
                    f"Unresolved reference '{ref.to_expression()}' in {node.address}.{attribute_path}: {e}",
                    address=node.address,
                    attribute_path=attribute_path,
                    target=ref.to_expression(),
                ))
                continue
            for target in targets:
                references.append(Reference(source=node.address, target=target, attribute_path=attribute_path))

    for dep_address in node.depends_on:
        try:
            targets = catalog.targets_for_address(dep_address)
        except LookupError as e:
            errors.append(UnresolvedReferenceError(
                f"Unresolved dependency '{dep_address}' in {node.address}.depends_on: {e}",
                address=node.address,
                attribute_path="depends_on",
                target=dep_address,
            ))
            continue
        for target in targets:
            references.append(Reference(source=node.address, target=target))

    return references, errors


def resolve_references(
    nodes: List[ResourceNode],
    declarations: Optional[List[ResourceDeclaration]] = None,
) -> Tuple[List[Reference], List[ValidationError]]:
    """
    Resolve every reference across expanded nodes.

    Args:
        nodes: Expanded resource nodes (count already applied)
        declarations: Source declarations, so zero-count declarations stay addressable

    Returns:
        Tuple of (references, validation errors). All unresolved references are
        reported, not only the first.
    """
    catalog = ResourceCatalog(nodes, declarations)
    references: List[Reference] = []
    errors: List[ValidationError] = []

    for node in nodes:
        node_refs, node_errors = resolve_node_references(node, catalog)
        references.extend(node_refs)
        errors.extend(node_errors)

    logger.debug(f"Resolved {len(references)} references across {len(nodes)} nodes ({len(errors)} unresolved)")
    return references, errors


def require_references(
    nodes: List[ResourceNode],
    declarations: Optional[List[ResourceDeclaration]] = None,
) -> List[Reference]:
    """
    Resolve references and raise on the first unresolved one.

    Raises:
        UnresolvedReferenceError: If any expression names a non-existent address
    """
    references, errors = resolve_references(nodes, declarations)
    if errors:
        raise errors[0]
    return references
