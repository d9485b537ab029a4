"""Diff desired resources against a state snapshot and emit an ordered plan."""

from typing import Dict, List, Optional
import networkx as nx
from ..contracts.plan import (
    Action,
    ActionType,
    AttributeChange,
    Diagnostic,
    Operation,
    Plan,
    ReplaceOrder,
    ResourceChange,
)
from ..graph.dependency_graph import DependencyGraph, build_dependency_graph, find_cycle
from ..graph.reference_resolver import resolve_references
from ..ingest.expansion import expand_declarations_collecting
from ..ingest.models import NodeStatus, ResourceDeclaration, ResourceNode
from ..ingest.values import LiteralValue, UnknownValue, Value, is_known, to_python
from ..providers.registry import ProviderRegistry
from ..state.models import ResourceState, StateSnapshot
from ..utils.errors import CycleError, DanglingReferenceError, ValidationError
from ..utils.logging import get_logger
from .evaluation import contains_value, diff_attributes, dig, evaluate_attributes

logger = get_logger("planner.planner")


def apply_key(operation: Operation, address: str) -> str:
    return f"{operation.value}:{address}"


def deposed_key(address: str, resource_id: str) -> str:
    return f"delete:{address}:deposed:{resource_id}"


def plan(
    declarations: List[ResourceDeclaration],
    state: StateSnapshot,
    registry: ProviderRegistry,
) -> Plan:
    """
    Plan the actions that converge ``state`` to ``declarations``.

    Validation problems (duplicate addresses, unresolved references, cycles,
    dangling references) are all reported as diagnostics on a plan with no
    actions; nothing is mutated either way.

    Args:
        declarations: Parsed resource declarations
        state: Current state snapshot
        registry: Resource type schemas (mutable attributes, replace policy)

    Returns:
        Plan with actions, or with diagnostics when validation failed
    """
    diagnostics: List[ValidationError] = []

    nodes, errors = expand_declarations_collecting(declarations)
    diagnostics.extend(errors)

    references, errors = resolve_references(nodes, declarations)
    diagnostics.extend(errors)

    if diagnostics:
        return _aborted(state, diagnostics)

    try:
        graph = build_dependency_graph(nodes, references)
    except CycleError as e:
        return _aborted(state, [e])

    return Planner(graph, state, registry).build()


def _aborted(state: StateSnapshot, errors: List[ValidationError]) -> Plan:
    for error in errors:
        logger.error(f"Validation failed: {error.message}")
    return Plan(
        state_lineage=state.lineage,
        state_serial=state.serial,
        diagnostics=[Diagnostic.from_error(e) for e in errors],
    )


class Planner:
    """Classifies every node and orders the resulting provider operations."""

    def __init__(self, graph: DependencyGraph, state: StateSnapshot, registry: ProviderRegistry):
        self.graph = graph
        self.state = state
        self.registry = registry
        self.classification: Dict[str, ActionType] = {}
        self.replace_order: Dict[str, ReplaceOrder] = {}
        self.evaluated: Dict[str, Dict[str, Value]] = {}
        self.changes: List[ResourceChange] = []
        self.actions: Dict[str, Action] = {}
        self.errors: List[ValidationError] = []
        self._instances: Dict[str, List[str]] = {}
        for node in sorted(graph.get_all_nodes(), key=lambda n: -1 if n.index is None else n.index):
            self._instances.setdefault(node.base_address, []).append(node.address)

    def build(self) -> Plan:
        for address in self.graph.apply_order():
            self._classify(self.graph.get_node(address))

        orphans = [a for a in self.state.addresses() if a not in self.graph]
        for address in orphans:
            self.classification[address] = ActionType.DELETE
            entry = self.state.resources[address]
            self.changes.append(ResourceChange(
                address=address,
                resource_type=entry.type,
                action=ActionType.DELETE,
                attribute_changes=[
                    AttributeChange(name=k, before=v, after=None) for k, v in sorted(entry.inputs.items())
                ],
            ))

        for address in self.state.addresses():
            entry = self.state.resources[address]
            for resource_id in entry.deposed:
                self.changes.append(ResourceChange(
                    address=address,
                    resource_type=entry.type,
                    action=ActionType.DELETE,
                    deposed_id=resource_id,
                ))

        self._build_apply_actions()
        self._build_delete_actions(orphans)

        if self.errors:
            return _aborted(self.state, self.errors)

        ordered = self._order_actions()
        if ordered is None:
            return _aborted(self.state, self.errors)

        result = Plan(
            state_lineage=self.state.lineage,
            state_serial=self.state.serial,
            actions=ordered,
            changes=self.changes,
        )
        summary = ", ".join(f"{count} {name.lower()}" for name, count in result.summary().items() if count)
        logger.info(f"Plan: {summary or 'no resources'}")
        return result

    # classification

    def _lookup(self, address: str, path: List[str], expression: str) -> Value:
        unknown = UnknownValue(source=expression)
        action = self.classification.get(address)
        entry = self.state.get(address)
        if entry is None or action in (ActionType.CREATE, ActionType.REPLACE):
            return unknown
        if not path or path == ["id"]:
            return LiteralValue(value=entry.id)

        if action == ActionType.UPDATE and path[0] in self.evaluated.get(address, {}):
            declared = self.evaluated[address][path[0]]
            if not is_known(declared):
                return unknown
            try:
                return LiteralValue(value=dig({path[0]: to_python(declared)}, path))
            except KeyError:
                return unknown

        try:
            return LiteralValue(value=dig(entry.attributes, path))
        except KeyError:
            logger.debug(f"Attribute {'.'.join(path)} not recorded for {address}; treating as unknown")
            return unknown

    def _classify(self, node: ResourceNode) -> None:
        address = node.address
        schema = self.registry.schema_for(node.type)
        entry = self.state.get(address)

        evaluated = evaluate_attributes(node.attributes, self._lookup, lambda base: self._instances.get(base, []))
        self.evaluated[address] = evaluated

        replace_order = None
        if entry is None:
            action = ActionType.CREATE
            attribute_changes = diff_attributes(evaluated, None, schema)
        else:
            attribute_changes = diff_attributes(evaluated, entry.inputs, schema)
            if not attribute_changes:
                action = ActionType.NO_OP
            elif any(c.requires_replacement for c in attribute_changes):
                action = ActionType.REPLACE
                replace_order = (
                    ReplaceOrder.CREATE_BEFORE_DESTROY if schema.create_before_destroy
                    else ReplaceOrder.DESTROY_BEFORE_CREATE
                )
                self.replace_order[address] = replace_order
            else:
                action = ActionType.UPDATE

        self.classification[address] = action
        node.status = NodeStatus.NO_OP if action == ActionType.NO_OP else NodeStatus.PENDING
        self.changes.append(ResourceChange(
            address=address,
            resource_type=node.type,
            action=action,
            replace_order=replace_order,
            attribute_changes=attribute_changes,
        ))
        logger.debug(f"{address}: {action.value}")

    # ordering

    def _new_instance_key(self, address: str) -> str:
        action = self.classification[address]
        if action in (ActionType.CREATE, ActionType.REPLACE):
            return apply_key(Operation.CREATE, address)
        if action == ActionType.UPDATE:
            return apply_key(Operation.UPDATE, address)
        return apply_key(Operation.NO_OP, address)

    def _is_destroy_first(self, address: str) -> bool:
        return self.replace_order.get(address) == ReplaceOrder.DESTROY_BEFORE_CREATE

    def _build_apply_actions(self) -> None:
        for address in self.graph.apply_order():
            node = self.graph.get_node(address)
            entry = self.state.get(address)
            action = self.classification[address]
            dependencies = sorted(self.graph.dependencies(address))
            requires = [self._new_instance_key(dep) for dep in dependencies]

            if action == ActionType.NO_OP:
                operation = Operation.NO_OP
            elif action == ActionType.UPDATE:
                operation = Operation.UPDATE
            else:
                operation = Operation.CREATE

            if action == ActionType.REPLACE and self._is_destroy_first(address):
                requires.append(apply_key(Operation.DELETE, address))

            self._add(Action(
                key=apply_key(operation, address),
                address=address,
                resource_type=node.type,
                action=action,
                operation=operation,
                replace_order=self.replace_order.get(address),
                requires=requires,
                resource_id=entry.id if entry and operation == Operation.UPDATE else None,
                desired=node.attributes,
                dependencies=dependencies,
            ))

    def _build_delete_actions(self, orphans: List[str]) -> None:
        for address in self.state.addresses():
            entry = self.state.resources[address]
            for resource_id in entry.deposed:
                self._add_delete(entry, resource_id, deposed=True, action=ActionType.DELETE)

        for address in orphans:
            entry = self.state.resources[address]
            self._add_delete(entry, entry.id, deposed=False, action=ActionType.DELETE)

        for address, order in self.replace_order.items():
            entry = self.state.resources[address]
            if order == ReplaceOrder.DESTROY_BEFORE_CREATE:
                self._check_destroy_first(address)
                self._add_delete(entry, entry.id, deposed=False, action=ActionType.REPLACE)
            else:
                delete = self._add_delete(entry, entry.id, deposed=True, action=ActionType.REPLACE)
                delete.requires.append(apply_key(Operation.CREATE, address))
                # dependents rewire to the new instance before the old one goes away
                for dependent in sorted(self.graph.dependents(address)):
                    delete.requires.append(self._new_instance_key(dependent))

        for action in self.actions.values():
            if action.operation == Operation.DELETE:
                self._require_holders_released(action)

    def _add_delete(self, entry: ResourceState, resource_id: str, deposed: bool, action: ActionType) -> Action:
        key = deposed_key(entry.address, resource_id) if deposed else apply_key(Operation.DELETE, entry.address)
        requires = []
        if not deposed:
            requires = [deposed_key(entry.address, d) for d in entry.deposed]
        return self._add(Action(
            key=key,
            address=entry.address,
            resource_type=entry.type,
            action=action,
            operation=Operation.DELETE,
            replace_order=self.replace_order.get(entry.address) if action == ActionType.REPLACE else None,
            requires=requires,
            resource_id=resource_id,
            dependencies=list(entry.dependencies),
            deposed=deposed,
        ))

    def _holders(self, address: str) -> List[ResourceState]:
        """State entries that recorded ``address`` as a dependency."""
        return [
            entry for entry in self.state.resources.values()
            if entry.address != address and address in entry.dependencies
        ]

    def _require_holders_released(self, delete: Action) -> None:
        """Order a delete after everything that still points at the instance."""
        for holder in self._holders(delete.address):
            for resource_id in holder.deposed:
                delete.requires.append(deposed_key(holder.address, resource_id))

            holder_action = self.classification.get(holder.address)
            if holder_action == ActionType.DELETE or (
                holder_action == ActionType.REPLACE and self._is_destroy_first(holder.address)
            ):
                delete.requires.append(apply_key(Operation.DELETE, holder.address))
            elif holder_action == ActionType.REPLACE:
                delete.requires.append(deposed_key(holder.address, holder.id))
            elif holder_action == ActionType.UPDATE:
                delete.requires.append(apply_key(Operation.UPDATE, holder.address))
            elif holder_action == ActionType.NO_OP and contains_value(holder.inputs, delete.resource_id):
                self.errors.append(DanglingReferenceError(
                    f"Cannot delete {delete.address} ({delete.resource_id}): "
                    f"{holder.address} still references it and is not changing",
                    address=delete.address,
                    referenced_by=[holder.address],
                ))

    def _check_destroy_first(self, address: str) -> None:
        """A destroy-first replacement is only valid if no surviving dependent keeps pointing at it."""
        blocking = []
        for dependent in sorted(self.graph.dependents(address)):
            entry = self.state.get(dependent)
            if entry is None or address not in entry.dependencies:
                continue
            # NoOp holders are checked against the recorded inputs in _require_holders_released
            if self.classification.get(dependent) == ActionType.UPDATE or (
                self.classification.get(dependent) == ActionType.REPLACE and not self._is_destroy_first(dependent)
            ):
                blocking.append(dependent)
        if blocking:
            self.errors.append(DanglingReferenceError(
                f"Replacing {address} destroys it before its replacement exists, but "
                f"{', '.join(blocking)} still reference it; set create_before_destroy for "
                f"{self.state.resources[address].type} or replace the dependents too",
                address=address,
                referenced_by=blocking,
            ))

    def _add(self, action: Action) -> Action:
        self.actions[action.key] = action
        return action

    def _order_actions(self) -> Optional[List[Action]]:
        steps = nx.DiGraph()
        for key, action in self.actions.items():
            steps.add_node(key)
            action.requires = sorted(set(r for r in action.requires if r != key))
            for required in action.requires:
                if required not in self.actions:
                    raise KeyError(f"{key} requires unknown step {required}")
                steps.add_edge(required, key)

        cycle = find_cycle(steps)
        if cycle:
            self.errors.append(CycleError([str(k) for k in cycle]))
            return None
        return [self.actions[key] for key in nx.lexicographical_topological_sort(steps)]
