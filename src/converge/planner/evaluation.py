"""Evaluate attribute expressions and diff them against recorded inputs."""

from typing import Any, Callable, Dict, List, Optional
from ..config.models import ResourceTypeSchema
from ..contracts.plan import AttributeChange
from ..ingest.values import (
    CountIndexValue,
    ListValue,
    LiteralValue,
    MapValue,
    ReferenceValue,
    UnknownValue,
    Value,
    is_known,
    render_value,
    to_python,
)
from ..utils.errors import DeclarationError

# (target address, attribute path, source expression) -> LiteralValue or UnknownValue
Lookup = Callable[[str, List[str], str], Value]
InstanceLister = Callable[[str], List[str]]


def dig(attributes: Dict[str, Any], path: List[str]) -> Any:
    """
    Walk an attribute path through nested dicts and lists.

    Raises:
        KeyError: If any segment is missing
    """
    current: Any = attributes
    for segment in path:
        if isinstance(current, dict):
            if segment not in current:
                raise KeyError(segment)
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise KeyError(segment)
    return current


def _collapse(value: Value) -> Value:
    if isinstance(value, ListValue) and all(isinstance(i, LiteralValue) for i in value.items):
        return LiteralValue(value=[i.value for i in value.items])
    if isinstance(value, MapValue) and all(isinstance(v, LiteralValue) for v in value.entries.values()):
        return LiteralValue(value={k: v.value for k, v in value.entries.items()})
    return value


def evaluate(value: Value, lookup: Lookup, instances: InstanceLister) -> Value:
    """
    Replace references in a value tree with what the lookup knows.

    Splat references become a list over every instance, in index order.
    """
    if isinstance(value, (LiteralValue, UnknownValue)):
        return value
    if isinstance(value, ReferenceValue):
        expression = value.to_expression()
        if value.is_splat:
            items = [lookup(address, value.path, expression) for address in instances(value.base_address)]
            return _collapse(ListValue(items=items))
        return lookup(value.target_address(), value.path, expression)
    if isinstance(value, ListValue):
        return _collapse(ListValue(items=[evaluate(item, lookup, instances) for item in value.items]))
    if isinstance(value, MapValue):
        return _collapse(MapValue(entries={k: evaluate(v, lookup, instances) for k, v in value.entries.items()}))
    if isinstance(value, CountIndexValue):
        raise DeclarationError("count.index must be expanded before evaluation")
    raise TypeError(f"Unsupported value: {value!r}")


def evaluate_attributes(attributes: Dict[str, Value], lookup: Lookup, instances: InstanceLister) -> Dict[str, Value]:
    return {key: evaluate(value, lookup, instances) for key, value in attributes.items()}


def diff_attributes(
    desired: Dict[str, Value],
    prior_inputs: Optional[Dict[str, Any]],
    schema: ResourceTypeSchema,
) -> List[AttributeChange]:
    """
    Compare evaluated desired attributes with the inputs last sent to the provider.

    Unknown values always count as changed. With no prior inputs every desired
    attribute is reported as an addition (a create).
    """
    changes: List[AttributeChange] = []
    if prior_inputs is None:
        for name in sorted(desired):
            changes.append(AttributeChange(name=name, before=None, after=render_value(desired[name])))
        return changes

    for name in sorted(set(desired) | set(prior_inputs)):
        before = prior_inputs.get(name)
        if name not in desired:
            changed, after = True, None
        else:
            value = desired[name]
            after = render_value(value)
            changed = (
                not is_known(value)
                or name not in prior_inputs
                or to_python(value) != before
            )
        if changed:
            changes.append(AttributeChange(
                name=name,
                before=before,
                after=after,
                requires_replacement=not schema.is_mutable(name),
            ))
    return changes


def contains_value(data: Any, needle: Any) -> bool:
    """True if ``needle`` appears anywhere inside nested plain data."""
    if data == needle:
        return True
    if isinstance(data, dict):
        return any(contains_value(v, needle) for v in data.values())
    if isinstance(data, list):
        return any(contains_value(v, needle) for v in data)
    return False
