"""Tagged attribute values: literals, references, and not-yet-known results."""

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from ..utils.errors import DeclarationError

SPLAT = "*"
COUNT_INDEX = "count.index"

_REFERENCE_PATTERN = re.compile(
    r"^(?P<type>[A-Za-z][A-Za-z0-9_-]*)"
    r"\.(?P<name>[A-Za-z_][A-Za-z0-9_-]*)"
    r"(?:\[(?P<index>\d+|\*|count\.index)\])?"
    r"(?:\.(?P<path>[A-Za-z0-9_.-]+))?$"
)


class LiteralValue(BaseModel):
    """A concrete value: string, number, bool, null, or nested plain data."""
    kind: Literal["literal"] = "literal"
    value: Any = None


class ReferenceValue(BaseModel):
    """Reference to another resource's identity or output attribute."""
    kind: Literal["reference"] = "reference"
    resource_type: str = Field(..., description="Type of the referenced resource")
    name: str = Field(..., description="Local name of the referenced declaration")
    index: Optional[Union[int, str]] = Field(None, description="Instance index, '*' for all instances, or 'count.index'")
    path: List[str] = Field(default_factory=list, description="Attribute path inside the target (empty means id)")

    @property
    def base_address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    @property
    def is_splat(self) -> bool:
        return self.index == SPLAT

    def target_address(self) -> str:
        """Concrete target address for direct and indexed references."""
        if self.index is None or self.index == SPLAT:
            return self.base_address
        return f"{self.base_address}[{self.index}]"

    def to_expression(self) -> str:
        text = self.base_address
        if self.index is not None:
            text += f"[{self.index}]"
        if self.path:
            text += "." + ".".join(self.path)
        return text


class CountIndexValue(BaseModel):
    """Placeholder for the current expansion index; replaced during expansion."""
    kind: Literal["count_index"] = "count_index"


class UnknownValue(BaseModel):
    """Value that will only be known once the referenced resource is applied."""
    kind: Literal["unknown"] = "unknown"
    source: Optional[str] = Field(None, description="Reference expression this value is waiting on")


class ListValue(BaseModel):
    kind: Literal["list"] = "list"
    items: List["Value"] = Field(default_factory=list)


class MapValue(BaseModel):
    kind: Literal["map"] = "map"
    entries: Dict[str, "Value"] = Field(default_factory=dict)


Value = Annotated[
    Union[LiteralValue, ReferenceValue, CountIndexValue, UnknownValue, ListValue, MapValue],
    Field(discriminator="kind"),
]

ListValue.model_rebuild()
MapValue.model_rebuild()


def parse_reference(expression: str) -> ReferenceValue:
    """
    Parse a reference expression such as ``aws_subnet.public[0].id``.

    Raises:
        DeclarationError: If the expression is not a valid reference
    """
    match = _REFERENCE_PATTERN.match(expression.strip())
    if not match:
        raise DeclarationError(f"Invalid reference expression: '{expression}'")

    index: Optional[Union[int, str]] = match.group("index")
    if index is not None and index not in (SPLAT, COUNT_INDEX):
        index = int(index)
    path = match.group("path").split(".") if match.group("path") else []
    if any(not part for part in path):
        raise DeclarationError(f"Invalid attribute path in reference: '{expression}'")

    return ReferenceValue(
        resource_type=match.group("type"),
        name=match.group("name"),
        index=index,
        path=path,
    )


def parse_value(raw: Any) -> "Value":
    """
    Convert parser output (plain data) into a Value tree.

    A mapping with the single key ``ref`` is a reference, ``{ref: count.index}``
    is the expansion index, and a mapping with the single key ``literal`` is
    taken verbatim.
    """
    if isinstance(raw, BaseModel):
        return raw
    if isinstance(raw, dict):
        if set(raw.keys()) == {"ref"}:
            expression = raw["ref"]
            if not isinstance(expression, str):
                raise DeclarationError(f"Reference must be a string, got {type(expression).__name__}")
            if expression.strip() == COUNT_INDEX:
                return CountIndexValue()
            return parse_reference(expression)
        if set(raw.keys()) == {"literal"}:
            return LiteralValue(value=raw["literal"])
        entries = {str(key): parse_value(value) for key, value in raw.items()}
        if all(isinstance(v, LiteralValue) for v in entries.values()):
            return LiteralValue(value=raw)
        return MapValue(entries=entries)
    if isinstance(raw, (list, tuple)):
        items = [parse_value(item) for item in raw]
        if all(isinstance(v, LiteralValue) for v in items):
            return LiteralValue(value=list(raw))
        return ListValue(items=items)
    return LiteralValue(value=raw)


def iter_references(value: "Value", path: str = ""):
    """Yield (attribute_path, ReferenceValue) for every reference in a value tree."""
    if isinstance(value, ReferenceValue):
        yield path, value
    elif isinstance(value, ListValue):
        for i, item in enumerate(value.items):
            yield from iter_references(item, f"{path}[{i}]")
    elif isinstance(value, MapValue):
        for key, item in value.entries.items():
            yield from iter_references(item, f"{path}.{key}" if path else key)


def is_known(value: "Value") -> bool:
    """True when the value tree contains no unknowns or unresolved references."""
    if isinstance(value, LiteralValue):
        return True
    if isinstance(value, ListValue):
        return all(is_known(item) for item in value.items)
    if isinstance(value, MapValue):
        return all(is_known(item) for item in value.entries.values())
    return False


def to_python(value: "Value") -> Any:
    """
    Convert a fully known value tree to plain data.

    Raises:
        ValueError: If the tree still holds a reference or unknown value
    """
    if isinstance(value, LiteralValue):
        return value.value
    if isinstance(value, ListValue):
        return [to_python(item) for item in value.items]
    if isinstance(value, MapValue):
        return {key: to_python(item) for key, item in value.entries.items()}
    raise ValueError(f"Value is not known yet: {value.kind}")


def render_value(value: "Value") -> Any:
    """Render a value tree for display: unknowns become '(known after apply)'."""
    if isinstance(value, LiteralValue):
        return value.value
    if isinstance(value, ReferenceValue):
        return "${" + value.to_expression() + "}"
    if isinstance(value, UnknownValue):
        return "(known after apply)"
    if isinstance(value, CountIndexValue):
        return "${count.index}"
    if isinstance(value, ListValue):
        return [render_value(item) for item in value.items]
    return {key: render_value(item) for key, item in value.entries.items()}
