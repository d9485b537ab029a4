"""Declaration ingestion: records, values, loading and count expansion."""

from .models import ResourceDeclaration, ResourceNode, NodeStatus
from .values import (
    Value,
    LiteralValue,
    ReferenceValue,
    UnknownValue,
    ListValue,
    MapValue,
    CountIndexValue,
    parse_value,
    parse_reference,
)
from .declaration_loader import load_declarations, parse_declarations
from .expansion import expand_declarations

__all__ = [
    "ResourceDeclaration",
    "ResourceNode",
    "NodeStatus",
    "Value",
    "LiteralValue",
    "ReferenceValue",
    "UnknownValue",
    "ListValue",
    "MapValue",
    "CountIndexValue",
    "parse_value",
    "parse_reference",
    "load_declarations",
    "parse_declarations",
    "expand_declarations",
]
