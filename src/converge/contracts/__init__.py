from .plan import Plan, Action, ActionType, Operation, ReplaceOrder, ResourceChange, AttributeChange, Diagnostic
from .apply_report import ApplyReport, ApplyResult, ActionResult, summarize_node_status

__all__ = [
    "Plan",
    "Action",
    "ActionType",
    "Operation",
    "ReplaceOrder",
    "ResourceChange",
    "AttributeChange",
    "Diagnostic",
    "ApplyReport",
    "ApplyResult",
    "ActionResult",
    "summarize_node_status",
]
