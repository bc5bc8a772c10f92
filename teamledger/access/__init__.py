"""Role-scoped reads (VisibilityFilter) and writes (MutationGate)."""

from teamledger.access.visibility import VisibilityFilter, can_see, newest_first
from teamledger.access.gate import MutationGate, may_modify

__all__ = [
    "MutationGate",
    "VisibilityFilter",
    "can_see",
    "may_modify",
    "newest_first",
]
