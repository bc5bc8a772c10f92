"""
TeamLedger - Source Package

A role-scoped bookkeeping engine for small organizations where one
owner supervises a team of delegates who record financial activity.

DESIGN PRINCIPLES:
1. Delegate proposes → Owner approves → Ledger counts
2. Organization isolation is enforced twice (engine and store)
3. No silent partial writes
4. Every state transition is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "TeamLedger Team"
