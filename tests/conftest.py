"""
Shared fixtures.

Every test gets a fresh in-memory store wired into a Workspace, with an
owner ("owner-1", Asha) and one linked delegate ("delegate-1", Ravi).
Async engine calls are driven with asyncio.run from plain test methods.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from teamledger.audit import AuditLogger
from teamledger.models.actor import AuthSession
from teamledger.models.record import EntryDetails, EntryType, PaymentStatus
from teamledger.notifications import InMemoryNotificationSink
from teamledger.orchestrator import Workspace
from teamledger.services.storage import InMemoryStore


OWNER_ID = "owner-1"
DELEGATE_ID = "delegate-1"
OTHER_OWNER_ID = "owner-2"


def run(coro):
    return asyncio.run(coro)


def income(amount: str, status: PaymentStatus = PaymentStatus.RECEIVED, **fields) -> EntryDetails:
    return EntryDetails(
        entry_type=EntryType.INCOME,
        amount=Decimal(amount),
        entry_date=fields.pop("entry_date", date(2024, 5, 10)),
        payment_status=status,
        **fields,
    )


def expense(amount: str, **fields) -> EntryDetails:
    return EntryDetails(
        entry_type=EntryType.EXPENSE,
        amount=Decimal(amount),
        entry_date=fields.pop("entry_date", date(2024, 5, 12)),
        **fields,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def workspace(store, sink) -> Workspace:
    return Workspace(store, store, sink, AuditLogger(store))


@pytest.fixture
def owner(workspace):
    return run(workspace.provisioner.provision(
        AuthSession(actor_id=OWNER_ID, metadata={"role": "owner", "name": "Asha"})
    ))


@pytest.fixture
def delegate(workspace, owner):
    run(workspace.provisioner.add_delegate(OWNER_ID, "Ravi", delegate_id=DELEGATE_ID))
    return run(workspace.resolver.resolve(DELEGATE_ID))


@pytest.fixture
def other_owner(workspace):
    return run(workspace.provisioner.provision(
        AuthSession(actor_id=OTHER_OWNER_ID, metadata={"role": "owner", "name": "Meera"})
    ))
