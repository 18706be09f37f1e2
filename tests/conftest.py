"""
Shared fixtures.

No real network calls: the remote store is the in-memory store, wrapped
where a test needs it to fail, stall, or switch ledgers mid-fetch.
Async code runs through asyncio.run() inside plain test functions.
"""

import asyncio
from typing import Any, Callable, Optional

import pytest

from cloudledger.audit import AuditLogger
from cloudledger.cache import InMemoryLocalCache
from cloudledger.config import SyncSettings
from cloudledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryTransactionStore,
    UnreachableStoreError,
)
from cloudledger.sync import MutationCoordinator, SyncEngine, SyncSession


LEDGER = "ledger-1"
OTHER_LEDGER = "ledger-2"
MEMBER = "alice"


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 10_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class ControllableStore(InMemoryTransactionStore):
    """
    In-memory store with failure injection.

    fail("create", "update") makes those operations raise until heal().
    delay("list_changed_since", 0.5) makes an operation stall.
    before("list_changed_since", fn) runs fn just before the operation
    returns, e.g. to switch ledgers while a sync is in flight.
    """

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        super().__init__(id_factory=id_factory)
        self.calls: list[str] = []
        self._failing: dict[str, Exception] = {}
        self._delays: dict[str, float] = {}
        self._hooks: dict[str, Callable[[], Any]] = {}

    def fail(self, *operations: str, error: Optional[Exception] = None) -> None:
        for operation in operations:
            self._failing[operation] = error or UnreachableStoreError("store offline")

    def heal(self) -> None:
        self._failing.clear()

    def delay(self, operation: str, seconds: float) -> None:
        self._delays[operation] = seconds

    def before(self, operation: str, hook: Callable[[], Any]) -> None:
        self._hooks[operation] = hook

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self._delays:
            await asyncio.sleep(self._delays[operation])
        if operation in self._failing:
            raise self._failing[operation]
        hook = self._hooks.pop(operation, None)
        if hook is not None:
            hook()

    async def list_recent(self, ledger_id, limit):
        await self._enter("list_recent")
        return await super().list_recent(ledger_id, limit)

    async def list_changed_since(self, ledger_id, since):
        await self._enter("list_changed_since")
        return await super().list_changed_since(ledger_id, since)

    async def get(self, ledger_id, transaction_id):
        await self._enter("get")
        return await super().get(ledger_id, transaction_id)

    async def create(self, ledger_id, data):
        await self._enter("create")
        return await super().create(ledger_id, data)

    async def update(self, ledger_id, transaction_id, fields):
        await self._enter("update")
        return await super().update(ledger_id, transaction_id, fields)

    async def get_ledger(self, ledger_id):
        await self._enter("get_ledger")
        return await super().get_ledger(ledger_id)


def remote_doc(
    updated_at: int,
    amount: Any = 100,
    tx_date: str = "2024-05-01",
    deleted: bool = False,
    **overrides: Any,
) -> dict[str, Any]:
    """Remote document body as the reference clients write it."""
    data = {
        "amount": amount,
        "type": "EXPENSE",
        "category": "Dining",
        "description": "",
        "rewards": 0,
        "date": tx_date,
        "creatorUid": MEMBER,
        "ledgerId": LEDGER,
        "createdAt": updated_at,
        "updatedAt": updated_at,
        "deleted": deleted,
    }
    if deleted:
        data["deletedAt"] = updated_at
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> ControllableStore:
    ids = iter(f"tx{n}" for n in range(9, 100))
    return ControllableStore(id_factory=lambda: next(ids))


@pytest.fixture
def cache() -> InMemoryLocalCache:
    return InMemoryLocalCache()


@pytest.fixture
def session(clock) -> SyncSession:
    session = SyncSession(member_id=MEMBER, clock=clock)
    session.switch_ledger(LEDGER)
    return session


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(remote_timeout_seconds=1.0, reconcile_in_background=True)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(store, cache, session, audit_logger, sync_settings) -> SyncEngine:
    return SyncEngine(store, cache, session, audit_logger, sync_settings)


@pytest.fixture
def coordinator(store, cache, session, engine, audit_logger, sync_settings) -> MutationCoordinator:
    return MutationCoordinator(store, cache, session, engine, audit_logger, sync_settings)
