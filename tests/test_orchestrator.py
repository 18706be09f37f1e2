"""
Integration tests for the LedgerSyncFlow.

Everything runs against the in-memory store and cache; the AI parser is
a stub.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from cloudledger.agents import ParsingError, TransactionParser
from cloudledger.cache import InMemoryLocalCache
from cloudledger.config import Settings
from cloudledger.models import (
    LedgerMeta,
    ParsedTransaction,
    SyncMode,
    TransactionKind,
)
from cloudledger.orchestrator import LedgerSyncFlow, create_sync_components
from cloudledger.services.storage import InMemoryTransactionStore
from cloudledger.sync import (
    MutationCoordinator,
    NoActiveLedgerError,
    SyncEngine,
    SyncSession,
    UnreachableError,
)

from conftest import LEDGER, MEMBER, OTHER_LEDGER, remote_doc


class StubParser(TransactionParser):
    """Returns a fixed draft and records the categories it was offered."""

    def __init__(self, parsed: ParsedTransaction):
        self.parsed = parsed
        self.seen_categories: Optional[list[str]] = None

    async def parse(self, text, categories, today=None):
        self.seen_categories = categories
        return self.parsed


def build_flow(store, cache, audit_logger, clock, sync_settings, parser=None) -> LedgerSyncFlow:
    """A flow on a fresh session with no active ledger."""
    session = SyncSession(member_id=MEMBER, clock=clock)
    engine = SyncEngine(store, cache, session, audit_logger, sync_settings)
    coordinator = MutationCoordinator(store, cache, session, engine, audit_logger, sync_settings)
    return LedgerSyncFlow(session, cache, engine, coordinator, parser, audit_logger)


@pytest.fixture
def make_flow(store, cache, audit_logger, clock, sync_settings):
    def factory(parser: Optional[TransactionParser] = None) -> LedgerSyncFlow:
        return build_flow(store, cache, audit_logger, clock, sync_settings, parser)
    return factory


@pytest.fixture
def flow(make_flow) -> LedgerSyncFlow:
    return make_flow()


class TestOpenLedger:
    """Tests for open_ledger() and resync()."""

    def test_open_loads_meta_and_transactions(self, flow, store):
        store.put_ledger(LEDGER, {"expenseCategories": ["Food"], "members": [{"uid": "alice"}]})
        store.put_document(LEDGER, "a", remote_doc(1000, tx_date="2024-05-01"))
        store.put_document(LEDGER, "b", remote_doc(2000, tx_date="2024-05-03"))

        result = asyncio.run(flow.open_ledger(LEDGER))

        assert result.mode == SyncMode.FULL
        assert result.upserted == 2
        assert flow.ledger_meta().expense_categories == ["Food"]
        assert [t.id for t in flow.transactions()] == ["b", "a"]

    def test_open_is_always_full(self, flow, store):
        """Reopening a ledger drops anything the cache holds that the remote no longer has."""
        store.put_document(LEDGER, "a", remote_doc(1000))
        asyncio.run(flow.open_ledger(LEDGER))
        store.purge(LEDGER, "a")

        result = asyncio.run(flow.open_ledger(LEDGER))

        assert result.mode == SyncMode.FULL
        assert flow.transactions() == []

    def test_switching_ledgers(self, flow, store):
        store.put_document(LEDGER, "a", remote_doc(1000))
        store.put_document(OTHER_LEDGER, "z", remote_doc(1000, ledgerId=OTHER_LEDGER))

        asyncio.run(flow.open_ledger(LEDGER))
        asyncio.run(flow.open_ledger(OTHER_LEDGER))

        assert flow.session.active_ledger_id == OTHER_LEDGER
        assert [t.id for t in flow.transactions()] == ["z"]

    def test_open_propagates_unreachable(self, flow, store):
        store.fail("get_ledger")

        with pytest.raises(UnreachableError):
            asyncio.run(flow.open_ledger(LEDGER))

    def test_resync_is_incremental(self, flow, store):
        store.put_document(LEDGER, "a", remote_doc(1000))
        asyncio.run(flow.open_ledger(LEDGER))
        store.put_document(LEDGER, "b", remote_doc(3000))

        result = asyncio.run(flow.resync())

        assert result.mode == SyncMode.INCREMENTAL
        assert result.upserted == 1
        assert {t.id for t in flow.transactions()} == {"a", "b"}

    def test_resync_without_ledger(self, flow):
        with pytest.raises(NoActiveLedgerError):
            asyncio.run(flow.resync())

    def test_meta_defaults_before_first_load(self, flow):
        flow.session.switch_ledger(LEDGER)

        assert flow.ledger_meta() == LedgerMeta()


class TestAiDrafts:
    """Tests for parse_draft() and parse_and_add()."""

    def test_parse_draft_without_parser(self, flow):
        asyncio.run(flow.open_ledger(LEDGER))

        with pytest.raises(ParsingError):
            asyncio.run(flow.parse_draft("coffee 3"))

    def test_parse_draft_offers_ledger_categories(self, make_flow, store):
        store.put_ledger(LEDGER, {"expenseCategories": ["Food"], "incomeCategories": ["Pay"]})
        parser = StubParser(ParsedTransaction(amount=Decimal("3"), category="Food"))
        flow = make_flow(parser)
        asyncio.run(flow.open_ledger(LEDGER))

        parsed, draft = asyncio.run(flow.parse_draft("coffee 3", today=date(2024, 6, 1)))

        assert parser.seen_categories == ["Food", "Pay"]
        assert draft.tx_date == date(2024, 6, 1)
        assert draft.amount == Decimal("3")

    def test_zero_amount_draft_is_a_parsing_error(self, make_flow):
        flow = make_flow(StubParser(ParsedTransaction(amount=Decimal("0"))))
        asyncio.run(flow.open_ledger(LEDGER))

        with pytest.raises(ParsingError):
            asyncio.run(flow.parse_draft("nothing"))

    def test_parse_and_add(self, make_flow, store, clock):
        parser = StubParser(ParsedTransaction(
            amount=Decimal("5000"), kind=TransactionKind.INCOME, category="Salary",
            tx_date=date(2024, 5, 31),
        ))
        flow = make_flow(parser)

        async def scenario():
            await flow.open_ledger(LEDGER)
            clock.advance(1000)
            parsed, result = await flow.parse_and_add("salary 5000")
            await flow.close()
            return parsed, result

        parsed, result = asyncio.run(scenario())

        assert result.success is True
        data = store.document_data(LEDGER, result.transaction_id)
        assert data["type"] == "INCOME"
        assert data["date"] == "2024-05-31"
        assert [t.id for t in flow.transactions()] == [result.transaction_id]


class TestCreateSyncComponents:
    """Tests for the factory."""

    @pytest.fixture
    def demo_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("USE_REMOTE_STORE", "false")
        monkeypatch.setenv("CACHE_BACKEND", "memory")
        monkeypatch.setenv("MEMBER_ID", "bob")
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    def test_demo_mode(self, demo_env):
        flow = create_sync_components(Settings())

        assert isinstance(flow._cache, InMemoryLocalCache)
        assert isinstance(flow._engine._store, InMemoryTransactionStore)
        assert flow._parser is None
        assert flow.session.member_id == "bob"

    def test_overrides_are_used(self, demo_env):
        store = InMemoryTransactionStore()
        cache = InMemoryLocalCache()
        parser = StubParser(ParsedTransaction(amount=Decimal("1")))

        flow = create_sync_components(Settings(), store=store, cache=cache, parser=parser)

        assert flow._engine._store is store
        assert flow._cache is cache
        assert flow._parser is parser

    def test_demo_flow_round_trip(self, demo_env):
        flow = create_sync_components(Settings())
        store = flow._engine._store
        store.put_document("home", "a", remote_doc(1000, ledgerId="home"))

        result = asyncio.run(flow.open_ledger("home"))

        assert result.upserted == 1
        assert flow.transactions()[0].id == "a"
