"""
Tests for the local cache implementations.

Every behavioural test runs against both the in-memory and the SQLite
cache; persistence across reopen is SQLite-only.
"""

from datetime import date
from decimal import Decimal

import pytest

from cloudledger.cache import (
    InMemoryLocalCache,
    SqliteLocalCache,
    TombstoneRejectedError,
)
from cloudledger.models import LedgerMember, LedgerMeta, Transaction, TransactionKind


def make_tx(tx_id: str, ledger_id: str = "L1", updated_at: int = 1000, **overrides) -> Transaction:
    fields = {
        "id": tx_id,
        "ledger_id": ledger_id,
        "amount": Decimal("42.50"),
        "kind": TransactionKind.EXPENSE,
        "category": "Dining",
        "tx_date": date(2024, 5, 1),
        "creator_id": "alice",
        "created_at": updated_at,
        "updated_at": updated_at,
    }
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture(params=["memory", "sqlite"])
def local_cache(request, tmp_path):
    if request.param == "memory":
        cache = InMemoryLocalCache()
    else:
        cache = SqliteLocalCache(tmp_path / "cache.sqlite3")
    yield cache
    cache.close()


class TestLocalCache:
    """Contract tests shared by all cache implementations."""

    def test_upsert_and_get(self, local_cache):
        tx = make_tx("tx1")
        local_cache.upsert(tx)

        assert local_cache.get("L1", "tx1") == tx
        assert local_cache.get("L1", "missing") is None

    def test_upsert_replaces_by_identity(self, local_cache):
        local_cache.upsert(make_tx("tx1", amount=Decimal("1")))
        local_cache.upsert(make_tx("tx1", amount=Decimal("2"), updated_at=2000))

        records = local_cache.query("L1")
        assert len(records) == 1
        assert records[0].amount == Decimal("2")

    def test_partitions_are_separate(self, local_cache):
        local_cache.upsert(make_tx("tx1", ledger_id="L1"))
        local_cache.upsert(make_tx("tx1", ledger_id="L2"))

        assert len(local_cache.query("L1")) == 1
        assert len(local_cache.query("L2")) == 1
        assert local_cache.remove("L1", "tx1") is True
        assert local_cache.get("L2", "tx1") is not None

    def test_remove_reports_whether_something_was_removed(self, local_cache):
        local_cache.upsert(make_tx("tx1"))

        assert local_cache.remove("L1", "tx1") is True
        assert local_cache.remove("L1", "tx1") is False

    def test_refuses_tombstone(self, local_cache):
        with pytest.raises(TombstoneRejectedError):
            local_cache.upsert(make_tx("tx1", deleted=True, deleted_at=1000))
        assert local_cache.query("L1") == []

    def test_replace_all_clears_partition(self, local_cache):
        local_cache.upsert(make_tx("old"))
        local_cache.upsert(make_tx("other", ledger_id="L2"))

        local_cache.replace_all("L1", [make_tx("a"), make_tx("b")])

        assert {t.id for t in local_cache.query("L1")} == {"a", "b"}
        assert [t.id for t in local_cache.query("L2")] == ["other"]

    def test_replace_all_with_tombstone_changes_nothing(self, local_cache):
        local_cache.upsert(make_tx("old"))

        with pytest.raises(TombstoneRejectedError):
            local_cache.replace_all("L1", [make_tx("a"), make_tx("b", deleted=True)])

        assert [t.id for t in local_cache.query("L1")] == ["old"]

    def test_watermark_roundtrip(self, local_cache):
        assert local_cache.get_watermark("L1") is None

        local_cache.set_watermark("L1", 1_700_000_000_000)

        assert local_cache.get_watermark("L1") == 1_700_000_000_000
        assert local_cache.get_watermark("L2") is None

    def test_ledger_meta_roundtrip(self, local_cache):
        meta = LedgerMeta(
            expense_categories=["Food"],
            members=[LedgerMember(uid="u1", display_name="Ann")],
        )
        local_cache.set_ledger_meta("L1", meta)

        assert local_cache.get_ledger_meta("L1") == meta
        assert local_cache.get_ledger_meta("L2") is None

    def test_returned_records_are_copies(self, local_cache):
        local_cache.upsert(make_tx("tx1"))

        record = local_cache.get("L1", "tx1")
        record.category = "Changed"

        assert local_cache.get("L1", "tx1").category == "Dining"


class TestSqlitePersistence:
    """The SQLite cache survives a restart."""

    def test_reopen_keeps_records_and_watermark(self, tmp_path):
        path = tmp_path / "nested" / "cache.sqlite3"
        cache = SqliteLocalCache(path)
        cache.upsert(make_tx("tx1", description="rent", reward=Decimal("1.5")))
        cache.set_watermark("L1", 2000)
        cache.set_ledger_meta("L1", LedgerMeta())
        cache.close()

        reopened = SqliteLocalCache(path)
        try:
            tx = reopened.get("L1", "tx1")
            assert tx.description == "rent"
            assert tx.reward == Decimal("1.5")
            assert tx.tx_date == date(2024, 5, 1)
            assert reopened.get_watermark("L1") == 2000
            assert reopened.get_ledger_meta("L1") == LedgerMeta()
        finally:
            reopened.close()
