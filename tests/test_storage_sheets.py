"""
Tests for the Google Sheets store.

gspread is never contacted: the client wrapper is replaced by a fake
holding in-memory worksheets.
"""

import asyncio
from decimal import Decimal

import gspread
import pytest
from gspread.utils import a1_to_rowcol

from cloudledger.models import AuditEventBuilder
from cloudledger.services.storage import (
    DocumentNotFoundError,
    GoogleSheetsAuditStorage,
    GoogleSheetsTransactionStore,
    PermissionDeniedError,
    UnreachableStoreError,
)
from cloudledger.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    LEDGER_COLUMNS,
    TRANSACTION_COLUMNS,
    _translate_error,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet: rows of strings."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]
        self.batches: list[list[dict]] = []
        # Runs after col_values(), standing in for another client's write
        self.after_read = None

    def get_all_values(self) -> list[list[str]]:
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append([str(v) for v in row])

    def col_values(self, col: int) -> list[str]:
        values = [row[col - 1] if len(row) >= col else "" for row in self.rows]
        if self.after_read is not None:
            self.after_read()
        return values

    def batch_update(self, data, value_input_option=None):
        self.batches.append(data)
        for entry in data:
            row, col = a1_to_rowcol(entry["range"])
            self.rows[row - 1][col - 1] = str(entry["values"][0][0])


class FakeSheetsClient:
    def __init__(self):
        self.transactions: dict[str, FakeWorksheet] = {}
        self.ledgers = FakeWorksheet(LEDGER_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)

    def get_transactions_sheet(self, ledger_id: str) -> FakeWorksheet:
        return self.transactions.setdefault(ledger_id, FakeWorksheet(TRANSACTION_COLUMNS))

    def get_ledgers_sheet(self) -> FakeWorksheet:
        return self.ledgers

    def get_audit_sheet(self) -> FakeWorksheet:
        return self.audit


def row(doc_id: str, updated_at: str, **cells) -> list[str]:
    values = {
        "id": doc_id,
        "ledgerId": "L1",
        "amount": "12.50",
        "type": "EXPENSE",
        "category": "Dining",
        "description": "",
        "rewards": "0",
        "date": "2024-05-01",
        "creatorUid": "alice",
        "targetUserUid": "",
        "createdAt": updated_at,
        "updatedAt": updated_at,
        "deleted": "False",
        "deletedAt": "",
    }
    values.update(cells)
    return [values[column] for column in TRANSACTION_COLUMNS]


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(client):
    return GoogleSheetsTransactionStore(client)


class TestTransactionRows:
    """Tests for row <-> document conversion and queries."""

    def test_row_types_are_restored(self, client, sheets_store):
        client.get_transactions_sheet("L1").rows.append(row("a", "1000", rewards="1.5"))

        document = asyncio.run(sheets_store.get("L1", "a"))

        assert document.data["amount"] == Decimal("12.50")
        assert document.data["rewards"] == Decimal("1.5")
        assert document.data["updatedAt"] == 1000
        assert document.data["deleted"] is False
        assert "targetUserUid" not in document.data
        assert "deletedAt" not in document.data

    def test_unconvertible_values_pass_through(self, client, sheets_store):
        client.get_transactions_sheet("L1").rows.append(row("a", "soon", amount="lots"))

        document = asyncio.run(sheets_store.get("L1", "a"))

        assert document.data["amount"] == "lots"
        assert document.data["updatedAt"] == "soon"

    def test_changed_since_is_strict_and_ordered(self, client, sheets_store):
        sheet = client.get_transactions_sheet("L1")
        sheet.rows.append(row("c", "3000"))
        sheet.rows.append(row("a", "1000"))
        sheet.rows.append(row("b", "2000", deleted="True", deletedAt="2000"))

        documents = asyncio.run(sheets_store.list_changed_since("L1", 1000))

        assert [d.id for d in documents] == ["b", "c"]
        assert documents[0].data["deleted"] is True

    def test_list_recent_hides_tombstones(self, client, sheets_store):
        sheet = client.get_transactions_sheet("L1")
        sheet.rows.append(row("old", "1000", date="2024-01-01"))
        sheet.rows.append(row("new", "1000", date="2024-06-01"))
        sheet.rows.append(row("gone", "2000", deleted="True"))

        documents = asyncio.run(sheets_store.list_recent("L1", 10))

        assert [d.id for d in documents] == ["new", "old"]

    def test_create_then_update(self, client, sheets_store):
        document_id = asyncio.run(sheets_store.create("L1", {
            "amount": Decimal("7"),
            "type": "INCOME",
            "date": "2024-05-01",
            "ledgerId": "L1",
            "createdAt": 1000,
            "updatedAt": 1000,
            "deleted": False,
        }))
        asyncio.run(sheets_store.update("L1", document_id, {
            "deleted": True,
            "deletedAt": 2000,
            "updatedAt": 2000,
        }))

        document = asyncio.run(sheets_store.get("L1", document_id))

        assert len(client.get_transactions_sheet("L1").rows) == 2
        assert document.data["amount"] == Decimal("7")
        assert document.data["type"] == "INCOME"
        assert document.data["deleted"] is True
        assert document.data["updatedAt"] == 2000

    def test_update_keeps_concurrent_edit_to_other_column(self, client, sheets_store):
        sheet = client.get_transactions_sheet("L1")
        sheet.rows.append(row("a", "1000", description="lunch"))

        def other_member_edits():
            sheet.rows[1][TRANSACTION_COLUMNS.index("description")] = "team lunch"
        sheet.after_read = other_member_edits

        asyncio.run(sheets_store.update("L1", "a", {
            "deleted": True,
            "deletedAt": 2000,
            "updatedAt": 2000,
        }))

        document = asyncio.run(sheets_store.get("L1", "a"))
        assert document.data["description"] == "team lunch"
        assert document.data["deleted"] is True
        assert document.data["deletedAt"] == 2000
        assert {entry["range"] for entry in sheet.batches[0]} == {"L2", "M2", "N2"}

    def test_update_rejects_unknown_columns(self, client, sheets_store):
        client.get_transactions_sheet("L1").rows.append(row("a", "1000"))

        with pytest.raises(ValueError):
            asyncio.run(sheets_store.update("L1", "a", {"colour": "red"}))

    def test_update_missing_row(self, sheets_store):
        with pytest.raises(DocumentNotFoundError):
            asyncio.run(sheets_store.update("L1", "nope", {"amount": Decimal("1")}))

    def test_get_missing_row(self, sheets_store):
        assert asyncio.run(sheets_store.get("L1", "nope")) is None


class TestLedgerRows:
    """Tests for get_ledger()."""

    def test_json_columns_are_parsed(self, client, sheets_store):
        client.ledgers.rows.append([
            "L1", "Home", "alice", "2024-01-01",
            '["Food", "Rent"]', "", '[{"uid": "alice", "displayName": "Alice"}]',
        ])

        data = asyncio.run(sheets_store.get_ledger("L1"))

        assert data["name"] == "Home"
        assert data["expenseCategories"] == ["Food", "Rent"]
        assert data["incomeCategories"] is None
        assert data["members"][0]["uid"] == "alice"

    def test_unreadable_json_is_dropped(self, client, sheets_store):
        client.ledgers.rows.append(["L1", "Home", "alice", "", "[not json", "", ""])

        data = asyncio.run(sheets_store.get_ledger("L1"))

        assert data["expenseCategories"] is None

    def test_unknown_ledger(self, sheets_store):
        assert asyncio.run(sheets_store.get_ledger("L9")) is None


class TestAuditRows:
    """Tests for GoogleSheetsAuditStorage."""

    def test_append_and_read_back(self, client):
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEventBuilder.sync_completed("L1", "full", 3, 2000)

        assert asyncio.run(storage.append_event(event)) is True
        events = asyncio.run(storage.get_recent_events())

        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details["change_count"] == 3


class TestErrorTranslation:
    """Tests for _translate_error."""

    def test_store_errors_pass_through(self):
        error = PermissionDeniedError("denied")

        assert _translate_error(error, "read") is error

    def test_spreadsheet_not_found_is_permission_denied(self):
        translated = _translate_error(gspread.exceptions.SpreadsheetNotFound(), "open")

        assert isinstance(translated, PermissionDeniedError)

    def test_anything_else_is_unreachable(self):
        translated = _translate_error(ConnectionResetError("reset"), "read")

        assert isinstance(translated, UnreachableStoreError)
        assert "reset" in str(translated)
