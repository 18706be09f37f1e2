"""
Google Sheets Remote Store Implementation

DESIGN DECISION: Google Sheets is used as the shared backend because:
1. Every member of a household ledger can open the data directly
2. No database or backend service to operate
3. Built-in backup and sharing (Google's infrastructure)

LAYOUT:
- One worksheet per ledger ("tx_<ledgerId>"), one transaction per row
- A "Ledgers" worksheet with one row of metadata per ledger
- An "AuditLog" worksheet (append-only)

TRADEOFFS:
- No server-side queries: we read the sheet and filter in Python
- No multi-row transactions: each document write is a single row update,
  which Sheets applies all-or-nothing
- gspread is blocking: calls run in a worker thread so the event loop
  stays responsive

Transaction rows are never deleted. Deletion is a soft-delete update
that sets the deleted flag and bumps updatedAt, like any other write.
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID, uuid4

import gspread
import structlog
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cloudledger.config import GoogleSheetsSettings, get_settings
from cloudledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from cloudledger.models.transaction import RemoteDocument
from cloudledger.services.storage.interface import (
    AuditStorageInterface,
    DocumentNotFoundError,
    PermissionDeniedError,
    RemoteTransactionStore,
    StoreError,
    UnreachableStoreError,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)


# Column mappings for the per-ledger transaction sheets (remote field names)
TRANSACTION_COLUMNS = [
    "id",
    "ledgerId",
    "amount",
    "type",
    "category",
    "description",
    "rewards",
    "date",
    "creatorUid",
    "targetUserUid",
    "createdAt",
    "updatedAt",
    "deleted",
    "deletedAt",
]

_MILLIS_COLUMNS = {"createdAt", "updatedAt", "deletedAt"}
_DECIMAL_COLUMNS = {"amount", "rewards"}

# Column mappings for the Ledgers sheet
LEDGER_COLUMNS = [
    "ledger_id",
    "name",
    "owner_uid",
    "created_at",
    "expense_categories_json",
    "income_categories_json",
    "members_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "ledger_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_RETRY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(UnreachableStoreError),
    reraise=True,
)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def _translate_error(e: Exception, action: str) -> StoreError:
    """Map gspread/transport failures onto the store error taxonomy."""
    if isinstance(e, StoreError):
        return e
    if isinstance(e, gspread.exceptions.APIError):
        response = getattr(e, "response", None)
        status = getattr(response, "status_code", None)
        if status in (401, 403):
            return PermissionDeniedError(f"Access denied while trying to {action}: {e}")
        if status == 404:
            return DocumentNotFoundError(f"Not found while trying to {action}: {e}")
    if isinstance(e, gspread.exceptions.SpreadsheetNotFound):
        return PermissionDeniedError(f"Spreadsheet not accessible while trying to {action}")
    return UnreachableStoreError(f"Failed to {action}: {e}")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup/creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise UnreachableStoreError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise UnreachableStoreError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise PermissionDeniedError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        sheet = self._worksheets.get(title)
        if sheet is not None:
            return sheet
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        self._worksheets[title] = sheet
        return sheet

    def get_transactions_sheet(self, ledger_id: str) -> gspread.Worksheet:
        """Get or create the transaction worksheet for a ledger."""
        title = f"{self._settings.transactions_sheet_prefix}{ledger_id}"
        return self._get_or_create(title, TRANSACTION_COLUMNS, rows=1000)

    def get_ledgers_sheet(self) -> gspread.Worksheet:
        """Get or create the Ledgers worksheet."""
        return self._get_or_create(self._settings.ledgers_sheet_name, LEDGER_COLUMNS, rows=100)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


class GoogleSheetsTransactionStore(RemoteTransactionStore):
    """
    Google Sheets implementation of the remote transaction store.

    Cells hold strings; rows are converted back to typed document fields
    (Decimal amounts, integer millis, boolean tombstone flag) before they
    leave this class. Values that don't convert are passed through as-is
    so the sync engine can reject the document as malformed.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def _run(self, action: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except Exception as e:
            raise _translate_error(e, action) from e

    def _row_to_document(self, row: list) -> RemoteDocument:
        """Convert a spreadsheet row to a RemoteDocument."""
        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        data: dict[str, Any] = {}
        for index, column in enumerate(TRANSACTION_COLUMNS[1:], start=1):
            raw = safe_get(index)
            if column in _MILLIS_COLUMNS:
                if raw.strip().lstrip("-").isdigit():
                    data[column] = int(raw)
                elif raw:
                    data[column] = raw
            elif column in _DECIMAL_COLUMNS:
                if raw:
                    try:
                        data[column] = Decimal(raw)
                    except InvalidOperation:
                        data[column] = raw
            elif column == "deleted":
                data[column] = raw.strip().lower() == "true"
            elif raw:
                data[column] = raw
        return RemoteDocument(id=safe_get(0), data=data)

    def _document_to_row(self, document_id: str, data: dict[str, Any]) -> list:
        """Convert document fields to a spreadsheet row."""
        row = [document_id]
        for column in TRANSACTION_COLUMNS[1:]:
            row.append(_cell(data.get(column)))
        return row

    def _read_rows(self, ledger_id: str) -> list[list]:
        sheet = self._client.get_transactions_sheet(ledger_id)
        # Skip header and empty rows
        return [row for row in sheet.get_all_values()[1:] if row and row[0]]

    @retry(**_RETRY)
    async def list_recent(self, ledger_id: str, limit: int) -> list[RemoteDocument]:
        """List non-deleted transactions, newest date first."""
        rows = await self._run("list transactions", lambda: self._read_rows(ledger_id))
        documents = [self._row_to_document(row) for row in rows]
        documents = [d for d in documents if d.data.get("deleted") is not True]
        documents.sort(key=lambda d: str(d.data.get("date") or ""), reverse=True)
        return documents[:limit]

    @retry(**_RETRY)
    async def list_changed_since(self, ledger_id: str, since: int) -> list[RemoteDocument]:
        """List documents with updatedAt > since, oldest change first."""
        rows = await self._run("list changed transactions", lambda: self._read_rows(ledger_id))
        documents = []
        for row in rows:
            document = self._row_to_document(row)
            updated_at = document.updated_at_hint
            if updated_at is not None and updated_at > since:
                documents.append(document)
        documents.sort(key=lambda d: d.updated_at_hint or 0)
        return documents

    @retry(**_RETRY)
    async def get(self, ledger_id: str, transaction_id: str) -> Optional[RemoteDocument]:
        """Read one transaction document."""
        rows = await self._run("read transaction", lambda: self._read_rows(ledger_id))
        for row in rows:
            if row[0] == transaction_id:
                return self._row_to_document(row)
        return None

    async def create(self, ledger_id: str, data: dict[str, Any]) -> str:
        """
        Append a new transaction row.

        Not retried: a timed-out append may still have landed, and a retry
        would duplicate the transaction.
        """
        document_id = uuid4().hex
        row = self._document_to_row(document_id, data)

        def append() -> None:
            sheet = self._client.get_transactions_sheet(ledger_id)
            sheet.append_row(row, value_input_option="RAW")

        await self._run("create transaction", append)
        logger.debug("remote_transaction_created", ledger_id=ledger_id, transaction_id=document_id)
        return document_id

    @retry(**_RETRY)
    async def update(
        self,
        ledger_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Write the given fields into an existing row.

        Only the cells named in `fields` are written, in one batch request,
        so a concurrent change to another column of the same row survives.
        """
        unknown = set(fields) - set(TRANSACTION_COLUMNS[1:])
        if unknown:
            raise ValueError(f"Not transaction columns: {', '.join(sorted(unknown))}")

        def write() -> None:
            sheet = self._client.get_transactions_sheet(ledger_id)
            ids = sheet.col_values(1)

            # Row 1 is the header
            for idx, cell in enumerate(ids[1:], start=2):
                if cell == transaction_id:
                    sheet.batch_update(
                        [
                            {
                                "range": rowcol_to_a1(
                                    idx, TRANSACTION_COLUMNS.index(column) + 1
                                ),
                                "values": [[_cell(value)]],
                            }
                            for column, value in fields.items()
                        ],
                        value_input_option="RAW",
                    )
                    return

            raise DocumentNotFoundError(f"Transaction not found: {transaction_id}")

        await self._run("update transaction", write)

    @retry(**_RETRY)
    async def get_ledger(self, ledger_id: str) -> Optional[dict[str, Any]]:
        """Read a ledger's metadata row."""
        def read() -> Optional[list]:
            sheet = self._client.get_ledgers_sheet()
            for row in sheet.get_all_values()[1:]:
                if row and row[0] == ledger_id:
                    return row
            return None

        row = await self._run("read ledger", read)
        if row is None:
            return None

        def safe_get(index: int) -> str:
            try:
                return row[index]
            except IndexError:
                return ""

        def safe_json(index: int) -> Any:
            raw = safe_get(index)
            if not raw:
                return None
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("ledger_metadata_unreadable", ledger_id=ledger_id, column=LEDGER_COLUMNS[index])
                return None

        return {
            "name": safe_get(1),
            "ownerUid": safe_get(2),
            "expenseCategories": safe_json(4),
            "incomeCategories": safe_json(5),
            "members": safe_json(6),
        }


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            ledger_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    @retry(**_RETRY)
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        row = event.to_sheets_row()

        def append() -> None:
            self._client.get_audit_sheet().append_row(row, value_input_option="RAW")

        try:
            await asyncio.to_thread(append)
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def _read_events(self) -> list[AuditEvent]:
        def read() -> list[list]:
            return self._client.get_audit_sheet().get_all_values()[1:]

        try:
            rows = await asyncio.to_thread(read)
        except Exception as e:
            raise _translate_error(e, "read audit events") from e

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, IndexError) as e:
                logger.debug("audit_row_skipped", error=str(e))
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in await self._read_events() if e.correlation_id == correlation_id]
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = await self._read_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
