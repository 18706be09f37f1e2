"""
Transaction Models for CloudLedger

A transaction is the unit of synchronization. These models define:
1. The typed record held in the local cache
2. Strict deserialization of untyped remote documents
3. The inputs to the mutation intents (drafts and field changes)
4. Ledger metadata (categories and members)

DESIGN DECISION: Remote documents are untyped maps written by several
clients over the lifetime of a ledger. Every field has an explicit default
rule in Transaction.from_remote. A document that cannot produce a valid
record raises MalformedDocumentError; the sync engine skips and logs it
instead of failing the whole sync.
"""

import math
import time
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)


# Remote field names, shared by every store backend
REMOTE_FIELDS = {
    "amount": "amount",
    "kind": "type",
    "category": "category",
    "description": "description",
    "reward": "rewards",
    "tx_date": "date",
    "creator_id": "creatorUid",
    "target_member_id": "targetUserUid",
    "ledger_id": "ledgerId",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "deleted": "deleted",
    "deleted_at": "deletedAt",
}

# Fields a user may change through an update intent
EDITABLE_FIELDS = frozenset({
    "amount",
    "kind",
    "category",
    "description",
    "reward",
    "tx_date",
    "target_member_id",
})

DEFAULT_EXPENSE_CATEGORIES = [
    "Dining",
    "Transport",
    "Shopping",
    "Housing",
    "Entertainment",
    "Education",
    "Medical",
    "Other",
]

DEFAULT_INCOME_CATEGORIES = [
    "Salary",
    "Bonus",
    "Investment",
    "Other",
]

FALLBACK_CATEGORY = "Other"
DEFAULT_MEMBER_NAME = "Member"


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class MalformedDocumentError(ValueError):
    """A remote document could not be turned into a Transaction."""

    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Malformed transaction document {document_id}: {reason}")


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def from_remote(cls, value: Any) -> "TransactionKind":
        """
        Parse the remote `type` field.

        The reference clients write INCOME/EXPENSE. Anything unreadable
        falls back to EXPENSE, matching what both clients display.
        """
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.EXPENSE

    def to_remote(self) -> str:
        return self.value.upper()


# =============================================================================
# REMOTE DOCUMENT
# =============================================================================

class RemoteDocument(BaseModel):
    """
    A document exactly as the remote store returned it.

    `data` is untyped on purpose: parsing happens in Transaction.from_remote.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Identity assigned by the remote store"
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw document fields"
    )

    @property
    def updated_at_hint(self) -> Optional[int]:
        """The document's updatedAt if it is readable, even when the rest is not."""
        return _read_millis(self.data.get("updatedAt"))


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class Transaction(BaseModel):
    """
    A transaction record as held in the local cache.

    The cache only ever holds records with deleted=False. Tombstones exist
    as Transaction instances only while the sync engine is merging them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: str = Field(
        ...,
        min_length=1,
        description="Remote-assigned identity (or tmp- prefixed for optimistic entries)"
    )
    ledger_id: str = Field(
        ...,
        min_length=1,
        description="Ledger this transaction belongs to"
    )

    # User-visible fields
    amount: Decimal = Field(
        ...,
        description="Transaction amount"
    )
    kind: TransactionKind = Field(
        default=TransactionKind.EXPENSE,
        description="Income or expense"
    )
    category: str = Field(default="")
    description: str = Field(default="")
    reward: Decimal = Field(
        default=Decimal("0"),
        description="Points or cashback earned"
    )
    tx_date: date = Field(
        ...,
        description="Calendar date of the transaction (client-local, not a timestamp)"
    )
    creator_id: str = Field(
        default="",
        description="Member who recorded the transaction"
    )
    target_member_id: Optional[str] = Field(
        default=None,
        description="Member the transaction is attributed to (defaults to creator)"
    )

    # Bookkeeping
    created_at: int = Field(
        default=0,
        ge=0,
        description="Creation time, epoch milliseconds"
    )
    updated_at: int = Field(
        default=0,
        ge=0,
        description="Last mutation time, epoch milliseconds (the merge watermark)"
    )
    deleted: bool = Field(
        default=False,
        description="Tombstone flag"
    )
    deleted_at: Optional[int] = Field(
        default=None,
        ge=0,
        description="Tombstone time, epoch milliseconds"
    )

    @property
    def attributed_to(self) -> str:
        """Member the transaction counts against."""
        return self.target_member_id or self.creator_id

    def is_optimistic(self, temporary_prefix: str = "tmp-") -> bool:
        return self.id.startswith(temporary_prefix)

    @classmethod
    def from_remote(
        cls,
        document: RemoteDocument,
        fallback_ledger_id: Optional[str] = None,
    ) -> "Transaction":
        """
        Build a Transaction from a remote document.

        Default rules:
        - amount: required, must be numeric
        - type: INCOME/EXPENSE, anything else -> expense
        - category, description, creatorUid: "" when absent or not a string
        - rewards: 0 when absent or not numeric
        - date: YYYY-MM-DD (an ISO datetime is cut to its date);
          absent -> calendar date of createdAt; neither -> malformed
        - ledgerId: falls back to the ledger being synced
        - createdAt: 0 when absent
        - updatedAt: createdAt when absent
        - deleted: False unless literally True

        Raises:
            MalformedDocumentError: if no valid record can be produced
        """
        data = document.data

        amount = _read_decimal(data.get("amount"))
        if amount is None:
            raise MalformedDocumentError(document.id, "amount is missing or not numeric")

        created_at = _read_millis(data.get("createdAt")) or 0
        updated_at = _read_millis(data.get("updatedAt"))
        if updated_at is None:
            updated_at = created_at

        tx_date = _read_date(data.get("date"))
        if tx_date is None and created_at:
            tx_date = datetime.fromtimestamp(created_at / 1000).date()
        if tx_date is None:
            raise MalformedDocumentError(document.id, "date is missing or unreadable")

        ledger_id = data.get("ledgerId")
        if not isinstance(ledger_id, str) or not ledger_id:
            ledger_id = fallback_ledger_id
        if not ledger_id:
            raise MalformedDocumentError(document.id, "ledgerId is missing")

        target = data.get("targetUserUid")
        deleted_at = _read_millis(data.get("deletedAt"))

        try:
            return cls(
                id=document.id,
                ledger_id=ledger_id,
                amount=amount,
                kind=TransactionKind.from_remote(data.get("type")),
                category=_read_str(data.get("category")),
                description=_read_str(data.get("description")),
                reward=_read_decimal(data.get("rewards")) or Decimal("0"),
                tx_date=tx_date,
                creator_id=_read_str(data.get("creatorUid")),
                target_member_id=target if isinstance(target, str) and target else None,
                created_at=created_at,
                updated_at=updated_at,
                deleted=data.get("deleted") is True,
                deleted_at=deleted_at,
            )
        except ValidationError as e:
            raise MalformedDocumentError(document.id, str(e)) from e

    def to_remote(self) -> dict[str, Any]:
        """
        Encode as a remote document body (identity excluded).

        Used for remote creates and by the in-memory store.
        """
        return {
            "amount": self.amount,
            "type": self.kind.to_remote(),
            "category": self.category,
            "description": self.description,
            "rewards": self.reward,
            "date": self.tx_date.isoformat(),
            "creatorUid": self.creator_id,
            "targetUserUid": self.target_member_id,
            "ledgerId": self.ledger_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "deleted": self.deleted,
            "deletedAt": self.deleted_at,
        }


# =============================================================================
# MUTATION INPUTS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    Fields supplied by the user (or the AI parser) for a new transaction.

    Identity, creator, ledger and bookkeeping fields are filled in by the
    mutation coordinator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount, always positive; kind carries the direction"
    )
    kind: TransactionKind = TransactionKind.EXPENSE
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    description: str = Field(default="", max_length=500)
    reward: Decimal = Field(default=Decimal("0"), ge=0)
    tx_date: date
    target_member_id: Optional[str] = None


class TransactionChanges(BaseModel):
    """
    A partial update to the editable fields of a transaction.

    Unknown fields are rejected so that bookkeeping fields (updatedAt,
    deleted, ...) can never be changed through an edit.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[Decimal] = Field(default=None, gt=0)
    kind: Optional[TransactionKind] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    reward: Optional[Decimal] = Field(default=None, ge=0)
    tx_date: Optional[date] = None
    target_member_id: Optional[str] = None

    def as_updates(self) -> dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)

    def to_remote(self) -> dict[str, Any]:
        """Encode the set fields with remote field names."""
        remote: dict[str, Any] = {}
        for name, value in self.as_updates().items():
            if isinstance(value, TransactionKind):
                value = value.to_remote()
            elif isinstance(value, date):
                value = value.isoformat()
            remote[REMOTE_FIELDS[name]] = value
        return remote

    def apply_to(self, transaction: Transaction, updated_at: int) -> Transaction:
        """Return a copy of `transaction` with these changes and a new updated_at."""
        return transaction.model_copy(
            update={**self.as_updates(), "updated_at": updated_at}
        )


class ParsedTransaction(BaseModel):
    """
    Structured draft returned by the AI parsing service.

    PROPOSED data only: it becomes a TransactionDraft and goes through
    create() like any other user input.
    """

    amount: Decimal = Field(..., ge=0)
    kind: TransactionKind = TransactionKind.EXPENSE
    category: str = FALLBACK_CATEGORY
    description: str = ""
    reward: Decimal = Field(default=Decimal("0"), ge=0)
    tx_date: Optional[date] = None

    def to_draft(
        self,
        default_date: date,
        target_member_id: Optional[str] = None,
    ) -> TransactionDraft:
        return TransactionDraft(
            amount=self.amount,
            kind=self.kind,
            category=self.category,
            description=self.description,
            reward=self.reward,
            tx_date=self.tx_date or default_date,
            target_member_id=target_member_id,
        )


# =============================================================================
# LEDGER METADATA
# =============================================================================

class LedgerMember(BaseModel):
    """A member of a shared ledger."""

    uid: str = Field(..., min_length=1)
    display_name: str = DEFAULT_MEMBER_NAME
    photo_url: Optional[str] = None


class LedgerMeta(BaseModel):
    """
    Category lists and member list for one ledger.

    Synchronized by whole-document replace-on-read, not by watermark.
    """

    expense_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXPENSE_CATEGORIES)
    )
    income_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INCOME_CATEGORIES)
    )
    members: list[LedgerMember] = Field(default_factory=list)

    @property
    def all_categories(self) -> list[str]:
        """Expense then income categories, without duplicates."""
        seen: dict[str, None] = {}
        for name in self.expense_categories + self.income_categories:
            seen.setdefault(name, None)
        return list(seen)

    @classmethod
    def from_remote(cls, data: Optional[dict[str, Any]]) -> "LedgerMeta":
        """
        Parse a ledger document.

        `expenseCategories` falls back to the legacy `categories` field,
        then to the defaults. Members without a uid are dropped.
        """
        data = data or {}
        expense = (
            _read_str_list(data.get("expenseCategories"))
            or _read_str_list(data.get("categories"))
            or list(DEFAULT_EXPENSE_CATEGORIES)
        )
        income = _read_str_list(data.get("incomeCategories")) or list(DEFAULT_INCOME_CATEGORIES)

        members = []
        raw_members = data.get("members")
        if isinstance(raw_members, list):
            for entry in raw_members:
                if not isinstance(entry, dict):
                    continue
                uid = entry.get("uid")
                if not isinstance(uid, str) or not uid:
                    continue
                display_name = entry.get("displayName")
                photo_url = entry.get("photoURL")
                members.append(LedgerMember(
                    uid=uid,
                    display_name=display_name if isinstance(display_name, str) and display_name else DEFAULT_MEMBER_NAME,
                    photo_url=photo_url if isinstance(photo_url, str) and photo_url else None,
                ))

        return cls(
            expense_categories=expense,
            income_categories=income,
            members=members,
        )


# =============================================================================
# FIELD READERS
# =============================================================================

def _read_decimal(value: Any) -> Optional[Decimal]:
    # bool is an int subclass; a True amount is garbage, not 1
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def _read_millis(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # NaN and infinity are garbage, not timestamps
        return int(value) if math.isfinite(value) else None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return None


def _read_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _read_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _read_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]
