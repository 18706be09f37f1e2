"""
Sync Session

Explicit replacement for "the currently selected ledger" living in
ambient UI state. The session is shared by the sync engine and the
mutation coordinator and owns:
1. The active ledger and the member acting on it
2. A generation counter, bumped on every ledger switch
3. One asyncio.Lock per ledger, serializing cache writes
4. The per-ledger "needs full resync" flags
5. The clock every "now" is read from

DESIGN DECISION: A sync is tagged with a SyncTicket when it starts.
Before applying anything the engine checks the ticket against the
session; a ticket from an older generation means the user switched
ledgers mid-flight, and the result is dropped instead of written into
a partition nobody is looking at.
"""

import asyncio
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from cloudledger.models.transaction import now_millis
from cloudledger.sync.errors import NoActiveLedgerError


class SyncTicket(BaseModel):
    """Identifies one in-flight sync: which ledger, under which generation."""
    model_config = ConfigDict(frozen=True)

    ledger_id: str
    generation: int


class SyncSession:
    """Active-ledger state shared by the engine and the coordinator."""

    def __init__(
        self,
        member_id: str,
        clock: Callable[[], int] = now_millis,
    ):
        self.member_id = member_id
        self.clock = clock
        self._active_ledger_id: Optional[str] = None
        self._generation = 0
        self._locks: dict[str, asyncio.Lock] = {}
        self._full_resync_requested: set[str] = set()

    @property
    def active_ledger_id(self) -> Optional[str]:
        return self._active_ledger_id

    @property
    def generation(self) -> int:
        return self._generation

    def switch_ledger(self, ledger_id: str) -> Optional[str]:
        """
        Make `ledger_id` the active ledger.

        Bumps the generation even when re-selecting the same ledger, so any
        sync started before the switch is discarded.

        Returns:
            The previously active ledger id
        """
        previous = self._active_ledger_id
        self._active_ledger_id = ledger_id
        self._generation += 1
        return previous

    def require_active(self, ledger_id: Optional[str] = None) -> str:
        """
        Resolve the ledger an operation targets.

        Raises:
            NoActiveLedgerError: If nothing is selected, or `ledger_id`
                is not the active ledger
        """
        active = self._active_ledger_id
        if active is None:
            raise NoActiveLedgerError("No ledger is selected")
        if ledger_id is not None and ledger_id != active:
            raise NoActiveLedgerError(
                f"Ledger {ledger_id} is not the active ledger", ledger_id
            )
        return active

    def ticket(self, ledger_id: Optional[str] = None) -> SyncTicket:
        return SyncTicket(
            ledger_id=self.require_active(ledger_id),
            generation=self._generation,
        )

    def is_current(self, ticket: SyncTicket) -> bool:
        return (
            ticket.generation == self._generation
            and ticket.ledger_id == self._active_ledger_id
        )

    def lock_for(self, ledger_id: str) -> asyncio.Lock:
        lock = self._locks.get(ledger_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ledger_id] = lock
        return lock

    # -- full resync flag ----------------------------------------------------

    def request_full_resync(self, ledger_id: str) -> None:
        self._full_resync_requested.add(ledger_id)

    def needs_full_resync(self, ledger_id: str) -> bool:
        return ledger_id in self._full_resync_requested

    def clear_full_resync(self, ledger_id: str) -> None:
        self._full_resync_requested.discard(ledger_id)
