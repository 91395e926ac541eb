"""Vault Store — the ordered, in-memory collection of account records.

The store owns one ordering rule: every pinned record sits in a contiguous
block at the front of the sequence. All mutations below keep that block
intact, and ``check_invariant()`` can verify it at any time.

Pinning:
    A record that is not already at the front of the unpinned region is moved
    to just after the last pinned record, and the position it left
    (``index - pinned_count``) is remembered in ``unpin_index``.

Unpinning:
    The record is moved to ``max(unpin_index, first unpinned slot)``. If no
    unpinned record follows it, or ``unpin_index`` points past the end of the
    vault, it goes to the end instead. A single-record vault only has its
    flag cleared.

Observers:
    The store has no UI dependency. Views call ``subscribe(callback)`` and
    receive a ``VaultChange`` after every mutation.

Threading:
    Mutation is expected from a single control thread. The save scheduler
    only reads ``snapshot()``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, List, Optional

from ..errors import CorruptData, RemovalBlocked
from .models import PROFILE_FIELDS, AccountRecord

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What happened to the vault."""

    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    MOVED = "moved"
    PINNED = "pinned"
    UNPINNED = "unpinned"
    SORTED = "sorted"
    RESET = "reset"


class SortField(str, Enum):
    """Fields the unpinned region can be sorted by."""

    STEAM_ID = "steam_id"
    ADDED_DATE = "added_date"
    LAST_UPDATE_DATE = "last_update_date"
    STEAM_LEVEL = "steam_level"
    NICKNAME = "nickname"


@dataclass
class VaultChange:
    """Notification delivered to store subscribers."""

    kind: ChangeKind
    index: Optional[int] = None
    record: Optional[AccountRecord] = None
    old_index: Optional[int] = None


def _sort_key(field: SortField) -> Callable[[AccountRecord], Any]:
    if field is SortField.NICKNAME:
        return lambda r: r.nickname.lower() if r.nickname else None
    return lambda r: getattr(r, field.value)


class VaultStore:
    """Ordered collection of AccountRecord with the pinned-prefix rule."""

    def __init__(self, records: Optional[Iterable[AccountRecord]] = None):
        self._records: List[AccountRecord] = []
        self._subscribers: List[Callable[[VaultChange], None]] = []
        if records is not None:
            self.replace_all(records)

    # ── Read access ──────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AccountRecord]:
        return iter(list(self._records))

    def __getitem__(self, index: int) -> AccountRecord:
        return self._records[index]

    def snapshot(self) -> List[AccountRecord]:
        """Shallow copy of the current order (for encoding and searching)."""
        return list(self._records)

    def index_of(self, record: AccountRecord) -> int:
        """Position of ``record`` (matched by identity)."""
        for i, r in enumerate(self._records):
            if r is record:
                return i
        raise ValueError(f"Account '{record.login}' is not in the vault")

    def find(self, predicate: Callable[[AccountRecord], bool]) -> Optional[int]:
        """Index of the first record matching ``predicate``, or None."""
        for i, r in enumerate(self._records):
            if predicate(r):
                return i
        return None

    def pinned_count(self) -> int:
        count = 0
        for r in self._records:
            if not r.pinned:
                break
            count += 1
        return count

    def check_invariant(self) -> bool:
        """True if no pinned record follows an unpinned one."""
        seen_unpinned = False
        for r in self._records:
            if r.pinned and seen_unpinned:
                return False
            if not r.pinned:
                seen_unpinned = True
        return True

    # ── Subscribers ──────────────────────────────────────────────

    def subscribe(self, callback: Callable[[VaultChange], None]) -> None:
        """Register a callback for every change to the vault."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[VaultChange], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self, change: VaultChange) -> None:
        for cb in list(self._subscribers):
            try:
                cb(change)
            except Exception:
                logger.warning("Vault subscriber error on %s", change.kind.value, exc_info=True)

    # ── Mutation ─────────────────────────────────────────────────

    def replace_all(self, records: Iterable[AccountRecord]) -> None:
        """Swap in a freshly loaded sequence.

        Raises:
            CorruptData: the sequence breaks the pinned-prefix rule or
                contains the same record object twice.
        """
        new_records = list(records)
        if len({id(r) for r in new_records}) != len(new_records):
            raise CorruptData("Vault contains the same record twice")
        previous = self._records
        self._records = new_records
        if not self.check_invariant():
            self._records = previous
            raise CorruptData("Pinned accounts are not a contiguous prefix")
        self._notify(VaultChange(ChangeKind.RESET))

    def add(self, record: AccountRecord) -> int:
        """Append a record and return its index.

        Unpinned records go to the end. A record that arrives already pinned
        is placed at the end of the pinned block.
        """
        if any(r is record for r in self._records):
            raise ValueError(f"Account '{record.login}' is already in the vault")

        if record.pinned:
            index = self.pinned_count()
            self._records.insert(index, record)
        else:
            self._records.append(record)
            index = len(self._records) - 1

        self._notify(VaultChange(ChangeKind.ADDED, index=index, record=record))
        return index

    def remove(self, record: AccountRecord) -> int:
        """Remove a record and return the index it occupied.

        Raises:
            RemovalBlocked: the record still carries an authenticator.
            ValueError: the record is not in the vault.
        """
        if record.authenticator is not None:
            raise RemovalBlocked(
                f"Account '{record.login}' has an authenticator attached; detach it first"
            )
        index = self.index_of(record)
        del self._records[index]
        self._notify(VaultChange(ChangeKind.REMOVED, index=index, record=record))
        return index

    def update(self, index: int, new_record: AccountRecord) -> None:
        """Replace the record at ``index``, keeping its position and pin state."""
        old = self._records[index]
        if new_record is not old and any(r is new_record for r in self._records):
            raise ValueError(f"Account '{new_record.login}' is already in the vault")

        new_record.pinned = old.pinned
        new_record.unpin_index = old.unpin_index
        self._records[index] = new_record
        self._notify(VaultChange(ChangeKind.UPDATED, index=index, record=new_record))

    def apply_profile(self, index: int, **changes: Any) -> AccountRecord:
        """Apply enrichment results to the record at ``index`` in place."""
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Not profile fields: {', '.join(sorted(unknown))}")

        record = self._records[index]
        for name, value in changes.items():
            setattr(record, name, value)
        if not record.nickname:
            record.nickname = record.login
        self._notify(VaultChange(ChangeKind.UPDATED, index=index, record=record))
        return record

    def _move(self, old_index: int, new_index: int) -> None:
        if old_index == new_index:
            return
        record = self._records.pop(old_index)
        self._records.insert(new_index, record)
        self._notify(VaultChange(
            ChangeKind.MOVED, index=new_index, record=record, old_index=old_index,
        ))

    def pin(self, record: AccountRecord) -> None:
        """Move ``record`` to the end of the pinned block and mark it pinned."""
        if record.pinned:
            return

        index = self.index_of(record)
        pinned = self.pinned_count()

        # Already first in the unpinned region: nothing to move
        if index == pinned:
            record.unpin_index = 0
        else:
            record.unpin_index = index - pinned
            self._move(index, pinned)

        record.pinned = True
        self._notify(VaultChange(ChangeKind.PINNED, index=pinned, record=record))

    def unpin(self, record: AccountRecord) -> None:
        """Clear the pin and move ``record`` back toward its ``unpin_index``."""
        if not record.pinned:
            return

        index = self.index_of(record)
        count = len(self._records)

        min_allowed: Optional[int] = None
        for i in range(index + 1, count):
            if not self._records[i].pinned:
                min_allowed = i
                break

        try:
            if count == 1 or (
                min_allowed is not None and min_allowed - 1 == 0 and record.unpin_index == 0
            ):
                return

            if min_allowed is None or record.unpin_index >= count:
                self._move(index, count - 1)
                return

            self._move(index, max(record.unpin_index, min_allowed - 1))
        finally:
            record.pinned = False
            record.unpin_index = 0
            self._notify(VaultChange(
                ChangeKind.UNPINNED, index=self.index_of(record), record=record,
            ))

    def sort_unpinned(self, field: Any, descending: bool = False) -> None:
        """Stable-sort the unpinned region by ``field``.

        The pinned block keeps its order. Records without a value for the
        field are kept at the end in their current order.
        """
        sort_field = SortField(field)
        key = _sort_key(sort_field)
        start = self.pinned_count()
        tail = self._records[start:]

        present = [r for r in tail if key(r) is not None]
        missing = [r for r in tail if key(r) is None]
        present.sort(key=key, reverse=descending)

        self._records[start:] = present + missing
        self._notify(VaultChange(ChangeKind.SORTED))
