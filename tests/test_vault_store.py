"""Tests for VaultStore — ordering, pin/unpin placement, mutation guards.

Covers: pinned-prefix rule under interleavings, pin/unpin placement rules,
removal blocked by an authenticator, update, profile enrichment, sorting,
subscriber notifications.
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from account_vault.errors import CorruptData, RemovalBlocked
from account_vault.vault.models import AccountRecord
from account_vault.vault.store import ChangeKind, SortField, VaultStore


def _store(*logins):
    return VaultStore(AccountRecord(login=login) for login in logins)


def _logins(store):
    return [r.login for r in store]


def _get(store, login):
    return store[store.find(lambda r: r.login == login)]


# ── Basics ───────────────────────────────────────────────────────────


class TestBasics:

    def test_empty(self):
        store = VaultStore()
        assert len(store) == 0
        assert store.pinned_count() == 0
        assert store.check_invariant()

    def test_add_appends(self):
        store = _store("a", "b")
        index = store.add(AccountRecord(login="c"))
        assert index == 2
        assert _logins(store) == ["a", "b", "c"]

    def test_add_same_object_twice_rejected(self):
        store = VaultStore()
        record = AccountRecord(login="a")
        store.add(record)
        with pytest.raises(ValueError):
            store.add(record)

    def test_add_pinned_record_goes_to_end_of_pinned_block(self):
        store = _store("a", "b", "c")
        store.pin(_get(store, "b"))
        index = store.add(AccountRecord(login="p", pinned=True))
        assert index == 1
        assert _logins(store) == ["b", "p", "a", "c"]
        assert store.check_invariant()

    def test_index_of_uses_identity(self):
        store = VaultStore()
        first = AccountRecord(login="same", added_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        twin = AccountRecord(login="same", added_date=first.added_date)
        store.add(first)
        store.add(twin)
        assert store.index_of(twin) == 1

    def test_index_of_missing(self):
        with pytest.raises(ValueError):
            _store("a").index_of(AccountRecord(login="a"))

    def test_find_returns_none(self):
        assert _store("a").find(lambda r: r.login == "zzz") is None

    def test_iteration_is_over_a_copy(self):
        store = _store("a", "b")
        for record in store:
            store.add(AccountRecord(login=record.login + "2"))
        assert len(store) == 4

    def test_replace_all_rejects_broken_prefix(self):
        store = _store("a")
        bad = [AccountRecord(login="x"), AccountRecord(login="y", pinned=True)]
        with pytest.raises(CorruptData):
            store.replace_all(bad)
        assert _logins(store) == ["a"]

    def test_replace_all_rejects_duplicate_objects(self):
        record = AccountRecord(login="x")
        with pytest.raises(CorruptData):
            VaultStore([record, record])


# ── Pin / Unpin ──────────────────────────────────────────────────────


class TestPinUnpin:

    def test_pin_then_unpin_restores_order(self):
        store = _store("A", "B", "C")
        c = _get(store, "C")

        store.pin(c)
        assert _logins(store) == ["C", "A", "B"]
        assert c.pinned is True
        assert c.unpin_index == 2

        store.unpin(c)
        assert _logins(store) == ["A", "B", "C"]
        assert c.pinned is False
        assert c.unpin_index == 0

    def test_pin_first_unpinned_does_not_move(self):
        store = _store("A", "B")
        a = _get(store, "A")
        store.pin(a)
        assert _logins(store) == ["A", "B"]
        assert a.unpin_index == 0

        store.unpin(a)
        assert _logins(store) == ["A", "B"]
        assert a.pinned is False

    def test_pin_lands_after_existing_pins(self):
        store = _store("A", "B", "C", "D")
        store.pin(_get(store, "C"))
        store.pin(_get(store, "D"))
        assert _logins(store) == ["C", "D", "A", "B"]
        assert store.pinned_count() == 2
        assert _get(store, "D").unpin_index == 2

    def test_unpin_never_lands_inside_pinned_block(self):
        store = _store("A", "B", "C")
        store.pin(_get(store, "B"))
        store.pin(_get(store, "C"))
        assert _logins(store) == ["B", "C", "A"]

        store.unpin(_get(store, "B"))
        assert _logins(store) == ["C", "B", "A"]
        assert store.check_invariant()

    def test_unpin_with_everything_pinned_goes_to_end(self):
        store = _store("A", "B")
        store.pin(_get(store, "A"))
        store.pin(_get(store, "B"))

        store.unpin(_get(store, "A"))
        assert _logins(store) == ["B", "A"]
        assert store.check_invariant()

    def test_unpin_index_past_end_goes_to_end(self):
        store = _store("A", "B", "C")
        c = _get(store, "C")
        store.pin(c)
        store.remove(_get(store, "B"))
        assert _logins(store) == ["C", "A"]

        store.unpin(c)
        assert _logins(store) == ["A", "C"]

    def test_single_record_only_clears_flag(self):
        store = _store("A")
        a = _get(store, "A")
        store.pin(a)
        store.unpin(a)
        assert _logins(store) == ["A"]
        assert a.pinned is False
        assert a.unpin_index == 0

    def test_pin_is_idempotent(self):
        store = _store("A", "B", "C")
        c = _get(store, "C")
        store.pin(c)
        store.pin(c)
        assert _logins(store) == ["C", "A", "B"]
        assert c.unpin_index == 2

    def test_unpin_unpinned_is_noop(self):
        store = _store("A", "B")
        store.unpin(_get(store, "B"))
        assert _logins(store) == ["A", "B"]

    def test_prefix_holds_under_random_interleavings(self):
        rng = random.Random(1234)
        store = _store(*[f"acc{i}" for i in range(8)])

        for step in range(400):
            records = store.snapshot()
            op = rng.random()
            if op < 0.4:
                store.pin(rng.choice(records))
            elif op < 0.8:
                store.unpin(rng.choice(records))
            elif op < 0.9 and len(records) > 1:
                store.remove(rng.choice(records))
            else:
                store.add(AccountRecord(login=f"new{step}", pinned=rng.random() < 0.3))
            assert store.check_invariant(), f"prefix broken at step {step}"

            for r in store:
                if not r.pinned:
                    assert r.unpin_index == 0


# ── Remove / Update ──────────────────────────────────────────────────


class TestRemoveAndUpdate:

    def test_remove_returns_index(self):
        store = _store("a", "b", "c")
        assert store.remove(_get(store, "b")) == 1
        assert _logins(store) == ["a", "c"]

    def test_removal_blocked_with_authenticator(self):
        store = _store("a", "b")
        guarded = AccountRecord(login="g", authenticator={"shared_secret": "s"})
        store.add(guarded)
        with pytest.raises(RemovalBlocked):
            store.remove(guarded)
        assert _logins(store) == ["a", "b", "g"]

    def test_remove_missing_record(self):
        with pytest.raises(ValueError):
            _store("a").remove(AccountRecord(login="a"))

    def test_update_keeps_position_and_pin_state(self):
        store = _store("A", "B", "C")
        c = _get(store, "C")
        store.pin(c)

        replacement = AccountRecord(login="C", password="new-password")
        store.update(0, replacement)
        assert store[0] is replacement
        assert replacement.pinned is True
        assert replacement.unpin_index == 2
        assert store.check_invariant()

    def test_update_rejects_record_already_elsewhere(self):
        store = _store("a", "b")
        with pytest.raises(ValueError):
            store.update(0, store[1])

    def test_apply_profile(self):
        store = _store("a")
        record = store.apply_profile(0, nickname="Alpha", steam_level=12, vac_bans_count=0)
        assert record.nickname == "Alpha"
        assert record.steam_level == 12

    def test_apply_profile_empty_nickname_falls_back_to_login(self):
        store = _store("a")
        assert store.apply_profile(0, nickname="").nickname == "a"

    def test_apply_profile_rejects_credentials(self):
        store = _store("a")
        with pytest.raises(ValueError):
            store.apply_profile(0, password="stolen")
        assert store[0].password == ""


# ── Sorting ──────────────────────────────────────────────────────────


class TestSortUnpinned:

    def test_pinned_block_untouched(self):
        store = VaultStore([
            AccountRecord(login="p", pinned=True, steam_level=1),
            AccountRecord(login="x", steam_level=30),
            AccountRecord(login="y", steam_level=10),
            AccountRecord(login="z", steam_level=20),
        ])
        store.sort_unpinned(SortField.STEAM_LEVEL)
        assert _logins(store) == ["p", "y", "z", "x"]

    def test_descending(self):
        store = VaultStore([
            AccountRecord(login="x", steam_level=30),
            AccountRecord(login="y", steam_level=10),
            AccountRecord(login="z", steam_level=20),
        ])
        store.sort_unpinned("steam_level", descending=True)
        assert _logins(store) == ["x", "z", "y"]

    def test_missing_values_last(self):
        store = VaultStore([
            AccountRecord(login="x"),
            AccountRecord(login="y", steam_id=76561197960265800),
            AccountRecord(login="z", steam_id=76561197960265750),
        ])
        store.sort_unpinned(SortField.STEAM_ID)
        assert _logins(store) == ["z", "y", "x"]

    def test_nickname_is_case_insensitive(self):
        store = _store("bob", "Alice", "carol")
        store.sort_unpinned(SortField.NICKNAME)
        assert _logins(store) == ["Alice", "bob", "carol"]

    def test_added_date(self):
        now = datetime.now(timezone.utc)
        store = VaultStore([
            AccountRecord(login="new", added_date=now),
            AccountRecord(login="old", added_date=now - timedelta(days=10)),
        ])
        store.sort_unpinned(SortField.ADDED_DATE)
        assert _logins(store) == ["old", "new"]

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            _store("a").sort_unpinned("password")


# ── Subscribers ──────────────────────────────────────────────────────


class TestSubscribers:

    def test_add_notifies(self):
        store = VaultStore()
        callback = MagicMock()
        store.subscribe(callback)
        record = AccountRecord(login="a")
        store.add(record)

        change = callback.call_args[0][0]
        assert change.kind == ChangeKind.ADDED
        assert change.index == 0
        assert change.record is record

    def test_pin_emits_move_and_pinned(self):
        store = _store("A", "B")
        kinds = []
        store.subscribe(lambda change: kinds.append(change.kind))
        store.pin(_get(store, "B"))
        assert kinds == [ChangeKind.MOVED, ChangeKind.PINNED]

    def test_unsubscribe(self):
        store = VaultStore()
        callback = MagicMock()
        store.subscribe(callback)
        store.unsubscribe(callback)
        store.add(AccountRecord(login="a"))
        callback.assert_not_called()

    def test_failing_subscriber_does_not_break_mutation(self):
        store = VaultStore()
        store.subscribe(MagicMock(side_effect=RuntimeError("view crashed")))
        after = MagicMock()
        store.subscribe(after)
        store.add(AccountRecord(login="a"))
        assert len(store) == 1
        after.assert_called_once()
