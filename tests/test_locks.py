"""
Tests for the keyed lock registry

Tests cover:
- Entries exist only while a key is held or waited on
- Cleanup after errors inside the locked block
- Mutual exclusion per key
- The ledger's shared stock locks are empty between reservations
"""

import threading
import pytest
from datetime import date, timedelta

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from channel_manager.services.inventory_ledger import InventoryLedger
from channel_manager.utils.locks import KeyedLockRegistry, stock_locks


class TestRegistryCleanup:
    """Tests for entries being dropped on release"""

    def test_empty_after_acquire_many(self):
        registry = KeyedLockRegistry()
        keys = [("hotel-1", "deluxe", date(2025, 3, 10) + timedelta(days=i)) for i in range(30)]

        with registry.acquire_many(keys):
            assert len(registry) == 30

        assert len(registry) == 0

    def test_empty_after_error_in_block(self):
        registry = KeyedLockRegistry()

        with pytest.raises(RuntimeError):
            with registry.acquire_many(["a", "b"]):
                raise RuntimeError("boom")

        assert len(registry) == 0
        with registry.acquire("a"):
            pass

    def test_duplicate_keys_are_taken_once(self):
        registry = KeyedLockRegistry()

        with registry.acquire_many(["a", "a", "b"]):
            assert len(registry) == 2

        assert len(registry) == 0


class TestMutualExclusion:
    """Tests for one holder per key"""

    def test_waiter_keeps_entry_until_done(self):
        registry = KeyedLockRegistry()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with registry.acquire("room"):
                entered.set()
                release.wait(5)
                order.append("holder")

        def waiter():
            entered.wait(5)
            with registry.acquire("room"):
                order.append("waiter")

        threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
        for t in threads:
            t.start()
        entered.wait(5)
        assert len(registry) == 1

        release.set()
        for t in threads:
            t.join(5)

        assert order == ["holder", "waiter"]
        assert len(registry) == 0


class TestLedgerStockLocks:
    """Tests for the ledger's shared registry"""

    def test_no_entries_left_after_reservations(self, db, hotel):
        ledger = InventoryLedger(db)
        check_in = date.today() + timedelta(days=2)

        ledger.reserve(hotel.direct.id, "deluxe", check_in, count=2)
        ledger.reserve_stay(hotel.booking_com.id, "deluxe", check_in, check_in + timedelta(days=3))

        assert len(stock_locks) == 0
