"""
Test suite for storage module

Tests both storage backends, with emphasis on the compare-and-swap write,
and the catalog store that maps backend failures to StoreUnavailableError.
"""

import os
import tempfile
import threading

import pytest
from datetime import datetime, timezone

from core_lending.books import Book
from core_lending.catalog_store import CatalogStore
from core_lending.errors import StoreUnavailableError
from core_lending.storage import InMemoryStorage, SQLiteStorage, StorageRecord


T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def make_book(isbn: str = "978-0", units: int = 2) -> Book:
    return Book(id=isbn, created_at=T0, updated_at=T0, title="Dune",
                author="Frank Herbert", total_units=units, available_units=units)


class StorageContract:
    """Behaviour shared by every StorageInterface implementation"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_save_and_load(self):
        self.storage.save("things", "a", {"name": "first"})

        assert self.storage.load("things", "a") == {"name": "first"}
        assert self.storage.load("things", "missing") is None

    def test_load_returns_copy(self):
        self.storage.save("things", "a", {"tags": ["x"]})
        loaded = self.storage.load("things", "a")
        loaded["tags"].append("y")

        assert self.storage.load("things", "a") == {"tags": ["x"]}

    def test_load_all_find_and_count(self):
        self.storage.save("things", "a", {"kind": "red"})
        self.storage.save("things", "b", {"kind": "blue"})
        self.storage.save("things", "c", {"kind": "red"})

        assert self.storage.count("things") == 3
        assert len(self.storage.load_all("things")) == 3
        assert len(self.storage.find("things", {"kind": "red"})) == 2
        assert self.storage.find("things", {"colour": "red"}) == []

    def test_delete_and_exists(self):
        self.storage.save("things", "a", {"name": "first"})

        assert self.storage.exists("things", "a")
        assert self.storage.delete("things", "a") is True
        assert not self.storage.exists("things", "a")
        assert self.storage.delete("things", "a") is False

    def test_clear_table(self):
        self.storage.save("things", "a", {})
        self.storage.save("other", "a", {})

        self.storage.clear_table("things")

        assert self.storage.count("things") == 0
        assert self.storage.count("other") == 1

    def test_save_if_version_inserts_when_absent(self):
        assert self.storage.save_if_version("things", "a", {"n": 1}, expected_version=0)

        stored = self.storage.load("things", "a")
        assert stored["n"] == 1
        assert stored["version"] == 1

    def test_save_if_version_insert_fails_when_present(self):
        self.storage.save_if_version("things", "a", {"n": 1}, expected_version=0)

        assert not self.storage.save_if_version("things", "a", {"n": 2}, expected_version=0)
        assert self.storage.load("things", "a")["n"] == 1

    def test_save_if_version_update_requires_matching_version(self):
        self.storage.save_if_version("things", "a", {"n": 1}, expected_version=0)

        assert self.storage.save_if_version("things", "a", {"n": 2}, expected_version=1)
        assert not self.storage.save_if_version("things", "a", {"n": 3}, expected_version=1)

        stored = self.storage.load("things", "a")
        assert stored["n"] == 2
        assert stored["version"] == 2

    def test_save_if_version_update_fails_when_absent(self):
        assert not self.storage.save_if_version("things", "a", {"n": 1}, expected_version=3)
        assert not self.storage.exists("things", "a")

    def test_concurrent_compare_and_swap_has_single_winner(self):
        self.storage.save_if_version("things", "a", {"n": 0}, expected_version=0)
        results = []
        barrier = threading.Barrier(8)

        def writer(n):
            barrier.wait()
            results.append(self.storage.save_if_version("things", "a", {"n": n},
                                                        expected_version=1))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert self.storage.load("things", "a")["version"] == 2


class TestInMemoryStorage(StorageContract):
    """Test in-memory storage implementation"""

    def make_storage(self):
        return InMemoryStorage()


class TestSQLiteStorage(StorageContract):
    """Test SQLite storage implementation"""

    def make_storage(self):
        self.temp_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        self.temp_db.close()
        return SQLiteStorage(self.temp_db.name)

    def teardown_method(self):
        super().teardown_method()
        if os.path.exists(self.temp_db.name):
            os.unlink(self.temp_db.name)

    def test_data_survives_reopen(self):
        self.storage.save_if_version("things", "a", {"n": 1}, expected_version=0)
        self.storage.close()

        self.storage = SQLiteStorage(self.temp_db.name)
        assert self.storage.load("things", "a") == {"n": 1, "version": 1}

    def test_in_memory_database(self):
        storage = SQLiteStorage(":memory:")
        storage.save("things", "a", {"n": 1})
        assert storage.count("things") == 1
        storage.close()


class TestStorageRecord:
    """Test the base record serialization"""

    def test_round_trip(self):
        record = StorageRecord(id="r1", created_at=T0, updated_at=T0)

        data = record.to_dict()

        assert data["created_at"] == T0.isoformat()
        assert StorageRecord.from_dict(data) == record


class TestCatalogStore:
    """Test typed book access with optimistic concurrency"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = CatalogStore(self.storage)

    def test_get_missing(self):
        assert self.store.get("978-0") is None
        assert self.store.scan() == []

    def test_insert_then_get(self):
        book = make_book()

        assert self.store.conditional_put(book, expected_version=0)
        assert book.version == 1

        loaded = self.store.get("978-0")
        assert loaded.version == 1
        assert loaded.title == "Dune"
        assert loaded.available_units == 2

    def test_stale_version_rejected(self):
        book = make_book()
        self.store.conditional_put(book, expected_version=0)
        first = self.store.get("978-0")
        second = self.store.get("978-0")

        first.title = "Dune Messiah"
        assert self.store.conditional_put(first, expected_version=1)

        second.title = "Children of Dune"
        assert not self.store.conditional_put(second, expected_version=1)
        assert second.version == 1
        assert self.store.get("978-0").title == "Dune Messiah"

    def test_scan_and_delete(self):
        self.store.conditional_put(make_book("978-0"), expected_version=0)
        self.store.conditional_put(make_book("978-1"), expected_version=0)

        assert sorted(b.isbn for b in self.store.scan()) == ["978-0", "978-1"]
        assert self.store.delete("978-0")
        assert not self.store.delete("978-0")
        assert [b.isbn for b in self.store.scan()] == ["978-1"]

    def test_corrupt_record_reported_as_store_unavailable(self):
        self.storage.save("books", "978-0", {"isbn": "978-0", "inventory": "lots"})

        with pytest.raises(StoreUnavailableError) as exc_info:
            self.store.get("978-0")

        assert exc_info.value.kind == "store_unavailable"
        assert exc_info.value.isbn == "978-0"

    def test_backend_failure_reported_as_store_unavailable(self):
        storage = SQLiteStorage(":memory:")
        store = CatalogStore(storage)
        storage.close()

        with pytest.raises(StoreUnavailableError):
            store.get("978-0")
