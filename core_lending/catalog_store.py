"""
Catalog Store

Typed access to Book records over a StorageInterface backend. Writes that
follow a lending transition go through ``conditional_put``, a compare-and-swap
on the record version. Backend and decoding failures are reported as
StoreUnavailableError so callers can tell infrastructure faults from
invalid requests.
"""

import sqlite3
from contextlib import contextmanager
from typing import List, Optional

from .books import Book
from .errors import StoreUnavailableError
from .storage import StorageInterface


# Failures that mean the store, not the request, is at fault
STORE_ERRORS = (sqlite3.Error, OSError, TypeError, KeyError, ValueError)


class CatalogStore:
    """Book repository with optimistic concurrency control"""

    def __init__(self, storage: StorageInterface, table_name: str = "books"):
        self.storage = storage
        self.table_name = table_name

    @contextmanager
    def _guard(self, operation: str, isbn: Optional[str] = None):
        try:
            yield
        except STORE_ERRORS as e:
            target = f" {isbn}" if isbn else ""
            raise StoreUnavailableError(
                f"Catalog store {operation}{target} failed: {e}", isbn=isbn
            ) from e

    def get(self, isbn: str) -> Optional[Book]:
        """Current snapshot of a book, or None if it is not catalogued"""
        with self._guard("get", isbn):
            data = self.storage.load(self.table_name, isbn)
            if data is None:
                return None
            return Book.from_dict(data)

    def conditional_put(self, book: Book, expected_version: int) -> bool:
        """
        Store ``book`` only if the stored version still equals ``expected_version``

        An expected version of 0 inserts a new record and fails if one exists.
        On success ``book.version`` becomes ``expected_version + 1``.

        Returns:
            False if another writer got there first
        """
        with self._guard("conditional put", book.isbn):
            applied = self.storage.save_if_version(
                self.table_name, book.isbn, book.to_dict(), expected_version
            )
        if applied:
            book.version = expected_version + 1
        return applied

    def scan(self) -> List[Book]:
        """Every catalogued book"""
        with self._guard("scan"):
            return [Book.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def delete(self, isbn: str) -> bool:
        with self._guard("delete", isbn):
            return self.storage.delete(self.table_name, isbn)
