"""
Lending Engine

Applies checkout, return and metadata transitions to a Book snapshot.
The engine never touches storage: it takes the snapshot read by the caller
and returns a new, updated Book, leaving the input untouched. On any failure
the caller's snapshot is unchanged and nothing is returned to persist.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .books import Book, METADATA_FIELDS
from .errors import (
    BorrowingLimitExceededError, InvalidBookDataError,
    InvalidInventoryChangeError, NothingToReturnError, OutOfInventoryError
)
from .ledger import Ledger


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LendingEngine:
    """
    Inventory-accounting rules for catalog items
    """

    def __init__(self, clock: Optional[Clock] = None,
                 max_outstanding_per_borrower: Optional[int] = None):
        """
        Args:
            clock: Source of timestamps, UTC now by default
            max_outstanding_per_borrower: Optional cap on units one borrower
                may hold of a single item; None means only inventory limits it
        """
        self.clock = clock or utc_now
        self.max_outstanding_per_borrower = max_outstanding_per_borrower

    def create_book(
        self,
        isbn: str,
        title: str,
        author: str = "",
        description: str = "",
        image: str = "",
        total_units: int = 0
    ) -> Book:
        """New catalog item with every unit on the shelf and an empty ledger"""
        if not isbn or not isbn.strip():
            raise InvalidBookDataError("Book ISBN cannot be empty")
        if total_units < 0:
            raise InvalidBookDataError(
                f"Total units cannot be negative: {total_units}", isbn=isbn
            )
        now = self.clock()
        book = Book(
            id=isbn.strip(),
            created_at=now,
            updated_at=now,
            title=title,
            author=author,
            description=description,
            image=image,
            total_units=total_units,
            available_units=total_units,
            ledger=Ledger()
        )
        book.check_invariants()
        return book

    def checkout(self, book: Book, borrower_id: str) -> Book:
        """
        Lend one unit of ``book`` to ``borrower_id``

        Raises:
            OutOfInventoryError: No unit is on the shelf
            BorrowingLimitExceededError: Borrower already holds the configured cap
        """
        if not book.is_available():
            raise OutOfInventoryError(
                f"No units of {book.isbn} are available", isbn=book.isbn, borrower_id=borrower_id
            )

        now = self.clock()
        current = book.ledger.find_or_default(borrower_id)
        next_state = current.checked_out(now)

        cap = self.max_outstanding_per_borrower
        if cap is not None and next_state.outstanding_quantity > cap:
            raise BorrowingLimitExceededError(
                f"Borrower {borrower_id} already holds {current.outstanding_quantity} "
                f"of {book.isbn} (limit {cap})",
                isbn=book.isbn, borrower_id=borrower_id
            )

        updated = book.copy()
        updated.ledger.upsert(next_state)
        updated.available_units -= 1
        updated.updated_at = now
        updated.check_invariants()
        return updated

    def return_book(self, book: Book, borrower_id: str) -> Book:
        """
        Take one unit of ``book`` back from ``borrower_id``

        Raises:
            NothingToReturnError: Borrower holds no units of this item
        """
        current = book.ledger.find_or_default(borrower_id)
        if current.outstanding_quantity == 0:
            raise NothingToReturnError(
                f"Borrower {borrower_id} has no units of {book.isbn} to return",
                isbn=book.isbn, borrower_id=borrower_id
            )

        now = self.clock()
        updated = book.copy()
        updated.ledger.upsert(current.returned_one(now))
        updated.available_units += 1
        updated.updated_at = now
        updated.check_invariants()
        return updated

    def update_metadata(self, book: Book, changes: Mapping[str, Any]) -> Book:
        """
        Partial update of display metadata and total units

        Fields missing from ``changes`` (or given as None) keep their stored
        value. The ledger is carried over untouched; a total units change
        shifts available units by the same delta.

        Raises:
            InvalidBookDataError: Unknown field, non-integer total or an ISBN change
            InvalidInventoryChangeError: New total is below the units on loan
        """
        changes = {key: value for key, value in changes.items() if value is not None}

        isbn = changes.pop("isbn", None)
        if isbn is not None and isbn != book.isbn:
            raise InvalidBookDataError(
                f"ISBN is immutable (got {isbn} for {book.isbn})", isbn=book.isbn
            )

        unknown = set(changes) - set(METADATA_FIELDS)
        if unknown:
            raise InvalidBookDataError(
                f"Unknown book fields: {', '.join(sorted(unknown))}", isbn=book.isbn
            )

        updated = book.copy()
        for name in ("title", "author", "description", "image"):
            if name in changes:
                setattr(updated, name, changes[name])

        if "total_units" in changes:
            new_total = changes["total_units"]
            if isinstance(new_total, bool) or not isinstance(new_total, int):
                raise InvalidBookDataError(
                    f"Total units must be a whole number, got {new_total!r}", isbn=book.isbn
                )
            new_available = book.available_units + (new_total - book.total_units)
            if new_total < 0 or new_available < 0:
                raise InvalidInventoryChangeError(
                    f"Cannot set total units of {book.isbn} to {new_total}: "
                    f"{book.outstanding_units} units are checked out",
                    isbn=book.isbn
                )
            updated.total_units = new_total
            updated.available_units = new_available

        updated.updated_at = self.clock()
        updated.check_invariants()
        return updated

    @staticmethod
    def describe(book: Book) -> Dict[str, Any]:
        """Counters summary used in logs and audit metadata"""
        return {
            "isbn": book.isbn,
            "total_units": book.total_units,
            "available_units": book.available_units,
            "outstanding_units": book.outstanding_units,
            "active_borrowers": book.ledger.active_borrowers(),
        }
