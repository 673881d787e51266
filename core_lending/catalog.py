"""
Catalog Service

Orchestrates fetch, validate, mutate and persist for catalog items. Every
write that follows a lending transition is a conditional write on the
version read at fetch time; when another writer wins the race the service
re-reads the book, re-applies the same operation to the fresh snapshot and
tries again, up to ``max_attempts`` times before raising ConflictError.
"""

import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from .audit import AuditEventType, AuditTrail
from .books import Book
from .catalog_store import STORE_ERRORS, CatalogStore
from .errors import BookAlreadyExistsError, ConflictError, NotFoundError
from .identity import MemberDirectory
from .ledger import BorrowerState
from .lending import LendingEngine
from .logging_config import get_logger, log_action


logger = get_logger("lending.catalog")

Transition = Callable[[Book], Book]


class CatalogService:
    """
    Catalog operations for HTTP handlers and other callers
    """

    def __init__(
        self,
        store: CatalogStore,
        engine: LendingEngine,
        directory: MemberDirectory,
        audit_trail: Optional[AuditTrail] = None,
        max_attempts: int = 5,
        backoff_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.engine = engine
        self.directory = directory
        self.audit_trail = audit_trail
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    # Reads

    def get_book(self, isbn: str) -> Book:
        """
        Raises:
            NotFoundError: No record for ``isbn``
        """
        book = self.store.get(isbn)
        if book is None:
            raise NotFoundError(f"Book {isbn} does not exist", isbn=isbn)
        return book

    def list_books(self, query: Optional[str] = None) -> List[Book]:
        """All books ordered by title, optionally filtered on title/author substring"""
        books = self.store.scan()
        if query:
            needle = query.lower()
            books = [b for b in books
                     if needle in b.title.lower() or needle in b.author.lower()]
        return sorted(books, key=lambda b: (b.title.lower(), b.isbn))

    def list_loans(self, borrower_id: str) -> List[Book]:
        """Books the borrower currently holds at least one unit of"""
        return [b for b in self.list_books()
                if b.ledger.find_or_default(borrower_id).is_outstanding]

    def get_borrower_state(self, isbn: str, borrower_id: str) -> BorrowerState:
        return self.get_book(isbn).ledger.find_or_default(borrower_id)

    def get_history(self, caller_id: str, isbn: str, limit: Optional[int] = None):
        """Audit events for a book (librarian only)"""
        self.directory.require_librarian(caller_id, action="view book history")
        if not self.audit_trail:
            return []
        return self.audit_trail.get_events_for_entity("book", isbn, limit=limit)

    # Librarian mutations

    def create_book(
        self,
        caller_id: str,
        isbn: str,
        title: str,
        author: str = "",
        description: str = "",
        image: str = "",
        total_units: int = 0
    ) -> Book:
        """
        Catalogue a new title with all units on the shelf

        Raises:
            UnauthorizedError: Caller is not a librarian
            InvalidBookDataError: Empty ISBN or negative units
            BookAlreadyExistsError: ISBN already catalogued
        """
        self.directory.require_librarian(caller_id, action="create book")
        book = self.engine.create_book(
            isbn=isbn, title=title, author=author, description=description,
            image=image, total_units=total_units
        )
        if not self.store.conditional_put(book, expected_version=0):
            raise BookAlreadyExistsError(f"Book {book.isbn} already exists", isbn=book.isbn)

        log_action(logger, "info", f"Book {book.isbn} created",
                   user_id=caller_id, action="create_book", resource=book.isbn,
                   details={"total_units": total_units})
        self._audit(AuditEventType.BOOK_CREATED, book, caller_id,
                    {"title": title, "total_units": total_units})
        return book

    def update_book(self, caller_id: str, isbn: str, changes: Mapping[str, Any]) -> Book:
        """
        Partial metadata update; omitted fields keep their stored values

        Raises:
            UnauthorizedError: Caller is not a librarian
            NotFoundError: No record for ``isbn``
            InvalidInventoryChangeError: New total is below the units on loan
            ConflictError: Lost the write race on every attempt
        """
        self.directory.require_librarian(caller_id, action="update book")
        changes = dict(changes)
        book = self._apply(
            isbn, "update_book", caller_id,
            lambda current: self.engine.update_metadata(current, changes)
        )
        self._audit(AuditEventType.BOOK_UPDATED, book, caller_id,
                    {"changes": sorted(k for k, v in changes.items() if v is not None)})
        return book

    def delete_book(self, caller_id: str, isbn: str) -> None:
        """
        Remove a book regardless of units on loan

        Raises:
            UnauthorizedError: Caller is not a librarian
            NotFoundError: No record for ``isbn``
        """
        self.directory.require_librarian(caller_id, action="delete book")
        book = self.get_book(isbn)
        if book.outstanding_units:
            log_action(logger, "warning",
                       f"Deleting book {isbn} with {book.outstanding_units} units checked out",
                       user_id=caller_id, action="delete_book", resource=isbn,
                       details={"active_borrowers": book.ledger.active_borrowers()})
        if not self.store.delete(isbn):
            raise NotFoundError(f"Book {isbn} does not exist", isbn=isbn)

        log_action(logger, "info", f"Book {isbn} deleted",
                   user_id=caller_id, action="delete_book", resource=isbn)
        self._audit(AuditEventType.BOOK_DELETED, book, caller_id,
                    {"outstanding_units": book.outstanding_units})

    # Lending

    def checkout(self, isbn: str, borrower_id: str) -> Book:
        """
        Lend one unit to ``borrower_id``

        Raises:
            NotFoundError: No record for ``isbn``
            OutOfInventoryError: No unit on the shelf
            ConflictError: Lost the write race on every attempt
        """
        book = self._apply(
            isbn, "checkout", borrower_id,
            lambda current: self.engine.checkout(current, borrower_id)
        )
        state = book.ledger.find_or_default(borrower_id)
        self._audit(AuditEventType.BOOK_CHECKED_OUT, book, borrower_id,
                    {"outstanding_quantity": state.outstanding_quantity,
                     "available_units": book.available_units})
        return book

    def return_book(self, isbn: str, borrower_id: str) -> Book:
        """
        Take one unit back from ``borrower_id``

        Raises:
            NotFoundError: No record for ``isbn``
            NothingToReturnError: Borrower holds no units
            ConflictError: Lost the write race on every attempt
        """
        book = self._apply(
            isbn, "return", borrower_id,
            lambda current: self.engine.return_book(current, borrower_id)
        )
        state = book.ledger.find_or_default(borrower_id)
        self._audit(AuditEventType.BOOK_RETURNED, book, borrower_id,
                    {"outstanding_quantity": state.outstanding_quantity,
                     "available_units": book.available_units,
                     "fully_returned": not state.is_outstanding})
        return book

    # Internals

    def _apply(self, isbn: str, action: str, user_id: str, transition: Transition) -> Book:
        """Read, transform and conditionally write, retrying on lost races"""
        for attempt in range(1, self.max_attempts + 1):
            current = self.get_book(isbn)
            expected_version = current.version
            # Domain errors from the transition propagate immediately
            updated = transition(current)
            if self.store.conditional_put(updated, expected_version):
                log_action(logger, "info", f"{action} applied to {isbn}",
                           user_id=user_id, action=action, resource=isbn,
                           details={"attempt": attempt, "version": updated.version,
                                    **self.engine.describe(updated)})
                return updated

            log_action(logger, "warning", f"Version conflict on {isbn}, retrying",
                       user_id=user_id, action=action, resource=isbn,
                       details={"attempt": attempt, "expected_version": expected_version})
            if attempt < self.max_attempts and self.backoff_seconds:
                self._sleep(self.backoff_seconds * attempt)

        log_action(logger, "error", f"Giving up on {action} for {isbn}",
                   user_id=user_id, action=action, resource=isbn,
                   details={"attempts": self.max_attempts})
        raise ConflictError(
            f"{action} on {isbn} lost {self.max_attempts} concurrent update races",
            isbn=isbn, borrower_id=user_id, attempts=self.max_attempts
        )

    def _audit(self, event_type: AuditEventType, book: Book, user_id: Optional[str],
               metadata: Dict[str, Any]) -> None:
        # Runs after the catalog write committed: failures are logged, never raised
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="book",
                entity_id=book.isbn,
                metadata=metadata,
                user_id=user_id
            )
        except (ConflictError,) + STORE_ERRORS as e:
            log_action(logger, "error", f"Audit entry {event_type.value} for {book.isbn} lost",
                       user_id=user_id, action=event_type.value, resource=book.isbn,
                       details={"error": str(e), "metadata": metadata})
