"""
Lending Error Taxonomy

Every caller-visible failure of the lending core is one of the exceptions
below. Each carries a stable ``kind`` string so transport layers can map it
to a status code without inspecting messages.
"""

from typing import Optional


class LendingError(Exception):
    """Base class for all lending core errors"""
    kind = "lending_error"

    def __init__(self, message: str, isbn: Optional[str] = None,
                 borrower_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.isbn = isbn
        self.borrower_id = borrower_id


class NotFoundError(LendingError, LookupError):
    """Catalog item has no record"""
    kind = "not_found"


class OutOfInventoryError(LendingError, ValueError):
    """Checkout attempted with zero available units"""
    kind = "out_of_inventory"


class NothingToReturnError(LendingError, ValueError):
    """Return attempted by a borrower holding no units"""
    kind = "nothing_to_return"


class BorrowingLimitExceededError(LendingError, ValueError):
    """Checkout would push a borrower past the configured cap"""
    kind = "borrowing_limit_exceeded"


class InvalidInventoryChangeError(LendingError, ValueError):
    """Total units edit would force available units negative"""
    kind = "invalid_inventory_change"


class InvalidBookDataError(LendingError, ValueError):
    """Book fields are malformed"""
    kind = "invalid_book_data"


class BookAlreadyExistsError(LendingError, ValueError):
    """Creation attempted for an identifier that is already catalogued"""
    kind = "book_already_exists"


class InvalidMemberDataError(LendingError, ValueError):
    """Member fields are malformed"""
    kind = "invalid_member_data"


class MemberAlreadyExistsError(LendingError, ValueError):
    """Registration attempted for a username or id already in the directory"""
    kind = "member_already_exists"


class LedgerInvariantError(LendingError, ValueError):
    """Inventory accounting no longer balances"""
    kind = "ledger_invariant_violated"


class ConflictError(LendingError):
    """Optimistic write lost the race after all retries"""
    kind = "conflict"

    def __init__(self, message: str, isbn: Optional[str] = None,
                 borrower_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message, isbn=isbn, borrower_id=borrower_id)
        self.attempts = attempts


class UnauthorizedError(LendingError, PermissionError):
    """Caller identity or role check failed"""
    kind = "unauthorized"

    def __init__(self, message: str, authenticated: bool = False):
        super().__init__(message)
        # True when the caller is known but lacks the required role
        self.authenticated = authenticated


class StoreUnavailableError(LendingError):
    """Catalog store transport or serialization failure"""
    kind = "store_unavailable"
