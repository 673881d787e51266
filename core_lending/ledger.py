"""
Lending Ledger

Per-item record of who holds how many units. The ledger is a mapping keyed
by borrower id, so each borrower has at most one state. Together with the
book's unit counters it must always satisfy

    available_units + sum(outstanding_quantity) == total_units
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .errors import LedgerInvariantError


class BorrowerStatus(Enum):
    """Lifecycle of one borrower against one catalog item"""
    NEVER_CHECKED_OUT = "never_checked_out"
    OUTSTANDING = "outstanding"  # holds at least one unit
    RETURNED = "returned"        # held units before, holds none now


@dataclass(frozen=True)
class BorrowerState:
    """
    A borrower's position on one catalog item

    ``returned_at`` is set only while the borrower holds nothing; a new
    checkout clears it.
    """
    borrower_id: str
    outstanding_quantity: int = 0
    checked_out_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None

    def __post_init__(self):
        if self.outstanding_quantity < 0:
            raise LedgerInvariantError(
                f"Outstanding quantity for {self.borrower_id} cannot be negative",
                borrower_id=self.borrower_id
            )

    @property
    def status(self) -> BorrowerStatus:
        if self.outstanding_quantity > 0:
            return BorrowerStatus.OUTSTANDING
        if self.returned_at is not None:
            return BorrowerStatus.RETURNED
        return BorrowerStatus.NEVER_CHECKED_OUT

    @property
    def is_outstanding(self) -> bool:
        return self.outstanding_quantity > 0

    def checked_out(self, now: datetime) -> 'BorrowerState':
        """State after taking one more unit"""
        return replace(self, outstanding_quantity=self.outstanding_quantity + 1,
                       checked_out_at=now, returned_at=None)

    def returned_one(self, now: datetime) -> 'BorrowerState':
        """State after handing back one unit"""
        remaining = self.outstanding_quantity - 1
        if remaining == 0:
            return replace(self, outstanding_quantity=0, returned_at=now)
        return replace(self, outstanding_quantity=remaining)

    def to_dict(self) -> Dict[str, Any]:
        """Wire/storage form, field names shared with the catalog API"""
        return {
            "user": self.borrower_id,
            "quantity": self.outstanding_quantity,
            "checkedOut": self.is_outstanding,
            "returned": self.status == BorrowerStatus.RETURNED,
            "status": self.status.value,
            "checkoutDate": self.checked_out_at.isoformat() if self.checked_out_at else None,
            "returnDate": self.returned_at.isoformat() if self.returned_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BorrowerState':
        checked_out_at = data.get("checkoutDate")
        returned_at = data.get("returnDate")
        return cls(
            borrower_id=data["user"],
            outstanding_quantity=int(data.get("quantity", 0)),
            checked_out_at=datetime.fromisoformat(checked_out_at) if checked_out_at else None,
            returned_at=datetime.fromisoformat(returned_at) if returned_at else None,
        )


class Ledger:
    """Mapping of borrower id to BorrowerState"""

    def __init__(self, states: Optional[Dict[str, BorrowerState]] = None):
        self._states: Dict[str, BorrowerState] = dict(states or {})

    def find_or_default(self, borrower_id: str) -> BorrowerState:
        """Existing state for the borrower, or a fresh zero-quantity state"""
        state = self._states.get(borrower_id)
        if state is None:
            return BorrowerState(borrower_id=borrower_id)
        return state

    def get(self, borrower_id: str) -> Optional[BorrowerState]:
        return self._states.get(borrower_id)

    def upsert(self, state: BorrowerState) -> None:
        """Replace the borrower's entry, inserting it if absent"""
        self._states[state.borrower_id] = state

    def total_outstanding(self) -> int:
        return sum(state.outstanding_quantity for state in self._states.values())

    def borrowers(self) -> List[str]:
        return list(self._states)

    def active_borrowers(self) -> List[str]:
        return [borrower_id for borrower_id, state in self._states.items()
                if state.is_outstanding]

    def check_invariants(self, total_units: int, available_units: int) -> None:
        """
        Raise LedgerInvariantError unless the counters and ledger balance

        Args:
            total_units: Copies owned by the catalog
            available_units: Copies currently on the shelf
        """
        if available_units < 0:
            raise LedgerInvariantError(f"Available units cannot be negative: {available_units}")
        if available_units > total_units:
            raise LedgerInvariantError(
                f"Available units {available_units} exceed total units {total_units}"
            )
        outstanding = self.total_outstanding()
        if available_units + outstanding != total_units:
            raise LedgerInvariantError(
                f"Ledger out of balance: available {available_units} + "
                f"outstanding {outstanding} != total {total_units}"
            )

    def to_list(self) -> List[Dict[str, Any]]:
        return [state.to_dict() for state in self._states.values()]

    @classmethod
    def from_list(cls, items: List[Dict[str, Any]]) -> 'Ledger':
        ledger = cls()
        for item in items or []:
            state = BorrowerState.from_dict(item)
            if ledger.get(state.borrower_id) is not None:
                raise LedgerInvariantError(
                    f"Duplicate ledger entry for borrower {state.borrower_id}",
                    borrower_id=state.borrower_id
                )
            ledger.upsert(state)
        return ledger

    def __iter__(self) -> Iterator[BorrowerState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, borrower_id: object) -> bool:
        return borrower_id in self._states

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ledger):
            return NotImplemented
        return self._states == other._states

    def __repr__(self) -> str:
        return f"Ledger({list(self._states.values())!r})"
