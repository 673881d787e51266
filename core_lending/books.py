"""
Catalog Item Model

A Book is a lendable title with a finite number of physical units. The
record carries its ledger and a version number used for optimistic
concurrency control by the catalog store.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .errors import InvalidBookDataError
from .ledger import Ledger
from .storage import StorageRecord


# Fields a librarian may change after creation
METADATA_FIELDS = ("title", "author", "description", "image", "total_units")


@dataclass
class Book(StorageRecord):
    """
    Catalog item; ``id`` is the ISBN and never changes after creation
    """
    title: str = ""
    author: str = ""
    description: str = ""
    image: str = ""
    total_units: int = 0
    available_units: int = 0
    ledger: Ledger = field(default_factory=Ledger)
    version: int = 0  # 0 until first persisted

    def __post_init__(self):
        if not self.id:
            raise InvalidBookDataError("Book ISBN cannot be empty")
        if self.total_units < 0:
            raise InvalidBookDataError(
                f"Total units cannot be negative: {self.total_units}", isbn=self.id
            )
        if self.available_units < 0:
            raise InvalidBookDataError(
                f"Available units cannot be negative: {self.available_units}", isbn=self.id
            )

    @property
    def isbn(self) -> str:
        return self.id

    @property
    def outstanding_units(self) -> int:
        return self.total_units - self.available_units

    def is_available(self) -> bool:
        return self.available_units > 0

    def check_invariants(self) -> None:
        self.ledger.check_invariants(self.total_units, self.available_units)

    def copy(self) -> 'Book':
        return copy.deepcopy(self)

    def same_holdings(self, other: 'Book') -> bool:
        """Equal counters and per-borrower quantities, ignoring timestamps and version"""
        if (self.total_units, self.available_units) != (other.total_units, other.available_units):
            return False
        mine = {s.borrower_id: s.outstanding_quantity for s in self.ledger}
        theirs = {s.borrower_id: s.outstanding_quantity for s in other.ledger}
        return mine == theirs

    def to_dict(self) -> Dict[str, Any]:
        """Wire/storage form, shared with the public catalog API"""
        return {
            "isbn": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "image": self.image,
            "inventory": self.available_units,
            "totalUnits": self.total_units,
            "states": self.ledger.to_list(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Book':
        ledger = Ledger.from_list(data.get("states") or [])
        available = int(data.get("inventory", 0))
        total: Optional[Any] = data.get("totalUnits")
        # Records written before totalUnits existed only carried the shelf count
        total_units = int(total) if total is not None else available + ledger.total_outstanding()
        updated_at = datetime.fromisoformat(data["updatedAt"])
        created_at = data.get("createdAt")
        return cls(
            id=data["isbn"],
            created_at=datetime.fromisoformat(created_at) if created_at else updated_at,
            updated_at=updated_at,
            title=data.get("title", ""),
            author=data.get("author", ""),
            description=data.get("description", ""),
            image=data.get("image", ""),
            total_units=total_units,
            available_units=available,
            ledger=ledger,
            version=int(data.get("version", 0)),
        )
