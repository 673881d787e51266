"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..audit import AuditEvent
from ..books import Book
from ..identity import Member, MemberRole


class CreateBookRequest(BaseModel):
    isbn: str = Field(..., min_length=1, description="Catalog identifier, immutable")
    title: str
    author: str = ""
    description: str = ""
    image: str = ""
    inventory: int = Field(0, ge=0, description="Copies owned; all start on the shelf")


class UpdateBookRequest(BaseModel):
    """Omitted fields keep their stored value"""
    model_config = ConfigDict(populate_by_name=True)

    isbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    total_units: Optional[int] = Field(None, alias="totalUnits", ge=0)

    def to_changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class BorrowerStateResponse(BaseModel):
    user: str
    quantity: int
    checkedOut: bool
    returned: bool
    status: str
    checkoutDate: Optional[str] = None
    returnDate: Optional[str] = None


class BookResponse(BaseModel):
    isbn: str
    title: str
    author: str
    description: str
    image: str
    inventory: int
    totalUnits: int
    states: List[BorrowerStateResponse]
    createdAt: str
    updatedAt: str
    version: int

    @classmethod
    def from_book(cls, book: Book) -> 'BookResponse':
        return cls(**book.to_dict())


class AuditEventResponse(BaseModel):
    id: str
    event_type: str
    entity_type: str
    entity_id: str
    user_id: Optional[str] = None
    metadata: Dict[str, Any]
    created_at: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> 'AuditEventResponse':
        return cls(
            id=event.id,
            event_type=event.event_type.value,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            user_id=event.user_id,
            metadata=event.metadata,
            created_at=event.created_at.isoformat()
        )


class MemberResponse(BaseModel):
    id: str
    username: str
    role: str
    is_active: bool

    @classmethod
    def from_member(cls, member: Member) -> 'MemberResponse':
        return cls(
            id=member.id,
            username=member.username,
            role=member.role.value,
            is_active=member.is_active
        )


class CreateMemberRequest(BaseModel):
    username: str = Field(..., min_length=1)
    role: MemberRole = MemberRole.USER
    id: Optional[str] = Field(None, min_length=1, description="Token uid; generated when omitted")


class UpdateRoleRequest(BaseModel):
    role: MemberRole
