"""
Member endpoints: the calling member's own view, and directory
management for librarians
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from ..identity import MemberRole
from .auth import LendingSystem, get_current_member, get_lending_system, require_librarian
from .schemas import (
    AuditEventResponse, BookResponse, BorrowerStateResponse, CreateMemberRequest,
    MemberResponse, UpdateRoleRequest
)


router = APIRouter()


@router.get("/me", response_model=MemberResponse)
def get_me(
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    return MemberResponse.from_member(system.directory.require_member(member_id))


@router.get("/me/loans", response_model=List[BookResponse])
def get_my_loans(
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    """Books the calling member currently holds"""
    return [BookResponse.from_book(book) for book in system.catalog.list_loans(member_id)]


@router.get("/me/loans/{isbn}", response_model=BorrowerStateResponse)
def get_my_loan(
    isbn: str,
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    """The calling member's ledger entry for one book, zeroed if never borrowed"""
    return BorrowerStateResponse(**system.catalog.get_borrower_state(isbn, member_id).to_dict())


@router.post("", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
def create_member(
    request: CreateMemberRequest,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    """Register a member (librarians only)"""
    member = system.directory.register_member(
        request.username, role=request.role, member_id=request.id, actor_id=librarian_id
    )
    return MemberResponse.from_member(member)


@router.get("", response_model=List[MemberResponse])
def list_members(
    role: Optional[MemberRole] = None,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    return [MemberResponse.from_member(m) for m in system.directory.list_members(role)]


@router.get("/{member_id}", response_model=MemberResponse)
def get_member(
    member_id: str,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    return MemberResponse.from_member(system.directory.require_existing(member_id))


@router.get("/{member_id}/history", response_model=List[AuditEventResponse])
def get_member_history(
    member_id: str,
    limit: Optional[int] = 50,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    """Audit events performed by a member (librarians only)"""
    system.directory.require_existing(member_id)
    if not system.audit_trail:
        return []
    events = system.audit_trail.get_events_by_user(member_id, limit=limit)
    return [AuditEventResponse.from_event(event) for event in events]


@router.patch("/{member_id}/role", response_model=MemberResponse)
def update_member_role(
    member_id: str,
    request: UpdateRoleRequest,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    member = system.directory.set_role(member_id, request.role, actor_id=librarian_id)
    return MemberResponse.from_member(member)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def deactivate_member(
    member_id: str,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    """Deactivate a member; their ledger entries stay on the books they hold"""
    system.directory.deactivate_member(member_id, actor_id=librarian_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
