"""
Catalog and lending endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from .auth import LendingSystem, get_current_member, get_lending_system, require_librarian
from .schemas import AuditEventResponse, BookResponse, CreateBookRequest, UpdateBookRequest


router = APIRouter()


@router.get("", response_model=List[BookResponse])
def list_books(
    q: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List the catalog, optionally filtered by title or author"""
    return [BookResponse.from_book(book) for book in system.catalog.list_books(q)]


@router.get("/{isbn}", response_model=BookResponse)
def get_book(
    isbn: str,
    system: LendingSystem = Depends(get_lending_system)
):
    return BookResponse.from_book(system.catalog.get_book(isbn))


@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
def create_book(
    request: CreateBookRequest,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    """Catalogue a new book (librarians only)"""
    book = system.catalog.create_book(
        caller_id=librarian_id,
        isbn=request.isbn,
        title=request.title,
        author=request.author,
        description=request.description,
        image=request.image,
        total_units=request.inventory
    )
    return BookResponse.from_book(book)


@router.patch("/{isbn}", response_model=BookResponse)
def update_book(
    isbn: str,
    request: UpdateBookRequest,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    """Partially update a book (librarians only)"""
    book = system.catalog.update_book(librarian_id, isbn, request.to_changes())
    return BookResponse.from_book(book)


@router.delete("/{isbn}", status_code=status.HTTP_204_NO_CONTENT)
def delete_book(
    isbn: str,
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
):
    system.catalog.delete_book(librarian_id, isbn)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{isbn}/checkout", response_model=BookResponse)
def checkout_book(
    isbn: str,
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    """Check out one unit for the calling member"""
    return BookResponse.from_book(system.catalog.checkout(isbn, member_id))


@router.post("/{isbn}/return", response_model=BookResponse)
def return_book(
    isbn: str,
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    """Return one unit held by the calling member"""
    return BookResponse.from_book(system.catalog.return_book(isbn, member_id))


@router.get("/{isbn}/history", response_model=List[AuditEventResponse])
def get_book_history(
    isbn: str,
    limit: Optional[int] = 50,
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
):
    """Audit events for a book (librarians only)"""
    events = system.catalog.get_history(member_id, isbn, limit=limit)
    return [AuditEventResponse.from_event(event) for event in events]
