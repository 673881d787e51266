"""
Admin endpoints (catalog statistics, audit chain verification)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from .auth import LendingSystem, get_lending_system, require_librarian


router = APIRouter()


@router.get("/stats")
def get_stats(
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
) -> Dict[str, Any]:
    """Catalog and directory totals"""
    books = system.catalog.list_books()
    return {
        "books": len(books),
        "total_units": sum(b.total_units for b in books),
        "available_units": sum(b.available_units for b in books),
        "outstanding_units": sum(b.outstanding_units for b in books),
        "members": len(system.directory.list_members()),
        "audit_events": system.audit_trail.count_events() if system.audit_trail else 0,
    }


@router.get("/audit/verify")
def verify_audit_chain(
    librarian_id: str = Depends(require_librarian),
    system: LendingSystem = Depends(get_lending_system)
) -> Dict[str, Any]:
    """Walk the audit hash chain and report tampering or gaps"""
    if not system.audit_trail:
        return {"enabled": False}
    return {"enabled": True, **system.audit_trail.verify_integrity()}
