"""
Lending system wiring and authentication dependencies
"""

from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..audit import AuditTrail
from ..catalog import CatalogService
from ..catalog_store import CatalogStore
from ..config import LendingConfig, get_config
from ..errors import UnauthorizedError
from ..identity import MemberDirectory
from ..lending import LendingEngine
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface


class LendingSystem:
    """All lending components built over one storage backend"""

    def __init__(self, use_sqlite: bool = True, config: Optional[LendingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        if storage is not None:
            self.storage = storage
        elif use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.directory = MemberDirectory(
            self.storage,
            jwt_secret=self.config.jwt_secret,
            jwt_algorithm=self.config.jwt_algorithm,
            audit_trail=self.audit_trail
        )
        self.engine = LendingEngine(
            max_outstanding_per_borrower=self.config.max_outstanding_per_borrower
        )
        self.catalog_store = CatalogStore(self.storage)
        self.catalog = CatalogService(
            self.catalog_store,
            self.engine,
            self.directory,
            audit_trail=self.audit_trail,
            max_attempts=self.config.checkout_retry_attempts,
            backoff_seconds=self.config.retry_backoff_seconds
        )
        if self.config.bootstrap_librarian:
            self.directory.ensure_librarian(self.config.bootstrap_librarian)

    def close(self) -> None:
        self.storage.close()


security = HTTPBearer(auto_error=False)


def get_lending_system(request: Request) -> LendingSystem:
    return request.app.state.lending_system


def get_current_member(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    member_header: Optional[str] = Header(None, alias="X-Member-Id"),
    system: LendingSystem = Depends(get_lending_system)
) -> str:
    """Member id of the authenticated caller"""
    if not system.config.auth_enabled:
        # Trusted-network mode: the gateway in front has already authenticated
        if not member_header:
            raise UnauthorizedError("X-Member-Id header required")
        return system.directory.require_member(member_header).id

    token = credentials.credentials if credentials else None
    return system.directory.authenticate_token(token)


def require_librarian(
    member_id: str = Depends(get_current_member),
    system: LendingSystem = Depends(get_lending_system)
) -> str:
    system.directory.require_librarian(member_id)
    return member_id
