"""
Member Directory Module

Members, their roles, and bearer-token authentication. Two roles exist:
USER (may check out and return) and LIBRARIAN (may also create, edit and
delete catalog items). Tokens are HS256 JWTs carrying the member id in the
``uid`` claim; issuing them is the job of the login service, not this module.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import jwt

from .audit import AuditEventType, AuditTrail
from .errors import (
    ConflictError, InvalidMemberDataError, MemberAlreadyExistsError, NotFoundError,
    StoreUnavailableError, UnauthorizedError
)
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("lending.identity")


class MemberRole(Enum):
    """Member roles"""
    USER = "USER"
    LIBRARIAN = "LIBRARIAN"


@dataclass
class Member(StorageRecord):
    """Library member"""
    username: str
    role: MemberRole = MemberRole.USER
    is_active: bool = True

    @property
    def is_librarian(self) -> bool:
        return self.is_active and self.role == MemberRole.LIBRARIAN

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['role'] = self.role.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Member':
        data = dict(data)
        if isinstance(data.get('role'), str):
            data['role'] = MemberRole(data['role'])
        return super().from_dict(data)


class MemberDirectory:
    """
    Member lookup, role checks and token verification
    """

    def __init__(self, storage: StorageInterface, jwt_secret: str,
                 jwt_algorithm: str = "HS256",
                 audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.audit_trail = audit_trail
        self.table_name = "members"

    def register_member(self, username: str, role: MemberRole = MemberRole.USER,
                        member_id: Optional[str] = None,
                        actor_id: Optional[str] = None) -> Member:
        """
        Add a member to the directory

        Args:
            username: Unique login name
            role: USER or LIBRARIAN
            member_id: Identifier carried in tokens; a UUID when omitted
            actor_id: Librarian performing the registration, for the audit trail

        Raises:
            InvalidMemberDataError: Username or id is empty
            MemberAlreadyExistsError: Username or id already taken
        """
        if not username or not username.strip():
            raise InvalidMemberDataError("Username cannot be empty")
        if member_id is not None and not member_id.strip():
            raise InvalidMemberDataError("Member id cannot be empty")
        if self.get_member_by_username(username):
            raise MemberAlreadyExistsError(f"Username {username} already exists")
        if member_id and self.get_member(member_id):
            raise MemberAlreadyExistsError(f"Member {member_id} already exists")

        now = datetime.now(timezone.utc)
        member = Member(
            id=member_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            role=role
        )
        self._save(member)
        logger.info("Member registered",
                    extra={"user_id": actor_id, "action": "register_member",
                           "resource": member.id})
        self._audit(AuditEventType.MEMBER_REGISTERED, member.id,
                    {"username": username, "role": role.value}, actor_id)
        return member

    def ensure_librarian(self, username: str) -> Member:
        """
        Return the named member, registering a librarian if the name is free

        Used to seed the first librarian of an empty directory; the member id
        is the username so operators can mint a token for it directly.
        """
        existing = self.get_member_by_username(username)
        if existing:
            if not existing.is_librarian:
                logger.warning("Bootstrap member is not an active librarian",
                               extra={"resource": existing.id})
            return existing
        return self.register_member(username, MemberRole.LIBRARIAN, member_id=username)

    def get_member(self, member_id: str) -> Optional[Member]:
        data = self._load(member_id)
        if data:
            return Member.from_dict(data)
        return None

    def get_member_by_username(self, username: str) -> Optional[Member]:
        found = self.storage.find(self.table_name, {"username": username})
        if found:
            return Member.from_dict(found[0])
        return None

    def list_members(self, role: Optional[MemberRole] = None) -> List[Member]:
        members = [Member.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if role:
            members = [m for m in members if m.role == role]
        return sorted(members, key=lambda m: m.username)

    def require_existing(self, member_id: str) -> Member:
        """
        Raises:
            NotFoundError: No member with that id
        """
        member = self.get_member(member_id)
        if not member:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    def set_role(self, member_id: str, role: MemberRole,
                 actor_id: Optional[str] = None) -> Member:
        member = self.require_existing(member_id)
        previous = member.role
        member.role = role
        member.updated_at = datetime.now(timezone.utc)
        self._save(member)
        self._audit(AuditEventType.MEMBER_ROLE_CHANGED, member.id,
                    {"from": previous.value, "to": role.value}, actor_id)
        return member

    def deactivate_member(self, member_id: str, actor_id: Optional[str] = None) -> Member:
        member = self.require_existing(member_id)
        member.is_active = False
        member.updated_at = datetime.now(timezone.utc)
        self._save(member)
        self._audit(AuditEventType.MEMBER_DEACTIVATED, member.id, {}, actor_id)
        return member

    def authorize_librarian(self, caller_id: Optional[str]) -> bool:
        """True if the caller is an active member with the librarian role"""
        if not caller_id:
            return False
        member = self.get_member(caller_id)
        return member is not None and member.is_librarian

    def require_librarian(self, caller_id: Optional[str], action: str = "") -> None:
        """
        Raises:
            UnauthorizedError: Caller is not an active librarian
        """
        if self.authorize_librarian(caller_id):
            return
        logger.warning("Librarian check failed",
                       extra={"user_id": caller_id, "action": action or None})
        self._audit(AuditEventType.AUTHORIZATION_DENIED, caller_id or "anonymous",
                    {"action": action}, caller_id)
        raise UnauthorizedError(
            f"{action or 'This operation'} requires the librarian role",
            authenticated=bool(caller_id)
        )

    def require_member(self, member_id: Optional[str]) -> Member:
        """
        Raises:
            UnauthorizedError: Unknown or deactivated member
        """
        member = self.get_member(member_id) if member_id else None
        if member is None or not member.is_active:
            raise UnauthorizedError("Unknown or inactive member")
        return member

    def authenticate_token(self, token: Optional[str]) -> str:
        """
        Verify a bearer token and return the member id it names

        Raises:
            UnauthorizedError: Missing, expired, malformed or unknown-member token
        """
        if not token:
            raise UnauthorizedError("Not authenticated")
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
        except jwt.ExpiredSignatureError as e:
            raise UnauthorizedError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError("Invalid token") from e

        member_id = payload.get("uid") or payload.get("sub")
        if not member_id:
            raise UnauthorizedError("Invalid token")
        return self.require_member(member_id).id

    def _load(self, member_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.storage.load(self.table_name, member_id)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Member directory lookup failed: {e}") from e

    def _save(self, member: Member) -> None:
        try:
            self.storage.save(self.table_name, member.id, member.to_dict())
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Member directory write failed: {e}") from e

    def _audit(self, event_type: AuditEventType, member_id: str,
               metadata: Dict[str, Any], actor_id: Optional[str] = None) -> None:
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="member",
                entity_id=member_id,
                metadata=metadata,
                user_id=actor_id
            )
        except (ConflictError, sqlite3.Error, OSError) as e:
            logger.error("Audit entry lost",
                         extra={"user_id": actor_id, "action": event_type.value,
                                "resource": member_id, "details": {"error": str(e)}})
