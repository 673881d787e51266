"""
Audit Trail Module

Hash-chained append-only log of catalog mutations. Each event stores the
SHA-256 hash of its predecessor so any edit or deletion of history is
detectable with ``verify_integrity``.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ConflictError
from .storage import VERSION_FIELD, StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Catalog events
    BOOK_CREATED = "book_created"
    BOOK_UPDATED = "book_updated"
    BOOK_DELETED = "book_deleted"

    # Lending events
    BOOK_CHECKED_OUT = "book_checked_out"
    BOOK_RETURNED = "book_returned"

    # Member events
    MEMBER_REGISTERED = "member_registered"
    MEMBER_ROLE_CHANGED = "member_role_changed"
    MEMBER_DEACTIVATED = "member_deactivated"
    AUTHORIZATION_DENIED = "authorization_denied"


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # book, member
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    sequence: int = 0  # position in the chain, 1-based

    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'sequence': self.sequence,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data.get('event_type'), str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection

    The chain head (last sequence number and hash) lives in its own record.
    Appending claims the next position with a compare-and-swap on that
    record, so trails in different threads or processes sharing one store
    extend a single chain.
    """

    HEAD_ID = "chain"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 max_attempts: int = 100):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"
        self.max_attempts = max_attempts

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def _load_head(self) -> Dict[str, Any]:
        head = self.storage.load(self.head_table, self.HEAD_ID)
        return head or {"sequence": 0, "hash": "", VERSION_FIELD: 0}

    def get_latest_hash(self) -> Optional[str]:
        """Get the hash of the most recent audit event"""
        return self._load_head()["hash"] or None

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: Member who initiated the action

        Returns:
            Created AuditEvent

        Raises:
            ConflictError: Another writer claimed the head on every attempt
        """
        event_id = str(uuid.uuid4())
        for _ in range(self.max_attempts):
            head = self._load_head()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=event_id,
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head["hash"],
                current_hash="",
                metadata=metadata or {},
                user_id=user_id,
                sequence=head["sequence"] + 1
            )
            event.current_hash = event.calculate_hash()

            claimed = self.storage.save_if_version(
                self.head_table, self.HEAD_ID,
                {"sequence": event.sequence, "hash": event.current_hash},
                expected_version=head[VERSION_FIELD]
            )
            if claimed:
                self.storage.save(self.table_name, event.id, event.to_dict())
                return event

        raise ConflictError(
            f"Could not append {event_type.value} for {entity_type} {entity_id} "
            f"after {self.max_attempts} attempts",
            attempts=self.max_attempts
        )

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Events for one entity, oldest first; ``limit`` keeps the most recent N"""
        filters = {'entity_type': entity_type, 'entity_id': entity_id}
        events = [AuditEvent.from_dict(data)
                  for data in self.storage.find(self.table_name, filters)]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_user(self, user_id: str, limit: Optional[int] = None) -> List[AuditEvent]:
        """Events performed by one member, oldest first"""
        events = [AuditEvent.from_dict(data)
                  for data in self.storage.find(self.table_name, {'user_id': user_id})]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def count_events(self) -> int:
        return self.storage.count(self.table_name)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Walk the chain in sequence order checking each hash and link

        Returns:
            ``valid`` plus the offending events: ``tampered`` (stored hash no
            longer matches the content), ``broken_links`` (previous hash does
            not match the predecessor), ``missing_sequences`` (gaps left by
            deleted events) and ``head_matches`` (the chain head names the
            last stored event, so a dropped tail is caught too)
        """
        events = self._load_events()
        tampered: List[str] = []
        broken_links: List[Dict[str, Any]] = []
        missing: List[int] = []

        predecessor: Optional[AuditEvent] = None
        for event in events:
            if not event.verify_hash():
                tampered.append(event.id)

            expected_link = predecessor.current_hash if predecessor else ""
            if event.previous_hash != expected_link:
                broken_links.append({'event_id': event.id, 'sequence': event.sequence})

            expected_sequence = predecessor.sequence + 1 if predecessor else 1
            missing.extend(range(expected_sequence, event.sequence))
            predecessor = event

        head = self._load_head()
        last_hash = predecessor.current_hash if predecessor else ""
        head_matches = head["hash"] == last_hash
        if predecessor and head["sequence"] > predecessor.sequence:
            missing.extend(range(predecessor.sequence + 1, head["sequence"] + 1))

        return {
            'valid': head_matches and not (tampered or broken_links or missing),
            'total_events': len(events),
            'tampered': tampered,
            'broken_links': broken_links,
            'missing_sequences': missing,
            'head_matches': head_matches,
        }
