"""
Test suite for audit trail module

Tests hash chaining, tamper detection and concurrent appends from one or
several trail instances.
"""

import os
import tempfile
import threading

import pytest

from core_lending.audit import AuditEvent, AuditEventType, AuditTrail
from core_lending.errors import ConflictError
from core_lending.storage import InMemoryStorage, SQLiteStorage


class TestAuditTrail:
    """Test hash-chained audit trail"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def test_first_event_has_empty_previous_hash(self):
        event = self.audit.log_event(
            AuditEventType.BOOK_CREATED, "book", "978-0",
            metadata={"title": "Dune"}, user_id="librarian-1"
        )

        assert event.previous_hash == ""
        assert event.sequence == 1
        assert event.verify_hash()
        assert self.audit.get_latest_hash() == event.current_hash

    def test_events_are_chained(self):
        first = self.audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-0")
        second = self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0",
                                      user_id="alice")

        assert second.previous_hash == first.current_hash
        assert second.sequence == 2
        assert self.audit.count_events() == 2

    def test_events_for_entity(self):
        self.audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-0")
        self.audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-1")
        self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0", user_id="alice")
        self.audit.log_event(AuditEventType.BOOK_RETURNED, "book", "978-0", user_id="alice")

        events = self.audit.get_events_for_entity("book", "978-0")
        assert [e.event_type for e in events] == [
            AuditEventType.BOOK_CREATED,
            AuditEventType.BOOK_CHECKED_OUT,
            AuditEventType.BOOK_RETURNED,
        ]

        latest = self.audit.get_events_for_entity("book", "978-0", limit=1)
        assert [e.event_type for e in latest] == [AuditEventType.BOOK_RETURNED]

    def test_events_by_user(self):
        self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0", user_id="alice")
        self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0", user_id="bob")

        events = self.audit.get_events_by_user("alice")
        assert len(events) == 1
        assert events[0].user_id == "alice"

    def test_metadata_made_json_safe(self):
        event = self.audit.log_event(
            AuditEventType.BOOK_UPDATED, "book", "978-0",
            metadata={"changes": ("title", "author"), "kind": AuditEventType.BOOK_UPDATED}
        )

        assert event.metadata == {"changes": ["title", "author"], "kind": "book_updated"}
        assert event.verify_hash()

    def test_event_round_trip(self):
        event = self.audit.log_event(AuditEventType.BOOK_DELETED, "book", "978-0",
                                     metadata={"outstanding_units": 1})

        loaded = AuditEvent.from_dict(self.storage.load("audit_events", event.id))

        assert loaded == event
        assert loaded.verify_hash()

    def test_verify_integrity_clean_chain(self):
        for i in range(5):
            self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", f"978-{i}")

        result = self.audit.verify_integrity()

        assert result['valid'] is True
        assert result['total_events'] == 5
        assert result['tampered'] == []
        assert result['broken_links'] == []
        assert result['missing_sequences'] == []

    def test_tampered_metadata_detected(self):
        self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0", user_id="alice")
        event = self.audit.log_event(AuditEventType.BOOK_RETURNED, "book", "978-0",
                                     user_id="alice", metadata={"available_units": 1})

        record = self.storage.load("audit_events", event.id)
        record["metadata"]["available_units"] = 99
        self.storage.save("audit_events", event.id, record)

        result = self.audit.verify_integrity()

        assert result['valid'] is False
        assert result['tampered'] == [event.id]
        assert result['broken_links'] == []

    def test_deleted_event_breaks_chain(self):
        self.audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-0")
        middle = self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0")
        self.audit.log_event(AuditEventType.BOOK_RETURNED, "book", "978-0")

        self.storage.delete("audit_events", middle.id)

        result = self.audit.verify_integrity()

        assert result['valid'] is False
        assert len(result['broken_links']) == 1
        assert result['missing_sequences'] == [2]

    def test_concurrent_logging_keeps_chain_intact(self):
        def log_many(borrower):
            for _ in range(10):
                self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0",
                                     user_id=borrower)

        threads = [threading.Thread(target=log_many, args=(f"member-{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        result = self.audit.verify_integrity()
        assert result['valid'] is True
        assert result['total_events'] == 40

    def test_dropped_tail_detected(self):
        self.audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-0")
        last = self.audit.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0")

        self.storage.delete("audit_events", last.id)

        result = self.audit.verify_integrity()

        assert result['valid'] is False
        assert result['head_matches'] is False
        assert result['missing_sequences'] == [2]

    def test_gives_up_when_head_is_always_taken(self):
        class ContendedStorage(InMemoryStorage):
            def save_if_version(self, table, record_id, data, expected_version):
                return False

        audit = AuditTrail(ContendedStorage(), max_attempts=3)

        with pytest.raises(ConflictError) as exc_info:
            audit.log_event(AuditEventType.BOOK_CREATED, "book", "978-0")

        assert exc_info.value.attempts == 3
        assert audit.count_events() == 0


class TestSharedChain:
    """Several trail instances appending to one store"""

    def log_from_two_trails(self, first, second, per_trail=50):
        barrier = threading.Barrier(2)

        def log_many(trail, borrower):
            barrier.wait()
            for _ in range(per_trail):
                trail.log_event(AuditEventType.BOOK_CHECKED_OUT, "book", "978-0",
                                user_id=borrower)

        threads = [threading.Thread(target=log_many, args=(first, "alice")),
                   threading.Thread(target=log_many, args=(second, "bob"))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def test_two_trails_over_one_memory_store(self):
        storage = InMemoryStorage()
        first, second = AuditTrail(storage), AuditTrail(storage)

        self.log_from_two_trails(first, second)

        result = first.verify_integrity()
        assert result['valid'] is True
        assert result['total_events'] == 100
        assert sorted(e.sequence for e in first._load_events()) == list(range(1, 101))

    def test_two_trails_over_separate_sqlite_connections(self):
        temp_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        temp_db.close()
        first_storage = SQLiteStorage(temp_db.name)
        second_storage = SQLiteStorage(temp_db.name)
        try:
            self.log_from_two_trails(AuditTrail(first_storage), AuditTrail(second_storage),
                                     per_trail=20)

            result = AuditTrail(first_storage).verify_integrity()
            assert result['valid'] is True
            assert result['total_events'] == 40
        finally:
            first_storage.close()
            second_storage.close()
            for suffix in ("", "-wal", "-shm"):
                if os.path.exists(temp_db.name + suffix):
                    os.unlink(temp_db.name + suffix)
