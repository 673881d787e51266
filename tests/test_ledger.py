"""
Test suite for ledger module

Tests borrower states, the borrower-keyed ledger mapping and the inventory
balance check.
"""

import pytest
from datetime import datetime, timezone, timedelta

from core_lending.errors import LedgerInvariantError
from core_lending.ledger import BorrowerState, BorrowerStatus, Ledger


T0 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


class TestBorrowerState:
    """Test individual borrower states"""

    def test_default_state_is_never_checked_out(self):
        state = BorrowerState(borrower_id="alice")

        assert state.outstanding_quantity == 0
        assert state.checked_out_at is None
        assert state.returned_at is None
        assert state.status == BorrowerStatus.NEVER_CHECKED_OUT
        assert not state.is_outstanding

    def test_negative_quantity_rejected(self):
        with pytest.raises(LedgerInvariantError, match="cannot be negative"):
            BorrowerState(borrower_id="alice", outstanding_quantity=-1)

    def test_checked_out_increments_and_stamps(self):
        state = BorrowerState(borrower_id="alice").checked_out(T0)

        assert state.outstanding_quantity == 1
        assert state.checked_out_at == T0
        assert state.status == BorrowerStatus.OUTSTANDING

    def test_partial_return_keeps_returned_at_unset(self):
        state = BorrowerState(borrower_id="alice", outstanding_quantity=2, checked_out_at=T0)

        after = state.returned_one(T0 + timedelta(hours=1))

        assert after.outstanding_quantity == 1
        assert after.returned_at is None
        assert after.status == BorrowerStatus.OUTSTANDING

    def test_full_return_sets_returned_at(self):
        later = T0 + timedelta(days=3)
        state = BorrowerState(borrower_id="alice", outstanding_quantity=1, checked_out_at=T0)

        after = state.returned_one(later)

        assert after.outstanding_quantity == 0
        assert after.returned_at == later
        assert after.status == BorrowerStatus.RETURNED

    def test_checkout_after_return_reactivates(self):
        returned = BorrowerState(
            borrower_id="alice", outstanding_quantity=0,
            checked_out_at=T0, returned_at=T0 + timedelta(days=1)
        )

        again = returned.checked_out(T0 + timedelta(days=2))

        assert again.status == BorrowerStatus.OUTSTANDING
        assert again.outstanding_quantity == 1
        assert again.checked_out_at == T0 + timedelta(days=2)
        assert again.returned_at is None
        assert again.to_dict()["returnDate"] is None

    def test_transitions_do_not_mutate_original(self):
        state = BorrowerState(borrower_id="alice")
        state.checked_out(T0)
        assert state.outstanding_quantity == 0

    def test_wire_format(self):
        state = BorrowerState(borrower_id="alice", outstanding_quantity=1, checked_out_at=T0)
        data = state.to_dict()

        assert data["user"] == "alice"
        assert data["quantity"] == 1
        assert data["checkedOut"] is True
        assert data["returned"] is False
        assert data["status"] == "outstanding"
        assert data["checkoutDate"] == T0.isoformat()
        assert data["returnDate"] is None

        assert BorrowerState.from_dict(data) == state


class TestLedger:
    """Test the borrower-keyed ledger"""

    def test_find_or_default_for_unknown_borrower(self):
        ledger = Ledger()

        state = ledger.find_or_default("bob")

        assert state.borrower_id == "bob"
        assert state.outstanding_quantity == 0
        # Lookup never inserts
        assert "bob" not in ledger
        assert len(ledger) == 0

    def test_upsert_inserts_then_replaces(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=1))
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=3))

        assert len(ledger) == 1
        assert ledger.find_or_default("bob").outstanding_quantity == 3

    def test_upsert_does_not_aggregate(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=2))
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=1))

        assert ledger.total_outstanding() == 1

    def test_zero_quantity_states_are_retained(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=0,
                                    checked_out_at=T0, returned_at=T0))
        ledger.upsert(BorrowerState(borrower_id="carol", outstanding_quantity=2))

        assert ledger.borrowers() == ["bob", "carol"]
        assert ledger.active_borrowers() == ["carol"]
        assert ledger.total_outstanding() == 2

    def test_check_invariants_balanced(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=2))

        ledger.check_invariants(total_units=5, available_units=3)

    def test_check_invariants_out_of_balance(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=2))

        with pytest.raises(LedgerInvariantError, match="out of balance"):
            ledger.check_invariants(total_units=5, available_units=4)

    def test_check_invariants_negative_available(self):
        with pytest.raises(LedgerInvariantError, match="cannot be negative"):
            Ledger().check_invariants(total_units=0, available_units=-1)

    def test_check_invariants_available_above_total(self):
        with pytest.raises(LedgerInvariantError, match="exceed total"):
            Ledger().check_invariants(total_units=1, available_units=2)

    def test_list_round_trip(self):
        ledger = Ledger()
        ledger.upsert(BorrowerState(borrower_id="bob", outstanding_quantity=2, checked_out_at=T0))
        ledger.upsert(BorrowerState(borrower_id="carol", outstanding_quantity=0,
                                    checked_out_at=T0, returned_at=T0))

        assert Ledger.from_list(ledger.to_list()) == ledger

    def test_from_list_rejects_duplicate_borrowers(self):
        items = [
            {"user": "bob", "quantity": 1},
            {"user": "bob", "quantity": 2},
        ]
        with pytest.raises(LedgerInvariantError, match="Duplicate"):
            Ledger.from_list(items)
