"""
Tests for the settlement allocator, settlement history and details.
"""
from datetime import date, datetime

import pytest

from splitledger.core.config import settings
from splitledger.core.exceptions import AccessDeniedError, LedgerValidationError, NotFoundError
from splitledger.models import ExpenseParticipant, SettlementAllocation, SettlementStatus
from splitledger.schemas.settlement import SettlementHistoryFilters
from splitledger.services import expense_service, settlement_service
from splitledger.services.settlement_service import OutstandingDebt, allocate_fifo


def debt(expense_id, amount, day, minute=0):
    return OutstandingDebt(
        expense_id=expense_id,
        description=f"Expense {expense_id}",
        expense_date=date(2024, 1, day),
        created_at=datetime(2024, 1, day, 12, minute),
        amount_cents=amount,
    )


def settled_ids(allocation):
    return [line.expense_id for line in allocation.settled]


def test_allocate_fifo_retires_oldest_first_regardless_of_input_order():
    debts = [debt(3, 300, 5), debt(1, 500, 1), debt(2, 200, 1, minute=30)]

    forward = allocate_fifo(debts, 700)
    backward = allocate_fifo(list(reversed(debts)), 700)

    assert settled_ids(forward) == settled_ids(backward) == [1, 2]
    assert forward.partial is None
    assert forward.allocated_cents == 700


def test_allocate_fifo_records_partial_without_retiring_it():
    allocation = allocate_fifo([debt(1, 500, 1), debt(2, 300, 2), debt(3, 100, 3)], 600)

    assert settled_ids(allocation) == [1]
    assert allocation.partial.expense_id == 2
    assert allocation.partial.partial_amount_cents == 100
    assert allocation.partial.total_owed_cents == 300


def test_allocate_fifo_rejects_overpayment():
    with pytest.raises(LedgerValidationError) as exc:
        allocate_fifo([debt(1, 500, 1)], 501)
    assert exc.value.details == {"amount": 501, "total_debt": 500}


def test_allocate_fifo_exact_total_settles_everything():
    allocation = allocate_fifo([debt(1, 500, 1), debt(2, 300, 2)], 800)
    assert settled_ids(allocation) == [1, 2]
    assert allocation.partial is None


@pytest.fixture
def bob_owes_alice(db, users, group):
    """Two expenses paid by alice: bob owes 10.00 (older) then 5.00."""
    alice = users["alice"]
    older = expense_service.create_group_expense(
        group.id, alice.id, 3000, "Hotel", expense_date=date(2024, 2, 1), db=db
    )
    newer = expense_service.create_group_expense(
        group.id, alice.id, 1500, "Museum", expense_date=date(2024, 2, 10), db=db
    )
    return older, newer


def test_settle_debt_full_amount_leaves_nothing_outstanding(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    outcome = settlement_service.settle_debt(group.id, bob.id, alice.id, 1500, db=db)

    settlement = outcome.settlement
    assert settlement.status == SettlementStatus.PENDING
    assert settlement.confirmed_by_payer and not settlement.confirmed_by_receiver
    assert settlement.description == "Debt settlement in Trip"
    assert settled_ids(outcome.allocation) == [e.id for e in bob_owes_alice]
    assert outcome.remaining_debt_cents == 0
    assert outcome.is_fully_settled

    # Nothing is retired until the receiver confirms.
    open_rows = db.query(ExpenseParticipant).filter(
        ExpenseParticipant.user_id == bob.id, ExpenseParticipant.is_settled.is_(False)
    ).count()
    assert open_rows == 2


def test_settle_debt_partial_keeps_full_obligation_outstanding(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    older, newer = bob_owes_alice
    outcome = settlement_service.settle_debt(group.id, bob.id, alice.id, 1200, db=db)

    assert settled_ids(outcome.allocation) == [older.id]
    assert outcome.allocation.partial.expense_id == newer.id
    assert outcome.allocation.partial.partial_amount_cents == 200
    assert outcome.remaining_debt_cents == 500
    assert db.query(SettlementAllocation).count() == 1


def test_pending_settlement_reserves_covered_obligations(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, db=db)

    remaining = settlement_service.outstanding_debts(bob.id, alice.id, group.id, db)
    assert [d.amount_cents for d in remaining] == [500]

    with pytest.raises(LedgerValidationError):
        settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, db=db)


@pytest.mark.parametrize("kwargs, error", [
    ({"to_user": "bob", "amount_cents": 100}, LedgerValidationError),
    ({"to_user": "alice", "amount_cents": 0}, LedgerValidationError),
    ({"to_user": "alice", "amount_cents": 100, "settlement_method": "iou"}, LedgerValidationError),
    ({"to_user": "alice", "amount_cents": 100, "trusted": True}, LedgerValidationError),
    ({"to_user": "dave", "amount_cents": 100}, AccessDeniedError),
    ({"to_user": "carol", "amount_cents": 100}, NotFoundError),
])
def test_settle_debt_rejections(db, users, group, bob_owes_alice, kwargs, error):
    kwargs = dict(kwargs)
    to_user = users[kwargs.pop("to_user")]
    with pytest.raises(error):
        settlement_service.settle_debt(group.id, users["bob"].id, to_user.id, db=db, **kwargs)


def test_trusted_settlement_retires_immediately(db, users, group, bob_owes_alice, monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_TRUSTED_SETTLEMENTS", True)
    alice, bob = users["alice"], users["bob"]
    older, newer = bob_owes_alice

    outcome = settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, trusted=True, db=db)

    assert outcome.settlement.status == SettlementStatus.CONFIRMED
    assert outcome.settlement.confirmed_at is not None
    bob_rows = {
        p.expense_id: p.is_settled
        for p in db.query(ExpenseParticipant).filter(ExpenseParticipant.user_id == bob.id)
    }
    assert bob_rows == {older.id: True, newer.id: False}
    assert outcome.remaining_debt_cents == 500


def test_settlement_history_is_seen_from_each_side(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, settlement_method="bank_transfer", db=db)

    bob_view = settlement_service.get_settlement_history(bob.id, SettlementHistoryFilters(), db)
    alice_view = settlement_service.get_settlement_history(alice.id, SettlementHistoryFilters(), db)

    assert bob_view.settlements[0].direction == "outgoing"
    assert not bob_view.settlements[0].action_required
    assert bob_view.summary.outgoing_amount == 1000
    assert alice_view.settlements[0].direction == "incoming"
    assert alice_view.settlements[0].action_required
    assert alice_view.settlements[0].display_text == "Bob Tester paid you $10.00"
    assert alice_view.summary.action_required_count == 1
    assert alice_view.pagination.total_items == 1


def test_settlement_history_filters(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, db=db)

    outgoing = SettlementHistoryFilters(direction="outgoing")
    assert settlement_service.get_settlement_history(alice.id, outgoing, db).settlements == []

    confirmed = SettlementHistoryFilters(status="confirmed")
    assert settlement_service.get_settlement_history(bob.id, confirmed, db).summary.total_settlements == 0

    with pytest.raises(LedgerValidationError):
        settlement_service.get_settlement_history(bob.id, SettlementHistoryFilters(status="lost"), db)


def test_settlement_history_caps_limit_and_whitelists_sort(db, users):
    filters = SettlementHistoryFilters(limit=10000, sort_by="password", sort_order="sideways")
    history = settlement_service.get_settlement_history(users["alice"].id, filters, db)

    assert history.filters.limit == settings.SETTLEMENT_HISTORY_MAX_LIMIT
    assert history.filters.sort_by == "created_at"
    assert history.filters.sort_order == "desc"


def test_settlement_details_only_for_parties(db, users, group, bob_owes_alice):
    alice, bob = users["alice"], users["bob"]
    outcome = settlement_service.settle_debt(group.id, bob.id, alice.id, 1000, db=db)

    details = settlement_service.get_settlement_details(outcome.settlement.id, alice.id, db)
    assert details.user_role == "receiver"
    assert details.can_confirm
    assert details.payer.name == "Bob Tester"

    assert not settlement_service.get_settlement_details(outcome.settlement.id, bob.id, db).can_confirm
    with pytest.raises(NotFoundError):
        settlement_service.get_settlement_details(outcome.settlement.id, users["carol"].id, db)
