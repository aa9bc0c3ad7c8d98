"""
Tests for balance aggregation.
"""
from datetime import date

import pytest

from splitledger.services import balance_service, expense_service, settlement_service


@pytest.fixture
def ledger(db, users, group, make_group):
    """
    Trip: alice paid 30.00 (bob and carol owe 10.00 each), bob paid 6.00
    (alice and carol owe 2.00 each). Flat: dave paid 50.00, alice owes 25.00.
    """
    alice, bob, dave = users["alice"], users["bob"], users["dave"]
    flat = make_group("Flat", [alice, dave])
    expense_service.create_group_expense(group.id, alice.id, 3000, "Hotel", expense_date=date(2024, 2, 1), db=db)
    expense_service.create_group_expense(group.id, bob.id, 600, "Snacks", expense_date=date(2024, 2, 5), db=db)
    expense_service.create_group_expense(flat.id, dave.id, 5000, "Rent", expense_date=date(2024, 1, 1), db=db)
    return flat


def test_debt_summary_nets_credit_and_debt(db, users, ledger):
    summary = balance_service.get_debt_summary(users["alice"].id, db)

    assert summary.total_owed_to_user == 2000
    assert summary.total_user_owes == 2700
    assert summary.net_balance == -700
    assert summary.net_position == "debtor"
    assert summary.total_unsettled_expenses == 3


def test_group_balances_rank_largest_imbalance_first(db, users, group, ledger):
    balances = balance_service.get_group_balances(users["alice"].id, db)

    assert [b.group_id for b in balances] == [ledger.id, group.id]
    assert balances[0].net_balance == -2500
    assert balances[1].net_balance == 1800
    assert balances[1].last_expense_date == date(2024, 2, 5)


def test_group_balances_skip_groups_that_net_to_zero(db, users, group, make_group):
    alice, bob = users["alice"], users["bob"]
    pair = make_group("Pair", [alice, bob])
    expense_service.create_group_expense(pair.id, alice.id, 200, "Tea", db=db)
    expense_service.create_group_expense(pair.id, bob.id, 200, "Cake", db=db)
    expense_service.create_group_expense(group.id, bob.id, 300, "Taxi", db=db)

    balances = balance_service.get_group_balances(alice.id, db)
    assert [(b.group_id, b.net_balance) for b in balances] == [(group.id, -100)]


def test_urgent_debts_sorted_by_amount_and_tagged_by_age(db, users, ledger):
    urgent = balance_service.get_urgent_debts(users["alice"].id, db, today=date(2024, 2, 15))

    assert [d.user_debt_amount for d in urgent] == [2500, 200]
    assert [d.urgency_level for d in urgent] == ["high", "low"]
    assert urgent[0].payer_name == "Dave Tester"
    assert urgent[0].days_old == 45


@pytest.mark.parametrize("days, level", [(0, "low"), (14, "low"), (15, "medium"), (30, "medium"), (31, "high")])
def test_urgency_level(days, level):
    assert balance_service.urgency_level(days) == level


def test_detailed_debts_net_each_pair(db, users, group, ledger):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    detailed = balance_service.get_detailed_debts(alice.id, db, group_id=group.id, today=date(2024, 2, 20))

    bob_key, carol_key = f"{bob.id}_{group.id}", f"{carol.id}_{group.id}"
    assert set(detailed.people_who_owe_user) == {bob_key, carol_key}
    assert set(detailed.people_user_owes) == {bob_key}

    bob_net = detailed.net_balances[bob_key]
    assert (bob_net.they_owe, bob_net.user_owes, bob_net.net_amount) == (1000, 200, 800)
    assert bob_net.net_position == "user_is_owed"
    assert detailed.net_balances[carol_key].net_amount == 1000

    hotel = detailed.people_who_owe_user[bob_key].expenses[0]
    assert hotel.days_since_expense == 19
    assert hotel.is_overdue

    assert 'Bob Tester owes you $8.00 in group "Trip".' in detailed.settlement_suggestions
    assert detailed.summary.unique_debtors == 2
    assert detailed.summary.unique_creditors == 1
    assert detailed.summary.total_expense_count == 3


def test_detailed_net_matches_group_summary(db, users, group, ledger):
    alice = users["alice"]
    detailed = balance_service.get_detailed_debts(alice.id, db, group_id=group.id)
    trip = next(b for b in balance_service.get_group_balances(alice.id, db) if b.group_id == group.id)

    assert sum(b.net_amount for b in detailed.net_balances.values()) == trip.net_balance
    assert detailed.summary.net_balance == trip.net_balance


def test_detailed_debts_one_sided_pair_gets_net_entry(db, users, ledger):
    alice, dave = users["alice"], users["dave"]
    detailed = balance_service.get_detailed_debts(alice.id, db, group_id=ledger.id)

    net = detailed.net_balances[f"{dave.id}_{ledger.id}"]
    assert net.net_amount == -2500
    assert net.net_position == "user_owes"
    assert detailed.settlement_suggestions == ['You owe Dave Tester $25.00 in group "Flat".']


def test_overview_includes_recent_settlements(db, users, group, ledger):
    alice, bob = users["alice"], users["bob"]
    settlement_service.settle_debt(group.id, bob.id, alice.id, 800, db=db)

    overview = balance_service.get_user_debt_overview(alice.id, db, today=date(2024, 2, 15))

    assert len(overview.recent_activity) == 1
    activity = overview.recent_activity[0]
    assert activity.transaction_type == "received"
    assert activity.other_party_name == "Bob Tester"
    assert activity.status == "pending"
    # Pending settlements do not move balances.
    assert overview.summary.total_owed_to_user == 2000
