"""
Two sessions racing to confirm the same settlement against one database file.
"""
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from splitledger.db.base import Base
from splitledger.models import Expense, ExpenseParticipant, Settlement, SettlementStatus
from splitledger.services import confirmation_service, expense_service, settlement_service


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sessions(engine):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    opened = [factory(), factory()]
    yield opened
    for session in opened:
        session.close()


def test_concurrent_receiver_confirmations_retire_once(db, users, make_group, sessions, monkeypatch):
    alice, bob = users["alice"], users["bob"]
    pair = make_group("Pair", [alice, bob])
    lunch = expense_service.create_group_expense(
        pair.id, alice.id, 5000, "Lunch", expense_date=date(2024, 3, 1), db=db
    )
    settlement_id = settlement_service.settle_debt(pair.id, bob.id, alice.id, 2500, db=db).settlement.id

    retirements = []
    real_retire = confirmation_service.retire_allocations

    def counting_retire(settlement, session):
        retired = real_retire(settlement, session)
        retirements.append(retired)
        return retired

    monkeypatch.setattr(confirmation_service, "retire_allocations", counting_retire)

    first, second = sessions
    assert first.get(Settlement, settlement_id).status == SettlementStatus.PENDING
    assert second.get(Settlement, settlement_id).status == SettlementStatus.PENDING

    winner = confirmation_service.confirm_settlement(settlement_id, alice.id, True, db=first)
    # The second session still holds its pending snapshot; the guarded flip finds nothing to move.
    loser = confirmation_service.confirm_settlement(settlement_id, alice.id, True, db=second)

    assert winner.status == SettlementStatus.CONFIRMED
    assert loser.status == SettlementStatus.CONFIRMED
    assert retirements == [[lunch.id]]

    db.expire_all()
    obligation = db.query(ExpenseParticipant).filter(
        ExpenseParticipant.expense_id == lunch.id,
        ExpenseParticipant.user_id == bob.id
    ).one()
    assert obligation.is_settled
    assert db.query(Expense).filter(Expense.id == lunch.id).one().is_settled
    assert db.query(Settlement).filter(Settlement.id == settlement_id).one().confirmed_at is not None
