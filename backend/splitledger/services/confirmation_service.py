"""
Settlement confirmation: the two-party handshake that finalizes a settlement.

A settlement retires its allocated obligations exactly once, in the same
transaction that moves it from pending to confirmed. Disputing is terminal.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from splitledger.core.exceptions import AccessDeniedError, NotFoundError, SettlementFinalizedError
from splitledger.core.utils import utcnow
from splitledger.db.session import unit_of_work
from splitledger.models.settlement import Settlement, SettlementStatus
from splitledger.services.cache_service import (
    CacheBackend, debt_cache_keys, group_cache_keys, invalidate_quietly,
)
from splitledger.services.settlement_service import retire_allocations

logger = logging.getLogger(__name__)


def confirm_settlement(
    settlement_id: int,
    actor_id: int,
    confirm: bool,
    dispute_reason: Optional[str] = None,
    db: Session = None,
    cache: Optional[CacheBackend] = None,
) -> Settlement:
    """
    Record the actor's confirmation (or dispute) of a pending settlement.

    When the second party confirms, the status flip to confirmed is a guarded
    update; only the call that wins it retires the allocated obligations.
    """
    with unit_of_work(db):
        settlement = db.query(Settlement).filter(
            Settlement.id == settlement_id
        ).with_for_update().first()
        if not settlement:
            raise NotFoundError("Settlement not found")

        if actor_id == settlement.from_user_id:
            role = "payer"
        elif actor_id == settlement.to_user_id:
            role = "receiver"
        else:
            raise AccessDeniedError("You can only confirm settlements you are involved in")

        if settlement.status != SettlementStatus.PENDING:
            raise SettlementFinalizedError(f"Settlement is already {settlement.status.value}")

        retired = []
        if not confirm:
            settlement.status = SettlementStatus.DISPUTED
            settlement.dispute_reason = dispute_reason or "No reason provided"
        else:
            if role == "payer":
                settlement.confirmed_by_payer = True
            else:
                settlement.confirmed_by_receiver = True
            db.flush()

            if settlement.fully_confirmed:
                flipped = db.query(Settlement).filter(
                    Settlement.id == settlement.id,
                    Settlement.status == SettlementStatus.PENDING
                ).update(
                    {Settlement.status: SettlementStatus.CONFIRMED, Settlement.confirmed_at: utcnow()},
                    synchronize_session=False
                )
                if flipped == 1:
                    retired = retire_allocations(settlement, db)

    db.refresh(settlement)

    if settlement.status == SettlementStatus.DISPUTED:
        logger.warning(
            f"Settlement {settlement.id} disputed by {role} {actor_id}: {settlement.dispute_reason}"
        )
    else:
        logger.info(
            f"Settlement {settlement.id} confirmed by {role} {actor_id}; status {settlement.status.value}, "
            f"{len(retired)} obligations retired"
        )

    invalidate_quietly(
        cache,
        debt_cache_keys([settlement.from_user_id, settlement.to_user_id]) + group_cache_keys(settlement.group_id)
    )
    return settlement
