"""
Split calculator: turns one payment into per-participant obligation drafts.

Pure functions, no I/O. Amounts are integer cents throughout; the payer's
row always owes 0 and their fair share is whatever the others do not owe.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from splitledger.core.exceptions import ConsistencyError, LedgerValidationError
from splitledger.core.money import apply_percentage, percent_of, to_cents
from splitledger.models.expense import SplitType

logger = logging.getLogger(__name__)

EXACT_TOLERANCE_CENTS = 1
PERCENTAGE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class EqualSplit:
    """Divide the total evenly; leftover cents go to the first participants in order."""
    split_type: SplitType = field(default=SplitType.EQUAL, init=False)


@dataclass(frozen=True)
class ExactSplit:
    """Caller-supplied amount (cents) per participant."""
    amounts: Dict[int, int]
    split_type: SplitType = field(default=SplitType.EXACT, init=False)


@dataclass(frozen=True)
class PercentageSplit:
    """Caller-supplied percentage per participant."""
    percentages: Dict[int, Decimal]
    split_type: SplitType = field(default=SplitType.PERCENTAGE, init=False)


SplitPolicy = Union[EqualSplit, ExactSplit, PercentageSplit]


@dataclass
class ObligationDraft:
    """One participant's computed share, ready to be persisted."""
    user_id: int
    amount_owed_cents: int
    fair_share_cents: int
    percentage: Decimal
    is_payer: bool = False
    is_settled: bool = False


def parse_split_policy(split_type: str, split_details: Optional[Sequence[Any]] = None) -> SplitPolicy:
    """
    Build a split policy from the boundary representation.

    split_details is a list of items with user_id and either amount or
    percentage (objects or dicts). Each user may appear once.
    """
    try:
        kind = SplitType(split_type)
    except ValueError:
        valid = ", ".join(t.value for t in SplitType)
        raise LedgerValidationError(f"Invalid split_type. Must be one of: {valid}")

    if kind == SplitType.EQUAL:
        return EqualSplit()

    if not split_details:
        raise LedgerValidationError("split_details array is required for non-equal splits")

    values: Dict[int, Any] = {}
    attr = "amount" if kind == SplitType.EXACT else "percentage"
    for detail in split_details:
        user_id = _detail_field(detail, "user_id")
        value = _detail_field(detail, attr)
        if user_id is None:
            raise LedgerValidationError("Each split_detail must have a user_id")
        if value is None:
            raise LedgerValidationError(f"Each split_detail must have a {attr}")
        if user_id in values:
            raise LedgerValidationError(f"User {user_id} appears more than once in split_details")
        values[user_id] = value

    if kind == SplitType.EXACT:
        amounts = {user_id: to_cents(value) for user_id, value in values.items()}
        if any(cents <= 0 for cents in amounts.values()):
            raise LedgerValidationError("All amounts in split_details must be greater than 0")
        return ExactSplit(amounts=amounts)

    percentages = {}
    for user_id, value in values.items():
        try:
            pct = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise LedgerValidationError(f"Invalid percentage for user {user_id}: {value!r}")
        if not pct.is_finite() or pct <= 0:
            raise LedgerValidationError("All percentages in split_details must be greater than 0")
        percentages[user_id] = pct
    return PercentageSplit(percentages=percentages)


def _detail_field(detail: Any, name: str):
    if isinstance(detail, dict):
        return detail.get(name)
    return getattr(detail, name, None)


def compute_split(
    participants: Sequence[int],
    total_cents: int,
    payer_id: int,
    policy: SplitPolicy,
) -> List[ObligationDraft]:
    """
    Compute obligation drafts for every participant, in participant order.

    participants must be in a stable order (group join order); the equal
    split remainder depends on it. Raises LedgerValidationError for input
    problems and ConsistencyError if the result does not add up.
    """
    if total_cents <= 0:
        raise LedgerValidationError("Amount must be greater than 0")
    if not participants:
        raise LedgerValidationError("At least one participant is required")
    if len(set(participants)) != len(participants):
        raise LedgerValidationError("Participants must be unique")
    if payer_id not in participants:
        raise LedgerValidationError("The payer must be one of the participants")

    if len(participants) == 1:
        # Sole participant is the payer: nothing is owed, settled from the start.
        return [ObligationDraft(
            user_id=payer_id,
            amount_owed_cents=0,
            fair_share_cents=total_cents,
            percentage=Decimal("100.00"),
            is_payer=True,
            is_settled=True,
        )]

    if isinstance(policy, EqualSplit):
        shares = _equal_shares(participants, total_cents)
    elif isinstance(policy, ExactSplit):
        shares = _exact_shares(participants, total_cents, policy)
    elif isinstance(policy, PercentageSplit):
        shares = _percentage_shares(participants, total_cents, policy)
    else:
        raise LedgerValidationError(f"Unsupported split policy: {policy!r}")

    owed_by_others = sum(cents for user_id, cents in shares.items() if user_id != payer_id)
    payer_fair_share = total_cents - owed_by_others
    if payer_fair_share < 0:
        raise LedgerValidationError("Shares owed by other participants exceed the expense amount")

    drafts = []
    for user_id in participants:
        if user_id == payer_id:
            drafts.append(ObligationDraft(
                user_id=user_id,
                amount_owed_cents=0,
                fair_share_cents=payer_fair_share,
                percentage=_display_percentage(policy, user_id, payer_fair_share, total_cents),
                is_payer=True,
                is_settled=True,
            ))
        else:
            owed = shares[user_id]
            drafts.append(ObligationDraft(
                user_id=user_id,
                amount_owed_cents=owed,
                fair_share_cents=owed,
                percentage=_display_percentage(policy, user_id, owed, total_cents),
                is_settled=owed == 0,
            ))

    verify_split(drafts, total_cents, payer_id)
    logger.debug(
        f"{policy.split_type.value} split of {total_cents} cents among {len(participants)}: "
        f"payer fair share {payer_fair_share}, owed by others {owed_by_others}"
    )
    return drafts


def verify_split(drafts: Sequence[ObligationDraft], total_cents: int, payer_id: int) -> None:
    """Guard: payer owes nothing and fair shares add up to the total exactly."""
    payer_rows = [d for d in drafts if d.user_id == payer_id]
    if len(payer_rows) != 1 or payer_rows[0].amount_owed_cents != 0:
        raise ConsistencyError("Split calculation error: payer row must exist once and owe nothing")
    if any(d.amount_owed_cents < 0 for d in drafts):
        raise ConsistencyError("Split calculation error: negative obligation")
    fair_total = sum(d.fair_share_cents for d in drafts)
    if fair_total != total_cents:
        raise ConsistencyError(
            f"Split calculation error: shares total {fair_total} cents, expense is {total_cents} cents"
        )


def _equal_shares(participants: Sequence[int], total_cents: int) -> Dict[int, int]:
    base, remainder = divmod(total_cents, len(participants))
    return {
        user_id: base + (1 if index < remainder else 0)
        for index, user_id in enumerate(participants)
    }


def _check_participant_set(participants: Sequence[int], supplied: Sequence[int]) -> None:
    expected = set(participants)
    given = set(supplied)
    unknown = given - expected
    if unknown:
        raise LedgerValidationError(
            f"User {sorted(unknown)[0]} is not an active group member",
            details={"unknown_user_ids": sorted(unknown)},
        )
    missing = expected - given
    if missing:
        raise LedgerValidationError(
            f"split_details must include all {len(participants)} group members",
            details={"missing_user_ids": sorted(missing)},
        )


def _exact_shares(participants: Sequence[int], total_cents: int, policy: ExactSplit) -> Dict[int, int]:
    _check_participant_set(participants, list(policy.amounts))
    supplied_total = sum(policy.amounts.values())
    if abs(supplied_total - total_cents) > EXACT_TOLERANCE_CENTS:
        raise LedgerValidationError(
            f"Sum of split amounts ({supplied_total} cents) must equal total amount ({total_cents} cents)"
        )
    return dict(policy.amounts)


def _percentage_shares(participants: Sequence[int], total_cents: int, policy: PercentageSplit) -> Dict[int, int]:
    _check_participant_set(participants, list(policy.percentages))
    total_percentage = sum(policy.percentages.values(), Decimal(0))
    if abs(total_percentage - 100) > PERCENTAGE_TOLERANCE:
        raise LedgerValidationError(f"Sum of percentages ({total_percentage}%) must equal 100%")
    # Independent rounding may drift by a cent or two; the payer's fair share absorbs it.
    return {
        user_id: apply_percentage(total_cents, pct)
        for user_id, pct in policy.percentages.items()
    }


def _display_percentage(policy: SplitPolicy, user_id: int, share_cents: int, total_cents: int) -> Decimal:
    if isinstance(policy, PercentageSplit):
        return policy.percentages[user_id].quantize(Decimal("0.01"))
    return percent_of(share_cents, total_cents)
