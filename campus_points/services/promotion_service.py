"""
Promotion service — evaluation, management and discovery of promotions.

evaluate_promotions() is the piece the ledger depends on. It runs inside
the caller's unit of work, just before the transaction row is written:

  1. Resolve every requested id (all-or-nothing: one unknown id fails all)
  2. For each promotion, check in order:
       - active window: start_time <= now < end_time
       - min_spending: needs a purchase amount, and spent >= min_spending
       - one-time: this user has never had it linked to a transaction
  3. Sum the bonus: rate_bonus(spent_cents, rate) when both are present,
     plus the flat `points` bonus

It writes nothing. The caller builds TransactionPromotion links with
build_promotion_links(), and the unique constraint on those links is what
finally settles a one-time race between two concurrent requests.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.exceptions import (
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from campus_points.models.promotion import Promotion, PromotionType, TransactionPromotion
from campus_points.models.transaction import Transaction
from campus_points.models.user import Role, User, has_min_role, require_min_role
from campus_points.points import rate_bonus

logger = logging.getLogger(__name__)


@dataclass
class PromotionEvaluation:
    """Result of evaluate_promotions: the promotions to link and their bonus."""
    promotions: list[Promotion] = field(default_factory=list)
    extra_points: int = 0


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_active(promotion: Promotion, now: datetime) -> bool:
    return as_utc(promotion.start_time) <= now < as_utc(promotion.end_time)


def normalize_promotion_ids(promotion_ids) -> list[int]:
    """
    Validate a list of promotion ids and drop duplicates (first occurrence wins).

    Raises:
        InvalidInputError: If the value isn't a list of positive integers.
    """
    if promotion_ids is None:
        return []
    if isinstance(promotion_ids, (str, bytes)) or not hasattr(promotion_ids, "__iter__"):
        raise InvalidInputError("promotionIds must be an array")

    unique: list[int] = []
    for raw in promotion_ids:
        if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
            raise InvalidInputError("promotionIds must contain positive integers")
        if raw not in unique:
            unique.append(raw)
    return unique


async def promotion_used_by(
    db: AsyncSession,
    promotion_id: int,
    user_id: int,
) -> bool:
    """True if any transaction owned by `user_id` already carries this promotion."""
    result = await db.execute(
        select(TransactionPromotion.transaction_id)
        .join(Transaction, Transaction.id == TransactionPromotion.transaction_id)
        .where(TransactionPromotion.promotion_id == promotion_id)
        .where(Transaction.user_id == user_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def evaluate_promotions(
    db: AsyncSession,
    promotion_ids,
    user_id: int,
    spent_cents: int | None,
    now: datetime | None = None,
) -> PromotionEvaluation:
    """
    Validate the requested promotions for a user and compute their bonus.

    Args:
        db: Database session (the caller's unit of work).
        promotion_ids: Requested promotion ids; duplicates collapse.
        user_id: The user whose transaction the promotions would attach to.
        spent_cents: Purchase amount in cents, or None outside a purchase.
        now: Evaluation instant (defaults to the current UTC time).

    Returns:
        PromotionEvaluation with the resolved promotions (ordered by id)
        and the total bonus points.

    Raises:
        InvalidInputError: If promotion_ids is malformed.
        NotFoundError: If any id does not resolve to a promotion.
        InvalidStateError: If a promotion is inactive, its minimum spend is
                           not met, or a one-time promotion was already used.
    """
    ids = normalize_promotion_ids(promotion_ids)
    if not ids:
        return PromotionEvaluation()

    result = await db.execute(
        select(Promotion).where(Promotion.id.in_(ids)).order_by(Promotion.id)
    )
    promotions = list(result.scalars().all())

    if len(promotions) != len(ids):
        missing = sorted(set(ids) - {p.id for p in promotions})
        raise NotFoundError("Promotion", missing[0])

    now = now or datetime.now(timezone.utc)
    extra_points = 0

    for promo in promotions:
        if not is_active(promo, now):
            raise InvalidStateError(f"Promotion {promo.id} is not active")

        if promo.min_spending is not None:
            if spent_cents is None:
                raise InvalidStateError(
                    f"Promotion {promo.id} requires a purchase amount"
                )
            if Decimal(spent_cents) / 100 < Decimal(str(promo.min_spending)):
                raise InvalidStateError(
                    f"Promotion {promo.id} minimum spending not met"
                )

        if promo.type == PromotionType.ONE_TIME:
            if await promotion_used_by(db, promo.id, user_id):
                raise InvalidStateError(
                    f"Promotion {promo.id} already used by this user"
                )

        if promo.rate is not None and spent_cents is not None:
            extra_points += rate_bonus(spent_cents, promo.rate)

        if promo.points is not None:
            extra_points += promo.points

    return PromotionEvaluation(promotions=promotions, extra_points=extra_points)


def build_promotion_links(
    promotions: list[Promotion],
    owner_id: int,
) -> list[TransactionPromotion]:
    """Link rows for a new transaction; one-time links carry the owner id."""
    return [
        TransactionPromotion(
            promotion=promo,
            one_time_user_id=owner_id if promo.type == PromotionType.ONE_TIME else None,
        )
        for promo in promotions
    ]


# ---------------------------------------------------------------------------
# Promotion management
# ---------------------------------------------------------------------------

def _check_bonus_fields(min_spending, rate, points) -> None:
    if min_spending is not None and Decimal(str(min_spending)) <= 0:
        raise InvalidInputError("minSpending must be positive")
    if rate is not None and rate < 0:
        raise InvalidInputError("rate must not be negative")
    if points is not None and points < 0:
        raise InvalidInputError("points must not be negative")


async def create_promotion(
    db: AsyncSession,
    actor: User,
    name: str,
    description: str,
    promotion_type: PromotionType,
    start_time: datetime,
    end_time: datetime,
    min_spending=None,
    rate: float | None = None,
    points: int | None = None,
) -> Promotion:
    """
    Create a promotion (manager or above).

    Raises:
        ForbiddenError: If the actor is below manager.
        InvalidInputError: If the window or any bonus field is invalid.
    """
    require_min_role(actor, Role.MANAGER)

    start_time = as_utc(start_time)
    end_time = as_utc(end_time)
    now = datetime.now(timezone.utc)

    if not name or not name.strip():
        raise InvalidInputError("name is required")
    if start_time < now:
        raise InvalidInputError("startTime must not be in the past")
    if end_time <= start_time:
        raise InvalidInputError("endTime must be after startTime")
    _check_bonus_fields(min_spending, rate, points)

    promotion = Promotion(
        name=name.strip(),
        description=description or "",
        type=PromotionType(promotion_type),
        start_time=start_time,
        end_time=end_time,
        min_spending=Decimal(str(min_spending)) if min_spending is not None else None,
        rate=rate,
        points=points,
    )
    db.add(promotion)
    await db.flush()

    logger.info(
        "Promotion %s created by user %s (%s, %s to %s)",
        promotion.id, actor.id, promotion.type.value, start_time, end_time,
    )
    return promotion


async def list_available_promotions(
    db: AsyncSession,
    user: User,
    now: datetime | None = None,
) -> list[Promotion]:
    """
    Promotions the user could apply right now.

    Active promotions only; one-time promotions the user already consumed
    are left out. Ordered by start time.
    """
    now = now or datetime.now(timezone.utc)

    used = (
        select(TransactionPromotion.promotion_id)
        .join(Transaction, Transaction.id == TransactionPromotion.transaction_id)
        .where(Transaction.user_id == user.id)
    )
    result = await db.execute(
        select(Promotion)
        .where(Promotion.start_time <= now, Promotion.end_time > now)
        .where(
            (Promotion.type == PromotionType.AUTOMATIC)
            | Promotion.id.not_in(used)
        )
        .order_by(Promotion.start_time, Promotion.id)
    )
    return list(result.scalars().all())


async def get_promotion(
    db: AsyncSession,
    actor: User,
    promotion_id: int,
    now: datetime | None = None,
) -> Promotion:
    """
    Look up one promotion.

    Managers see any promotion. Everyone else sees only promotions that
    are active now; the rest are reported as missing.

    Raises:
        NotFoundError: If the promotion doesn't exist or isn't visible.
    """
    require_min_role(actor, Role.REGULAR)
    now = now or datetime.now(timezone.utc)

    promotion = await db.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFoundError("Promotion", promotion_id)
    if not has_min_role(actor.role, Role.MANAGER) and not is_active(promotion, now):
        raise NotFoundError("Promotion", promotion_id)
    return promotion


async def update_promotion(
    db: AsyncSession,
    actor: User,
    promotion_id: int,
    changes: dict,
) -> Promotion:
    """
    Apply a partial update to a promotion (manager or above).

    `changes` maps column names to new values; None values are ignored.
    Once a promotion has started only its end_time may move, and only
    until the promotion has ended.

    Raises:
        ForbiddenError: If the actor is below manager.
        NotFoundError: If the promotion doesn't exist.
        InvalidInputError: If a field is invalid or locked by the window.
    """
    require_min_role(actor, Role.MANAGER)

    promotion = await db.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFoundError("Promotion", promotion_id)

    changes = {key: value for key, value in changes.items() if value is not None}
    now = datetime.now(timezone.utc)
    started = as_utc(promotion.start_time) <= now
    ended = as_utc(promotion.end_time) <= now

    for key in changes:
        if key != "end_time" and started:
            raise InvalidInputError(f"cannot update {key} after the promotion has started")
    if "end_time" in changes and ended:
        raise InvalidInputError("cannot update end_time after the promotion has ended")

    if "name" in changes and not changes["name"].strip():
        raise InvalidInputError("name is required")

    start_time = as_utc(changes.get("start_time", promotion.start_time))
    end_time = as_utc(changes.get("end_time", promotion.end_time))
    if "start_time" in changes and start_time < now:
        raise InvalidInputError("startTime must not be in the past")
    if "end_time" in changes and end_time < now:
        raise InvalidInputError("endTime must not be in the past")
    if end_time <= start_time:
        raise InvalidInputError("endTime must be after startTime")

    _check_bonus_fields(
        changes.get("min_spending"), changes.get("rate"), changes.get("points")
    )

    if "name" in changes:
        promotion.name = changes["name"].strip()
    if "description" in changes:
        promotion.description = changes["description"]
    if "type" in changes:
        promotion.type = PromotionType(changes["type"])
    if "start_time" in changes:
        promotion.start_time = start_time
    if "end_time" in changes:
        promotion.end_time = end_time
    if "min_spending" in changes:
        promotion.min_spending = Decimal(str(changes["min_spending"]))
    for key in ("rate", "points"):
        if key in changes:
            setattr(promotion, key, changes[key])
    await db.flush()

    logger.info(
        "Promotion %s updated by user %s: %s",
        promotion.id, actor.id, ", ".join(sorted(changes)) or "no changes",
    )
    return promotion


async def delete_promotion(
    db: AsyncSession,
    actor: User,
    promotion_id: int,
) -> None:
    """
    Delete a promotion that has not started yet (manager or above).

    Raises:
        ForbiddenError: If the actor is below manager, or the promotion
                        has already started.
        NotFoundError: If the promotion doesn't exist.
    """
    require_min_role(actor, Role.MANAGER)

    promotion = await db.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFoundError("Promotion", promotion_id)
    if as_utc(promotion.start_time) <= datetime.now(timezone.utc):
        raise ForbiddenError("Cannot delete a promotion that has started")

    await db.delete(promotion)
    await db.flush()
    logger.info("Promotion %s deleted by user %s", promotion_id, actor.id)
