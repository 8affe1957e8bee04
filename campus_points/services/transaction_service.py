"""
Transaction service — the points ledger engine.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. It handles:
  - Purchases recorded by cashiers (base accrual + promotions)
  - Manager adjustments against an earlier transaction
  - User-to-user transfers (two paired legs)
  - Redemption requests and their fulfilment by a cashier
  - Event awards to confirmed guests
  - The suspicious flag and the point reversal that goes with it

Atomicity:
  Every balance change and the Transaction row that explains it are written
  in the SAME unit of work (the request's session; see database.get_db).
  Functions here validate first and write last, and only flush. A raised
  error means the caller's session rolls back with nothing applied.

Locking:
  Rows that are read, checked and then mutated (users, events, the
  transaction being flagged or processed) are selected with_for_update().
  populate_existing=True refreshes objects already in the session, such
  as the acting user. Transfers lock both users in ascending id order so
  two opposite transfers cannot deadlock. with_for_update() is a no-op on
  SQLite; its serialized writes are enough for single-process use.

Check order:
  Within each operation, input checks run first, then existence, then
  state, then balance. The first failing check is the one reported.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, with_polymorphic

from campus_points.exceptions import (
    ForbiddenError,
    InsufficientPointsError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from campus_points.models.event import Event, EventGuest, EventOrganizer
from campus_points.models.transaction import (
    Transaction,
    PurchaseTransaction,
    AdjustmentTransaction,
    TransferTransaction,
    RedemptionTransaction,
    EventTransaction,
)
from campus_points.models.user import Role, User, has_min_role, require_min_role
from campus_points.points import base_earned, cents_to_amount, to_cents
from campus_points.services.promotion_service import (
    build_promotion_links,
    evaluate_promotions,
    normalize_promotion_ids,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_utorid(utorid) -> str:
    return utorid.strip().lower() if isinstance(utorid, str) else ""


def _require_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"{name} must be a positive integer")
    return value


def _remark(remark) -> str | None:
    return remark if isinstance(remark, str) else None


async def _lock_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_user_by_utorid(db: AsyncSession, utorid) -> User:
    key = normalize_utorid(utorid)
    if not key:
        raise InvalidInputError("utorid is required")

    result = await db.execute(
        select(User)
        .where(User.utorid == key)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", key)
    return user


def _ledger_query():
    """
    SELECT over every transaction kind.

    Subclass columns load inline; the redemption-only processed_by
    relationship is named explicitly so rows read through the base class
    come back fully loaded for the formatter.
    """
    entry = with_polymorphic(Transaction, "*")
    stmt = select(entry).options(selectinload(entry.RedemptionTransaction.processed_by))
    return stmt, entry


async def _lock_transaction(db: AsyncSession, transaction_id: int) -> Transaction:
    stmt, entry = _ledger_query()
    result = await db.execute(
        stmt
        .where(entry.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError("Transaction", transaction_id)
    return txn


async def _flush_with_promotions(db: AsyncSession, owner_id: int) -> None:
    """
    Flush a transaction that carries promotion links.

    A second link for the same one-time promotion and owner violates
    uq_transaction_promotions_one_time_use; that is reported as the same
    "already used" error the read-side check gives.
    """
    try:
        await db.flush()
    except IntegrityError as exc:
        if "transaction_promotions" not in str(exc.orig):
            raise
        logger.warning(
            "One-time promotion collision for user %s caught by constraint", owner_id
        )
        raise InvalidStateError("Promotion already used by this user") from exc


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------

async def create_purchase(
    db: AsyncSession,
    actor: User,
    utorid: str,
    spent,
    promotion_ids=None,
    remark: str | None = None,
) -> PurchaseTransaction:
    """
    Record a purchase and credit the earned points.

    earned = base_earned(spent_cents) + promotion bonus. The row always
    stores the full accrual in `amount`. When the cashier is flagged
    suspicious, the row is marked suspicious and the points are withheld
    until a manager clears the flag (see set_suspicious).

    Args:
        db: Database session.
        actor: The cashier (or above) recording the sale.
        utorid: The customer earning points.
        spent: Amount paid, in currency units (e.g. 10.50).
        promotion_ids: Optional promotions to apply.
        remark: Optional note.

    Returns:
        The created PurchaseTransaction.

    Raises:
        ForbiddenError: If the actor is below cashier.
        InvalidInputError: If spent isn't a positive amount.
        NotFoundError: If the customer or a promotion doesn't exist.
        InvalidStateError: If a promotion cannot be applied.
    """
    require_min_role(actor, Role.CASHIER)

    try:
        spent_cents = to_cents(spent)
    except ValueError:
        raise InvalidInputError("spent must be a positive number")
    if spent_cents <= 0:
        raise InvalidInputError("spent must be a positive number")

    ids = normalize_promotion_ids(promotion_ids)

    target = await _lock_user_by_utorid(db, utorid)

    evaluation = await evaluate_promotions(db, ids, target.id, spent_cents)
    earned = base_earned(spent_cents) + evaluation.extra_points

    suspicious = actor.role == Role.CASHIER and actor.suspicious

    txn = PurchaseTransaction(
        user=target,
        created_by=actor,
        amount=earned,
        spent=cents_to_amount(spent_cents),
        suspicious=suspicious,
        remark=_remark(remark),
        promotion_links=build_promotion_links(evaluation.promotions, target.id),
    )
    db.add(txn)

    if not suspicious and earned > 0:
        target.points += earned

    await _flush_with_promotions(db, target.id)

    if suspicious:
        logger.warning(
            "Purchase %s by suspicious cashier %s: %s points withheld from %s",
            txn.id, actor.utorid, earned, target.utorid,
        )
    else:
        logger.info(
            "Purchase %s: %s earned %s points (spent %s)",
            txn.id, target.utorid, earned, txn.spent,
        )
    return txn


# ---------------------------------------------------------------------------
# Adjustment
# ---------------------------------------------------------------------------

async def create_adjustment(
    db: AsyncSession,
    actor: User,
    amount: int,
    related_id: int,
    utorid: str | None = None,
    promotion_ids=None,
    remark: str | None = None,
) -> AdjustmentTransaction:
    """
    Correct a user's balance with reference to an earlier transaction.

    The owner defaults to the related transaction's owner. When a utorid is
    given it must be that same user. Promotions are evaluated without a
    purchase amount, so any promotion with a minimum spend is rejected.
    Adjustments may take a balance below zero.

    Raises:
        ForbiddenError: If the actor is below manager.
        InvalidInputError: If amount/related_id are malformed, or the
                           utorid doesn't own the related transaction.
        NotFoundError: If the related transaction, user or a promotion
                       doesn't exist.
        InvalidStateError: If a promotion cannot be applied.
    """
    require_min_role(actor, Role.MANAGER)

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError("amount must be an integer")
    related_id = _require_positive_int(related_id, "relatedId")
    ids = normalize_promotion_ids(promotion_ids)

    stmt, entry = _ledger_query()
    result = await db.execute(stmt.where(entry.id == related_id))
    related = result.scalar_one_or_none()
    if related is None:
        raise NotFoundError("Transaction", related_id)

    if utorid:
        target = await _lock_user_by_utorid(db, utorid)
        if related.user_id != target.id:
            raise InvalidInputError("relatedId does not match the user")
    else:
        target = await _lock_user(db, related.user_id)
        if target is None:
            raise NotFoundError("User", related.user_id)

    evaluation = await evaluate_promotions(db, ids, target.id, None)
    total = amount + evaluation.extra_points

    txn = AdjustmentTransaction(
        user=target,
        created_by=actor,
        amount=total,
        related_transaction_id=related.id,
        remark=_remark(remark),
        promotion_links=build_promotion_links(evaluation.promotions, target.id),
    )
    db.add(txn)

    if total != 0:
        target.points += total

    await _flush_with_promotions(db, target.id)

    logger.info(
        "Adjustment %s: %s points for %s against transaction %s",
        txn.id, total, target.utorid, related.id,
    )
    return txn


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------

async def create_transfer(
    db: AsyncSession,
    sender: User,
    receiver_id: int,
    amount: int,
    remark: str | None = None,
) -> tuple[TransferTransaction, TransferTransaction]:
    """
    Move points from the acting user to another user.

    Creates TWO rows: the sender's leg (amount = -amount) and the receiver's
    leg (amount = +amount). Each leg names the counter-party in
    related_user_id and the other leg in related_transaction_id.

    DEADLOCK PREVENTION: Both users are locked in ascending id order.

    Returns:
        Tuple of (sender_leg, receiver_leg).

    Raises:
        InvalidInputError: If amount isn't a positive integer or the sender
                           targets themselves.
        ForbiddenError: If the sender isn't verified.
        InsufficientPointsError: If the sender holds fewer than `amount` points.
        NotFoundError: If the receiver doesn't exist.
    """
    require_min_role(sender, Role.REGULAR)
    amount = _require_positive_int(amount, "amount")
    receiver_id = _require_positive_int(receiver_id, "userId")
    if receiver_id == sender.id:
        raise InvalidInputError("Cannot transfer points to yourself")

    locked = {}
    for user_id in sorted([sender.id, receiver_id]):
        locked[user_id] = await _lock_user(db, user_id)

    source = locked[sender.id]
    dest = locked[receiver_id]

    if source is None:
        raise NotFoundError("User", sender.id)
    if not source.verified:
        raise ForbiddenError("User must be verified to transfer points")
    if source.points < amount:
        raise InsufficientPointsError(source.id, amount, source.points)
    if dest is None:
        raise NotFoundError("User", receiver_id)

    source.points -= amount
    dest.points += amount

    sender_leg = TransferTransaction(
        user=source,
        created_by=source,
        amount=-amount,
        related_user_id=dest.id,
        remark=_remark(remark),
        promotion_links=[],
    )
    receiver_leg = TransferTransaction(
        user=dest,
        created_by=source,
        amount=amount,
        related_user_id=source.id,
        remark=_remark(remark),
        promotion_links=[],
    )
    db.add_all([sender_leg, receiver_leg])
    await db.flush()

    # Ids exist only after the first flush
    sender_leg.related_transaction_id = receiver_leg.id
    receiver_leg.related_transaction_id = sender_leg.id
    await db.flush()

    logger.info(
        "Transfer %s/%s: %s sent %s points to %s",
        sender_leg.id, receiver_leg.id, source.utorid, amount, dest.utorid,
    )
    return sender_leg, receiver_leg


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------

async def create_redemption(
    db: AsyncSession,
    actor: User,
    amount: int,
    remark: str | None = None,
) -> RedemptionTransaction:
    """
    Request a redemption of the actor's own points.

    The row stores amount = -amount and stays pending (processed_by NULL).
    The balance is NOT touched here; it is debited when a cashier
    fulfils the request in mark_processed().

    Raises:
        InvalidInputError: If amount isn't a positive integer.
        ForbiddenError: If the actor isn't verified.
        InsufficientPointsError: If the actor holds fewer than `amount` points.
    """
    require_min_role(actor, Role.REGULAR)
    amount = _require_positive_int(amount, "amount")

    owner = await _lock_user(db, actor.id)
    if owner is None:
        raise NotFoundError("User", actor.id)
    if not owner.verified:
        raise ForbiddenError("User must be verified to redeem points")
    if owner.points < amount:
        raise InsufficientPointsError(owner.id, amount, owner.points)

    txn = RedemptionTransaction(
        user=owner,
        created_by=owner,
        amount=-amount,
        processed_by=None,
        remark=_remark(remark),
        promotion_links=[],
    )
    db.add(txn)
    await db.flush()

    logger.info("Redemption %s requested: %s points by %s", txn.id, amount, owner.utorid)
    return txn


async def mark_processed(
    db: AsyncSession,
    actor: User,
    transaction_id: int,
) -> RedemptionTransaction:
    """
    Fulfil a pending redemption and debit the owner's balance.

    Raises:
        ForbiddenError: If the actor is below cashier.
        NotFoundError: If the transaction doesn't exist.
        InvalidInputError: If it isn't a redemption or was already processed.
        InsufficientPointsError: If the owner no longer holds enough points.
    """
    require_min_role(actor, Role.CASHIER)
    transaction_id = _require_positive_int(transaction_id, "transactionId")

    txn = await _lock_transaction(db, transaction_id)
    if not isinstance(txn, RedemptionTransaction):
        raise InvalidInputError("Transaction is not of type redemption")
    if txn.processed_by_id is not None:
        raise InvalidInputError("Transaction has already been processed")

    owner = await _lock_user(db, txn.user_id)
    if owner is None:
        raise NotFoundError("User", txn.user_id)
    if owner.points + txn.amount < 0:
        raise InsufficientPointsError(owner.id, -txn.amount, owner.points)

    txn.processed_by = actor
    owner.points += txn.amount  # amount is negative
    await db.flush()

    logger.info(
        "Redemption %s processed by %s: %s debited %s points",
        txn.id, actor.utorid, owner.utorid, -txn.amount,
    )
    return txn


# ---------------------------------------------------------------------------
# Event award
# ---------------------------------------------------------------------------

async def _is_organizer(db: AsyncSession, event_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(EventOrganizer)
        .where(EventOrganizer.event_id == event_id)
        .where(EventOrganizer.user_id == user_id)
    )
    return result.scalar_one_or_none() is not None


async def award_event_points(
    db: AsyncSession,
    actor: User,
    event_id: int,
    amount: int,
    utorid: str | None = None,
    remark: str | None = None,
) -> list[EventTransaction]:
    """
    Award `amount` points to one confirmed guest, or to all of them.

    The event's points_remain must cover amount x recipients. Each
    recipient gets one EventTransaction and the event's counters move by
    the total, all in one unit of work.

    Returns:
        One EventTransaction per recipient, ordered by recipient id.

    Raises:
        InvalidInputError: If amount isn't a positive integer, the named
                           user isn't a confirmed guest, there are no
                           confirmed guests, or the event lacks points.
        NotFoundError: If the event or the named user doesn't exist.
        ForbiddenError: If the actor is neither manager+ nor an organizer.
    """
    amount = _require_positive_int(amount, "amount")
    event_id = _require_positive_int(event_id, "eventId")

    result = await db.execute(
        select(Event)
        .where(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFoundError("Event", event_id)

    if not has_min_role(actor.role, Role.MANAGER) and not await _is_organizer(
        db, event_id, actor.id
    ):
        raise ForbiddenError("Only managers or the event's organizers can award points")

    guests = (
        select(EventGuest.user_id)
        .where(EventGuest.event_id == event_id)
        .where(EventGuest.confirmed.is_(True))
    )
    if utorid:
        key = normalize_utorid(utorid)
        found = await db.execute(select(User.id).where(User.utorid == key))
        recipient_id = found.scalar_one_or_none()
        if recipient_id is None:
            raise NotFoundError("User", key)
        guests = guests.where(EventGuest.user_id == recipient_id)

    result = await db.execute(
        select(User)
        .where(User.id.in_(guests))
        .order_by(User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    recipients = list(result.scalars().all())

    if not recipients:
        if utorid:
            raise InvalidInputError("User is not a confirmed guest")
        raise InvalidInputError("No confirmed guests to award")

    total = amount * len(recipients)
    if event.points_remain < total:
        raise InvalidInputError("Insufficient remaining points for this event")

    awards = []
    for recipient in recipients:
        awards.append(
            EventTransaction(
                user=recipient,
                created_by=actor,
                amount=amount,
                event_id=event.id,
                remark=_remark(remark),
                promotion_links=[],
            )
        )
        recipient.points += amount

    event.points_remain -= total
    event.points_awarded += total

    db.add_all(awards)
    await db.flush()

    logger.info(
        "Event %s awarded %s points to %s guest(s) (%s total, %s remaining)",
        event.id, amount, len(recipients), total, event.points_remain,
    )
    return awards


# ---------------------------------------------------------------------------
# Suspicious flag
# ---------------------------------------------------------------------------

async def set_suspicious(
    db: AsyncSession,
    actor: User,
    transaction_id: int,
    suspicious: bool,
) -> Transaction:
    """
    Flag or clear a transaction and reverse or restore its points.

    Flagging a row with a positive amount removes that amount from its
    owner; clearing the flag gives it back. Setting the flag to its current
    value changes nothing, so toggling on and off nets to zero. Rows with a
    non-positive amount only have the flag updated. The reversal may take
    the owner's balance below zero.

    Raises:
        ForbiddenError: If the actor is below manager.
        InvalidInputError: If suspicious isn't a boolean.
        NotFoundError: If the transaction doesn't exist.
    """
    require_min_role(actor, Role.MANAGER)
    if not isinstance(suspicious, bool):
        raise InvalidInputError("suspicious must be a boolean")

    txn = await _lock_transaction(db, transaction_id)
    if txn.suspicious == suspicious:
        return txn

    if txn.user_id is not None and txn.amount > 0:
        owner = await _lock_user(db, txn.user_id)
        if owner is not None:
            owner.points += -txn.amount if suspicious else txn.amount

    txn.suspicious = suspicious
    await db.flush()

    logger.info(
        "Transaction %s suspicious=%s set by %s", txn.id, suspicious, actor.utorid,
    )
    return txn


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

async def get_transaction(
    db: AsyncSession,
    actor: User,
    transaction_id: int,
) -> Transaction:
    """
    Get any transaction by id (manager or above).

    Raises:
        ForbiddenError: If the actor is below manager.
        NotFoundError: If the transaction doesn't exist.
    """
    require_min_role(actor, Role.MANAGER)

    stmt, entry = _ledger_query()
    result = await db.execute(stmt.where(entry.id == transaction_id))
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError("Transaction", transaction_id)
    return txn


def _require_page(page, limit) -> tuple[int, int]:
    for value in (page, limit):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidInputError("page and limit must be positive integers")
    return page, limit


async def _page_of_transactions(
    db: AsyncSession,
    page: int,
    limit: int,
    user_id: int | None = None,
) -> tuple[int, list[Transaction]]:
    stmt, entry = _ledger_query()
    counted = select(func.count()).select_from(Transaction)
    if user_id is not None:
        stmt = stmt.where(entry.user_id == user_id)
        counted = counted.where(Transaction.user_id == user_id)

    count = await db.scalar(counted)
    result = await db.execute(
        stmt
        .order_by(entry.created_at.desc(), entry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return count, list(result.scalars().all())


async def list_transactions(
    db: AsyncSession,
    actor: User,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[Transaction]]:
    """
    Page through the whole ledger, newest first (manager or above).

    Returns:
        Tuple of (total row count, rows on this page).

    Raises:
        ForbiddenError: If the actor is below manager.
        InvalidInputError: If page or limit isn't a positive integer.
    """
    require_min_role(actor, Role.MANAGER)
    page, limit = _require_page(page, limit)
    return await _page_of_transactions(db, page, limit)


async def list_user_transactions(
    db: AsyncSession,
    user: User,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[Transaction]]:
    """Page through the transactions owned by `user`, newest first."""
    require_min_role(user, Role.REGULAR)
    page, limit = _require_page(page, limit)
    return await _page_of_transactions(db, page, limit, user_id=user.id)
