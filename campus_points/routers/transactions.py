"""
Transactions router — purchases, adjustments and ledger maintenance.

Endpoints:
  POST  /transactions                           — Purchase (cashier+) or adjustment (manager+)
  GET   /transactions                           — Page through the ledger (manager+)
  GET   /transactions/{transaction_id}          — Get any transaction (manager+)
  PATCH /transactions/{transaction_id}/suspicious — Flag/clear a transaction (manager+)
  PATCH /transactions/{transaction_id}/processed  — Fulfil a redemption (cashier+)

Role checks happen in the service layer; this router only resolves the
acting user and shapes the response.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.dependencies import get_current_user
from campus_points.models.user import User
from campus_points.schemas.transaction import (
    ProcessedRequest,
    PurchaseRequest,
    RedemptionView,
    SuspiciousRequest,
    TransactionCreateRequest,
    TransactionPage,
    TransactionView,
)
from campus_points.services import transaction_service
from campus_points.services.transaction_formatter import format_transaction

router = APIRouter()


@router.post(
    "",
    response_model=TransactionView,
    status_code=status.HTTP_201_CREATED,
    summary="Create a purchase or adjustment",
)
async def create_transaction(
    request: Annotated[TransactionCreateRequest, Body(discriminator="type")],
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a purchase or an adjustment.

    - **purchase**: `utorid`, `spent` (currency units), optional `promotionIds`.
      Earns one point per 25 cents plus promotion bonuses.
    - **adjustment**: `amount` (signed points), `relatedId`, optional `utorid`
      and `promotionIds`.
    """
    if isinstance(request, PurchaseRequest):
        txn = await transaction_service.create_purchase(
            db=db,
            actor=actor,
            utorid=request.utorid,
            spent=request.spent,
            promotion_ids=request.promotion_ids,
            remark=request.remark,
        )
    else:
        txn = await transaction_service.create_adjustment(
            db=db,
            actor=actor,
            amount=request.amount,
            related_id=request.related_id,
            utorid=request.utorid,
            promotion_ids=request.promotion_ids,
            remark=request.remark,
        )
    return format_transaction(txn)


@router.get(
    "",
    response_model=TransactionPage,
    summary="List all transactions",
)
async def list_transactions(
    page: int = Query(1),
    limit: int = Query(10),
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Page through every transaction, newest first."""
    count, rows = await transaction_service.list_transactions(db, actor, page, limit)
    return TransactionPage(count=count, results=[format_transaction(t) for t in rows])


@router.get(
    "/{transaction_id}",
    response_model=TransactionView,
    summary="Get a single transaction",
)
async def get_transaction(
    transaction_id: int,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get details for any transaction."""
    txn = await transaction_service.get_transaction(db, actor, transaction_id)
    return format_transaction(txn)


@router.patch(
    "/{transaction_id}/suspicious",
    response_model=TransactionView,
    summary="Flag or clear a transaction as suspicious",
)
async def set_suspicious(
    transaction_id: int,
    request: SuspiciousRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Set the suspicious flag. Flagging removes the transaction's points from
    its owner; clearing the flag restores them.
    """
    txn = await transaction_service.set_suspicious(
        db, actor, transaction_id, request.suspicious
    )
    return format_transaction(txn)


@router.patch(
    "/{transaction_id}/processed",
    response_model=RedemptionView,
    summary="Mark a redemption as processed",
)
async def mark_processed(
    transaction_id: int,
    request: ProcessedRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Fulfil a pending redemption; the owner's balance is debited now."""
    txn = await transaction_service.mark_processed(db, actor, transaction_id)
    return format_transaction(txn)
