"""
User transactions router — self-service redemptions and transfers.

Endpoints:
  GET  /users/me/transactions         — Page through my own transactions
  POST /users/me/transactions         — Request a redemption of my points
  POST /users/{user_id}/transactions  — Transfer my points to another user

/me is declared first so it is never captured by the {user_id} route.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.dependencies import get_current_user
from campus_points.models.user import User
from campus_points.schemas.transaction import (
    RedemptionRequest,
    RedemptionView,
    TransactionPage,
    TransferRequest,
    TransferView,
)
from campus_points.services import transaction_service
from campus_points.services.transaction_formatter import format_transaction

router = APIRouter()


@router.get(
    "/me/transactions",
    response_model=TransactionPage,
    summary="List my transactions",
)
async def list_my_transactions(
    page: int = Query(1),
    limit: int = Query(10),
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Page through the caller's own transactions, newest first."""
    count, rows = await transaction_service.list_user_transactions(db, actor, page, limit)
    return TransactionPage(count=count, results=[format_transaction(t) for t in rows])


@router.post(
    "/me/transactions",
    response_model=RedemptionView,
    status_code=status.HTTP_201_CREATED,
    summary="Request a redemption",
)
async def create_redemption(
    request: RedemptionRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a pending redemption. The balance is debited only when a cashier
    marks it processed.
    """
    txn = await transaction_service.create_redemption(
        db, actor, request.amount, request.remark
    )
    return format_transaction(txn)


@router.post(
    "/{user_id}/transactions",
    response_model=TransferView,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer points to another user",
)
async def create_transfer(
    user_id: int,
    request: TransferRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Send points to another user. Both balances and both ledger legs are
    written atomically; the response describes the sender's leg.
    """
    sender_leg, _ = await transaction_service.create_transfer(
        db, actor, user_id, request.amount, request.remark
    )
    return format_transaction(sender_leg)
