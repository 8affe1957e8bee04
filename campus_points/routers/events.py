"""
Event transactions router — awarding points to event guests.

Endpoints:
  POST /events/{event_id}/transactions — Award points (manager+ or organizer)

With a `utorid` the award goes to that confirmed guest and a single
transaction is returned; without one every confirmed guest is awarded
and the list of transactions is returned.
"""

from typing import Union

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.dependencies import get_current_user
from campus_points.models.user import User
from campus_points.schemas.transaction import EventAwardRequest, EventAwardView
from campus_points.services import transaction_service
from campus_points.services.transaction_formatter import format_transaction

router = APIRouter()


@router.post(
    "/{event_id}/transactions",
    response_model=Union[EventAwardView, list[EventAwardView]],
    status_code=status.HTTP_201_CREATED,
    summary="Award event points",
)
async def award_event_points(
    event_id: int,
    request: EventAwardRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Award `amount` points per recipient from the event's remaining pool."""
    awards = await transaction_service.award_event_points(
        db,
        actor,
        event_id,
        request.amount,
        utorid=request.utorid,
        remark=request.remark,
    )
    if request.utorid:
        return format_transaction(awards[0])
    return [format_transaction(txn) for txn in awards]
