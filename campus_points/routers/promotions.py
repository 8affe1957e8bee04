"""
Promotions router.

Endpoints:
  POST   /promotions                — Create a promotion (manager+)
  GET    /promotions                — Promotions the current user can apply right now
  GET    /promotions/{promotion_id} — One promotion (managers see all, others only active)
  PATCH  /promotions/{promotion_id} — Edit a promotion (manager+)
  DELETE /promotions/{promotion_id} — Delete a promotion that hasn't started (manager+)
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.dependencies import get_current_user
from campus_points.models.user import User
from campus_points.schemas.promotion import (
    PromotionCreateRequest,
    PromotionResponse,
    PromotionUpdateRequest,
)
from campus_points.services import promotion_service

router = APIRouter()


@router.post(
    "",
    response_model=PromotionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a promotion",
)
async def create_promotion(
    request: PromotionCreateRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create an automatic or one-time promotion.

    - **minSpending**: purchases below this amount don't qualify
    - **rate**: bonus points per cent spent
    - **points**: flat bonus points
    """
    return await promotion_service.create_promotion(
        db,
        actor,
        name=request.name,
        description=request.description,
        promotion_type=request.type,
        start_time=request.start_time,
        end_time=request.end_time,
        min_spending=request.min_spending,
        rate=request.rate,
        points=request.points,
    )


@router.get(
    "",
    response_model=list[PromotionResponse],
    summary="List promotions available to me",
)
async def list_available_promotions(
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Active promotions, minus one-time promotions I have already used."""
    return await promotion_service.list_available_promotions(db, actor)


@router.get(
    "/{promotion_id}",
    response_model=PromotionResponse,
    summary="Get a promotion",
)
async def get_promotion(
    promotion_id: int,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await promotion_service.get_promotion(db, actor, promotion_id)


@router.patch(
    "/{promotion_id}",
    response_model=PromotionResponse,
    summary="Update a promotion",
)
async def update_promotion(
    promotion_id: int,
    request: PromotionUpdateRequest,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Change any field of a promotion that hasn't started yet. Once it has
    started, only `endTime` can be moved (until it ends).
    """
    return await promotion_service.update_promotion(
        db, actor, promotion_id, request.model_dump(exclude_unset=True)
    )


@router.delete(
    "/{promotion_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a promotion",
)
async def delete_promotion(
    promotion_id: int,
    actor: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await promotion_service.delete_promotion(db, actor, promotion_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
