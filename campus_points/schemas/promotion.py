"""
Pydantic schemas for Promotion endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import Field, model_validator

from campus_points.models.promotion import PromotionType
from campus_points.schemas.transaction import CamelModel


class PromotionCreateRequest(CamelModel):
    """Request body for POST /promotions."""
    name: str = Field(min_length=1)
    description: str = ""
    type: Literal["automatic", "one-time"]
    start_time: datetime
    end_time: datetime
    min_spending: Decimal | None = Field(None, gt=0, description="Minimum spend, currency units")
    rate: float | None = Field(None, ge=0, description="Bonus points per cent spent")
    points: int | None = Field(None, ge=0, description="Flat bonus points")

    @model_validator(mode="after")
    def window_must_be_ordered(self):
        """A promotion must end after it starts."""
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class PromotionResponse(CamelModel):
    """Public representation of a promotion."""
    id: int
    name: str
    description: str
    type: PromotionType
    start_time: datetime
    end_time: datetime
    min_spending: float | None
    rate: float | None
    points: int | None

    model_config = {"from_attributes": True}


class PromotionUpdateRequest(CamelModel):
    """Request body for PATCH /promotions/{promotion_id}; omitted fields are left alone."""
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    type: Literal["automatic", "one-time"] | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    min_spending: Decimal | None = Field(None, gt=0)
    rate: float | None = Field(None, ge=0)
    points: int | None = Field(None, ge=0)
