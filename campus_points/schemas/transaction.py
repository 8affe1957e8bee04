"""
Pydantic schemas for ledger endpoints.

JSON keys are camelCase (promotionIds, relatedId, createdBy) to match the
campus front end; Python attributes stay snake_case. populate_by_name lets
tests and services build models with either spelling.

Responses are a tagged union on `type`: every view shares the base fields
and adds the ones its transaction kind carries.
"""

from decimal import Decimal
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class PurchaseRequest(CamelModel):
    """Request body for POST /transactions with type=purchase."""
    type: Literal["purchase"]
    utorid: str = Field(min_length=1)
    spent: Decimal = Field(gt=0, description="Amount paid, in currency units")
    promotion_ids: list[int] = Field(default_factory=list)
    remark: str | None = None


class AdjustmentRequest(CamelModel):
    """Request body for POST /transactions with type=adjustment."""
    type: Literal["adjustment"]
    amount: int
    related_id: int = Field(gt=0, description="Transaction being corrected")
    utorid: str | None = None
    promotion_ids: list[int] = Field(default_factory=list)
    remark: str | None = None


TransactionCreateRequest = Union[PurchaseRequest, AdjustmentRequest]


class TransferRequest(CamelModel):
    """Request body for POST /users/{userId}/transactions."""
    type: Literal["transfer"]
    amount: int = Field(gt=0, description="Points to send (must be positive)")
    remark: str | None = None


class RedemptionRequest(CamelModel):
    """Request body for POST /users/me/transactions."""
    type: Literal["redemption"]
    amount: int = Field(gt=0, description="Points to redeem (must be positive)")
    remark: str | None = None


class EventAwardRequest(CamelModel):
    """Request body for POST /events/{eventId}/transactions."""
    type: Literal["event"] = "event"
    amount: int = Field(gt=0, description="Points per recipient")
    utorid: str | None = Field(None, description="Single recipient; omit to award all confirmed guests")
    remark: str | None = None


class SuspiciousRequest(CamelModel):
    suspicious: bool


class ProcessedRequest(CamelModel):
    processed: Literal[True]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TransactionViewBase(CamelModel):
    id: int
    utorid: str | None
    amount: int
    suspicious: bool
    remark: str
    created_by: str | None
    promotion_ids: list[int]


class PurchaseView(TransactionViewBase):
    type: Literal["purchase"] = "purchase"
    spent: float | None
    earned: int


class AdjustmentView(TransactionViewBase):
    type: Literal["adjustment"] = "adjustment"
    related_id: int | None


class TransferView(TransactionViewBase):
    type: Literal["transfer"] = "transfer"
    related_id: int | None
    sent: int | None = None
    received: int | None = None


class RedemptionView(TransactionViewBase):
    type: Literal["redemption"] = "redemption"
    redeemed: int
    processed_by: str | None


class EventAwardView(TransactionViewBase):
    type: Literal["event"] = "event"
    related_id: int | None
    awarded: int


TransactionView = Union[PurchaseView, AdjustmentView, TransferView, RedemptionView, EventAwardView]


class TransactionPage(CamelModel):
    count: int
    results: list[TransactionView]
