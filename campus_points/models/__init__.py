"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from campus_points.models directly
"""

from campus_points.models.user import User, Role, has_min_role, require_min_role  # noqa: F401
from campus_points.models.event import Event, EventGuest, EventOrganizer  # noqa: F401
from campus_points.models.promotion import Promotion, PromotionType, TransactionPromotion  # noqa: F401
from campus_points.models.transaction import (  # noqa: F401
    Transaction,
    TransactionType,
    PurchaseTransaction,
    AdjustmentTransaction,
    TransferTransaction,
    RedemptionTransaction,
    EventTransaction,
)
