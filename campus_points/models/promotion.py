"""
Promotion and TransactionPromotion models.

A Promotion adds bonus points to a purchase (or adjustment) while it is
active, i.e. start_time <= now < end_time. It may carry:
  - min_spending: purchase must be at least this many currency units
  - rate: bonus points per cent spent (purchase context only)
  - points: flat bonus points

Promotion types:
  - AUTOMATIC: applies to every qualifying transaction
  - ONE_TIME: each user may consume it at most once

One-time enforcement:
  TransactionPromotion links a transaction to each promotion applied to it.
  For one-time promotions the link also records the consuming user in
  `one_time_user_id`, and a unique constraint on
  (promotion_id, one_time_user_id) makes a second use impossible even if two
  requests pass the application-level check concurrently. Automatic
  promotions leave the column NULL, and NULLs never collide in a unique
  constraint, so they can be reused freely.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Float, Numeric, DateTime, ForeignKey, Enum,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_points.database import Base


class PromotionType(str, enum.Enum):
    AUTOMATIC = "automatic"
    ONE_TIME = "one-time"


class Promotion(Base):
    __tablename__ = "promotions"

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_promotions_window"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    type: Mapped[PromotionType] = mapped_column(
        Enum(PromotionType),
        nullable=False,
    )

    # Active window [start_time, end_time)
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Currency units, e.g. 20.00
    min_spending: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )

    rate: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    points: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class TransactionPromotion(Base):
    __tablename__ = "transaction_promotions"

    __table_args__ = (
        UniqueConstraint(
            "promotion_id",
            "one_time_user_id",
            name="uq_transaction_promotions_one_time_use",
        ),
    )

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"),
        primary_key=True,
    )

    promotion_id: Mapped[int] = mapped_column(
        ForeignKey("promotions.id"),
        primary_key=True,
    )

    # Owner of the transaction, set only when the promotion is one-time
    one_time_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    # --- Relationships ---
    transaction: Mapped["Transaction"] = relationship(
        back_populates="promotion_links",
    )
    promotion: Mapped["Promotion"] = relationship(lazy="selectin")
