"""
Transaction model — the points ledger.

Every change to a user's points balance is explained by a Transaction row.
Once written, a row is never edited except for two fields:
  - suspicious: toggled by a manager (the points effect is reversed with it)
  - processed_by_id: set once when a cashier fulfils a redemption

The five kinds of transaction share one table and are mapped as a
single-table inheritance hierarchy keyed on `type`. Shared fields live on
the base class; each subclass adds only what its kind needs:

  PurchaseTransaction     spent (currency)                cashier records a sale
  AdjustmentTransaction   related_transaction_id          manager correction
  TransferTransaction     related_user_id +               one leg of a user-to-user
                          related_transaction_id          transfer (the other leg)
  RedemptionTransaction   processed_by_id                 user cashes points out
  EventTransaction        event_id                        award to an event guest

Every subclass is loaded inline: a query against Transaction selects the
subclass columns too, so no attribute is left to load lazily (async
sessions cannot).

Sign convention:
  `amount` is the signed point delta for the owning user: positive is a
  credit, negative a debit. A redemption stores a negative amount even
  though the balance is only debited when it is processed.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Boolean, Integer, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_points.database import Base


class TransactionType(str, enum.Enum):
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    REDEMPTION = "redemption"
    EVENT = "event"


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Discriminator for the polymorphic hierarchy
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
        index=True,
    )

    # The user whose balance this row explains
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    # The actor who created the row (cashier, manager, sender, organizer...)
    created_by_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
    )

    # Signed point delta for user_id
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    suspicious: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )

    remark: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Adjustment -> the corrected transaction; transfer -> the paired leg
    related_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    # --- Relationships ---
    # selectin: the formatter reads these after every load, and async
    # sessions cannot lazy-load on attribute access.
    user: Mapped["User"] = relationship(
        foreign_keys=[user_id],
        lazy="selectin",
    )
    created_by: Mapped["User"] = relationship(
        foreign_keys=[created_by_id],
        lazy="selectin",
    )
    promotion_links: Mapped[list["TransactionPromotion"]] = relationship(
        back_populates="transaction",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {
        "polymorphic_on": "type",
    }

    @property
    def promotion_ids(self) -> list[int]:
        return sorted(link.promotion_id for link in self.promotion_links)


class PurchaseTransaction(Transaction):
    # Amount paid in currency units, two decimal places
    spent: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )

    __mapper_args__ = {
        "polymorphic_identity": TransactionType.PURCHASE,
        "polymorphic_load": "inline",
    }


class AdjustmentTransaction(Transaction):
    __mapper_args__ = {
        "polymorphic_identity": TransactionType.ADJUSTMENT,
        "polymorphic_load": "inline",
    }


class TransferTransaction(Transaction):
    # The counter-party: receiver on the sender's leg, sender on the receiver's
    related_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    __mapper_args__ = {
        "polymorphic_identity": TransactionType.TRANSFER,
        "polymorphic_load": "inline",
    }


class RedemptionTransaction(Transaction):
    # Cashier who fulfilled the redemption; NULL while pending
    processed_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    processed_by: Mapped["User"] = relationship(
        foreign_keys=[processed_by_id],
        lazy="selectin",
    )

    __mapper_args__ = {
        "polymorphic_identity": TransactionType.REDEMPTION,
        "polymorphic_load": "inline",
    }


class EventTransaction(Transaction):
    event_id: Mapped[int | None] = mapped_column(
        ForeignKey("events.id"),
        nullable=True,
        index=True,
    )

    __mapper_args__ = {
        "polymorphic_identity": TransactionType.EVENT,
        "polymorphic_load": "inline",
    }
