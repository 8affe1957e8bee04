"""
User model — a campus member who holds a points balance.

Each User has:
  - A utorid: the campus login identifier, stored lower-cased
  - A points balance (integer) mutated only through ledger transactions
  - A role from the ordered hierarchy regular < cashier < manager < superuser
  - A verified flag: transfers and redemptions require a verified user
  - A suspicious flag: meaningful for cashiers only — every purchase a
    suspicious cashier records is flagged and its points are withheld

Balance management:
  The `points` column is updated in the same unit of work as the
  Transaction row that explains the change. There is no CHECK
  constraint forcing it non-negative: manager adjustments and suspicious-flag
  reversals are corrective and may take a balance below zero. Transfers,
  redemptions and fulfilment refuse to overdraw at the service layer.

Registration, password handling and profile edits live outside this service;
the ledger only reads users and moves their points.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, Integer, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column

from campus_points.database import Base
from campus_points.exceptions import ForbiddenError


class Role(str, enum.Enum):
    """
    Ordered role hierarchy.

    Inherits from str so the value serializes naturally to JSON and can be
    stored as a simple string in the database. Use `rank` (or
    has_min_role) for "at least X" checks instead of comparing names.
    """
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {
    Role.REGULAR: 1,
    Role.CASHIER: 2,
    Role.MANAGER: 3,
    Role.SUPERUSER: 4,
}


def has_min_role(role: Role, minimum: Role) -> bool:
    """True when `role` is at or above `minimum` in the hierarchy."""
    return Role(role).rank >= Role(minimum).rank


def require_min_role(actor: "User", minimum: Role) -> None:
    """Raise ForbiddenError unless the actor holds at least `minimum`."""
    if not has_min_role(actor.role, minimum):
        raise ForbiddenError(f"Requires {minimum.value} role or higher")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Campus identifier — unique, indexed for lookups by cashiers
    utorid: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    role: Mapped[Role] = mapped_column(
        Enum(Role),
        default=Role.REGULAR,
        nullable=False,
    )

    verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    suspicious: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
