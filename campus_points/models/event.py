"""
Event, EventGuest and EventOrganizer models.

Event management (creation, RSVP, organizer assignment) happens elsewhere;
the ledger only needs the point bookkeeping:

  - points_remain: points still available to award
  - points_awarded: points already handed out to guests

Awarding N points to M confirmed guests moves N*M from points_remain to
points_awarded in the same unit of work that writes the M transactions.
The CHECK constraint keeps points_remain from going negative even if a
concurrent award slips past the service-level check.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Boolean, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_points.database import Base


class Event(Base):
    __tablename__ = "events"

    __table_args__ = (
        CheckConstraint("points_remain >= 0", name="ck_events_non_negative_remain"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    points_remain: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    guests: Mapped[list["EventGuest"]] = relationship(back_populates="event")

    @property
    def points_total(self) -> int:
        return self.points_remain + self.points_awarded


class EventGuest(Base):
    __tablename__ = "event_guests"

    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)

    # Only confirmed guests are eligible for awards
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    event: Mapped["Event"] = relationship(back_populates="guests")
    user: Mapped["User"] = relationship(lazy="selectin")


class EventOrganizer(Base):
    __tablename__ = "event_organizers"

    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
