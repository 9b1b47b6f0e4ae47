"""Ticket model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from kiosk.db.base import Base


class Ticket(Base):
    """A meal ticket, issued locally or hydrated from the remote service.

    ``uuid`` is the merge key with the server and is unique. For regular
    codes it is derived from (user, meal, day), so the unique index also
    guards against issuing the same regular code twice.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_user_meal_period", "user_external_id", "meal_external_id", "period_external_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    user_external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    meal_external_id: Mapped[int] = mapped_column(Integer, nullable=False)
    period_external_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False)  # ISO timestamp
    uuid: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    sync_pending: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} uuid={self.uuid} pending={self.sync_pending}>"
