"""Meal, period and meal-period link models."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kiosk.db.base import Base


class Meal(Base):
    """A named service window recurring daily, e.g. breakfast 07:00-09:00."""

    __tablename__ = "meals"

    external_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[str] = mapped_column(String(8), nullable=False)  # HH:MM[:SS]
    end_time: Mapped[str] = mapped_column(String(8), nullable=False)
    active_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Period(Base):
    """A date-bounded interval during which meals are served."""

    __tablename__ = "periods"

    external_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    end_date: Mapped[str] = mapped_column(String(10), nullable=False)
    active_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MealPeriodLink(Base):
    """Which meals a period serves, with per-period limits."""

    __tablename__ = "meal_period_links"
    __table_args__ = (
        UniqueConstraint("period_external_id", "meal_external_id", name="uq_period_meal"),
    )

    link_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    period_external_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("periods.external_id"), nullable=False, index=True,
    )
    meal_external_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("meals.external_id"), nullable=False,
    )
    hours_before_cutoff: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_persons: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    active_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    state_flag: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    subsidy_amount: Mapped[str] = mapped_column(String(20), default="0.00", nullable=False)
    created_at: Mapped[Optional[str]] = mapped_column(String(40), server_default=func.current_timestamp())

    meal: Mapped[Optional[Meal]] = relationship(lazy="joined", viewonly=True)
