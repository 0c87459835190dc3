"""Scheduling and retry state, one row per connection."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.models.base import Base


class SyncPolicyRow(Base):
    __tablename__ = "sync_policies"

    connection_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    cadence: Mapped[str] = mapped_column(String(20), nullable=False)

    next_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
