"""One row per external connection; the durable Connection Registry."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.models.base import Base


class ConnectionRow(Base):
    __tablename__ = "connections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    category: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # pending | connected | error | disconnected
    )

    credential_ref: Mapped[str | None] = mapped_column(String(64), nullable=True, comment="StoredSecret id")

    sync_cadence: Mapped[dict] = mapped_column(JSON, nullable=False)
    data_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_cursor: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="newest record timestamp seen"
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
