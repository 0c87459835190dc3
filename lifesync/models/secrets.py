"""Encrypted credential envelopes. The payload column is ciphertext only."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.models.base import Base


class StoredSecretRow(Base):
    __tablename__ = "stored_secrets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # oauth | api_key | basic_auth | certificate
    )

    encrypted_payload: Mapped[str] = mapped_column(Text, nullable=False)
    key_id: Mapped[str] = mapped_column(String(64), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(64), nullable=False)

    # Declarative classes reserve the attribute name "metadata".
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
