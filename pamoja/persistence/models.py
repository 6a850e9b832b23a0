# pamoja/persistence/models.py
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import mapped_column, Mapped
from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    owner_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # anonymous web session or "wa_<phone>"
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    history_format: Mapped[str] = mapped_column(String(10), nullable=False, default="encrypted")
    encrypted_history: Mapped[str] = mapped_column(Text, nullable=False)
    iv: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    auth_tag: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_whatsapp: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_conversations_owner_created", "owner_user_id", "created_at"),
        Index("ix_conversations_session_created", "session_id", "created_at"),
        Index("ix_conversations_whatsapp_session", "is_whatsapp", "session_id", "created_at"),
    )
