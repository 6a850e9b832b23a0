import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError

from .models import Conversation
from pamoja.storage_memory import ConversationRecord


def _to_record(row: Conversation) -> ConversationRecord:
    return {
        "id": row.id,
        "owner_user_id": row.owner_user_id,
        "session_id": row.session_id,
        "messages": list(row.messages or []),
        "history_format": row.history_format,
        "encrypted_history": row.encrypted_history,
        "iv": row.iv,
        "auth_tag": row.auth_tag,
        "is_anonymous": row.is_anonymous,
        "is_whatsapp": row.is_whatsapp,
        "created_at": row.created_at.isoformat() if row.created_at else "",
        "updated_at": row.updated_at.isoformat() if row.updated_at else "",
    }


def _apply(row: Conversation, record: ConversationRecord) -> None:
    row.owner_user_id = record["owner_user_id"]
    row.session_id = record["session_id"]
    row.messages = list(record["messages"] or [])
    # the history variant and its parameters are always written together
    row.history_format = record["history_format"]
    row.encrypted_history = record["encrypted_history"]
    row.iv = record["iv"]
    row.auth_tag = record["auth_tag"]
    row.is_anonymous = record["is_anonymous"]
    row.is_whatsapp = record["is_whatsapp"]
    if record.get("updated_at"):
        row.updated_at = datetime.fromisoformat(record["updated_at"])


class DBConversationStore:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def get(self, cid: str) -> Optional[ConversationRecord]:
        session = self._session_factory()
        try:
            row = session.get(Conversation, cid)
            return _to_record(row) if row else None
        finally:
            session.close()

    def _latest(self, column, value: str) -> Optional[ConversationRecord]:
        session = self._session_factory()
        try:
            stmt = (
                select(Conversation)
                .where(column == value)
                .order_by(Conversation.created_at.desc())
                .limit(1)
            )
            row = session.execute(stmt).scalars().first()
            return _to_record(row) if row else None
        finally:
            session.close()

    def latest_for_user(self, user_id: str) -> Optional[ConversationRecord]:
        return self._latest(Conversation.owner_user_id, user_id)

    def latest_for_session(self, session_id: str) -> Optional[ConversationRecord]:
        return self._latest(Conversation.session_id, session_id)

    def create(self, record: ConversationRecord) -> ConversationRecord:
        session = self._session_factory()
        try:
            row = Conversation(id=record["id"])
            _apply(row, record)
            if record.get("created_at"):
                row.created_at = datetime.fromisoformat(record["created_at"])
            session.add(row)
            session.commit()
            return record
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def save(self, record: ConversationRecord) -> None:
        session = self._session_factory()
        try:
            row = session.get(Conversation, record["id"])
            if row is None:
                raise KeyError(record["id"])
            _apply(row, record)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def list_for(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> List[ConversationRecord]:
        clauses = []
        if user_id:
            clauses.append(Conversation.owner_user_id == user_id)
        if session_id:
            clauses.append(Conversation.session_id == session_id)
        if not clauses:
            return []

        session = self._session_factory()
        try:
            stmt = select(Conversation).where(or_(*clauses)).order_by(Conversation.created_at.desc())
            return [_to_record(row) for row in session.execute(stmt).scalars()]
        finally:
            session.close()

    def delete_for_user(self, user_id: str) -> int:
        session = self._session_factory()
        try:
            result = session.execute(delete(Conversation).where(Conversation.owner_user_id == user_id))
            session.commit()
            return result.rowcount or 0
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()
