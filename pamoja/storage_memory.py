import copy
import threading
import uuid
from typing import Dict, List, Literal, Optional, TypedDict

HistoryFormat = Literal["encrypted", "plaintext"]


class MessageEntry(TypedDict):
    role: str
    content: str
    timestamp: str


class ConversationRecord(TypedDict):
    id: str
    owner_user_id: Optional[str]
    session_id: Optional[str]
    messages: List[MessageEntry]
    # "encrypted": encrypted_history/iv/auth_tag hold AES-GCM output
    # "plaintext": encrypted_history holds the serialized list, iv/auth_tag are None
    history_format: HistoryFormat
    encrypted_history: str
    iv: Optional[str]
    auth_tag: Optional[str]
    is_anonymous: bool
    is_whatsapp: bool
    created_at: str
    updated_at: str


class InMemoryConversationStore:
    """Process-local store. Records are copied in and out so callers never share state with it."""

    def __init__(self) -> None:
        # insertion order == creation order
        self._db: Dict[str, ConversationRecord] = {}
        self._lock = threading.Lock()

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def _latest(self, field: str, value: str) -> Optional[ConversationRecord]:
        with self._lock:
            for row in reversed(list(self._db.values())):
                if row[field] == value:
                    return copy.deepcopy(row)
        return None

    def get(self, cid: str) -> Optional[ConversationRecord]:
        with self._lock:
            row = self._db.get(cid)
            return copy.deepcopy(row) if row is not None else None

    def latest_for_user(self, user_id: str) -> Optional[ConversationRecord]:
        return self._latest("owner_user_id", user_id)

    def latest_for_session(self, session_id: str) -> Optional[ConversationRecord]:
        return self._latest("session_id", session_id)

    def create(self, record: ConversationRecord) -> ConversationRecord:
        with self._lock:
            self._db[record["id"]] = copy.deepcopy(record)
        return record

    def save(self, record: ConversationRecord) -> None:
        with self._lock:
            if record["id"] not in self._db:
                raise KeyError(record["id"])
            self._db[record["id"]] = copy.deepcopy(record)

    def list_for(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> List[ConversationRecord]:
        """Conversations owned by *user_id* or bound to *session_id*, newest first."""
        if not user_id and not session_id:
            return []
        with self._lock:
            rows = [
                copy.deepcopy(row) for row in reversed(list(self._db.values()))
                if (user_id and row["owner_user_id"] == user_id)
                or (session_id and row["session_id"] == session_id)
            ]
        return rows

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [cid for cid, row in self._db.items() if row["owner_user_id"] == user_id]
            for cid in doomed:
                del self._db[cid]
        return len(doomed)
