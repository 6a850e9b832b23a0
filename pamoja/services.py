"""Chat turn orchestration.

One call to :meth:`ChatService.ask` is one turn: find the identity's active
conversation, rebuild the prompt from its encrypted history, ask the
completion provider, then re-encrypt and persist the exchange. Nothing is
written unless the provider answered.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from pamoja.cipher import HistoryCipher
from pamoja.errors import (
    DecryptionError, EncryptionError, NotAuthorized, NotFoundError, ProviderError, ValidationError,
)
from pamoja.identity import WEB, WHATSAPP, Channel, Identity
from pamoja.prompts import WHATSAPP_MAX_TOKENS, WHATSAPP_TEMPERATURE, system_prompt
from pamoja.storage_memory import ConversationRecord, HistoryFormat, InMemoryConversationStore

logger = logging.getLogger(__name__)

# prior messages fed back into the prompt; the plaintext log itself is never cut
HISTORY_CAP = 40

Message = Dict[str, str]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatService:
    def __init__(self, store: InMemoryConversationStore, cipher: HistoryCipher, llm: object,
                 history_cap: int = HISTORY_CAP) -> None:
        self.store = store
        self.cipher = cipher
        self.llm = llm
        self.history_cap = history_cap
        # identity key -> [lock, turns holding or waiting on it]
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _turn_lock(self, identity: Identity) -> Iterator[None]:
        # serializes turns for one identity so concurrent appends are not lost
        key = identity.key
        if key is None:
            yield
            return
        with self._locks_guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    # ---- lookup ----

    def find_active(self, identity: Identity) -> Optional[ConversationRecord]:
        """Most recently created conversation for the identity, user id first."""
        conversation = None
        if identity.user_id:
            conversation = self.store.latest_for_user(identity.user_id)
        if conversation is None and identity.session_id:
            conversation = self.store.latest_for_session(identity.session_id)
        return conversation

    def load_history(self, conversation: ConversationRecord) -> List[Message]:
        """Prior user/assistant turns stored on *conversation*.

        Raises DecryptionError when the blob cannot be recovered.
        """
        if conversation["history_format"] == "plaintext":
            raw = conversation["encrypted_history"]
        else:
            raw = self.cipher.decrypt(
                conversation["encrypted_history"], conversation["iv"], conversation["auth_tag"]
            )
        try:
            items = json.loads(raw)
        except ValueError as e:
            raise DecryptionError(f"Stored history is not valid JSON: {e}")
        if not isinstance(items, list):
            raise DecryptionError("Stored history is not a message list")

        return [
            {"role": m["role"], "content": m["content"]}
            for m in items
            if isinstance(m, dict) and m.get("role") in ("user", "assistant") and "content" in m
        ]

    # ---- turn ----

    def build_prompt(self, conversation: Optional[ConversationRecord], question: str,
                     channel: Channel) -> List[Message]:
        messages: List[Message] = [{"role": "system", "content": system_prompt(channel)}]
        if conversation is not None:
            try:
                history = self.load_history(conversation)
            except DecryptionError as e:
                logger.error(
                    "Error decrypting history of conversation %s, starting a new context: %s",
                    conversation["id"], e.detail,
                )
                history = []
            if self.history_cap and len(history) > self.history_cap:
                history = history[-self.history_cap:]
            messages.extend(history)
        messages.append({"role": "user", "content": question})
        return messages

    def _complete(self, messages: List[Message], channel: Channel) -> str:
        if channel == WHATSAPP:
            reply = self.llm.complete(messages, temperature=WHATSAPP_TEMPERATURE, max_tokens=WHATSAPP_MAX_TOKENS)
        else:
            reply = self.llm.complete(messages)
        reply = (reply or "").strip()
        if not reply:
            raise ProviderError("Empty response from completion provider")
        return reply

    def _seal(self, messages: List[Message]) -> Tuple[HistoryFormat, str, Optional[str], Optional[str]]:
        serialized = json.dumps(messages, ensure_ascii=False)
        try:
            payload = self.cipher.encrypt(serialized)
        except EncryptionError as e:
            # reply already produced; store the exchange as plaintext
            logger.error("Encryption error, storing history as plaintext: %s", e.detail)
            return "plaintext", serialized, None, None
        return "encrypted", payload.ciphertext, payload.iv, payload.auth_tag

    def _persist(self, identity: Identity, conversation: Optional[ConversationRecord],
                 question: str, reply: str, messages: List[Message],
                 channel: Channel) -> Optional[ConversationRecord]:
        now = _now()
        exchange = [
            {"role": "user", "content": question, "timestamp": now},
            {"role": "assistant", "content": reply, "timestamp": now},
        ]
        fmt, blob, iv, tag = self._seal(messages)

        if conversation is not None:
            conversation["history_format"] = fmt
            conversation["encrypted_history"] = blob
            conversation["iv"] = iv
            conversation["auth_tag"] = tag
            # caller logged in during an anonymous thread
            if identity.user_id and not conversation["owner_user_id"]:
                conversation["owner_user_id"] = identity.user_id
                conversation["is_anonymous"] = False
            if identity.session_id and not conversation["session_id"]:
                conversation["session_id"] = identity.session_id
            conversation["messages"].extend(exchange)
            conversation["updated_at"] = now
            self.store.save(conversation)
            return conversation

        if identity.key is None:
            logger.info("Anonymous turn without sessionId, conversation not stored")
            return None

        record: ConversationRecord = {
            "id": self.store.new_id(),
            "owner_user_id": identity.user_id,
            "session_id": identity.session_id,
            "messages": exchange,
            "history_format": fmt,
            "encrypted_history": blob,
            "iv": iv,
            "auth_tag": tag,
            "is_anonymous": identity.is_anonymous,
            "is_whatsapp": channel == WHATSAPP,
            "created_at": now,
            "updated_at": now,
        }
        return self.store.create(record)

    def ask(self, identity: Identity, question: str, channel: Optional[Channel] = None) -> str:
        """Answer *question* for *identity* and store the exchange. Returns the reply text."""
        question = (question or "").strip()
        if not question:
            raise ValidationError("question is required")
        channel = channel or identity.channel or WEB

        with self._turn_lock(identity):
            conversation = self.find_active(identity)
            messages = self.build_prompt(conversation, question, channel)

            reply = self._complete(messages, channel)

            messages.append({"role": "assistant", "content": reply})
            self._persist(identity, conversation, question, reply, messages, channel)

        logger.info("Chat turn answered: kind=%s channel=%s", identity.kind, channel)
        return reply

    # ---- history ----

    def history(self, identity: Identity) -> List[ConversationRecord]:
        """Every conversation visible to the identity, newest first."""
        return self.store.list_for(user_id=identity.user_id, session_id=identity.session_id)

    def get_conversation(self, identity: Identity, cid: str) -> ConversationRecord:
        """One conversation by id, only when it belongs to the identity."""
        conversation = self.store.get(cid)
        visible = conversation is not None and (
            (identity.user_id and conversation["owner_user_id"] == identity.user_id)
            or (identity.session_id and conversation["session_id"] == identity.session_id)
        )
        if not visible:
            raise NotFoundError("Conversation not found")
        return conversation

    def clear_history(self, identity: Identity) -> int:
        """Delete every conversation owned by the authenticated caller."""
        if not identity.user_id:
            raise NotAuthorized()
        with self._turn_lock(identity):
            deleted = self.store.delete_for_user(identity.user_id)
        logger.info("Cleared %d conversation(s) for user %s", deleted, identity.user_id)
        return deleted
