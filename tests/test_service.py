import json
import threading

import pytest

from pamoja.cipher import HistoryCipher
from pamoja.errors import (
    ConfigurationError, EncryptionError, NotAuthorized, NotFoundError, ProviderError, UpstreamTimeout, ValidationError,
)
from pamoja.identity import WHATSAPP, resolve_web_identity, resolve_whatsapp_identity
from pamoja.llm_openai import OpenAILLM
from pamoja.prompts import WEB_SYSTEM_TEMPLATE, WHATSAPP_SYSTEM_TEMPLATE
from pamoja.services import ChatService
from pamoja.storage_memory import InMemoryConversationStore

SECRET = "test-secret"


class FakeLLM:
    def __init__(self, script=None, error=None):
        self.script = script or []
        self.error = error
        self.calls = []

    def complete(self, messages, temperature=None, max_tokens=None, response_format=None):
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.error is not None:
            raise self.error
        n = len(self.calls) - 1
        if n < len(self.script):
            return self.script[n]
        return f"  Reply {n + 1} about health.  "


class BrokenCipher(HistoryCipher):
    def encrypt(self, plaintext):
        raise EncryptionError("boom")


def new_service(script=None, error=None, cipher=None, store=None):
    store = store if store is not None else InMemoryConversationStore()
    llm = FakeLLM(script=script, error=error)
    svc = ChatService(store=store, cipher=cipher or HistoryCipher(SECRET), llm=llm)
    return svc, store, llm


def snapshot(store):
    return json.dumps(store.list_for(user_id="u1", session_id="sess-123"), sort_keys=True)


def test_first_anonymous_turn_creates_conversation():
    svc, store, llm = new_service(script=["Emergency contraception can prevent pregnancy."])
    identity = resolve_web_identity(None, "sess-123")

    reply = svc.ask(identity, "What is emergency contraception?")

    assert reply == "Emergency contraception can prevent pregnancy."
    convs = store.list_for(session_id="sess-123")
    assert len(convs) == 1
    conv = convs[0]
    assert conv["session_id"] == "sess-123"
    assert conv["owner_user_id"] is None
    assert conv["is_anonymous"] is True
    assert conv["is_whatsapp"] is False
    assert [m["role"] for m in conv["messages"]] == ["user", "assistant"]
    assert conv["messages"][0]["content"] == "What is emergency contraception?"
    assert conv["history_format"] == "encrypted"
    assert conv["iv"] and conv["auth_tag"]
    assert "contraception" not in conv["encrypted_history"]


def test_second_turn_continues_history():
    svc, store, llm = new_service()
    identity = resolve_web_identity(None, "sess-123")
    svc.ask(identity, "What is emergency contraception?")
    svc.ask(identity, "How long does it work?")

    prompt = llm.calls[1]["messages"]
    assert len(prompt) == 4
    assert [m["role"] for m in prompt] == ["system", "user", "assistant", "user"]
    assert prompt[0]["content"] == WEB_SYSTEM_TEMPLATE
    assert prompt[1]["content"] == "What is emergency contraception?"
    assert prompt[2]["content"] == "Reply 1 about health."
    assert prompt[3]["content"] == "How long does it work?"

    convs = store.list_for(session_id="sess-123")
    assert len(convs) == 1
    assert len(convs[0]["messages"]) == 4


def test_reply_is_trimmed():
    svc, _, _ = new_service()
    assert svc.ask(resolve_web_identity("u1", None), "hi") == "Reply 1 about health."


def test_stored_history_round_trips_through_cipher():
    svc, store, _ = new_service()
    identity = resolve_web_identity("u1", None)
    svc.ask(identity, "first")

    conv = store.latest_for_user("u1")
    history = svc.load_history(conv)
    assert history == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "Reply 1 about health."},
    ]


def test_whatsapp_turn_uses_concise_settings():
    svc, store, llm = new_service()
    identity = resolve_whatsapp_identity("+15551234567")
    assert identity.session_id == "wa_15551234567"

    svc.ask(identity, "hello", channel=WHATSAPP)

    call = llm.calls[0]
    assert call["max_tokens"] == 200
    assert call["temperature"] == 0.7
    assert call["messages"][0]["content"] == WHATSAPP_SYSTEM_TEMPLATE
    conv = store.latest_for_session("wa_15551234567")
    assert conv["is_whatsapp"] is True
    assert conv["is_anonymous"] is True


def test_web_turn_uses_provider_defaults():
    svc, _, llm = new_service()
    svc.ask(resolve_web_identity(None, "s1"), "hello")
    assert llm.calls[0]["max_tokens"] is None
    assert llm.calls[0]["temperature"] is None


def test_undecryptable_history_starts_fresh_context():
    store = InMemoryConversationStore()
    old, _, _ = new_service(store=store, cipher=HistoryCipher("old-secret"))
    identity = resolve_web_identity(None, "sess-9")
    old.ask(identity, "first question")

    svc, _, llm = new_service(store=store, cipher=HistoryCipher("rotated-secret"))
    reply = svc.ask(identity, "second question")

    assert reply == "Reply 1 about health."
    assert [m["role"] for m in llm.calls[0]["messages"]] == ["system", "user"]
    conv = store.latest_for_session("sess-9")
    # plaintext log keeps everything even though the context was reset
    assert len(conv["messages"]) == 4


def test_provider_failure_commits_nothing():
    svc, store, _ = new_service(error=UpstreamTimeout("too slow"))
    with pytest.raises(ProviderError):
        svc.ask(resolve_web_identity(None, "sess-123"), "question")
    assert store.list_for(session_id="sess-123") == []


def test_provider_failure_leaves_existing_conversation_untouched():
    svc, store, llm = new_service()
    identity = resolve_web_identity("u1", "sess-123")
    svc.ask(identity, "first")
    before = snapshot(store)

    llm.error = ProviderError("down")
    with pytest.raises(ProviderError):
        svc.ask(identity, "second")

    assert snapshot(store) == before


def test_empty_completion_is_a_provider_error():
    svc, store, _ = new_service(script=["   "])
    with pytest.raises(ProviderError):
        svc.ask(resolve_web_identity(None, "s1"), "hello")
    assert store.list_for(session_id="s1") == []


def test_encryption_failure_falls_back_to_plaintext():
    svc, store, _ = new_service(cipher=BrokenCipher(SECRET))
    identity = resolve_web_identity(None, "s1")
    reply = svc.ask(identity, "hello")

    conv = store.latest_for_session("s1")
    assert reply == "Reply 1 about health."
    assert conv["history_format"] == "plaintext"
    assert conv["iv"] is None and conv["auth_tag"] is None
    stored = json.loads(conv["encrypted_history"])
    assert [m["role"] for m in stored] == ["system", "user", "assistant"]


def test_plaintext_history_is_read_back_on_next_turn():
    store = InMemoryConversationStore()
    broken, _, _ = new_service(store=store, cipher=BrokenCipher(SECRET))
    identity = resolve_web_identity(None, "s1")
    broken.ask(identity, "hello")

    svc, _, llm = new_service(store=store)
    svc.ask(identity, "again")

    assert [m["content"] for m in llm.calls[0]["messages"][1:]] == ["hello", "Reply 1 about health.", "again"]
    assert store.latest_for_session("s1")["history_format"] == "encrypted"


def test_missing_secret_still_answers():
    svc, store, _ = new_service(cipher=HistoryCipher(None))
    assert svc.ask(resolve_web_identity(None, "s1"), "hello")
    assert store.latest_for_session("s1")["history_format"] == "plaintext"


def test_history_cap_bounds_prompt_but_not_log():
    svc, store, llm = new_service()
    svc.history_cap = 4
    identity = resolve_web_identity("u1", None)
    for i in range(4):
        svc.ask(identity, f"turn {i}")

    last_prompt = llm.calls[-1]["messages"]
    assert len(last_prompt) == 1 + 4 + 1
    assert last_prompt[1]["content"] == "turn 1"
    assert len(store.latest_for_user("u1")["messages"]) == 8


def test_user_lookup_falls_back_to_session_and_adopts_owner():
    svc, store, llm = new_service()
    svc.ask(resolve_web_identity(None, "sess-1"), "anonymous question")

    svc.ask(resolve_web_identity("u1", "sess-1"), "after login")

    convs = store.list_for(session_id="sess-1")
    assert len(convs) == 1
    assert convs[0]["owner_user_id"] == "u1"
    assert convs[0]["is_anonymous"] is False
    assert len(llm.calls[1]["messages"]) == 4


def test_turn_without_identity_is_not_stored():
    svc, store, _ = new_service()
    assert svc.ask(resolve_web_identity(None, None), "hello") == "Reply 1 about health."
    assert store._db == {}


def test_blank_question_is_rejected_before_any_call():
    svc, _, llm = new_service()
    with pytest.raises(ValidationError):
        svc.ask(resolve_web_identity(None, "s1"), "   ")
    assert llm.calls == []


def test_active_conversation_is_most_recent():
    svc, store, _ = new_service()
    svc.ask(resolve_web_identity("u1", None), "one")
    first = store.latest_for_user("u1")
    newer = dict(first, id=store.new_id(), messages=[])
    store.create(newer)

    assert svc.find_active(resolve_web_identity("u1", None))["id"] == newer["id"]


def test_clear_history_only_touches_owner():
    svc, store, _ = new_service()
    owner = resolve_web_identity("user-a", None)
    for _ in range(3):
        store.create(dict(
            id=store.new_id(), owner_user_id="user-a", session_id=None, messages=[],
            history_format="plaintext", encrypted_history="[]", iv=None, auth_tag=None,
            is_anonymous=False, is_whatsapp=False, created_at="", updated_at="",
        ))
    svc.ask(resolve_web_identity(None, "anon-1"), "same words")
    svc.ask(owner, "same words")

    assert svc.clear_history(owner) == 3
    assert svc.history(owner) == []
    anon = store.list_for(session_id="anon-1")
    assert len(anon) == 1
    assert anon[0]["messages"][0]["content"] == "same words"


def test_clear_history_requires_authenticated_user():
    svc, _, _ = new_service()
    with pytest.raises(NotAuthorized):
        svc.clear_history(resolve_web_identity(None, "s1"))


def test_history_for_user_includes_session_threads():
    svc, _, _ = new_service()
    svc.ask(resolve_web_identity(None, "s1"), "anonymous")
    svc.ask(resolve_web_identity(None, "s2"), "someone else")

    convs = svc.history(resolve_web_identity("u1", "s1"))
    assert len(convs) == 1
    assert convs[0]["messages"][0]["content"] == "anonymous"


def test_turn_locks_are_released_after_each_turn():
    svc, _, llm = new_service()
    for i in range(50):
        svc.ask(resolve_web_identity(None, f"sess-{i}"), "hello")
    svc.ask(resolve_whatsapp_identity("15551234567"), "hello")
    svc.clear_history(resolve_web_identity("u1", None))

    llm.error = ProviderError("down")
    with pytest.raises(ProviderError):
        svc.ask(resolve_web_identity(None, "sess-failing"), "hello")

    assert svc._locks == {}


def test_concurrent_turns_for_one_session_keep_every_exchange():
    svc, store, _ = new_service()
    identity = resolve_web_identity(None, "sess-busy")
    threads = [threading.Thread(target=svc.ask, args=(identity, f"question {i}")) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    convs = store.list_for(session_id="sess-busy")
    assert len(convs) == 1
    assert len(convs[0]["messages"]) == 16
    assert svc._locks == {}


def test_get_conversation_is_scoped_to_identity():
    svc, store, _ = new_service()
    svc.ask(resolve_web_identity(None, "sess-123"), "hello")
    cid = store.latest_for_session("sess-123")["id"]

    assert svc.get_conversation(resolve_web_identity(None, "sess-123"), cid)["id"] == cid
    with pytest.raises(NotFoundError):
        svc.get_conversation(resolve_web_identity(None, "sess-other"), cid)
    with pytest.raises(NotFoundError):
        svc.get_conversation(resolve_web_identity("u1", "sess-123"), "missing")


def test_keyless_provider_refuses_and_nothing_is_stored():
    store = InMemoryConversationStore()
    svc = ChatService(store=store, cipher=HistoryCipher(SECRET), llm=OpenAILLM(api_key=None))
    with pytest.raises(ConfigurationError):
        svc.ask(resolve_web_identity(None, "sess-123"), "hello")
    assert store.list_for(session_id="sess-123") == []
