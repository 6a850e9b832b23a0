import logging
import sys
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from dotenv import load_dotenv

from pamoja.cipher import HistoryCipher
from pamoja.errors import PamojaError, ProviderError, ValidationError
from pamoja.identity import WEB, resolve_web_identity
from pamoja.moderation import ModerationService
from pamoja.schemas import (
    ChatIn, ChatOut, ChatResult, ClearOut, ConversationItem, ConversationOut, ErrorOut,
    HistoryData, HistoryOut, MessageItem, ModerationIn, ModerationOut,
)
from pamoja.services import ChatService
from pamoja.settings import Settings, load_settings
from pamoja.storage_memory import InMemoryConversationStore
from pamoja.whatsapp import WhatsAppAdapter, WhatsAppClient, parse_inbound, verify_webhook


load_dotenv()
settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("pamoja.app")

app = FastAPI(title="Pamoja Chat API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-Id"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s request incoming to endpoint %s", request.method, request.url.path)
    return await call_next(request)


if settings.use_db:
    from pamoja.persistence.db import build_engine, make_session_factory
    from pamoja.persistence.models import Base
    from pamoja.persistence.storage_db import DBConversationStore

    _engine = build_engine(settings.db_url)
    Base.metadata.create_all(bind=_engine)
    _store = DBConversationStore(make_session_factory(_engine))
else:
    _store = InMemoryConversationStore()

if settings.use_dummy_llm:
    from pamoja.llm_dummy import DummyLLM
    logger.warning("USE_DUMMY_LLM=1; answering with the offline DummyLLM")
    _llm = DummyLLM()
else:
    from pamoja.llm_openai import OpenAILLM
    if not settings.openai_api_key:
        logger.error("OPENAI_APIKEY is not set; chat and moderation requests will fail")
    _llm = OpenAILLM(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout,
    )

if not settings.encryption_key:
    logger.warning("ENCRYPTION_KEY is not set; conversation history will be stored as plaintext")

_service = ChatService(store=_store, cipher=HistoryCipher(settings.encryption_key), llm=_llm)
_moderation = ModerationService(llm=_llm)
_whatsapp = WhatsAppClient(
    phone_number_id=settings.whatsapp_phone_number_id,
    access_token=settings.whatsapp_access_token,
    api_version=settings.whatsapp_api_version,
)


def get_settings() -> Settings:
    return settings

def get_service() -> ChatService:
    return _service

def get_moderation() -> ModerationService:
    return _moderation

def get_whatsapp_client() -> WhatsAppClient:
    return _whatsapp

def get_caller_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> Optional[str]:
    # set by the auth gateway once the bearer token has been verified
    return (x_user_id or "").strip() or None


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorOut(error=error, details=details).model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    return _error(400, "Invalid request", f"{field}: {first.get('msg', '')}".strip(": "))


@app.exception_handler(PamojaError)
async def pamoja_error_handler(request: Request, exc: PamojaError):
    return _error(exc.status_code, exc.detail)


# ---- chat ----

@app.post("/chat", response_model=ChatOut, responses={500: {"model": ErrorOut}})
def ask(
    payload: ChatIn,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ChatService = Depends(get_service),
):
    identity = resolve_web_identity(caller_id, payload.session_id)
    try:
        reply = service.ask(identity, payload.question, channel=WEB)
    except ValidationError:
        raise
    except ProviderError as e:
        logger.error("Chat error: %s", e.detail)
        return _error(e.status_code if e.status_code >= 500 else 500, "Failed to get response from AI", e.detail)
    except Exception as e:
        logger.exception("Chat error")
        return _error(500, "Failed to get response from AI", str(e))

    return ChatOut(data=ChatResult(results=reply))


@app.get("/chat", response_model=HistoryOut)
def chat_history(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ChatService = Depends(get_service),
):
    identity = resolve_web_identity(caller_id, session_id)
    conversations = [
        ConversationItem(id=c["id"], messages=[MessageItem(**m) for m in c["messages"]])
        for c in service.history(identity)
    ]
    return HistoryOut(data=HistoryData(messages=conversations))


@app.get("/chat/{conversation_id}", response_model=ConversationOut, responses={404: {"model": ErrorOut}})
def chat_conversation(
    conversation_id: str,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ChatService = Depends(get_service),
):
    c = service.get_conversation(resolve_web_identity(caller_id, session_id), conversation_id)
    return ConversationOut(data=ConversationItem(id=c["id"], messages=[MessageItem(**m) for m in c["messages"]]))


@app.delete("/chat", response_model=ClearOut, responses={401: {"model": ErrorOut}})
def clear_history(
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ChatService = Depends(get_service),
):
    service.clear_history(resolve_web_identity(caller_id, None))
    return ClearOut(message="Conversation history cleared successfully")


# ---- moderation ----

@app.post("/moderation", response_model=ModerationOut, responses={500: {"model": ErrorOut}})
def moderate(payload: ModerationIn, moderation: ModerationService = Depends(get_moderation)):
    try:
        result = moderation.moderate(payload.content, payload.question_context, payload.previous_messages)
    except ValidationError:
        raise
    except Exception:
        logger.exception("Moderation error")
        return _error(500, "Failed to moderate content")
    return ModerationOut(data=result)


# ---- whatsapp ----

@app.get("/whatsapp/webhook")
def whatsapp_verify(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    cfg: Settings = Depends(get_settings),
):
    echoed = verify_webhook(mode, token, challenge, cfg.whatsapp_verify_token)
    if echoed is None:
        logger.warning("WhatsApp webhook verification failed (mode=%s)", mode)
        return _error(403, "Verification failed")
    logger.info("WhatsApp webhook verified")
    return PlainTextResponse(echoed)


@app.post("/whatsapp/webhook")
def whatsapp_message(
    payload: Any = Body(default=None),
    service: ChatService = Depends(get_service),
    client: WhatsAppClient = Depends(get_whatsapp_client),
):
    message = parse_inbound(payload)
    if message is None:
        logger.info("Ignoring WhatsApp webhook without a text message")
        return Response(status_code=400)

    try:
        session_id = WhatsAppAdapter(service, client).handle(message)
    except Exception:
        # non-2xx makes the provider redeliver the event
        logger.exception("Error processing WhatsApp message")
        return Response(status_code=200)

    return {"success": True, "message": "Message processed successfully", "sessionId": session_id}


@app.get("/whatsapp/status")
def whatsapp_status(client: WhatsAppClient = Depends(get_whatsapp_client)):
    return {"success": True, "data": {"connected": client.configured, "phoneNumberId": client.phone_number_id}}


@app.get("/health")
def health(service: ChatService = Depends(get_service)):
    storage = "db" if settings.use_db else "memory"
    return {"status": "ok", "provider": getattr(service.llm, "name", "custom"), "storage": storage}
