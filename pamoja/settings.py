import os
from dataclasses import dataclass, field
from typing import List, Optional

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_ORIGINS = [
    "https://www.pamoja.health",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    encryption_key: Optional[str] = None

    openai_api_key: Optional[str] = None
    openai_base_url: str = OPENROUTER_BASE_URL
    openai_model: str = "openai/gpt-4o-mini"
    llm_timeout: float = 30.0
    use_dummy_llm: bool = False

    whatsapp_verify_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_api_version: str = "v22.0"

    use_db: bool = False
    db_url: str = "sqlite:///./conversations.db"

    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings from the process environment (call after load_dotenv)."""
    env = os.environ
    return Settings(
        encryption_key=env.get("ENCRYPTION_KEY") or None,
        openai_api_key=env.get("OPENAI_APIKEY") or env.get("OPENAI_API_KEY") or None,
        openai_base_url=env.get("OPENAI_BASE_URL", OPENROUTER_BASE_URL),
        openai_model=env.get("OPENAI_MODEL", "openai/gpt-4o-mini"),
        llm_timeout=float(env.get("LLM_TIMEOUT", "30")),
        use_dummy_llm=env.get("USE_DUMMY_LLM", "0") == "1",
        whatsapp_verify_token=env.get("WHATSAPP_VERIFY_TOKEN") or None,
        whatsapp_phone_number_id=env.get("WHATSAPP_PHONE_NUMBER_ID") or None,
        whatsapp_access_token=env.get("WHATSAPP_ACCESS_TOKEN") or None,
        whatsapp_api_version=env.get("WHATSAPP_API_VERSION", "v22.0"),
        use_db=env.get("USE_DB", "0") == "1",
        db_url=env.get("DB_URL", "sqlite:///./conversations.db"),
        allowed_origins=_split(env.get("ALLOWED_ORIGINS")) or list(DEFAULT_ORIGINS),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
