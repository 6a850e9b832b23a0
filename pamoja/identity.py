from dataclasses import dataclass
from typing import Literal, Optional

from pamoja.errors import ValidationError

WHATSAPP_PREFIX = "wa_"

Channel = Literal["web", "whatsapp"]
WEB: Channel = "web"
WHATSAPP: Channel = "whatsapp"


@dataclass(frozen=True)
class Identity:
    """Who a chat turn belongs to.

    ``user_id`` wins over ``session_id`` when both are present; the session id
    is still kept so an anonymous thread can be picked up after login.
    """
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    channel: Channel = WEB

    @property
    def kind(self) -> Optional[str]:
        if self.user_id:
            return "user"
        if self.session_id:
            return "whatsapp" if self.channel == WHATSAPP else "session"
        return None

    @property
    def key(self) -> Optional[str]:
        return self.user_id or self.session_id

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id

    @property
    def is_whatsapp(self) -> bool:
        return self.channel == WHATSAPP


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def whatsapp_session_id(phone_number: str) -> str:
    """``+15551234567`` and ``15551234567`` both map to ``wa_15551234567``."""
    return WHATSAPP_PREFIX + phone_number.strip().lstrip("+")


def resolve_web_identity(user_id: Optional[str], session_id: Optional[str]) -> Identity:
    session_id = _clean(session_id)
    # web clients must not be able to read WhatsApp threads
    if session_id and session_id.startswith(WHATSAPP_PREFIX):
        raise ValidationError("invalid sessionId")
    return Identity(user_id=_clean(user_id), session_id=session_id, channel=WEB)


def resolve_whatsapp_identity(phone_number: str) -> Identity:
    return Identity(session_id=whatsapp_session_id(phone_number), channel=WHATSAPP)
