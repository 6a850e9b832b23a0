"""WhatsApp Cloud API channel.

Maps webhook events onto chat turns and relays the replies back through the
Graph API ``/messages`` endpoint.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from pamoja.errors import ConfigurationError, DeliveryError
from pamoja.identity import WHATSAPP, resolve_whatsapp_identity
from pamoja.services import ChatService

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"
BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"


@dataclass(frozen=True)
class InboundMessage:
    sender: str
    text: str


def verify_webhook(mode: Optional[str], token: Optional[str], challenge: Optional[str],
                   expected_token: Optional[str]) -> Optional[str]:
    """Return the challenge to echo back, or None when the handshake is refused."""
    if not mode or not token or not expected_token:
        return None
    if mode == "subscribe" and hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8")):
        return challenge or ""
    return None


def parse_inbound(payload: Any) -> Optional[InboundMessage]:
    """Extract sender and text from a webhook payload; None for anything else."""
    if not isinstance(payload, dict) or payload.get("object") != BUSINESS_ACCOUNT_OBJECT:
        return None
    try:
        change = payload["entry"][0]["changes"][0]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(change, dict) or change.get("field") != "messages":
        return None

    value = change.get("value")
    if not isinstance(value, dict):
        return None
    messages = value.get("messages")
    if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict):
        return None
    message = messages[0]
    sender = message.get("from")
    content = message.get("text")
    if not isinstance(content, dict):
        return None
    text = content.get("body")
    if not sender or not text or not str(text).strip():
        return None
    return InboundMessage(sender=str(sender), text=str(text))


class WhatsAppClient:
    def __init__(self, phone_number_id: Optional[str], access_token: Optional[str],
                 api_version: str = "v22.0", base_url: str = GRAPH_API_URL,
                 http: Optional[httpx.Client] = None, timeout: float = 30.0):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = base_url.rstrip("/")
        self._http = http
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def send_text(self, to: str, body: str) -> Dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("WhatsApp phone number id or access token is not configured")

        url = f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body, "preview_url": False},
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}
        logger.info("Sending WhatsApp message to %s (%d chars)", to, len(body))

        try:
            if self._http is not None:
                resp = self._http.post(url, json=payload, headers=headers, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    resp = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Failed to send WhatsApp message: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = resp.text

        if resp.is_error:
            raise DeliveryError(
                f"Failed to send WhatsApp message: {resp.status_code}",
                upstream_status=resp.status_code,
                response_body=data,
            )
        return data


class WhatsAppAdapter:
    def __init__(self, service: ChatService, client: WhatsAppClient) -> None:
        self.service = service
        self.client = client

    def handle(self, message: InboundMessage) -> str:
        """Run a chat turn for the sender and relay the reply. Returns the session id."""
        identity = resolve_whatsapp_identity(message.sender)
        logger.info("WhatsApp message from %s (%d chars)", identity.session_id, len(message.text))
        reply = self.service.ask(identity, message.text, channel=WHATSAPP)
        self.client.send_text(message.sender, reply)
        return identity.session_id
