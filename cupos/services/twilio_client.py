# cupos/services/twilio_client.py
from __future__ import annotations
import logging
import uuid

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ..config import settings
from ..errors import DispatchFailure
from .phones import to_e164, to_whatsapp

logger = logging.getLogger(__name__)

_client_cache: Client | None = None


def get_twilio_client() -> Client | None:
    global _client_cache
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
        return None
    if _client_cache is None:
        _client_cache = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return _client_cache


def _sender_for(channel: str) -> tuple[str, str]:
    if channel == "sms":
        return "sms", (settings.TWILIO_SMS_FROM or "").strip()
    from_norm = to_whatsapp(settings.TWILIO_WHATSAPP_FROM) if settings.TWILIO_WHATSAPP_FROM else ""
    return "whatsapp", from_norm


def send(to: str, text: str, channel: str = "whatsapp") -> dict:
    """
    Envía un mensaje por Twilio y devuelve {"ok": True, "id": sid}.

    - DRY_RUN=true: no envía; registra en logs y devuelve un id "dry-..."
    - Sin credenciales: modo MOCK (no envía), id "mock-..."
    - Error de Twilio: levanta DispatchFailure
    """
    kind, from_norm = _sender_for(channel)
    to_norm = to_whatsapp(to) if kind == "whatsapp" else to_e164(to)
    if not to_norm:
        raise DispatchFailure("destinatario vacío")

    if settings.DRY_RUN:
        logger.info("[DRY_RUN %s] to=%s body=%s", kind.upper(), to_norm, text.replace("\n", " | "))
        return {"ok": True, "id": f"dry-{uuid.uuid4().hex[:12]}", "to": to_norm}

    client = get_twilio_client()
    if client is None or not from_norm:
        logger.info("[%s MOCK] to=%s body=%s", kind.upper(), to_norm, text.replace("\n", " | "))
        return {"ok": True, "id": f"mock-{uuid.uuid4().hex[:12]}", "to": to_norm}

    try:
        msg = client.messages.create(from_=from_norm, to=to_norm, body=text)
    except TwilioException as e:
        raise DispatchFailure(f"Twilio rechazó el envío a {to_norm}: {e}") from e
    return {"ok": True, "id": msg.sid, "to": to_norm}
