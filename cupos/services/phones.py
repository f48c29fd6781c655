# cupos/services/phones.py
from __future__ import annotations
import re

from ..config import settings

# Longitud de un celular peruano: la clave canónica son los últimos 9 dígitos
PHONE_KEY_DIGITS = 9

_TRANSPORT_PREFIX = re.compile(r"^\s*(whatsapp|sms|tel)\s*:", re.IGNORECASE)
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """
    Clave canónica para comparar teléfonos.

    "+51 943-958-912", "whatsapp:+51943958912", "051943958912" y "943958912"
    terminan todos en "943958912". Números más cortos se devuelven completos.
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", _TRANSPORT_PREFIX.sub("", raw))
    if len(digits) >= PHONE_KEY_DIGITS:
        return digits[-PHONE_KEY_DIGITS:]
    return digits


def to_e164(raw: str | None) -> str:
    """Número con código de país para el transporte (+51XXXXXXXXX)."""
    bare = _TRANSPORT_PREFIX.sub("", raw or "").strip()
    digits = _NON_DIGITS.sub("", bare)
    if not digits:
        return ""
    if bare.startswith("+"):
        # Ya trae código de país (p. ej. el remitente de Twilio)
        return f"+{digits}"
    digits = digits.lstrip("0")
    cc = settings.PHONE_COUNTRY_CODE
    if cc and not digits.startswith(cc):
        digits = cc + digits
    return f"+{digits}"


def to_whatsapp(raw: str | None) -> str:
    number = to_e164(raw)
    return f"whatsapp:{number}" if number else ""
