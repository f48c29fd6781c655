# cupos/services/notifications.py
from __future__ import annotations
import logging
from datetime import date, time
from typing import Callable, Optional

from ..errors import DispatchFailure
from . import twilio_client

logger = logging.getLogger(__name__)

Sender = Callable[..., dict]

_DOCTOR_NAME_MAX = 25


def _fmt_date(d: Optional[date], with_year: bool = True) -> str:
    if d is None:
        return ""
    return d.strftime("%d/%m/%Y" if with_year else "%d/%m")


def _fmt_time(t: Optional[time]) -> str:
    return t.strftime("%H:%M") if t is not None else ""


def _short_doctor(name: str) -> str:
    # Nombres largos se recortan a dos palabras para que el SMS no se parta
    if len(name) > _DOCTOR_NAME_MAX:
        return " ".join(name.split()[:2])
    return name


def render_template(template: str, values: dict) -> str:
    """Reemplaza {nombre}, {fecha}, {hora}, {doctor}, {especialidad}, {tiempo}."""
    out = template
    for key, value in values.items():
        out = out.replace("{" + key + "}", str(value))
    return out


def default_offer_message(details) -> str:
    return (
        f"Espacio disponible: {_fmt_date(details.date, with_year=False)} {_fmt_time(details.time)} "
        f"con {_short_doctor(details.professional_name)}. "
        f"Responda ACEPTAR en {details.minutes} min o IGNORAR."
    )


class NotificationDispatcher:
    def __init__(self, config, sender: Sender = twilio_client.send):
        self.config = config
        self.sender = sender

    def build_offer_message(self, details) -> str:
        template = self.config.get("mensaje_oferta_cupo")
        if not template or not str(template).strip():
            return default_offer_message(details)
        return render_template(str(template), {
            "nombre": details.patient_name or "",
            "fecha": _fmt_date(details.date),
            "hora": _fmt_time(details.time),
            "doctor": details.professional_name or "",
            "especialidad": details.specialty_name or "",
            "tiempo": details.minutes,
        })

    def notify_offer(self, details) -> dict:
        """
        Envía la oferta al paciente. Levanta DispatchFailure si el canal falla;
        el llamador lo registra y la oferta sigue vigente.
        """
        if not details.phone:
            raise DispatchFailure(f"entrada {details.entry_id} sin teléfono")
        body = self.build_offer_message(details)
        try:
            result = self.sender(details.phone, body, channel=details.channel)
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(f"fallo enviando oferta de entrada {details.entry_id}: {e}") from e
        if not result or not result.get("ok"):
            raise DispatchFailure(f"envío no confirmado para entrada {details.entry_id}: {result}")
        logger.info("Oferta enviada a entrada=%s (%s) id=%s", details.entry_id, details.channel, result.get("id"))
        return result

    def notify_expired(self, phone: str, slot_date: Optional[date], slot_time: Optional[time],
                       channel: str = "whatsapp") -> dict:
        body = (
            f"La oferta del cupo del {_fmt_date(slot_date, with_year=False)} a las {_fmt_time(slot_time)} expiró. "
            "Continúa en la lista de espera y le avisaremos cuando haya otro espacio."
        )
        try:
            return self.sender(phone, body, channel=channel)
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(f"fallo enviando aviso de expiración: {e}") from e

    def notify_reminder(self, phone: str, slot_date: date, slot_time: time, professional_name: str,
                        channel: str = "whatsapp") -> dict:
        """Recordatorio 24h antes de la cita."""
        body = (
            f"Recordatorio: Cita el {_fmt_date(slot_date)} a las {_fmt_time(slot_time)} "
            f"con {_short_doctor(professional_name or '')}. "
            "Si no podrá asistir, comuníquese con el centro médico."
        )
        try:
            result = self.sender(phone, body, channel=channel)
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(f"fallo enviando recordatorio: {e}") from e
        if not result or not result.get("ok"):
            raise DispatchFailure(f"recordatorio no confirmado: {result}")
        return result
