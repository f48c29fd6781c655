# cupos/services/responses.py
from __future__ import annotations
import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from .. import models
from ..errors import OfferExpiredOrNotFound, UnrecognizedReply, WaitlistError
from .offers import OfferManager, Outcome
from .phones import normalize_phone

logger = logging.getLogger(__name__)

_ACCEPT_WORDS = {"SI", "S", "OK"}
_ACCEPT_PREFIXES = ("ACEPT",)
_DECLINE_WORDS = {"NO", "N"}
_DECLINE_PREFIXES = ("IGNOR", "RECHAZ", "CANCEL")

_WORDS = re.compile(r"[A-Z]+")


def _strip_accents(s: str) -> str:
    return "".join(c for c in unicodedata.normalize("NFKD", s) if not unicodedata.combining(c))


def classify_reply(text: str | None) -> Optional[Outcome]:
    """
    ACCEPT / DECLINE según palabras clave; None si no se reconoce.
    Un mensaje con palabras de ambos grupos ("NO ACEPTO") tampoco se reconoce.
    """
    words = _WORDS.findall(_strip_accents((text or "").strip().upper()))
    accept = any(w in _ACCEPT_WORDS or w.startswith(_ACCEPT_PREFIXES) for w in words)
    decline = any(w in _DECLINE_WORDS or w.startswith(_DECLINE_PREFIXES) for w in words)
    if accept and not decline:
        return Outcome.ACCEPT
    if decline and not accept:
        return Outcome.DECLINE
    return None


@dataclass
class RouteResult:
    ok: bool
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    entry_id: Optional[int] = None
    appointment_id: Optional[int] = None

    @property
    def text(self) -> str:
        return (self.message if self.ok else self.error) or ""

    @classmethod
    def failure(cls, exc: WaitlistError, entry_id: Optional[int] = None) -> "RouteResult":
        return cls(ok=False, error=exc.user_message, code=exc.code, entry_id=entry_id)


class ResponseRouter:
    def __init__(self, offers: OfferManager):
        self.offers = offers

    def _active_offers(self, db: Session):
        return (
            db.query(models.WaitlistEntry)
            .join(models.Patient, models.WaitlistEntry.patient_id == models.Patient.id)
            .options(joinedload(models.WaitlistEntry.patient))
            .filter(models.WaitlistEntry.offer_active.is_(True))
        )

    def _legacy_match(self, db: Session, key: str) -> Optional[models.WaitlistEntry]:
        # Compatibilidad: pacientes cargados antes de existir phone_key
        rows = (
            self._active_offers(db)
            .filter(models.Patient.phone_key.is_(None), models.Patient.phone.isnot(None))
            .all()
        )
        matches = [e for e in rows if normalize_phone(e.patient.phone) == key]
        if not matches:
            return None
        logger.info("Oferta encontrada por teléfono sin clave canónica (paciente=%s)", matches[0].patient_id)
        return min(matches, key=lambda e: (e.offer_expires_at or datetime.max, e.id))

    def find_offer(self, db: Session, key: str, now: datetime) -> Optional[models.WaitlistEntry]:
        """
        Oferta activa para la clave de teléfono. Primero las vigentes (la que
        vence antes); si no hay, la más reciente ya vencida, que el llamador
        sólo honra dentro del período de gracia.
        """
        by_key = self._active_offers(db).filter(models.Patient.phone_key == key)
        current = (
            by_key.filter(models.WaitlistEntry.offer_expires_at > now)
            .order_by(models.WaitlistEntry.offer_expires_at.asc(), models.WaitlistEntry.id.asc())
            .first()
        )
        if current is not None:
            return current
        lapsed = by_key.order_by(models.WaitlistEntry.offer_expires_at.desc(), models.WaitlistEntry.id.asc()).first()
        if lapsed is not None:
            return lapsed
        return self._legacy_match(db, key)

    def route(self, db: Session, raw_phone: str, raw_text: str) -> RouteResult:
        key = normalize_phone(raw_phone)
        logger.info("Respuesta de lista de espera: from=%s clave=%s texto=%r", raw_phone, key, raw_text)
        if not key:
            return RouteResult.failure(OfferExpiredOrNotFound("teléfono vacío"))

        now = self.offers.clock()
        entry = self.find_offer(db, key, now)
        if entry is None:
            logger.info("Sin oferta activa para clave=%s", key)
            return RouteResult.failure(OfferExpiredOrNotFound(key))

        if not self.offers.within_grace(entry, now):
            self.offers.void(db, entry)
            logger.info("Oferta de entrada %s vencida hace más del período de gracia", entry.id)
            return RouteResult.failure(OfferExpiredOrNotFound(key), entry_id=entry.id)

        outcome = classify_reply(raw_text)
        if outcome is None:
            return RouteResult.failure(UnrecognizedReply(raw_text), entry_id=entry.id)

        try:
            resolution = self.offers.resolve(db, entry, outcome)
        except WaitlistError as e:
            logger.info("Respuesta de entrada %s no aplicada: %s (%s)", entry.id, e.code, e)
            return RouteResult.failure(e, entry_id=entry.id)

        return RouteResult(
            ok=True,
            message=resolution.message,
            code=resolution.outcome.name,
            entry_id=resolution.entry_id,
            appointment_id=resolution.appointment_id,
        )
