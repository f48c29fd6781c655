# cupos/services/waitlist.py
"""
Motor de reasignación de cupos: arma selector, ofertas, router de respuestas,
notificaciones y barrido sobre una misma configuración y un mismo reloj.
"""
from __future__ import annotations
import logging
from datetime import date, datetime, time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .. import models
from ..database import SessionLocal
from ..errors import NoCandidate, OfferAlreadyActive
from ..jobs.scheduler import ExpirySweeper, ReminderSender
from . import twilio_client
from .config_provider import ConfigProvider
from .conflicts import has_conflict
from .notifications import NotificationDispatcher
from .offers import OfferDetails, OfferManager
from .responses import ResponseRouter, RouteResult
from .selector import CandidateSelector, Slot

logger = logging.getLogger(__name__)

# Reintentos si otro proceso ofertó al mismo candidato entre la selección y la escritura
MAX_OFFER_ATTEMPTS = 3


class WaitlistEngine:
    def __init__(self, session_factory: Callable[[], Session], config, sender=twilio_client.send,
                 clock: Callable[[], datetime] = models.utcnow, grace_minutes: Optional[int] = None):
        self.session_factory = session_factory
        self.config = config
        self.clock = clock
        self.dispatcher = NotificationDispatcher(config, sender)
        self.offers = OfferManager(self.dispatcher, grace_minutes=grace_minutes, clock=clock)
        self.selector = CandidateSelector(config, clock=clock)
        self.router = ResponseRouter(self.offers)
        self.sweeper = ExpirySweeper(self.offers, session_factory, self.dispatcher)
        # Las citas están en hora local: el recordatorio usa su propio reloj
        self.reminders = ReminderSender(self.dispatcher, session_factory)

    def _slot_already_offered(self, db: Session, slot: Slot) -> bool:
        return db.query(
            db.query(models.WaitlistEntry.id)
            .filter(
                models.WaitlistEntry.offer_active.is_(True),
                models.WaitlistEntry.offer_professional_id == slot.professional_id,
                models.WaitlistEntry.offer_date == slot.date,
                models.WaitlistEntry.offer_time == slot.time,
            )
            .exists()
        ).scalar()

    def offer_slot(self, db: Session, slot: Slot) -> Optional[OfferDetails]:
        """
        Oferta el cupo al mejor candidato. Devuelve None si la oferta
        automática está deshabilitada o el cupo no está realmente libre;
        levanta NoCandidate si la lista está vacía.
        """
        if not self.config.get("auto_offer_enabled"):
            logger.info("Oferta automática deshabilitada en configuraciones")
            return None
        if has_conflict(db, slot.professional_id, slot.date, slot.time):
            logger.info("Cupo %s ya fue ocupado; no se oferta", slot)
            return None
        if self._slot_already_offered(db, slot):
            logger.info("Cupo %s ya tiene una oferta activa", slot)
            return None

        ttl = int(self.config.get("tiempo_max_oferta") or 30)
        for _ in range(MAX_OFFER_ATTEMPTS):
            entry = self.selector.select_candidate(db, slot)
            if entry is None:
                break
            try:
                return self.offers.create_offer(db, entry, slot, ttl)
            except OfferAlreadyActive:
                logger.info("Entrada %s tomada por otra oferta; buscando siguiente candidato", entry.id)
        raise NoCandidate(f"sin candidatos para {slot}")

    def notify_waitlist(self, professional_id: int, slot_date: date, slot_time: time) -> Optional[OfferDetails]:
        """
        Punto de entrada al cancelar o marcar no-show una cita. Nunca propaga
        errores al flujo de cancelación: sólo se registran.
        """
        slot = Slot(professional_id, slot_date, slot_time)
        logger.info("Notificando lista de espera por cupo liberado: %s", slot)
        db = self.session_factory()
        try:
            return self.offer_slot(db, slot)
        except NoCandidate:
            logger.info("Sin candidatos en lista de espera para %s", slot)
            return None
        except Exception:
            logger.exception("Error notificando lista de espera para %s", slot)
            return None
        finally:
            db.close()

    def handle_reply(self, raw_phone: str, raw_text: str) -> RouteResult:
        db = self.session_factory()
        try:
            return self.router.route(db, raw_phone, raw_text)
        finally:
            db.close()

    def sweep(self, now: Optional[datetime] = None) -> int:
        return self.sweeper.run_once(now)


_engine: Optional[WaitlistEngine] = None


def get_waitlist_engine() -> WaitlistEngine:
    global _engine
    if _engine is None:
        _engine = WaitlistEngine(SessionLocal, ConfigProvider(SessionLocal))
    return _engine
