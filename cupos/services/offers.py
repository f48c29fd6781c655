# cupos/services/offers.py
"""
Ciclo de vida de una oferta de cupo sobre una entrada de lista de espera:

    NONE -> ACTIVE -> {ACCEPTED, DECLINED, EXPIRED}

DECLINED y EXPIRED devuelven la entrada al pool; ACCEPTED la asigna de forma
permanente (assigned_at). Cada transición se escribe con un UPDATE
condicionado al estado actual, de modo que dos escritores concurrentes no
pueden activar ni honrar la misma oferta dos veces.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .. import models
from ..config import settings
from ..errors import (
    DispatchFailure,
    OfferAlreadyActive,
    OfferExpiredOrNotFound,
    OfferNotActive,
    ProfessionalUnavailable,
    SlotConflict,
)
from .conflicts import insert_appointment
from .selector import Slot

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


@dataclass
class OfferDetails:
    entry_id: int
    patient_id: int
    patient_name: str
    phone: Optional[str]
    channel: str
    professional_id: int
    professional_name: str
    specialty_name: str
    date: date
    time: time
    minutes: int
    expires_at: datetime
    delivered: bool = False
    dispatch_id: Optional[str] = None


@dataclass
class Resolution:
    outcome: Outcome
    entry_id: int
    message: str
    appointment_id: Optional[int] = None


class OfferManager:
    def __init__(self, dispatcher=None, grace_minutes: Optional[int] = None,
                 clock: Callable[[], datetime] = models.utcnow):
        self.dispatcher = dispatcher
        minutes = settings.OFFER_GRACE_MINUTES if grace_minutes is None else grace_minutes
        # Única fuente del período de gracia: la usan resolve, el router y el barrido
        self.grace_window = timedelta(minutes=minutes)
        self.clock = clock

    # ------------------------------------------------------------------ helpers

    def _transition(self, db: Session, entry_id: int, *conditions, **values) -> int:
        stmt = (
            update(models.WaitlistEntry)
            .where(models.WaitlistEntry.id == entry_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount

    def void(self, db: Session, entry: models.WaitlistEntry) -> bool:
        rows = self._transition(db, entry.id, models.WaitlistEntry.offer_active.is_(True), offer_active=False)
        db.commit()
        db.refresh(entry)
        return rows == 1

    def within_grace(self, entry: models.WaitlistEntry, now: Optional[datetime] = None) -> bool:
        if entry.offer_expires_at is None:
            return True
        now = now or self.clock()
        return now <= entry.offer_expires_at + self.grace_window

    def _details(self, db: Session, entry: models.WaitlistEntry, slot: Slot, ttl_minutes: int) -> OfferDetails:
        professional = db.get(models.Professional, slot.professional_id)
        specialty = professional.specialty if professional else None
        patient = entry.patient
        return OfferDetails(
            entry_id=entry.id,
            patient_id=entry.patient_id,
            patient_name=patient.full_name if patient else "",
            phone=patient.phone if patient else None,
            channel=entry.preferred_channel.value if entry.preferred_channel else models.Channel.whatsapp.value,
            professional_id=slot.professional_id,
            professional_name=professional.full_name if professional else "",
            specialty_name=specialty.name if specialty else "",
            date=slot.date,
            time=slot.time,
            minutes=ttl_minutes,
            expires_at=entry.offer_expires_at,
        )

    # --------------------------------------------------------------- operations

    def create_offer(self, db: Session, entry: models.WaitlistEntry, slot: Slot, ttl_minutes: int) -> OfferDetails:
        """
        Activa la oferta y la envía. El envío fallido se registra pero no
        revierte la oferta: seguirá vigente hasta responderse o expirar.
        """
        now = self.clock()
        ttl_minutes = int(ttl_minutes)
        rows = self._transition(
            db, entry.id,
            models.WaitlistEntry.offer_active.is_(False),
            models.WaitlistEntry.assigned_at.is_(None),
            offer_active=True,
            offer_professional_id=slot.professional_id,
            offer_date=slot.date,
            offer_time=slot.time,
            offer_created_at=now,
            offer_expires_at=now + timedelta(minutes=ttl_minutes),
        )
        if rows != 1:
            db.rollback()
            raise OfferAlreadyActive(f"entrada {entry.id} ya tiene oferta activa o fue asignada")
        db.commit()
        db.refresh(entry)
        logger.info(
            "Oferta creada: entrada=%s profesional=%s %s %s expira=%s",
            entry.id, slot.professional_id, slot.date, slot.time, entry.offer_expires_at,
        )

        details = self._details(db, entry, slot, ttl_minutes)
        if self.dispatcher is not None:
            try:
                result = self.dispatcher.notify_offer(details)
                details.delivered = True
                details.dispatch_id = result.get("id")
            except DispatchFailure as e:
                logger.warning("No se pudo enviar la oferta de la entrada %s: %s", entry.id, e)
        return details

    def resolve(self, db: Session, entry: models.WaitlistEntry, outcome: Outcome) -> Resolution:
        db.refresh(entry)
        now = self.clock()

        if not entry.offer_active or entry.assigned_at is not None:
            raise OfferNotActive(f"entrada {entry.id} sin oferta activa")

        if not self.within_grace(entry, now):
            self.void(db, entry)
            logger.info("Oferta de entrada %s vencida fuera del período de gracia", entry.id)
            raise OfferExpiredOrNotFound(f"entrada {entry.id} expiró {entry.offer_expires_at}")

        if outcome == Outcome.DECLINE:
            if not self.void(db, entry):
                raise OfferNotActive(f"entrada {entry.id} resuelta por otra solicitud")
            logger.info("Oferta rechazada: entrada=%s vuelve a la lista de espera", entry.id)
            return Resolution(
                outcome=Outcome.DECLINE,
                entry_id=entry.id,
                message="Entendido. Continuará en la lista de espera y será notificado cuando haya otro espacio disponible.",
            )

        return self._accept(db, entry, now)

    def _accept(self, db: Session, entry: models.WaitlistEntry, now: datetime) -> Resolution:
        slot = Slot(entry.offer_professional_id, entry.offer_date, entry.offer_time)

        # El profesional pudo cambiar de estado desde que se creó la oferta
        professional = db.get(models.Professional, slot.professional_id) if slot.professional_id else None
        if professional is None or professional.status != models.ProfessionalStatus.available:
            self.void(db, entry)
            logger.warning("Profesional %s no disponible al aceptar entrada %s", slot.professional_id, entry.id)
            raise ProfessionalUnavailable(f"profesional {slot.professional_id}")

        try:
            appt = insert_appointment(
                db, entry.patient_id, slot.professional_id, slot.date, slot.time,
                notes=f"Asignada desde lista de espera (entrada {entry.id})",
            )
        except SlotConflict:
            self.void(db, entry)
            logger.warning("Conflicto de horario al aceptar entrada %s: %s %s", entry.id, slot.date, slot.time)
            raise

        rows = self._transition(
            db, entry.id,
            models.WaitlistEntry.offer_active.is_(True),
            models.WaitlistEntry.assigned_at.is_(None),
            offer_active=False,
            assigned_at=now,
        )
        if rows != 1:
            # Otra respuesta resolvió la oferta entre la lectura y la escritura
            db.rollback()
            raise OfferNotActive(f"entrada {entry.id} resuelta por otra solicitud")
        db.commit()
        db.refresh(entry)
        db.refresh(appt)
        logger.info("Oferta aceptada: entrada=%s cita=%s", entry.id, appt.id)

        return Resolution(
            outcome=Outcome.ACCEPT,
            entry_id=entry.id,
            appointment_id=appt.id,
            message=(
                f"¡Excelente! Su cita ha sido reservada para el {slot.date.strftime('%d/%m')} "
                f"a las {slot.time.strftime('%H:%M')}. Recibirá un recordatorio 24 horas antes."
            ),
        )

    def expire(self, db: Session, entry: models.WaitlistEntry, now: Optional[datetime] = None) -> bool:
        """
        Desactiva la oferta si sigue activa y venció hace más que el período
        de gracia. Idempotente: devuelve False si no había nada que expirar.
        """
        cutoff = (now or self.clock()) - self.grace_window
        rows = self._transition(
            db, entry.id,
            models.WaitlistEntry.offer_active.is_(True),
            models.WaitlistEntry.offer_expires_at < cutoff,
            offer_active=False,
        )
        db.commit()
        if rows == 1:
            db.refresh(entry)
            logger.info("Oferta expirada: entrada=%s vuelve a la lista de espera", entry.id)
        return rows == 1
