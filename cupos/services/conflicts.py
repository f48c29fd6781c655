# cupos/services/conflicts.py
from __future__ import annotations
import logging
from datetime import date, time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..errors import SlotConflict

logger = logging.getLogger(__name__)


def has_conflict(db: Session, professional_id: int, slot_date: date, slot_time: time,
                 exclude_appointment_id: Optional[int] = None) -> bool:
    """True si el horario ya tiene una cita pendiente o confirmada."""
    q = db.query(models.Appointment.id).filter(
        models.Appointment.professional_id == professional_id,
        models.Appointment.slot_date == slot_date,
        models.Appointment.slot_time == slot_time,
        models.Appointment.status.in_(models.ACTIVE_APPOINTMENT_STATUSES),
    )
    if exclude_appointment_id is not None:
        q = q.filter(models.Appointment.id != exclude_appointment_id)
    return db.query(q.exists()).scalar()


def insert_appointment(db: Session, patient_id: int, professional_id: int,
                       slot_date: date, slot_time: time, notes: Optional[str] = None) -> models.Appointment:
    """
    Verifica el horario e inserta la cita (status=pending) sin hacer commit.

    Si otra transacción ganó la carrera entre la verificación y el INSERT, el
    índice parcial ``uq_appointments_active_slot`` rechaza el flush y se
    levanta SlotConflict tras revertir la transacción completa. Si no hay
    conflicto el llamador decide cuándo confirmar.
    """
    if has_conflict(db, professional_id, slot_date, slot_time):
        raise SlotConflict(f"profesional={professional_id} {slot_date} {slot_time}")

    appt = models.Appointment(
        patient_id=patient_id,
        professional_id=professional_id,
        slot_date=slot_date,
        slot_time=slot_time,
        status=models.AppointmentStatus.pending,
        notes=notes,
    )
    db.add(appt)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.warning("Conflicto detectado por la BD para profesional=%s %s %s: %s",
                       professional_id, slot_date, slot_time, e.orig)
        raise SlotConflict(f"profesional={professional_id} {slot_date} {slot_time}") from e
    return appt


def book(db: Session, patient_id: int, professional_id: int,
         slot_date: date, slot_time: time, notes: Optional[str] = None) -> models.Appointment:
    """Reserva directa: verifica, inserta y confirma la transacción."""
    appt = insert_appointment(db, patient_id, professional_id, slot_date, slot_time, notes=notes)
    db.commit()
    db.refresh(appt)
    return appt
