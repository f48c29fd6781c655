from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas
from ..errors import SlotConflict
from ..services.conflicts import book as book_slot, has_conflict
from ..services.waitlist import WaitlistEngine, get_waitlist_engine

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _get_appointment(db: Session, appointment_id: int) -> models.Appointment:
    appt = db.get(models.Appointment, appointment_id)
    if not appt:
        raise HTTPException(status_code=404, detail="Cita no encontrada")
    return appt


def _require_available(db: Session, professional_id: int) -> None:
    prof = db.get(models.Professional, professional_id)
    if prof is None:
        raise HTTPException(status_code=404, detail="Profesional no encontrado")
    if prof.status != models.ProfessionalStatus.available:
        raise HTTPException(status_code=400, detail="El profesional no está disponible")


@router.post("", response_model=schemas.BookResponse, status_code=201)
def book(req: schemas.BookRequest, db: Session = Depends(get_db)):
    if db.get(models.Patient, req.patient_id) is None:
        raise HTTPException(status_code=404, detail="Paciente no encontrado")
    _require_available(db, req.professional_id)

    try:
        appt = book_slot(db, req.patient_id, req.professional_id, req.slot_date, req.slot_time, notes=req.notes)
    except SlotConflict:
        raise HTTPException(status_code=409, detail="Ya existe una cita en ese horario para este profesional")

    return schemas.BookResponse(
        appointment_id=appt.id,
        status=appt.status.value,
        slot_date=appt.slot_date,
        slot_time=appt.slot_time,
    )


@router.post("/{appointment_id}/reschedule")
def reschedule(appointment_id: int, req: schemas.RescheduleRequest,
               background: BackgroundTasks,
               db: Session = Depends(get_db),
               engine: WaitlistEngine = Depends(get_waitlist_engine)):
    appt = _get_appointment(db, appointment_id)
    if appt.status not in models.ACTIVE_APPOINTMENT_STATUSES:
        raise HTTPException(status_code=409, detail="Sólo se reprograman citas pendientes o confirmadas")
    _require_available(db, appt.professional_id)

    if has_conflict(db, appt.professional_id, req.new_date, req.new_time, exclude_appointment_id=appt.id):
        raise HTTPException(status_code=409, detail="Nuevo horario no disponible")

    old = (appt.professional_id, appt.slot_date, appt.slot_time)
    appt.slot_date = req.new_date
    appt.slot_time = req.new_time
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # El índice parcial detectó una reserva concurrente del mismo horario
        if has_conflict(db, appt.professional_id, req.new_date, req.new_time, exclude_appointment_id=appt.id):
            raise HTTPException(status_code=409, detail="Nuevo horario no disponible")
        raise

    # El horario anterior queda libre para la lista de espera
    background.add_task(engine.notify_waitlist, *old)
    return {"ok": True, "appointment_id": appt.id,
            "slot_date": appt.slot_date.isoformat(), "slot_time": appt.slot_time.strftime("%H:%M")}


def _release(appointment_id: int, status: models.AppointmentStatus, background: BackgroundTasks,
             db: Session, engine: WaitlistEngine) -> schemas.CancelResponse:
    appt = _get_appointment(db, appointment_id)
    was_active = appt.status in models.ACTIVE_APPOINTMENT_STATUSES
    appt.status = status
    db.commit()
    if was_active:
        background.add_task(engine.notify_waitlist, appt.professional_id, appt.slot_date, appt.slot_time)
    return schemas.CancelResponse(appointment_id=appt.id, status=appt.status.value)


@router.post("/{appointment_id}/cancel", response_model=schemas.CancelResponse)
def cancel(appointment_id: int, background: BackgroundTasks,
           db: Session = Depends(get_db),
           engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return _release(appointment_id, models.AppointmentStatus.cancelled, background, db, engine)


@router.post("/{appointment_id}/no-show", response_model=schemas.CancelResponse)
def no_show(appointment_id: int, background: BackgroundTasks,
            db: Session = Depends(get_db),
            engine: WaitlistEngine = Depends(get_waitlist_engine)):
    return _release(appointment_id, models.AppointmentStatus.no_show, background, db, engine)
