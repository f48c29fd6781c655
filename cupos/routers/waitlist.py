from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload

from ..database import get_db
from .. import models, schemas
from ..services.selector import Slot
from ..errors import NoCandidate
from ..services.waitlist import WaitlistEngine, get_waitlist_engine

router = APIRouter(prefix="/waitlist", tags=["waitlist"])

EXPIRING_SOON = timedelta(minutes=15)


@router.get("", response_model=schemas.WaitlistListResponse)
def waitlist_list(db: Session = Depends(get_db), engine: WaitlistEngine = Depends(get_waitlist_engine)):
    now = engine.clock()
    rows = (
        db.query(models.WaitlistEntry)
        .options(joinedload(models.WaitlistEntry.patient), joinedload(models.WaitlistEntry.specialty))
        .order_by(models.WaitlistEntry.priority_tier.asc(), models.WaitlistEntry.registered_at.asc())
        .all()
    )
    entries = [
        schemas.WaitlistItem(
            id=e.id,
            patient=e.patient.full_name,
            phone=e.patient.phone,
            specialty=e.specialty.name,
            professional_id=e.professional_id,
            priority=e.priority_tier,
            wait_days=max((now - e.registered_at).days, 0),
            offer_active=e.offer_active,
            offer_expires_at=e.offer_expires_at if e.offer_active else None,
            assigned_at=e.assigned_at,
        )
        for e in rows
    ]
    expiring = sum(
        1 for e in rows
        if e.offer_active and e.offer_expires_at is not None and e.offer_expires_at <= now + EXPIRING_SOON
    )
    return schemas.WaitlistListResponse(entries=entries, expiring_soon=expiring)


@router.post("", status_code=201)
def waitlist_add(req: schemas.WaitlistAddRequest, db: Session = Depends(get_db)):
    if db.get(models.Patient, req.patient_id) is None:
        raise HTTPException(status_code=404, detail="Paciente no encontrado")
    if db.get(models.Specialty, req.specialty_id) is None:
        raise HTTPException(status_code=404, detail="Especialidad no encontrada")
    if req.professional_id is not None:
        prof = db.get(models.Professional, req.professional_id)
        if prof is None or prof.specialty_id != req.specialty_id:
            raise HTTPException(status_code=400, detail="El profesional no pertenece a la especialidad")

    entry = models.WaitlistEntry(
        patient_id=req.patient_id,
        specialty_id=req.specialty_id,
        professional_id=req.professional_id,
        priority_tier=req.priority_tier,
        preferred_channel=req.preferred_channel,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return {"ok": True, "id": entry.id}


@router.post("/release", response_model=schemas.OfferResponse)
def waitlist_release(req: schemas.ReleaseRequest, db: Session = Depends(get_db),
                     engine: WaitlistEngine = Depends(get_waitlist_engine)):
    """Oferta manual de un cupo liberado (p. ej. desde recepción)."""
    try:
        details = engine.offer_slot(db, Slot(req.professional_id, req.slot_date, req.slot_time))
    except NoCandidate:
        details = None
    if details is None:
        return schemas.OfferResponse(offered=False)
    return schemas.OfferResponse(
        offered=True,
        entry_id=details.entry_id,
        patient_id=details.patient_id,
        expires_at=details.expires_at,
        delivered=details.delivered,
    )
