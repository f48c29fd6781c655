from pydantic import BaseModel, Field
from datetime import date, datetime, time
from typing import Any, Optional

from .models import Channel


class BookRequest(BaseModel):
    patient_id: int
    professional_id: int
    slot_date: date
    slot_time: time
    notes: Optional[str] = None


class BookResponse(BaseModel):
    appointment_id: int
    status: str
    slot_date: date
    slot_time: time


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: time


class CancelResponse(BaseModel):
    ok: bool = True
    appointment_id: int
    status: str


class WaitlistAddRequest(BaseModel):
    patient_id: int
    specialty_id: int
    professional_id: Optional[int] = None
    priority_tier: int = Field(default=3, ge=1, le=5)
    preferred_channel: Channel = Channel.whatsapp


class WaitlistItem(BaseModel):
    id: int
    patient: str
    phone: Optional[str]
    specialty: str
    professional_id: Optional[int]
    priority: int
    wait_days: int
    offer_active: bool
    offer_expires_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None


class WaitlistListResponse(BaseModel):
    entries: list[WaitlistItem]
    expiring_soon: int


class ReleaseRequest(BaseModel):
    professional_id: int
    slot_date: date
    slot_time: time


class OfferResponse(BaseModel):
    offered: bool
    entry_id: Optional[int] = None
    patient_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    delivered: bool = False


class SweepResponse(BaseModel):
    ok: bool = True
    reclaimed: int


class ConfigUpdateRequest(BaseModel):
    values: dict[str, Any]
