# cupos/models.py
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from sqlalchemy import Integer, String, DateTime, Date, Time, Enum, ForeignKey, Boolean, Text, Index, UniqueConstraint, text
from datetime import datetime, date, time
import enum
from .database import Base
from .services.phones import normalize_phone


def utcnow() -> datetime:
    # Naive UTC: SQLite no conserva tzinfo y así las comparaciones son homogéneas
    return datetime.utcnow()


class Channel(str, enum.Enum):
    whatsapp = "whatsapp"
    sms = "sms"


class ProfessionalStatus(str, enum.Enum):
    available = "available"
    unavailable = "unavailable"


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    no_show = "no_show"
    completed = "completed"


# Estados que ocupan un horario
ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.pending, AppointmentStatus.confirmed)


class Specialty(Base):
    __tablename__ = "specialties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    professionals = relationship("Professional", back_populates="specialty")


class Professional(Base):
    __tablename__ = "professionals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    specialty_id: Mapped[int] = mapped_column(Integer, ForeignKey("specialties.id"), nullable=False, index=True)
    status: Mapped[ProfessionalStatus] = mapped_column(
        Enum(ProfessionalStatus, name="professional_status"),
        default=ProfessionalStatus.available,
        nullable=False,
    )

    specialty = relationship("Specialty", back_populates="professionals")


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("dni", name="uq_patients_dni"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    dni: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, default=None)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, default=None)
    # Últimos 9 dígitos de phone; se recalcula en cada escritura de phone
    phone_key: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, default=None, index=True)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, default=None)

    appointments = relationship("Appointment", back_populates="patient")
    waitlist_entries = relationship("WaitlistEntry", back_populates="patient")

    @validates("phone")
    def _sync_phone_key(self, key, value):
        self.phone_key = normalize_phone(value) or None
        return value

    def age_on(self, day: date) -> Optional[int]:
        if self.birth_date is None:
            return None
        bd = self.birth_date
        return day.year - bd.year - ((day.month, day.day) < (bd.month, bd.day))


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Un solo turno pendiente/confirmado por (profesional, fecha, hora).
        # Cierra la ventana entre la verificación de conflicto y el INSERT.
        Index(
            "uq_appointments_active_slot",
            "professional_id", "slot_date", "slot_time",
            unique=True,
            sqlite_where=text("status IN ('pending', 'confirmed')"),
            postgresql_where=text("status IN ('pending', 'confirmed')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    professional_id: Mapped[int] = mapped_column(Integer, ForeignKey("professionals.id"), nullable=False, index=True)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    slot_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.pending,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    patient = relationship("Patient", back_populates="appointments")
    professional = relationship("Professional")


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index("ix_waitlist_pool", "specialty_id", "offer_active", "assigned_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    specialty_id: Mapped[int] = mapped_column(Integer, ForeignKey("specialties.id"), nullable=False)
    # NULL = cualquier profesional de la especialidad
    professional_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("professionals.id"), nullable=True, default=None)
    preferred_channel: Mapped[Channel] = mapped_column(Enum(Channel, name="channel"), default=Channel.whatsapp, nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    # Menor = más urgente
    priority_tier: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    # Terminal: una vez asignada, la entrada no vuelve a seleccionarse
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=None)

    # ----- Oferta (sub-estado de la entrada) -----
    offer_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offer_professional_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("professionals.id"), nullable=True, default=None)
    offer_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, default=None)
    offer_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True, default=None)
    offer_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=None)
    offer_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=None, index=True)

    patient = relationship("Patient", back_populates="waitlist_entries")
    specialty = relationship("Specialty")
    professional = relationship("Professional", foreign_keys=[professional_id])
    offer_professional = relationship("Professional", foreign_keys=[offer_professional_id])


class Setting(Base):
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(80), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # boolean | number | string | json
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="string")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
