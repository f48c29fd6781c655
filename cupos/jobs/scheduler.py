from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, joinedload
from datetime import datetime, timedelta
import zoneinfo
from typing import Callable, Optional
import logging

from ..database import SessionLocal
from ..config import settings
from ..errors import DispatchFailure
from ..models import ACTIVE_APPOINTMENT_STATUSES, Appointment, WaitlistEntry

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "waitlist_expiry_sweep"
REMINDER_JOB_ID = "appointment_reminder_24h"


class ExpirySweeper:
    """Devuelve al pool las ofertas vencidas hace más que el período de gracia."""

    def __init__(self, offers, session_factory: Callable[[], Session] = SessionLocal, dispatcher=None):
        self.offers = offers
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    def stale(self, db: Session, now: datetime) -> list[WaitlistEntry]:
        cutoff = now - self.offers.grace_window
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.offer_active.is_(True),
                WaitlistEntry.offer_expires_at < cutoff,
            )
            .order_by(WaitlistEntry.offer_expires_at.asc())
            .all()
        )

    def run_once(self, now: Optional[datetime] = None) -> int:
        now = now or self.offers.clock()
        db: Session = self.session_factory()
        try:
            reclaimed = 0
            for entry in self.stale(db, now):
                if not self.offers.expire(db, entry, now):
                    continue
                reclaimed += 1
                self._notify(entry)
            if reclaimed:
                logger.info("Se liberaron %d ofertas expiradas (más de %s después de expirar)",
                            reclaimed, self.offers.grace_window)
            return reclaimed
        finally:
            db.close()

    def _notify(self, entry: WaitlistEntry) -> None:
        if self.dispatcher is None or not entry.patient or not entry.patient.phone:
            return
        try:
            self.dispatcher.notify_expired(
                entry.patient.phone, entry.offer_date, entry.offer_time,
                channel=entry.preferred_channel.value,
            )
        except DispatchFailure as e:
            logger.warning("No se pudo avisar la expiración a la entrada %s: %s", entry.id, e)


def local_now() -> datetime:
    # Las citas se guardan en hora local de la clínica (sin tzinfo)
    return datetime.now(zoneinfo.ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


class ReminderSender:
    """
    Recordatorio 24h antes: cada ejecución (al inicio de cada hora) toma las
    citas activas cuyo horario cae en la hora que empieza dentro de 24h.
    """

    def __init__(self, dispatcher, session_factory: Callable[[], Session] = SessionLocal,
                 clock: Callable[[], datetime] = local_now, channel: Optional[str] = None):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.clock = clock
        self.channel = channel or settings.REMINDER_CHANNEL

    def due(self, db: Session, now: datetime) -> list[Appointment]:
        start = (now + timedelta(hours=24)).replace(minute=0, second=0, microsecond=0)
        end = start + timedelta(hours=1)
        appts = (
            db.query(Appointment)
            .options(joinedload(Appointment.patient), joinedload(Appointment.professional))
            .filter(
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
                Appointment.slot_date.in_({start.date(), end.date()}),
            )
            .order_by(Appointment.slot_date.asc(), Appointment.slot_time.asc())
            .all()
        )
        return [a for a in appts if start <= datetime.combine(a.slot_date, a.slot_time) < end]

    def run_once(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        db: Session = self.session_factory()
        try:
            sent = 0
            for appt in self.due(db, now):
                phone = appt.patient.phone if appt.patient else None
                if not phone or not phone.strip():
                    continue
                try:
                    self.dispatcher.notify_reminder(
                        phone, appt.slot_date, appt.slot_time,
                        appt.professional.full_name if appt.professional else "",
                        channel=self.channel,
                    )
                except DispatchFailure as e:
                    logger.warning("No se pudo enviar el recordatorio de la cita %s: %s", appt.id, e)
                    continue
                sent += 1
            if sent:
                logger.info("Recordatorios 24h enviados: %d", sent)
            return sent
        finally:
            db.close()


def sweep_job(sweeper: ExpirySweeper) -> None:
    try:
        sweeper.run_once()
    except Exception:
        # El siguiente tick vuelve a intentarlo
        logger.exception("Error en el barrido de ofertas expiradas")


def reminder_job(reminders: ReminderSender) -> None:
    try:
        reminders.run_once()
    except Exception:
        logger.exception("Error en el job de recordatorios 24h")


def start_scheduler(sweeper: ExpirySweeper, minutes: Optional[int] = None,
                    reminders: Optional[ReminderSender] = None) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        sweep_job,
        IntervalTrigger(minutes=minutes or settings.WAITLIST_SWEEP_MINUTES),
        args=[sweeper],
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    if reminders is not None:
        scheduler.add_job(
            reminder_job,
            CronTrigger(minute=0),  # cada hora
            args=[reminders],
            id=REMINDER_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
    scheduler.start()
    logger.info("Barrido de ofertas iniciado (cada %s minutos)", minutes or settings.WAITLIST_SWEEP_MINUTES)
    return scheduler


def stop_scheduler(scheduler: Optional[BackgroundScheduler]) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Jobs de lista de espera detenidos")
