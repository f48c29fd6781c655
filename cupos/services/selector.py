# cupos/services/selector.py
"""
Selección del mejor candidato de la lista de espera para un cupo liberado.

El orden se arma con etapas explícitas (cada una devuelve una clave de orden);
se evalúan de izquierda a derecha y cada etapa desempata la anterior. Qué
etapas participan depende de las configuraciones de prioridad.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from .. import models

logger = logging.getLogger(__name__)

ELDERLY_AGE = 65


@dataclass(frozen=True)
class Slot:
    professional_id: int
    date: date
    time: time


RankStage = Callable[[models.WaitlistEntry, Slot, date], Any]


def professional_match(entry: models.WaitlistEntry, slot: Slot, today: date) -> int:
    """Mismo profesional (0) < cualquier profesional (1) < otro profesional (2)."""
    if entry.professional_id == slot.professional_id:
        return 0
    if entry.professional_id is None:
        return 1
    return 2


def elderly_first(entry: models.WaitlistEntry, slot: Slot, today: date) -> int:
    age = entry.patient.age_on(today) if entry.patient else None
    return 0 if age is not None and age >= ELDERLY_AGE else 1


def urgency_first(entry: models.WaitlistEntry, slot: Slot, today: date) -> int:
    return entry.priority_tier


def longest_wait(entry: models.WaitlistEntry, slot: Slot, today: date) -> datetime:
    return entry.registered_at


def by_id(entry: models.WaitlistEntry, slot: Slot, today: date) -> int:
    return entry.id


def build_stages(config) -> List[RankStage]:
    stages: List[RankStage] = [professional_match]
    if config.get("prioridad_adultos_mayores"):
        stages.append(elderly_first)
    if config.get("prioridad_urgentes"):
        stages.append(urgency_first)
    if config.get("prioridad_tiempo_espera"):
        stages.append(longest_wait)
    else:
        if urgency_first not in stages:
            stages.append(urgency_first)
        stages.append(longest_wait)
    # Orden total y estable entre ejecuciones
    stages.append(by_id)
    return stages


def rank(entries: List[models.WaitlistEntry], slot: Slot, stages: List[RankStage], today: date) -> List[models.WaitlistEntry]:
    return sorted(entries, key=lambda e: tuple(stage(e, slot, today) for stage in stages))


class CandidateSelector:
    """Sólo lectura: marcar la oferta es trabajo del OfferManager."""

    def __init__(self, config, clock: Callable[[], datetime] = models.utcnow):
        self.config = config
        self.clock = clock

    def eligible(self, db: Session, specialty_id: int) -> List[models.WaitlistEntry]:
        return (
            db.query(models.WaitlistEntry)
            .join(models.Patient, models.WaitlistEntry.patient_id == models.Patient.id)
            .options(joinedload(models.WaitlistEntry.patient))
            .filter(
                models.WaitlistEntry.specialty_id == specialty_id,
                models.WaitlistEntry.assigned_at.is_(None),
                models.WaitlistEntry.offer_active.is_(False),
                models.Patient.phone.isnot(None),
                func.trim(models.Patient.phone) != "",
            )
            .all()
        )

    def select_candidate(self, db: Session, slot: Slot) -> Optional[models.WaitlistEntry]:
        professional = db.get(models.Professional, slot.professional_id)
        if professional is None:
            logger.info("Profesional %s no encontrado; no se busca candidato", slot.professional_id)
            return None

        pool = self.eligible(db, professional.specialty_id)
        logger.info(
            "Lista de espera especialidad=%s: %d candidatos sin oferta activa ni cita asignada",
            professional.specialty_id, len(pool),
        )
        if not pool:
            return None

        stages = build_stages(self.config)
        ranked = rank(pool, slot, stages, self.clock().date())
        return ranked[0]
