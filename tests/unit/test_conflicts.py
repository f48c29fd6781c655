"""Tests for slot conflict checks."""

from datetime import time
from unittest.mock import patch

import pytest

from cupos import models
from cupos.errors import SlotConflict
from cupos.services.conflicts import book, has_conflict, insert_appointment

from tests.factories import SLOT_DATE, SLOT_TIME, add_appointment


class TestHasConflict:
    """Occupied slots."""

    def test_free_slot(self, clinic):
        assert has_conflict(clinic, 5, SLOT_DATE, SLOT_TIME) is False

    @pytest.mark.parametrize("status", [models.AppointmentStatus.pending, models.AppointmentStatus.confirmed])
    def test_active_statuses_block(self, clinic, status):
        add_appointment(clinic, patient_id=2, status=status)
        assert has_conflict(clinic, 5, SLOT_DATE, SLOT_TIME) is True

    @pytest.mark.parametrize("status", [
        models.AppointmentStatus.cancelled,
        models.AppointmentStatus.no_show,
        models.AppointmentStatus.completed,
    ])
    def test_released_statuses_free(self, clinic, status):
        add_appointment(clinic, patient_id=2, status=status)
        assert has_conflict(clinic, 5, SLOT_DATE, SLOT_TIME) is False

    def test_other_professional_or_time(self, clinic):
        add_appointment(clinic, patient_id=2)
        assert has_conflict(clinic, 6, SLOT_DATE, SLOT_TIME) is False
        assert has_conflict(clinic, 5, SLOT_DATE, time(11, 0)) is False

    def test_exclude_own_appointment(self, clinic):
        appt = add_appointment(clinic, patient_id=2)
        assert has_conflict(clinic, 5, SLOT_DATE, SLOT_TIME, exclude_appointment_id=appt.id) is False


class TestBooking:
    """Inserting appointments."""

    def test_book_free_slot(self, clinic):
        appt = book(clinic, 1, 5, SLOT_DATE, SLOT_TIME, notes="primera vez")

        assert appt.id is not None
        assert appt.status == models.AppointmentStatus.pending
        assert appt.notes == "primera vez"

    def test_book_occupied_slot(self, clinic):
        add_appointment(clinic, patient_id=2)

        with pytest.raises(SlotConflict):
            book(clinic, 1, 5, SLOT_DATE, SLOT_TIME)

    def test_rebook_cancelled_slot(self, clinic):
        add_appointment(clinic, patient_id=2, status=models.AppointmentStatus.cancelled)

        appt = book(clinic, 1, 5, SLOT_DATE, SLOT_TIME)

        assert appt.patient_id == 1

    def test_unique_index_catches_race(self, clinic):
        existing = add_appointment(clinic, patient_id=2)

        # Simula que otra transacción insertó entre la verificación y el INSERT
        with patch("cupos.services.conflicts.has_conflict", return_value=False):
            with pytest.raises(SlotConflict):
                insert_appointment(clinic, 1, 5, SLOT_DATE, SLOT_TIME)

        rows = clinic.query(models.Appointment).all()
        assert [a.id for a in rows] == [existing.id]
