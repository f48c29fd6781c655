"""Tests for the expiry sweep job."""

from unittest.mock import MagicMock

import pytest

from cupos import models
from cupos.jobs.scheduler import SWEEP_JOB_ID, start_scheduler, stop_scheduler, sweep_job
from cupos.services.selector import Slot

from tests.factories import SLOT_DATE, SLOT_TIME, add_entry


@pytest.fixture
def offered(clinic, engine):
    entry = add_entry(clinic, 1, patient_id=1, professional_id=5)
    engine.offers.create_offer(clinic, entry, Slot(5, SLOT_DATE, SLOT_TIME), 30)
    return entry


class TestExpirySweeper:
    """Reclaiming offers past the grace window."""

    def test_run_twice_is_idempotent(self, clinic, engine, offered, clock):
        clock.advance(minutes=61)

        assert engine.sweep() == 1
        assert engine.sweep() == 0

        clinic.expire_all()
        entry = clinic.get(models.WaitlistEntry, 1)
        assert entry.offer_active is False
        assert entry.assigned_at is None

    def test_inside_grace_untouched(self, clinic, engine, offered, clock):
        clock.advance(minutes=45)

        assert engine.sweep() == 0
        clinic.expire_all()
        assert clinic.get(models.WaitlistEntry, 1).offer_active is True

    def test_sends_expiry_notice(self, engine, offered, clock, sender):
        clock.advance(minutes=61)

        engine.sweep()

        assert sender.call_count == 2
        args, kwargs = sender.call_args
        assert args[0] == "+51 943-958-912"
        assert "expiró" in args[1]
        assert kwargs["channel"] == "whatsapp"

    def test_notice_failure_still_reclaims(self, clinic, engine, offered, clock, sender):
        sender.side_effect = RuntimeError("sin red")
        clock.advance(minutes=61)

        assert engine.sweep() == 1

    def test_expired_entry_can_be_offered_again(self, clinic, engine, offered, clock):
        clock.advance(minutes=61)
        engine.sweep()

        details = engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME)

        assert details is not None
        assert details.entry_id == 1

    def test_explicit_now(self, engine, offered, clock):
        assert engine.sweep(now=clock.now) == 0
        assert engine.sweep(now=clock.advance(hours=2)) == 1


class TestSchedulerJob:
    """APScheduler wiring."""

    def test_job_swallows_errors(self):
        sweeper = MagicMock()
        sweeper.run_once.side_effect = RuntimeError("bd caída")

        sweep_job(sweeper)

        sweeper.run_once.assert_called_once_with()

    def test_start_and_stop(self):
        scheduler = start_scheduler(MagicMock(), minutes=5)
        try:
            job = scheduler.get_job(SWEEP_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
        finally:
            stop_scheduler(scheduler)
        assert scheduler.running is False

    def test_stop_without_scheduler(self):
        stop_scheduler(None)
