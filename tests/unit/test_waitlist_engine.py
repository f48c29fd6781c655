"""Tests for the engine entry points."""

from datetime import time
from unittest.mock import patch, sentinel

import pytest

from cupos import models
from cupos.errors import NoCandidate, OfferAlreadyActive
from cupos.services.config_provider import StaticConfigProvider
from cupos.services.selector import Slot
from cupos.services.waitlist import WaitlistEngine

from tests.factories import SLOT_DATE, SLOT_TIME, T0, add_appointment, add_entry


SLOT = Slot(professional_id=5, date=SLOT_DATE, time=SLOT_TIME)


class TestOfferSlot:
    """Offering a released slot."""

    def test_offers_best_candidate(self, clinic, engine, sender):
        add_entry(clinic, 7, patient_id=1, priority_tier=2)
        add_entry(clinic, 8, patient_id=3, professional_id=5, priority_tier=5)

        details = engine.offer_slot(clinic, SLOT)

        assert details.entry_id == 8
        assert details.minutes == 30
        assert details.delivered is True
        sender.assert_called_once()

    def test_ttl_from_config(self, clinic, session_factory, sender, clock):
        config = StaticConfigProvider({"tiempo_max_oferta": 10})
        engine = WaitlistEngine(session_factory, config, sender=sender, clock=clock, grace_minutes=30)
        add_entry(clinic, 1, patient_id=1)

        details = engine.offer_slot(clinic, SLOT)

        assert details.expires_at == T0.replace(minute=10)

    def test_second_release_skips_active_offer(self, clinic, engine):
        add_entry(clinic, 1, patient_id=1, professional_id=5)
        add_entry(clinic, 2, patient_id=3)

        first = engine.offer_slot(clinic, SLOT)
        second = engine.offer_slot(clinic, Slot(6, SLOT_DATE, time(12, 0)))

        assert first.entry_id == 1
        assert second.entry_id == 2

    def test_same_slot_not_offered_twice(self, clinic, engine, sender):
        add_entry(clinic, 1, patient_id=1)
        add_entry(clinic, 2, patient_id=3)

        engine.offer_slot(clinic, SLOT)

        assert engine.offer_slot(clinic, SLOT) is None
        assert sender.call_count == 1

    def test_auto_offer_disabled(self, clinic, session_factory, sender, clock):
        config = StaticConfigProvider({"auto_offer_enabled": False})
        engine = WaitlistEngine(session_factory, config, sender=sender, clock=clock)
        add_entry(clinic, 1, patient_id=1)

        assert engine.offer_slot(clinic, SLOT) is None
        sender.assert_not_called()

    def test_auto_offer_disabled_from_text(self, clinic, session_factory, sender, clock):
        config = StaticConfigProvider()
        config.update({"auto_offer_enabled": "false"})
        engine = WaitlistEngine(session_factory, config, sender=sender, clock=clock)
        add_entry(clinic, 1, patient_id=1)

        assert engine.offer_slot(clinic, SLOT) is None
        sender.assert_not_called()

    def test_occupied_slot_not_offered(self, clinic, engine, sender):
        add_entry(clinic, 1, patient_id=1)
        add_appointment(clinic, patient_id=2)

        assert engine.offer_slot(clinic, SLOT) is None
        sender.assert_not_called()

    def test_empty_pool(self, clinic, engine):
        with pytest.raises(NoCandidate):
            engine.offer_slot(clinic, SLOT)

    def test_retries_when_candidate_taken(self, clinic, engine):
        add_entry(clinic, 1, patient_id=1)

        with patch.object(engine.offers, "create_offer",
                          side_effect=[OfferAlreadyActive("carrera"), sentinel.details]) as create:
            assert engine.offer_slot(clinic, SLOT) is sentinel.details

        assert create.call_count == 2


class TestNotifyWaitlist:
    """Fire-and-forget entry point used on cancellation."""

    def test_creates_offer(self, clinic, engine):
        add_entry(clinic, 1, patient_id=2)

        details = engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME)

        assert details.entry_id == 1
        clinic.expire_all()
        assert clinic.get(models.WaitlistEntry, 1).offer_active is True

    def test_no_candidate_swallowed(self, clinic, engine):
        assert engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME) is None

    def test_unexpected_error_swallowed(self, clinic, engine):
        add_entry(clinic, 1, patient_id=2)

        with patch.object(engine.selector, "select_candidate", side_effect=RuntimeError("boom")):
            assert engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME) is None

    def test_full_cycle_decline_then_next_release(self, clinic, engine, clock):
        add_entry(clinic, 1, patient_id=1, professional_id=5)
        add_entry(clinic, 2, patient_id=3)

        engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME)
        result = engine.handle_reply("943958912", "NO")
        clock.advance(minutes=5)
        again = engine.notify_waitlist(5, SLOT_DATE, SLOT_TIME)

        assert result.code == "DECLINE"
        # La entrada que rechazó vuelve al pool con su prioridad intacta
        assert again.entry_id == 1
