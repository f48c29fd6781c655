"""Tests for offer messages and the Twilio transport."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioException

from cupos.config import settings
from cupos.errors import DispatchFailure
from cupos.services import twilio_client
from cupos.services.config_provider import StaticConfigProvider
from cupos.services.notifications import NotificationDispatcher, default_offer_message, render_template
from cupos.services.offers import OfferDetails

from tests.factories import SLOT_DATE, SLOT_TIME


def make_details(**overrides):
    values = dict(
        entry_id=1,
        patient_id=1,
        patient_name="María Pérez",
        phone="+51 943-958-912",
        channel="whatsapp",
        professional_id=5,
        professional_name="Dra. Ana Torres",
        specialty_name="Cardiología",
        date=SLOT_DATE,
        time=SLOT_TIME,
        minutes=30,
        expires_at=datetime(2026, 3, 2, 9, 30),
    )
    values.update(overrides)
    return OfferDetails(**values)


class TestMessages:
    """Template rendering."""

    def test_render_template(self):
        out = render_template("{nombre} / {tiempo} / {desconocido}", {"nombre": "Ana", "tiempo": 15})
        assert out == "Ana / 15 / {desconocido}"

    def test_default_template(self):
        dispatcher = NotificationDispatcher(StaticConfigProvider(), sender=MagicMock())

        body = dispatcher.build_offer_message(make_details())

        assert body == (
            "Hola María Pérez, hay un cupo disponible el 05/03/2026 a las 10:30 con Dra. Ana Torres "
            "(Cardiología). Responda ACEPTAR en 30 min o IGNORAR."
        )

    def test_custom_template(self):
        config = StaticConfigProvider({"mensaje_oferta_cupo": "{doctor} {fecha} {hora}, {tiempo}m"})
        dispatcher = NotificationDispatcher(config, sender=MagicMock())

        assert dispatcher.build_offer_message(make_details(minutes=10)) == "Dra. Ana Torres 05/03/2026 10:30, 10m"

    def test_blank_template_falls_back(self):
        config = StaticConfigProvider({"mensaje_oferta_cupo": "   "})
        dispatcher = NotificationDispatcher(config, sender=MagicMock())

        body = dispatcher.build_offer_message(make_details())

        assert body == "Espacio disponible: 05/03 10:30 con Dra. Ana Torres. Responda ACEPTAR en 30 min o IGNORAR."

    def test_long_doctor_name_shortened(self):
        details = make_details(professional_name="Dr. Luis Fernando Quispe Mamani de la Cruz")
        assert "con Dr. Luis." in default_offer_message(details)


class TestNotificationDispatcher:
    """Error handling around the sender."""

    @pytest.fixture
    def sender(self):
        return MagicMock(return_value={"ok": True, "id": "SM42"})

    @pytest.fixture
    def dispatcher(self, sender):
        return NotificationDispatcher(StaticConfigProvider(), sender=sender)

    def test_notify_offer(self, dispatcher, sender):
        result = dispatcher.notify_offer(make_details(channel="sms"))

        assert result["id"] == "SM42"
        sender.assert_called_once()
        assert sender.call_args.args[0] == "+51 943-958-912"
        assert sender.call_args.kwargs == {"channel": "sms"}

    def test_missing_phone(self, dispatcher, sender):
        with pytest.raises(DispatchFailure):
            dispatcher.notify_offer(make_details(phone=None))
        sender.assert_not_called()

    def test_sender_error_wrapped(self, dispatcher, sender):
        sender.side_effect = ConnectionError("timeout")
        with pytest.raises(DispatchFailure):
            dispatcher.notify_offer(make_details())

    def test_unconfirmed_send(self, dispatcher, sender):
        sender.return_value = {"ok": False}
        with pytest.raises(DispatchFailure):
            dispatcher.notify_offer(make_details())

    def test_notify_expired(self, dispatcher, sender):
        dispatcher.notify_expired("943958912", SLOT_DATE, SLOT_TIME, channel="sms")

        body = sender.call_args.args[1]
        assert "05/03" in body
        assert "10:30" in body
        assert sender.call_args.kwargs == {"channel": "sms"}

    def test_notify_reminder(self, dispatcher, sender):
        dispatcher.notify_reminder("943958912", SLOT_DATE, SLOT_TIME, "Dr. Luis Fernando Quispe Mamani de la Cruz")

        body = sender.call_args.args[1]
        assert body.startswith("Recordatorio")
        assert "05/03/2026" in body
        assert "10:30" in body
        assert "Dr. Luis" in body
        assert "Mamani" not in body
        assert sender.call_args.kwargs == {"channel": "whatsapp"}

    def test_reminder_unconfirmed(self, dispatcher, sender):
        sender.return_value = {"ok": False}
        with pytest.raises(DispatchFailure):
            dispatcher.notify_reminder("943958912", SLOT_DATE, SLOT_TIME, "Dra. Ana Torres")


class TestTwilioSend:
    """Transport modes."""

    @pytest.fixture(autouse=True)
    def no_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "DRY_RUN", False)
        monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", None)
        monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", None)
        monkeypatch.setattr(settings, "TWILIO_WHATSAPP_FROM", "+14155238886")
        monkeypatch.setattr(settings, "TWILIO_SMS_FROM", "+14155230000")

    def test_dry_run(self, monkeypatch):
        monkeypatch.setattr(settings, "DRY_RUN", True)

        result = twilio_client.send("943 958 912", "hola")

        assert result["ok"] is True
        assert result["id"].startswith("dry-")
        assert result["to"] == "whatsapp:+51943958912"

    def test_mock_without_credentials(self):
        result = twilio_client.send("943958912", "hola", channel="sms")

        assert result["id"].startswith("mock-")
        assert result["to"] == "+51943958912"

    def test_empty_recipient(self):
        with pytest.raises(DispatchFailure):
            twilio_client.send("", "hola")

    def test_sends_through_client(self, monkeypatch):
        client = MagicMock()
        client.messages.create.return_value = MagicMock(sid="SM123")
        monkeypatch.setattr(twilio_client, "get_twilio_client", lambda: client)

        result = twilio_client.send("whatsapp:+51943958912", "hola")

        assert result == {"ok": True, "id": "SM123", "to": "whatsapp:+51943958912"}
        client.messages.create.assert_called_once_with(
            from_="whatsapp:+14155238886", to="whatsapp:+51943958912", body="hola",
        )

    def test_twilio_error(self, monkeypatch):
        client = MagicMock()
        client.messages.create.side_effect = TwilioException("rechazado")
        monkeypatch.setattr(twilio_client, "get_twilio_client", lambda: client)

        with pytest.raises(DispatchFailure):
            twilio_client.send("943958912", "hola", channel="sms")
