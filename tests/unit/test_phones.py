"""Tests for phone normalization."""

import pytest

from cupos.services.phones import normalize_phone, to_e164, to_whatsapp


class TestNormalizePhone:
    """Canonical 9-digit matching key."""

    @pytest.mark.parametrize("raw", [
        "+51 943-958-912",
        "943958912",
        "051943958912",
        "whatsapp:+51943958912",
        "WhatsApp: +51 (943) 958 912",
    ])
    def test_formats_share_key(self, raw):
        assert normalize_phone(raw) == "943958912"

    def test_short_number_kept_whole(self):
        assert normalize_phone("12-34") == "1234"

    def test_empty_values(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("   ") == ""
        assert normalize_phone("whatsapp:") == ""


class TestOutboundFormats:
    """Numbers prepared for the messaging transport."""

    def test_adds_country_code(self):
        assert to_e164("943958912") == "+51943958912"

    def test_keeps_existing_country_code(self):
        assert to_e164("+51 943 958 912") == "+51943958912"

    def test_drops_trunk_zero(self):
        assert to_e164("051943958912") == "+51943958912"

    def test_whatsapp_prefix(self):
        assert to_whatsapp("943958912") == "whatsapp:+51943958912"

    def test_empty(self):
        assert to_e164("") == ""
        assert to_whatsapp(None) == ""

    def test_foreign_number_with_plus_untouched(self):
        assert to_e164("+1 415 523 8886") == "+14155238886"
        assert to_whatsapp("whatsapp:+14155238886") == "whatsapp:+14155238886"
