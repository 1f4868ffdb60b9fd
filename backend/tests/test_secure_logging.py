"""
Tests for secure logging utilities with PII redaction.
"""

import pytest
from utils.secure_logging import redact_pii, redact_coordinates


class TestRedactPII:
    """Tests for PII redaction function"""

    def test_redact_email_addresses(self):
        """Email addresses should be redacted"""
        text = "Share link requested by john.doe@example.com"
        result = redact_pii(text)
        assert result == "Share link requested by [EMAIL_REDACTED]"
        assert "@example.com" not in result

    def test_redact_precise_coordinates(self):
        """Precise coordinates (4+ decimals) should be redacted"""
        text = "Origin: 34.0522, -118.2437"
        result = redact_pii(text)
        assert result == "Origin: [COORD_REDACTED], [COORD_REDACTED]"

    def test_keep_rough_coordinates(self):
        """Rough coordinates (1-3 decimals) should be preserved for debugging"""
        text = "Cache cell fire-perimeters-33.994--118.262"
        assert redact_pii(text) == text

    def test_redact_ipv4_addresses(self):
        """IPv4 addresses should be redacted"""
        assert redact_pii("Request from 192.168.1.100") == "Request from [IP_REDACTED]"

    def test_redact_phone_numbers(self):
        """US phone numbers should be redacted"""
        result = redact_pii("Contact: 555-987-6543")
        assert result == "Contact: [PHONE_REDACTED]"

    @pytest.mark.parametrize('text,expected', [
        ("GET /route?subscription-key=abc123&query=1",
         "GET /route?subscription-key=[KEY_REDACTED]&query=1"),
        ("api_key=XYZ failed", "api_key=[KEY_REDACTED] failed"),
        ("API-KEY=XYZ", "API-KEY=[KEY_REDACTED]"),
    ])
    def test_redact_api_keys(self, text, expected):
        """Subscription keys in URLs must never reach the logs"""
        assert redact_pii(text) == expected

    def test_empty_string(self):
        """Empty strings should be handled gracefully"""
        assert redact_pii("") == ""

    def test_none_value(self):
        """None values should be handled gracefully"""
        assert redact_pii(None) is None


class TestRedactCoordinates:
    """Tests for coordinate redaction function"""

    def test_redact_to_neighborhood_level(self):
        """Coordinates should be rounded to neighborhood level by default"""
        lat, lon = redact_coordinates(39.7596, -121.6219)
        assert lat == "39.76"
        assert lon == "-121.62"

    def test_custom_precision(self):
        """Custom precision levels should work"""
        lat, lon = redact_coordinates(37.7749, -122.4194, precision=1)
        assert lat == "37.8"
        assert lon == "-122.4"

    def test_none_coordinates(self):
        """None coordinates should be fully redacted"""
        assert redact_coordinates(None, None) == ("[REDACTED]", "[REDACTED]")

    def test_partial_none(self):
        """Partial None should redact both"""
        assert redact_coordinates(37.7749, None) == ("[REDACTED]", "[REDACTED]")
