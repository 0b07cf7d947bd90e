# ABOUTME: Tests for the switch, Twilio, Drive and protected item pydantic models
# ABOUTME: Verifies duration and recipient validation, defaults and computed timedeltas

from datetime import timedelta

import pytest
from pydantic import ValidationError

from teardrop.switch.config import DriveConfig, ProtectedItem, SwitchConfig, TwilioConfig
from teardrop.switch.recipient import InvalidRecipient, parse_recipient


class TestSwitchConfig:
    """Tests for SwitchConfig."""

    def test_defaults(self):
        config = SwitchConfig()
        assert config.cadence == timedelta(days=1)
        assert config.ttl == timedelta(hours=1)
        assert config.max_undelivered == 3
        assert config.fatal_escalates is False

    def test_computed_durations(self):
        config = SwitchConfig(check_duration="2d", response_ttl="30m")
        assert config.cadence == timedelta(days=2)
        assert config.ttl == timedelta(minutes=30)

    def test_invalid_duration_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            SwitchConfig(check_duration="soon")
        assert "check_duration" in str(exc_info.value)

    def test_max_undelivered_must_be_positive(self):
        with pytest.raises(ValidationError):
            SwitchConfig(max_undelivered=0)

    def test_ttl_must_be_shorter_than_cadence(self):
        with pytest.raises(ValidationError, match="must be shorter"):
            SwitchConfig(check_duration="1h", response_ttl="2h")


class TestTwilioConfig:
    """Tests for TwilioConfig."""

    def test_uri_must_start_with_slash(self):
        with pytest.raises(ValidationError, match="does not begin with a '/'"):
            TwilioConfig(
                account_sid="AC1",
                auth_token="t",
                from_number="+1",
                to_number="+2",
                callback_uri="twilio/status",
            )

    def test_status_callback_url(self, twilio_config):
        assert twilio_config.status_callback_url == "https://teardrop.example.com/twilio/status"

    def test_status_callback_url_strips_trailing_slash(self):
        config = TwilioConfig(
            account_sid="AC1",
            auth_token="t",
            from_number="+1",
            to_number="+2",
            public_url="https://host/",
        )
        assert config.status_callback_url == "https://host/twilio/status"

    def test_no_public_url_means_no_callback(self):
        config = TwilioConfig(account_sid="AC1", auth_token="t", from_number="+1", to_number="+2")
        assert config.status_callback_url is None


class TestDriveConfig:
    def test_defaults(self):
        config = DriveConfig()
        assert config.grant_max_attempts == 3
        assert config.send_notification_email is True


class TestProtectedItem:
    """Tests for ProtectedItem."""

    def test_delay_defaults_to_zero(self, item):
        assert item.send_delay is None
        assert item.delay == timedelta(0)

    def test_delay_parsed(self):
        item = ProtectedItem(file_id="f", send_to=["a@example.com"], send_delay="1w")
        assert item.delay == timedelta(weeks=1)

    def test_empty_delay_is_immediate(self):
        item = ProtectedItem(file_id="f", send_to=["a@example.com"], send_delay="  ")
        assert item.delay == timedelta(0)

    def test_recipient_order_preserved(self):
        item = ProtectedItem(file_id="f", send_to=["z@example.com", "a@example.com", "m@example.com"])
        assert item.send_to == ["z@example.com", "a@example.com", "m@example.com"]

    def test_recipients_required(self):
        with pytest.raises(ValidationError, match="at least one recipient"):
            ProtectedItem(file_id="f", send_to=[])

    def test_invalid_recipient_rejected_with_value(self):
        with pytest.raises(ValidationError) as exc_info:
            ProtectedItem(file_id="f", send_to=["not-an-address"])
        assert "not-an-address" in str(exc_info.value)

    def test_duplicate_recipient_rejected(self):
        with pytest.raises(ValidationError, match="duplicate recipient"):
            ProtectedItem(file_id="f", send_to=["a@example.com", "A@example.com"])

    def test_invalid_delay_rejected(self):
        with pytest.raises(ValidationError):
            ProtectedItem(file_id="f", send_to=["a@example.com"], send_delay="0d")

    def test_file_id_required(self):
        with pytest.raises(ValidationError):
            ProtectedItem(file_id="", send_to=["a@example.com"])


class TestParseRecipient:
    """Tests for parse_recipient."""

    def test_valid_address(self):
        assert parse_recipient("alice@example.com") == "alice@example.com"

    def test_whitespace_stripped(self):
        assert parse_recipient("  alice@example.com ") == "alice@example.com"

    @pytest.mark.parametrize("address", ["", "alice", "alice@", "@example.com", "a b@example.com"])
    def test_invalid_addresses(self, address):
        with pytest.raises(InvalidRecipient):
            parse_recipient(address)
