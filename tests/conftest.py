# ABOUTME: Shared fixtures for Teardrop tests
# ABOUTME: Builds Twilio, Drive, switch and item configurations used across test modules

import pytest

from teardrop.switch.config import DriveConfig, ProtectedItem, SwitchConfig, TwilioConfig

OPERATOR = "+15551111111"


@pytest.fixture
def twilio_config():
    """Twilio settings pointing at a fake operator number."""
    return TwilioConfig(
        account_sid="AC123",
        auth_token="token",
        from_number="+15550000000",
        to_number=OPERATOR,
        public_url="https://teardrop.example.com",
    )


@pytest.fixture
def drive_config():
    return DriveConfig(access_token="drive-token", grant_retry_delay=0)


@pytest.fixture
def switch_config():
    return SwitchConfig(check_duration="1h", response_ttl="10m", max_undelivered=3)


@pytest.fixture
def item():
    return ProtectedItem(file_id="file-1", send_to=["alice@example.com", "bob@example.com"])
