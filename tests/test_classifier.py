# ABOUTME: Tests for delivery and grant outcome classifiers
# ABOUTME: Checks Twilio status/error-code mapping and Drive HTTP status mapping

import pytest

from teardrop.switch.classifier import (
    ACCOUNT_SUSPENDED,
    CARRIER_VIOLATION,
    UNREACHABLE_HANDSET,
    DeliveryOutcome,
    GrantOutcome,
    classify_delivery,
    classify_grant,
)


class TestClassifyDelivery:
    """Tests for classify_delivery."""

    def test_delivered(self):
        assert classify_delivery("delivered") is DeliveryOutcome.DELIVERED

    def test_delivered_ignores_error_code(self):
        assert classify_delivery("delivered", 30003) is DeliveryOutcome.DELIVERED

    def test_failed_account_suspended_is_fatal(self):
        assert classify_delivery("failed", 30002) is DeliveryOutcome.FATAL

    def test_undelivered_account_suspended_is_fatal(self):
        assert classify_delivery("undelivered", ACCOUNT_SUSPENDED) is DeliveryOutcome.FATAL

    def test_failed_unreachable_handset_is_retryable(self):
        assert classify_delivery("failed", 30003) is DeliveryOutcome.RETRYABLE

    def test_failed_carrier_violation_is_retryable(self):
        assert classify_delivery("failed", CARRIER_VIOLATION) is DeliveryOutcome.RETRYABLE

    def test_undelivered_without_code_is_retryable(self):
        assert classify_delivery("undelivered", None) is DeliveryOutcome.RETRYABLE

    @pytest.mark.parametrize("status", ["queued", "sent", "sending", "accepted", "", None])
    def test_other_statuses_unknown(self, status):
        assert classify_delivery(status, None) is DeliveryOutcome.UNKNOWN

    def test_status_case_insensitive(self):
        assert classify_delivery("Delivered") is DeliveryOutcome.DELIVERED
        assert classify_delivery("FAILED", UNREACHABLE_HANDSET) is DeliveryOutcome.RETRYABLE

    def test_unknown_is_not_terminal(self):
        """Only UNKNOWN can still change to another outcome."""
        assert DeliveryOutcome.UNKNOWN.is_terminal is False
        assert DeliveryOutcome.DELIVERED.is_terminal is True
        assert DeliveryOutcome.RETRYABLE.is_terminal is True
        assert DeliveryOutcome.FATAL.is_terminal is True


class TestClassifyGrant:
    """Tests for classify_grant."""

    @pytest.mark.parametrize("status_code", [200, 201])
    def test_success(self, status_code):
        assert classify_grant(status_code) is GrantOutcome.GRANTED

    def test_not_modified_is_already_granted(self):
        assert classify_grant(304) is GrantOutcome.ALREADY_GRANTED

    @pytest.mark.parametrize("status_code", [400, 403, 404])
    def test_client_errors_denied(self, status_code):
        assert classify_grant(status_code) is GrantOutcome.DENIED

    @pytest.mark.parametrize("status_code", [401, 408, 429, 500, 502, 503])
    def test_transient_errors_failed(self, status_code):
        assert classify_grant(status_code) is GrantOutcome.FAILED

    def test_already_granted_counts_as_success(self):
        assert GrantOutcome.ALREADY_GRANTED.is_success is True
        assert GrantOutcome.GRANTED.is_success is True
        assert GrantOutcome.DENIED.is_success is False
        assert GrantOutcome.FAILED.is_success is False
