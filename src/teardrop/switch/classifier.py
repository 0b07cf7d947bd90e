# ABOUTME: Classifiers for provider outcomes: SMS delivery status and Drive grant responses
# ABOUTME: Maps Twilio status/error codes and Drive HTTP statuses to retry-or-abort decisions

from enum import Enum

# Twilio message statuses that signal a delivery problem. The error code
# decides whether the problem is permanent.
DELIVERED = "delivered"
FAILED = "failed"
UNDELIVERED = "undelivered"

# Twilio error codes
ACCOUNT_SUSPENDED = 30002  # Nothing can be sent any more, abort
UNREACHABLE_HANDSET = 30003  # Could just be out of range, try again
CARRIER_VIOLATION = 30007  # Messages are being filtered as spam


class DeliveryOutcome(Enum):
    """Classified outcome of a check-in message."""

    DELIVERED = "delivered"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """True once no later status can change the outcome for a message."""
        return self is not DeliveryOutcome.UNKNOWN


class GrantOutcome(Enum):
    """Classified outcome of a single access grant call."""

    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"
    DENIED = "denied"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in (GrantOutcome.GRANTED, GrantOutcome.ALREADY_GRANTED)


def classify_delivery(status: str | None, error_code: int | None = None) -> DeliveryOutcome:
    """
    Classify a Twilio delivery status update.

    Rules:
    1. "delivered" is DELIVERED
    2. "failed"/"undelivered" with the account-suspended code is FATAL
    3. "failed"/"undelivered" with any other or no code is RETRYABLE
    4. Anything else ("queued", "sent", ...) is UNKNOWN, never success

    Args:
        status: Twilio MessageStatus value
        error_code: Optional Twilio ErrorCode

    Returns:
        DeliveryOutcome for the update
    """
    normalized = (status or "").strip().lower()

    if normalized == DELIVERED:
        return DeliveryOutcome.DELIVERED

    if normalized in (FAILED, UNDELIVERED):
        if error_code == ACCOUNT_SUSPENDED:
            return DeliveryOutcome.FATAL
        return DeliveryOutcome.RETRYABLE

    return DeliveryOutcome.UNKNOWN


def classify_grant(status_code: int) -> GrantOutcome:
    """
    Classify the HTTP status of a Drive permission call.

    304 means the recipient already holds the permission. 401 means the access
    token expired and is retried with a refreshed one. Other client errors
    apart from timeouts and rate limiting are configuration problems and are
    not worth retrying.
    """
    if status_code in (200, 201):
        return GrantOutcome.GRANTED
    if status_code == 304:
        return GrantOutcome.ALREADY_GRANTED
    if status_code in (401, 408, 429):
        return GrantOutcome.FAILED
    if 400 <= status_code < 500:
        return GrantOutcome.DENIED
    return GrantOutcome.FAILED
