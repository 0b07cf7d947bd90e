# ABOUTME: Recipient address validation for protected item sharing
# ABOUTME: Parses e-mail addresses with email-validator and returns the normalized form

from email_validator import EmailNotValidError, validate_email


class InvalidRecipient(ValueError):
    """Raised when a recipient address is not a valid e-mail address."""


def parse_recipient(address: str) -> str:
    """
    Validate a recipient e-mail address.

    Deliverability (DNS) is not checked; only the syntax of the address.

    Args:
        address: Raw address from configuration

    Returns:
        The normalized e-mail address

    Raises:
        InvalidRecipient: If the address is empty or not a valid e-mail address
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidRecipient(f"email address invalid: {address!r}")

    try:
        result = validate_email(address.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidRecipient(f"email address invalid: {address!r} ({e})") from e

    return result.normalized
