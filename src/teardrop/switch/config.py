# ABOUTME: Pydantic models for the switch: cadence, Twilio, Drive and protected items
# ABOUTME: Validates durations, URI paths and recipients, and provides computed timedeltas

from datetime import timedelta
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from teardrop.switch.duration import parse_duration
from teardrop.switch.recipient import parse_recipient

DEFAULT_CHECK_IN_MESSAGE = "Teardrop check-in: reply to this message to confirm you are OK."


class SwitchConfig(BaseModel):
    """
    Configuration for the check-in cadence and escalation threshold.

    Attributes:
        check_duration: Interval between check-ins (default: "1d")
        response_ttl: How long to wait for a reply after a check-in (default: "1h")
        max_undelivered: Consecutive missed check-ins that trigger escalation
        fatal_escalates: Whether a fatal delivery failure also triggers escalation
        check_in_message: SMS body sent to the operator
        event_queue_size: Capacity of each inbound webhook event queue
    """

    check_duration: str = "1d"
    response_ttl: str = "1h"
    max_undelivered: Annotated[int, Field(ge=1)] = 3
    fatal_escalates: bool = False
    check_in_message: str = DEFAULT_CHECK_IN_MESSAGE
    event_queue_size: Annotated[int, Field(gt=0)] = 10

    @field_validator("check_duration", "response_ttl")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate duration strings early so errors surface at load time."""
        parse_duration(v)
        return v

    @model_validator(mode="after")
    def validate_ttl_within_cadence(self) -> "SwitchConfig":
        if self.ttl >= self.cadence:
            raise ValueError(
                f"response_ttl ({self.response_ttl}) must be shorter than "
                f"check_duration ({self.check_duration})"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cadence(self) -> timedelta:
        return parse_duration(self.check_duration)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ttl(self) -> timedelta:
        return parse_duration(self.response_ttl)


class TwilioConfig(BaseModel):
    """
    Twilio account and webhook settings.

    callback_uri and response_uri are paths served by the webhook server;
    public_url is the externally reachable base URL Twilio calls back on, and
    the URL webhook signatures are checked against.
    """

    account_sid: str
    auth_token: str
    from_number: str
    to_number: str
    callback_uri: str = "/twilio/status"
    response_uri: str = "/twilio/response"
    public_url: str | None = None
    validate_signatures: bool = True

    @field_validator("callback_uri", "response_uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"uri does not begin with a '/': {v!r}")
        return v

    @field_validator("from_number", "to_number")
    @classmethod
    def strip_number(cls, v: str) -> str:
        return v.strip()

    @property
    def status_callback_url(self) -> str | None:
        """Full URL for Twilio delivery-status callbacks, if publicly reachable."""
        if not self.public_url:
            return None
        return f"{self.public_url.rstrip('/')}{self.callback_uri}"


class DriveConfig(BaseModel):
    """
    Google Drive access and grant retry settings.

    credentials_file names a service-account or authorized-user JSON file whose
    credentials are refreshed as they expire. access_token is a fixed bearer
    token that cannot be refreshed; it only suits short runs. With neither set,
    application default credentials are used.
    """

    credentials_file: Path | None = None
    access_token: str = ""
    send_notification_email: bool = True
    grant_max_attempts: Annotated[int, Field(ge=1)] = 3
    grant_retry_delay: Annotated[float, Field(ge=0)] = 30.0


class ProtectedItem(BaseModel):
    """
    A Drive item shared with its recipients once its release delay has passed.

    Attributes:
        file_id: Drive file ID (from the web UI or the gcloud command line)
        send_to: Ordered e-mail addresses to share the item with
        send_delay: Optional duration after escalation begins, e.g. "1h" or "1d";
            omitted means immediate release
    """

    file_id: Annotated[str, Field(min_length=1)]
    send_to: list[str]
    send_delay: str | None = None

    @field_validator("send_to")
    @classmethod
    def validate_send_to(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("send_to must list at least one recipient")

        recipients = [parse_recipient(address) for address in v]

        seen: set[str] = set()
        for recipient in recipients:
            key = recipient.lower()
            if key in seen:
                raise ValueError(f"duplicate recipient: {recipient!r}")
            seen.add(key)
        return recipients

    @field_validator("send_delay")
    @classmethod
    def validate_send_delay(cls, v: str | None) -> str | None:
        # None or empty string means release immediately
        if v is None or not v.strip():
            return None
        parse_duration(v)
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def delay(self) -> timedelta:
        if self.send_delay is None:
            return timedelta(0)
        return parse_duration(self.send_delay)
