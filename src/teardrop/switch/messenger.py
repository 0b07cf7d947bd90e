# ABOUTME: Messenger sends check-in SMS through Twilio and queues inbound webhook events
# ABOUTME: Delivery-status and operator-response events are funneled through two bounded queues

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from teardrop.switch.classifier import DeliveryOutcome, classify_delivery
from teardrop.switch.config import DEFAULT_CHECK_IN_MESSAGE, TwilioConfig

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DeliveryStatus:
    """A classified delivery-status update for a sent message."""

    message_sid: str
    status: str
    error_code: int | None
    outcome: DeliveryOutcome
    received_at: datetime = field(default_factory=_utcnow)


@dataclass
class OperatorResponse:
    """An inbound SMS from the operator. Any body counts as a sign of life."""

    contact: str
    body: str
    received_at: datetime = field(default_factory=_utcnow)


Event = DeliveryStatus | OperatorResponse


class SendFailed(Exception):
    """Raised when the check-in message could not be handed to Twilio."""

    def __init__(self, message: str, outcome: DeliveryOutcome = DeliveryOutcome.RETRYABLE):
        super().__init__(message)
        self.outcome = outcome


class Messenger:
    """
    Sends check-in messages and exposes inbound events to the coordinator.

    Webhook handlers call on_delivery_status and on_operator_response; the
    heartbeat coordinator is the only consumer, through next_event.
    """

    def __init__(
        self,
        config: TwilioConfig,
        message: str = DEFAULT_CHECK_IN_MESSAGE,
        queue_size: int = 10,
    ):
        self.config = config
        self.message = message
        self._http_client: httpx.AsyncClient | None = None
        self._statuses: asyncio.Queue[DeliveryStatus] = asyncio.Queue(maxsize=queue_size)
        self._responses: asyncio.Queue[OperatorResponse] = asyncio.Queue(maxsize=queue_size)
        # Events taken off a queue together with another one, returned first
        self._backlog: deque[Event] = deque()
        # Messages with a terminal classification, later callbacks are ignored
        self._resolved: OrderedDict[str, DeliveryOutcome] = OrderedDict()
        self._max_tracked_messages = 1000

    async def start(self) -> None:
        """Initialize async resources."""
        self._http_client = httpx.AsyncClient(timeout=30.0)

    async def stop(self) -> None:
        """Clean up async resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise RuntimeError("Messenger not started")
        return self._http_client

    async def send_check_in(self) -> str:
        """
        Send the check-in SMS to the operator.

        Returns:
            The Twilio message SID used to correlate delivery callbacks

        Raises:
            SendFailed: If the transport fails or Twilio rejects the message
        """
        url = f"{TWILIO_API_BASE}/Accounts/{self.config.account_sid}/Messages.json"
        data = {
            "To": self.config.to_number,
            "From": self.config.from_number,
            "Body": self.message,
        }
        callback_url = self.config.status_callback_url
        if callback_url:
            data["StatusCallback"] = callback_url

        try:
            response = await self.http_client.post(
                url,
                data=data,
                auth=(self.config.account_sid, self.config.auth_token),
            )
        except httpx.HTTPError as e:
            raise SendFailed(f"Twilio request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise SendFailed(
                f"Twilio rejected check-in ({response.status_code}): {response.text}",
                outcome=_classify_send_error(response),
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SendFailed(f"Unparsable Twilio response: {response.text}") from e

        message_sid = payload.get("sid")
        if not message_sid:
            raise SendFailed(f"Twilio response has no message sid: {payload}")

        # Twilio can report an immediate failure in the create response
        outcome = classify_delivery(payload.get("status"), _error_code(payload))
        if outcome in (DeliveryOutcome.RETRYABLE, DeliveryOutcome.FATAL):
            self._mark_resolved(message_sid, outcome)
            raise SendFailed(
                f"Check-in {message_sid} failed on send: {payload.get('error_message')}",
                outcome=outcome,
            )

        logger.info(f"Sent check-in {message_sid} to {self.config.to_number}")
        return message_sid

    def on_delivery_status(
        self,
        message_sid: str,
        status: str,
        error_code: int | None = None,
    ) -> DeliveryStatus | None:
        """
        Record a delivery-status callback from Twilio.

        Returns:
            The queued event, or None if the update was ignored
        """
        if message_sid in self._resolved:
            logger.debug(
                f"Ignoring status {status!r} for {message_sid}, "
                f"already resolved as {self._resolved[message_sid].value}"
            )
            return None

        outcome = classify_delivery(status, error_code)
        event = DeliveryStatus(
            message_sid=message_sid,
            status=status,
            error_code=error_code,
            outcome=outcome,
        )
        logger.info(f"Delivery status for {message_sid}: {status} (code={error_code}) -> {outcome.value}")
        if not self._enqueue(self._statuses, event):
            # Left unresolved so a retried callback is still accepted
            return None
        if outcome.is_terminal:
            self._mark_resolved(message_sid, outcome)
        return event

    def on_operator_response(self, contact: str, body: str) -> OperatorResponse | None:
        """
        Record an inbound SMS.

        Only messages from the configured operator number are queued.

        Returns:
            The queued event, or None if the message was ignored
        """
        contact = (contact or "").strip()
        if contact != self.config.to_number:
            logger.warning(f"Ignoring inbound message from unknown contact {contact!r}")
            return None

        event = OperatorResponse(contact=contact, body=body)
        logger.info(f"Operator response received from {contact}: {body[:50]!r}")
        if not self._enqueue(self._responses, event):
            return None
        return event

    async def next_event(self, timeout: float) -> Event | None:
        """
        Wait for the next inbound event.

        Operator responses are returned before delivery statuses when both are
        queued.

        Args:
            timeout: Seconds to wait before giving up

        Returns:
            The next event, or None if nothing arrived within the timeout
        """
        if self._backlog:
            return self._backlog.popleft()

        for queue in (self._responses, self._statuses):
            if not queue.empty():
                return queue.get_nowait()

        if timeout <= 0:
            return None

        getters = [
            asyncio.ensure_future(self._responses.get()),
            asyncio.ensure_future(self._statuses.get()),
        ]
        try:
            done, _ = await asyncio.wait(
                getters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for getter in getters:
                if not getter.done():
                    getter.cancel()

        events = [getter.result() for getter in getters if getter in done]
        if not events:
            return None
        self._backlog.extend(events[1:])
        return events[0]

    def drain(self) -> list[Event]:
        """Remove and return every queued event."""
        events: list[Event] = list(self._backlog)
        self._backlog.clear()
        for queue in (self._responses, self._statuses):
            while not queue.empty():
                events.append(queue.get_nowait())
        return events

    def _enqueue(self, queue: asyncio.Queue, event: Event) -> bool:
        try:
            queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {type(event).__name__}")
            return False

    def _mark_resolved(self, message_sid: str, outcome: DeliveryOutcome) -> None:
        self._resolved[message_sid] = outcome
        # Trim old entries to limit memory usage
        while len(self._resolved) > self._max_tracked_messages:
            self._resolved.popitem(last=False)


def _error_code(payload: dict) -> int | None:
    code = payload.get("error_code", payload.get("code"))
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _classify_send_error(response: httpx.Response) -> DeliveryOutcome:
    """An error response is retryable unless it says the account is suspended."""
    try:
        payload = response.json()
    except ValueError:
        return DeliveryOutcome.RETRYABLE
    if not isinstance(payload, dict):
        return DeliveryOutcome.RETRYABLE
    return classify_delivery("failed", _error_code(payload))
