# ABOUTME: HeartbeatCoordinator runs the check-in cycle and decides when to escalate
# ABOUTME: Single serialized control loop owning the missed check-in counter and the live attempt

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from teardrop.audit import AuditLog
from teardrop.switch.classifier import DeliveryOutcome
from teardrop.switch.config import SwitchConfig
from teardrop.switch.messenger import DeliveryStatus, Messenger, OperatorResponse, SendFailed
from teardrop.switch.release import ItemReleaseManager

logger = logging.getLogger(__name__)


class SwitchState(Enum):
    IDLE = "idle"
    AWAITING_ACK = "awaiting_ack"
    ESCALATING = "escalating"
    ABORTED = "aborted"


class AttemptOutcome(Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"
    TIMED_OUT = "timed_out"


@dataclass
class CheckInAttempt:
    """
    A single check-in sent to the operator.

    Attributes:
        message_sid: Twilio message SID, None if the send failed
        sent_at: When the message was handed to Twilio
        outcome: Delivery/timeout outcome of the attempt
        acknowledged_at: When the operator replied, None if they did not
    """

    message_sid: str | None = None
    sent_at: datetime | None = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    acknowledged_at: datetime | None = None

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None


# Type alias for the alarm callback (reason)
AlarmCallback = Callable[[str], Awaitable[None]]


class HeartbeatCoordinator:
    """
    Periodically checks in with the operator and escalates when they go quiet.

    Every cadence tick:
    1. Sends a check-in through the Messenger
    2. Waits up to the response TTL for an operator reply
    3. Resets the missed counter on a reply, increments it otherwise
    4. Begins escalation once the counter reaches max_undelivered

    A fatal delivery failure aborts the switch and raises an alarm. Escalation
    and abort are both terminal: no further check-ins are sent.
    """

    def __init__(
        self,
        config: SwitchConfig,
        messenger: Messenger,
        release_manager: ItemReleaseManager,
        on_alarm: AlarmCallback | None = None,
        audit: AuditLog | None = None,
    ):
        """
        Initialize the HeartbeatCoordinator.

        Args:
            config: SwitchConfig with cadence, TTL and threshold settings
            messenger: Messenger used to send check-ins and receive events
            release_manager: Manager that releases items on escalation
            on_alarm: Optional callback for fatal delivery failures
            audit: Optional audit log for check-in and escalation events
        """
        self.config = config
        self.messenger = messenger
        self.release_manager = release_manager
        self.on_alarm = on_alarm
        self.audit = audit
        self.cadence = config.cadence
        self.response_ttl = config.ttl
        self.state = SwitchState.IDLE
        self.missed = 0
        self.attempt: CheckInAttempt | None = None
        self._escalated = False
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (SwitchState.ESCALATING, SwitchState.ABORTED)

    def start(self) -> None:
        """
        Start the check-in loop.

        Creates an asyncio task that sends a check-in on every cadence tick.
        """
        if self._running:
            logger.warning("Heartbeat coordinator already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            f"Heartbeat coordinator started (cadence: {self.cadence}, "
            f"response ttl: {self.response_ttl}, max missed: {self.config.max_undelivered})"
        )

    @staticmethod
    def _on_task_done(task: asyncio.Task[None]) -> None:
        """Log when the coordinator task finishes (expected or not)."""
        if task.cancelled():
            logger.info("Heartbeat coordinator task was cancelled")
        elif task.exception():
            logger.error(
                "Heartbeat coordinator task died with exception: %s",
                task.exception(),
            )
        else:
            logger.info("Heartbeat coordinator task finished")

    async def stop(self) -> None:
        """Stop the check-in loop, abandoning any in-flight wait."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Heartbeat coordinator stopped")

    async def trigger(self) -> CheckInAttempt | None:
        """
        Run one check-in cycle immediately.

        Returns:
            The finished attempt, or None if the switch is escalating or aborted
        """
        async with self._cycle_lock:
            if self.is_terminal:
                logger.info(f"Check-in skipped: switch is {self.state.value}")
                return None
            return await self._run_cycle()

    def status(self) -> dict:
        """Snapshot of the coordinator for health reporting."""
        attempt = self.attempt
        return {
            "state": self.state.value,
            "missed": self.missed,
            "max_undelivered": self.config.max_undelivered,
            "last_attempt": None
            if attempt is None
            else {
                "message_sid": attempt.message_sid,
                "sent_at": attempt.sent_at.isoformat() if attempt.sent_at else None,
                "outcome": attempt.outcome.value,
                "acknowledged": attempt.acknowledged,
            },
        }

    async def _run_loop(self) -> None:
        """
        Main loop: wait for the next tick, then run a check-in cycle.

        Ticks are anchored to the loop start so cycle time does not drift the
        cadence. A cycle that overruns its tick delays the next one.
        """
        loop = asyncio.get_running_loop()
        interval_secs = self.cadence.total_seconds()
        next_tick = loop.time() + interval_secs
        try:
            while self._running and not self.is_terminal:
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                next_tick += interval_secs
                await self.trigger()
        except asyncio.CancelledError:
            logger.info("Heartbeat coordinator loop cancelled")
            raise
        except Exception:
            logger.exception("Heartbeat coordinator loop crashed")
            raise

        logger.info(f"Heartbeat coordinator loop exited: switch is {self.state.value}")

    async def _run_cycle(self) -> CheckInAttempt:
        self._discard_stale_events()

        attempt = CheckInAttempt()
        self.attempt = attempt
        self.state = SwitchState.AWAITING_ACK

        try:
            attempt.message_sid = await self.messenger.send_check_in()
        except SendFailed as e:
            if e.outcome is DeliveryOutcome.FATAL:
                attempt.outcome = AttemptOutcome.FATAL_FAILURE
                await self._abort(f"Check-in could not be sent: {e}")
            else:
                # The operator is unreachable through this channel; no point waiting
                logger.warning(f"Check-in send failed: {e}")
                attempt.outcome = AttemptOutcome.RETRYABLE_FAILURE
                self._record_miss(attempt)
            return attempt

        attempt.sent_at = datetime.now(timezone.utc)
        await self._await_acknowledgement(attempt)

        if attempt.acknowledged:
            if self.missed:
                logger.info(f"Operator acknowledged, resetting missed count from {self.missed}")
            self.missed = 0
            self.state = SwitchState.IDLE
            self._record("check-in-acknowledged", f"Check-in {attempt.message_sid} acknowledged")
        elif attempt.outcome is AttemptOutcome.FATAL_FAILURE:
            await self._abort(f"Check-in {attempt.message_sid} failed permanently")
        else:
            if attempt.outcome in (AttemptOutcome.PENDING, AttemptOutcome.DELIVERED):
                attempt.outcome = AttemptOutcome.TIMED_OUT
            self._record_miss(attempt)

        return attempt

    async def _await_acknowledgement(self, attempt: CheckInAttempt) -> None:
        """Consume events until the operator replies, a fatal failure, or the TTL elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.response_ttl.total_seconds()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return

            event = await self.messenger.next_event(timeout=remaining)
            if event is None:
                continue

            if isinstance(event, OperatorResponse):
                attempt.acknowledged_at = event.received_at
                logger.info(f"Check-in {attempt.message_sid} acknowledged by {event.contact}")
                return

            if isinstance(event, DeliveryStatus):
                if event.message_sid != attempt.message_sid:
                    logger.debug(f"Ignoring status for stale message {event.message_sid}")
                    continue

                if event.outcome is DeliveryOutcome.FATAL:
                    attempt.outcome = AttemptOutcome.FATAL_FAILURE
                    return
                if event.outcome is DeliveryOutcome.DELIVERED:
                    attempt.outcome = AttemptOutcome.DELIVERED
                    logger.info(f"Check-in {attempt.message_sid} delivered, awaiting reply")
                elif event.outcome is DeliveryOutcome.RETRYABLE:
                    attempt.outcome = AttemptOutcome.RETRYABLE_FAILURE
                    logger.warning(
                        f"Check-in {attempt.message_sid} undeliverable "
                        f"(status={event.status}, code={event.error_code})"
                    )
                else:
                    logger.debug(f"Check-in {attempt.message_sid} status {event.status}, still waiting")

    def _discard_stale_events(self) -> None:
        for event in self.messenger.drain():
            if isinstance(event, OperatorResponse):
                logger.info(f"Discarding response with no pending check-in: {event.body[:50]!r}")
            else:
                logger.debug(f"Discarding stale status for {event.message_sid}")

    def _record_miss(self, attempt: CheckInAttempt) -> None:
        self.missed += 1
        self.state = SwitchState.IDLE
        logger.warning(
            f"Check-in {attempt.message_sid} missed ({attempt.outcome.value}), "
            f"{self.missed}/{self.config.max_undelivered}"
        )
        self._record(
            "check-in-missed",
            f"Check-in {attempt.message_sid} {attempt.outcome.value}, "
            f"{self.missed}/{self.config.max_undelivered} missed",
        )

        if self.missed >= self.config.max_undelivered:
            self._escalate(f"{self.missed} consecutive check-ins missed")

    def _escalate(self, reason: str) -> None:
        if self._escalated:
            return

        self._escalated = True
        self.state = SwitchState.ESCALATING
        logger.warning(f"Beginning escalation: {reason}")
        self._record("escalation-started", reason)
        self.release_manager.begin_escalation()

    async def _abort(self, reason: str) -> None:
        self.state = SwitchState.ABORTED
        logger.critical(f"Switch aborted, manual intervention required: {reason}")
        self._record("alarm", reason)

        if self.on_alarm:
            try:
                await self.on_alarm(reason)
            except Exception as e:
                logger.error(f"Failed to deliver alarm: {e}")

        if self.config.fatal_escalates:
            self._escalate(f"fatal delivery failure: {reason}")

    def _record(self, event: str, detail: str) -> None:
        if self.audit:
            self.audit.record(event, detail)
