# ABOUTME: ItemReleaseManager arms one release timer per protected item on escalation
# ABOUTME: Fired timers share the item with each recipient in order, never granting a recipient twice

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from teardrop.audit import AuditLog
from teardrop.switch.classifier import GrantOutcome
from teardrop.switch.config import ProtectedItem
from teardrop.switch.drive import DriveClient

logger = logging.getLogger(__name__)


class ReleaseState(Enum):
    ARMED = "armed"
    FIRED = "fired"
    GRANTED = "granted"
    GRANT_FAILED = "grant_failed"


class RecipientState(Enum):
    PENDING = "pending"
    GRANTED = "granted"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReleaseTimer:
    """
    Release bookkeeping for one protected item.

    Attributes:
        item: The protected item being released
        state: Timer state (armed, fired, granted, grant_failed)
        recipients: Per-recipient grant state, in configured order
        armed_at: When escalation armed this timer
        fired_at: When the item's delay elapsed
    """

    item: ProtectedItem
    state: ReleaseState = ReleaseState.ARMED
    recipients: dict[str, RecipientState] = field(default_factory=dict)
    armed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fired_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.recipients:
            self.recipients = {r: RecipientState.PENDING for r in self.item.send_to}


class ItemReleaseManager:
    """
    Releases protected items once escalation begins.

    Each item gets its own asyncio task that sleeps for the item's delay and
    then grants access to every recipient. Items never wait on each other.
    """

    def __init__(
        self,
        items: list[ProtectedItem],
        drive: DriveClient,
        max_attempts: int = 3,
        retry_delay: float = 30.0,
        audit: AuditLog | None = None,
    ):
        """
        Initialize the ItemReleaseManager.

        Args:
            items: Protected items in configured order
            drive: Client performing the access grants
            max_attempts: Grant attempts per recipient on transport failures
            retry_delay: Seconds between grant attempts
            audit: Optional audit log for timer and grant events
        """
        self.items = items
        self.drive = drive
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.audit = audit
        self._timers: dict[str, ReleaseTimer] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def timers(self) -> dict[str, ReleaseTimer]:
        """Release timers keyed by item file ID."""
        return dict(self._timers)

    @property
    def armed_timers(self) -> list[ReleaseTimer]:
        return [t for t in self._timers.values() if t.state is ReleaseState.ARMED]

    @property
    def escalated(self) -> bool:
        return bool(self._timers)

    def begin_escalation(self) -> list[ReleaseTimer]:
        """
        Arm a release timer for every protected item.

        Items that already have a timer are left alone, so calling this more
        than once never re-arms or re-fires anything.

        Returns:
            The timers armed by this call
        """
        armed: list[ReleaseTimer] = []
        for item in self.items:
            if item.file_id in self._timers:
                logger.debug(f"Release timer for {item.file_id} already exists, skipping")
                continue

            timer = ReleaseTimer(item=item)
            self._timers[item.file_id] = timer
            task = asyncio.create_task(self._run_timer(timer))
            task.add_done_callback(self._on_task_done)
            self._tasks[item.file_id] = task
            armed.append(timer)

            logger.info(f"Armed release timer for {item.file_id} (delay: {item.delay})")
            self._record(
                "timer-armed",
                f"{item.file_id} will be shared with {', '.join(item.send_to)} in {item.delay}",
            )
        return armed

    async def retry_failed(self) -> list[str]:
        """
        Run the grant pass again for items that ended in grant_failed.

        Returns:
            File IDs of the items that were retried
        """
        failed = [t for t in self._timers.values() if t.state is ReleaseState.GRANT_FAILED]
        for timer in failed:
            logger.info(f"Retrying release of {timer.item.file_id}")
            timer.state = ReleaseState.FIRED
            for recipient, state in timer.recipients.items():
                if state is not RecipientState.GRANTED:
                    timer.recipients[recipient] = RecipientState.PENDING
        await asyncio.gather(*(self._release(timer) for timer in failed))
        return [timer.item.file_id for timer in failed]

    async def wait_for_releases(self) -> None:
        """Wait until every armed timer has fired and finished its grants."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel pending timers. Grants already recorded stay recorded."""
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Item release manager stopped")

    @staticmethod
    def _on_task_done(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        if task.exception():
            logger.error("Release timer task died with exception: %s", task.exception())

    async def _run_timer(self, timer: ReleaseTimer) -> None:
        delay = timer.item.delay.total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        timer.state = ReleaseState.FIRED
        timer.fired_at = datetime.now(timezone.utc)
        logger.info(f"Release timer fired for {timer.item.file_id}")
        self._record("timer-fired", f"Releasing {timer.item.file_id}")

        try:
            await self._release(timer)
        except Exception as e:
            logger.exception(f"Unexpected error releasing {timer.item.file_id}")
            timer.state = ReleaseState.GRANT_FAILED
            self._record("grant-failed", f"{timer.item.file_id}: unexpected error: {e!s}")

    async def _release(self, timer: ReleaseTimer) -> None:
        """Grant access to each recipient of the item in configured order."""
        file_id = timer.item.file_id

        for recipient in timer.item.send_to:
            if timer.recipients[recipient] is not RecipientState.PENDING:
                continue

            outcome = await self._grant(file_id, recipient)

            if outcome.is_success:
                timer.recipients[recipient] = RecipientState.GRANTED
                if outcome is GrantOutcome.ALREADY_GRANTED:
                    logger.info(f"{recipient} is already allowed to view {file_id}")
                else:
                    logger.info(f"Granted {recipient} access to {file_id}")
                self._record("grant-succeeded", f"{recipient} can now view {file_id}")
                continue

            timer.recipients[recipient] = RecipientState.FAILED
            self._record("grant-failed", f"{recipient} could not be given access to {file_id} ({outcome.value})")

            if outcome is GrantOutcome.DENIED:
                logger.error(
                    f"Sharing {file_id} was denied, skipping its remaining recipients. "
                    "Check that the owner can share this item."
                )
                for other, state in timer.recipients.items():
                    if state is RecipientState.PENDING:
                        timer.recipients[other] = RecipientState.SKIPPED
                break

            logger.error(f"Giving {recipient} access to {file_id} failed after {self.max_attempts} attempts")

        if all(state is RecipientState.GRANTED for state in timer.recipients.values()):
            timer.state = ReleaseState.GRANTED
        else:
            timer.state = ReleaseState.GRANT_FAILED

        logger.info(f"Release of {file_id} finished: {timer.state.value}")
        self._record("release-complete", f"{file_id}: {timer.state.value}")

    async def _grant(self, file_id: str, recipient: str) -> GrantOutcome:
        """Issue one grant, retrying transport failures."""
        outcome = GrantOutcome.FAILED
        for attempt in range(1, self.max_attempts + 1):
            outcome = await self.drive.grant_access(file_id, recipient)
            if outcome is not GrantOutcome.FAILED:
                return outcome

            if attempt < self.max_attempts:
                logger.warning(
                    f"Grant of {file_id} to {recipient} failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {self.retry_delay}s"
                )
                await asyncio.sleep(self.retry_delay)
        return outcome

    def _record(self, event: str, detail: str) -> None:
        if self.audit:
            self.audit.record(event, detail)
