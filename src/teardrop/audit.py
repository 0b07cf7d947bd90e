# ABOUTME: Audit trail persistence for escalation events
# ABOUTME: Appends timestamped entries to markdown files organized by date

from datetime import datetime, timezone
from pathlib import Path


class AuditLog:
    """Records who was granted access to what, and when, as markdown files."""

    def __init__(self, base_path: Path):
        """
        Initialize the audit log.

        Args:
            base_path: Directory for the daily audit files
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        event: str,
        detail: str,
        timestamp: datetime | None = None,
    ) -> None:
        """
        Append an event to the file for its day.

        Args:
            event: Short event name, e.g. "grant-succeeded"
            detail: Human-readable description of what happened
            timestamp: When the event happened (defaults to now, UTC)
        """
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        # Daily file format: YYYY-MM-DD.md
        date_str = timestamp.strftime("%Y-%m-%d")
        daily_file = self.base_path / f"{date_str}.md"

        time_str = timestamp.strftime("%H:%M:%S")
        entry = f"\n## {time_str} - {event}\n\n{detail}\n"

        if not daily_file.exists():
            header = f"# Teardrop Audit - {date_str}\n"
            daily_file.write_text(header + entry)
        else:
            with daily_file.open("a") as f:
                f.write(entry)
