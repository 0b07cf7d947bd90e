# ABOUTME: Tests for the markdown audit log
# ABOUTME: Verifies daily file creation, headers and appended entries

from datetime import datetime

from teardrop.audit import AuditLog


class TestAuditLog:
    """Tests for AuditLog."""

    def test_creates_base_directory(self, tmp_path):
        base = tmp_path / "audit" / "nested"
        AuditLog(base)
        assert base.is_dir()

    def test_first_entry_writes_header(self, tmp_path):
        audit = AuditLog(tmp_path)
        audit.record("escalation-started", "3 consecutive check-ins missed", datetime(2026, 3, 1, 9, 30, 0))

        content = (tmp_path / "2026-03-01.md").read_text()
        assert content.startswith("# Teardrop Audit - 2026-03-01\n")
        assert "## 09:30:00 - escalation-started" in content
        assert "3 consecutive check-ins missed" in content

    def test_entries_appended_in_order(self, tmp_path):
        audit = AuditLog(tmp_path)
        audit.record("timer-fired", "Releasing file-1", datetime(2026, 3, 1, 10, 0, 0))
        audit.record("grant-succeeded", "alice@example.com can now view file-1", datetime(2026, 3, 1, 10, 0, 1))

        content = (tmp_path / "2026-03-01.md").read_text()
        assert content.count("# Teardrop Audit") == 1
        assert content.index("timer-fired") < content.index("grant-succeeded")

    def test_separate_file_per_day(self, tmp_path):
        audit = AuditLog(tmp_path)
        audit.record("a", "x", datetime(2026, 3, 1, 23, 59, 59))
        audit.record("b", "y", datetime(2026, 3, 2, 0, 0, 0))

        assert sorted(p.name for p in tmp_path.glob("*.md")) == ["2026-03-01.md", "2026-03-02.md"]
