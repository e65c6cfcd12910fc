"""
Tests for the append-only run ledger.
"""

from pathlib import Path

from mdeinstall.core.context import DeployAction, RunOutcome
from mdeinstall.core.models.signal import ExitSignal
from mdeinstall.core.persistence.ledger import LEDGER_FILE, RunLedger, RunRecord


def _outcome(signal=None) -> RunOutcome:
    outcome = RunOutcome(action=DeployAction.UNINSTALL, host="SRV01", os_version="10.0.14393.0")
    outcome.step("probe")
    outcome.warn("trace unavailable")
    outcome.finish(signal)
    return outcome


class TestRunRecord:
    def test_from_successful_outcome(self):
        record = RunRecord.from_outcome(_outcome())
        assert record.action == "uninstall"
        assert record.status == "ok"
        assert record.exit_name == "SUCCESS"
        assert record.steps == ["probe"]
        assert record.duration_ms >= 0

    def test_from_failed_outcome(self):
        record = RunRecord.from_outcome(_outcome(ExitSignal(message="onboarded", code=35)))
        assert record.status == "failed"
        assert record.exit_code == 35
        assert record.exit_name == "NOT_OFFBOARDED"


class TestRunLedger:
    def test_append_and_read(self, tmp_path: Path):
        ledger = RunLedger(tmp_path)
        assert ledger.append(RunRecord.from_outcome(_outcome()))
        assert ledger.append(RunRecord.from_outcome(_outcome(ExitSignal(message="x", code=12))))
        entries = ledger.read_all()
        assert [e.exit_code for e in entries] == [0, 12]
        assert ledger.path == tmp_path / LEDGER_FILE
        assert ledger.read_recent(1)[0].exit_code == 12

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        ledger = RunLedger(tmp_path)
        ledger.append(RunRecord(action="install"))
        with ledger.path.open("a") as f:
            f.write("{not json\n\n")
        ledger.append(RunRecord(action="uninstall"))
        assert [e.action for e in ledger.read_all()] == ["install", "uninstall"]

    def test_missing_file(self, tmp_path: Path):
        assert RunLedger(tmp_path / "nowhere").read_all() == []

    def test_unwritable_location(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert RunLedger(blocker / "sub").append(RunRecord(action="install")) is False
