"""Exercise the CLI against exported ledger files."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from roomledger.main import main
from tests.sample_data import expense_row

LEDGER = {
    "roomId": 10,
    "roomName": "General",
    "selectedMonth": "2025-10",
    "members": [
        {"memberId": 1, "memberName": "Alice"},
        {"memberId": 2, "memberName": "Bob"},
    ],
    "expenses": [
        expense_row(1, 1, 100),
        expense_row(2, 2, 40, "2025-09-12", category="Utilities"),
    ],
}


@pytest.fixture(autouse=True)
def keep_logging_unconfigured():
    """The CLI would bind cached loggers to the runner's temporary stdout."""
    with patch("roomledger.main.setup_logging"):
        yield


@pytest.fixture
def ledger_file(tmp_path):
    def write(payload):
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    return write


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()

    def test_settle_prints_transfers(self, ledger_file):
        result = self.runner.invoke(main, ["settle", ledger_file(LEDGER)])

        assert result.exit_code == 0
        assert "Transfers" in result.output
        assert "30.00" in result.output

    def test_settle_accepts_data_envelope(self, ledger_file):
        path = ledger_file({"success": True, "message": "", "data": LEDGER})

        result = self.runner.invoke(main, ["settle", path])

        assert result.exit_code == 0
        assert "General" in result.output

    def test_settle_without_plan_exits_nonzero(self, ledger_file):
        payload = dict(LEDGER, expenses=LEDGER["expenses"] + [expense_row(3, 99, 10)])

        result = self.runner.invoke(main, ["settle", ledger_file(payload)])

        assert result.exit_code == 1
        assert "no transfer plan" in result.output

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        result = self.runner.invoke(main, ["settle", str(path)])

        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_trends_tables(self, ledger_file):
        result = self.runner.invoke(main, ["trends", ledger_file(LEDGER), "--months", "2"])

        assert result.exit_code == 0
        assert "Spend by Member" in result.output
        assert "Utilities" in result.output
        assert "September 2025" in result.output
