"""Tests for exchange/powershell.py - persistent PowerShell session."""

import logging
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from autoarchive.exchange.powershell import (
    CLOSE_TIMEOUT_SECONDS,
    MARKER_PREFIX,
    PowerShellError,
    PowerShellSession,
    parse_json_output,
)

MARKER = f"{MARKER_PREFIX}abc123"
OK = f"{MARKER}:OK"

# $ErrorActionPreference, $ProgressPreference, Import-Module
STARTUP_LINES = [OK, OK, OK]


def make_process(lines: list[str]) -> MagicMock:
    """Build a fake pwsh process that prints the given lines."""
    process = MagicMock()
    process.poll.return_value = None
    process.stdout.readline.side_effect = [f"{line}\n" for line in lines] + [""]
    return process


@pytest.fixture(autouse=True)
def fixed_marker():
    """Make the end marker predictable."""
    with patch("autoarchive.exchange.powershell.uuid.uuid4") as mock_uuid:
        mock_uuid.return_value = MagicMock(hex="abc123")
        yield


def written_scripts(process: MagicMock) -> list[str]:
    return [c.args[0] for c in process.stdin.write.call_args_list]


# =============================================================================
# Test parse_json_output
# =============================================================================


class TestParseJsonOutput:
    """Tests for parse_json_output function."""

    def test_object(self):
        assert parse_json_output('{"Identity": "a"}') == {"Identity": "a"}

    def test_array(self):
        assert parse_json_output('[{"Identity": "a"}, {"Identity": "b"}]') == [
            {"Identity": "a"},
            {"Identity": "b"},
        ]

    def test_empty_output(self):
        assert parse_json_output("") == {}
        assert parse_json_output("  \n ") == {}

    def test_banner_before_json(self):
        output = 'Banner: Connection established\n{"Identity": "test"}'
        assert parse_json_output(output) == {"Identity": "test"}

    def test_banner_before_array(self):
        output = 'Banner text\n[{"Identity": "a"}]'
        assert parse_json_output(output) == [{"Identity": "a"}]

    def test_warning_after_json(self):
        output = '{"Identity": "a"}\nWARNING: something happened'
        assert parse_json_output(output) == {"Identity": "a"}

    def test_not_json(self):
        assert parse_json_output("Not JSON output") == {"raw": "Not JSON output"}


# =============================================================================
# Test start
# =============================================================================


class TestStart:
    """Tests for PowerShellSession.start."""

    @patch("subprocess.Popen")
    def test_spawns_pwsh_reading_stdin(self, mock_popen):
        mock_popen.return_value = make_process(STARTUP_LINES)

        session = PowerShellSession()
        session.start()

        args = mock_popen.call_args.args[0]
        assert args == ["pwsh", "-NoProfile", "-NonInteractive", "-Command", "-"]
        assert session.is_running

    @patch("subprocess.Popen")
    def test_imports_exchange_module(self, mock_popen):
        process = make_process(STARTUP_LINES)
        mock_popen.return_value = process

        PowerShellSession().start()

        scripts = written_scripts(process)
        assert "$ErrorActionPreference = 'Stop'" in scripts[0]
        assert "Import-Module ExchangeOnlineManagement -ErrorAction Stop" in scripts[2]

    @patch("subprocess.Popen")
    def test_custom_executable(self, mock_popen):
        mock_popen.return_value = make_process(STARTUP_LINES)

        PowerShellSession(executable="/opt/pwsh/pwsh").start()

        assert mock_popen.call_args.args[0][0] == "/opt/pwsh/pwsh"

    @patch("subprocess.Popen")
    def test_pwsh_not_found(self, mock_popen):
        mock_popen.side_effect = FileNotFoundError("pwsh")

        with pytest.raises(PowerShellError, match="not found"):
            PowerShellSession().start()

    @patch("subprocess.Popen")
    def test_module_import_failure(self, mock_popen):
        mock_popen.return_value = make_process(
            [OK, OK, f"{MARKER}:ERROR:The specified module was not loaded"]
        )

        with pytest.raises(PowerShellError, match="module was not loaded"):
            PowerShellSession().start()

    @patch("subprocess.Popen")
    def test_start_is_idempotent(self, mock_popen):
        mock_popen.return_value = make_process(STARTUP_LINES)

        session = PowerShellSession()
        session.start()
        session.start()

        assert mock_popen.call_count == 1


# =============================================================================
# Test run
# =============================================================================


class TestRun:
    """Tests for PowerShellSession.run."""

    @patch("subprocess.Popen")
    def test_returns_output_before_marker(self, mock_popen):
        mock_popen.return_value = make_process(
            [*STARTUP_LINES, '{"State": "Connected"}', OK]
        )

        session = PowerShellSession()
        output = session.run("Get-ConnectionInformation | ConvertTo-Json")

        assert output == '{"State": "Connected"}'

    @patch("subprocess.Popen")
    def test_starts_lazily(self, mock_popen):
        mock_popen.return_value = make_process([*STARTUP_LINES, OK])

        PowerShellSession().run("Write-Output 'x' | Out-Null")

        assert mock_popen.call_count == 1

    @patch("subprocess.Popen")
    def test_wraps_command_in_try_catch(self, mock_popen):
        process = make_process([*STARTUP_LINES, OK])
        mock_popen.return_value = process

        PowerShellSession().run("Enable-Mailbox -Identity 'a@x.com' -Archive")

        script = written_scripts(process)[-1]
        assert script.startswith("try { Enable-Mailbox -Identity 'a@x.com' -Archive;")
        assert f"Write-Output '{MARKER}:OK'" in script
        assert f"'{MARKER}:ERROR:'" in script
        assert script.endswith("\n\n")

    @patch("subprocess.Popen")
    def test_echo_logs_lines_as_they_arrive(self, mock_popen, caplog):
        mock_popen.return_value = make_process(
            [*STARTUP_LINES, "To sign in, open https://microsoft.com/devicelogin", "", OK]
        )
        caplog.set_level(logging.INFO)

        PowerShellSession().run("Connect-ExchangeOnline -ShowBanner:$false", echo=True)

        assert [r.getMessage() for r in caplog.records] == [
            "To sign in, open https://microsoft.com/devicelogin"
        ]

    @patch("subprocess.Popen")
    def test_output_not_logged_without_echo(self, mock_popen, caplog):
        mock_popen.return_value = make_process([*STARTUP_LINES, '{"a": 1}', OK])
        caplog.set_level(logging.INFO)

        PowerShellSession().run("Get-Mailbox | ConvertTo-Json")

        assert caplog.records == []

    @patch("subprocess.Popen")
    def test_error_marker_raises(self, mock_popen):
        mock_popen.return_value = make_process(
            [*STARTUP_LINES, f"{MARKER}:ERROR:The operation couldn't be performed"]
        )

        with pytest.raises(PowerShellError, match="couldn't be performed"):
            PowerShellSession().run("Enable-Mailbox -Identity 'b@x.com' -Archive")

    @patch("subprocess.Popen")
    def test_session_ended_raises(self, mock_popen):
        mock_popen.return_value = make_process([*STARTUP_LINES, "fatal crash"])

        with pytest.raises(PowerShellError, match="ended unexpectedly"):
            PowerShellSession().run("Get-Mailbox")

    @patch("subprocess.Popen")
    def test_broken_pipe_raises(self, mock_popen):
        process = make_process(STARTUP_LINES)
        mock_popen.return_value = process

        session = PowerShellSession()
        session.start()
        process.stdin.write.side_effect = BrokenPipeError()

        with pytest.raises(PowerShellError, match="not accepting commands"):
            session.run("Get-Mailbox")

    @patch("subprocess.Popen")
    def test_session_state_kept_between_commands(self, mock_popen):
        mock_popen.return_value = make_process([*STARTUP_LINES, OK, "[]", OK])

        session = PowerShellSession()
        session.run("Connect-ExchangeOnline -ShowBanner:$false")
        session.run("Get-Mailbox | ConvertTo-Json")

        assert mock_popen.call_count == 1


# =============================================================================
# Test close
# =============================================================================


class TestClose:
    """Tests for PowerShellSession.close."""

    def test_close_without_start(self):
        session = PowerShellSession()
        session.close()
        assert not session.is_running

    @patch("subprocess.Popen")
    def test_close_sends_exit(self, mock_popen):
        process = make_process(STARTUP_LINES)
        mock_popen.return_value = process

        session = PowerShellSession()
        session.start()
        session.close()

        process.communicate.assert_called_once_with("exit\n", timeout=CLOSE_TIMEOUT_SECONDS)
        assert not session.is_running

    @patch("subprocess.Popen")
    def test_close_kills_on_timeout(self, mock_popen):
        process = make_process(STARTUP_LINES)
        process.communicate.side_effect = [
            subprocess.TimeoutExpired(cmd="pwsh", timeout=CLOSE_TIMEOUT_SECONDS),
            ("", None),
        ]
        mock_popen.return_value = process

        session = PowerShellSession()
        session.start()
        session.close()

        process.kill.assert_called_once()

    @patch("subprocess.Popen")
    def test_context_manager_closes(self, mock_popen):
        process = make_process([*STARTUP_LINES, OK])
        mock_popen.return_value = process

        with PowerShellSession() as session:
            session.run("Get-Date | Out-Null")

        process.communicate.assert_called_once()
