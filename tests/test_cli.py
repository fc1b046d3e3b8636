"""
Tests for the pimctl command line interface.

Every command runs against the simulated directory seeded by --mock.
"""

import pytest
import yaml
from click.testing import CliRunner
from rich.console import Console

from pim_engine.cli import pimctl
from pim_engine.connectors import MockDirectoryClient
from pim_engine.errors import ConnectionAuthorizationError


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich from wrapping table cells in captured output."""
    monkeypatch.setattr(pimctl, "console", Console(width=200, force_terminal=False, highlight=False))


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "pim.yaml"
    path.write_text(yaml.safe_dump({
        "mock_mode": True,
        "preferences_file": str(tmp_path / "preferences.json"),
    }))
    return str(path)


@pytest.fixture
def run(config_file):
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(pimctl.cli, ["--config", config_file, "--mock", *args],
                             input=input, obj={})
    return invoke


class TestStatus:
    """Test cases for the status command."""

    def test_lists_seeded_assignments(self, run):
        """Test that status lists the seeded assignments."""
        result = run("status")

        assert result.exit_code == 0
        assert "Global Administrator" in result.output
        assert "Global Reader" in result.output
        assert "Prod Break Glass" in result.output
        assert "ready" in result.output

    def test_roles_only(self, run):
        """Test that --no-groups hides group memberships."""
        result = run("status", "--no-groups")

        assert result.exit_code == 0
        assert "Prod Break Glass" not in result.output

    def test_not_signed_in(self, run, mocker):
        """Test that status exits with an error when not signed in."""
        mocker.patch.object(MockDirectoryClient, "get_current_principal_id",
                            side_effect=ConnectionAuthorizationError("Not signed in to the directory"))

        result = run("status")

        assert result.exit_code == 1
        assert "Not signed in" in result.output


class TestLifecycleCommands:
    """Test cases for activate, deactivate and extend."""

    def test_activate_by_index(self, run):
        """Test activation of one assignment chosen by index."""
        result = run("activate", "--index", "1", "--duration", "2", "--justification", "Change 1", "--yes")

        assert result.exit_code == 0
        assert "Activated Global Administrator for PT2H" in result.output

    def test_activate_several(self, run):
        """Test activation of several assignments in one run."""
        result = run("activate", "-i", "1", "-i", "3", "-d", "1.5", "-j", "Change 2", "--yes")

        assert result.exit_code == 0
        assert "Activated Global Administrator for PT90M" in result.output
        assert "Activated Prod Break Glass for PT90M" in result.output
        assert "2/2 succeeded" in result.output

    def test_activate_interactive_selection(self, run):
        """Test activation with the selection entered at the prompt."""
        result = run("activate", "--duration", "1", "--justification", "Change 3", input="2\ny\n")

        assert result.exit_code == 0
        assert "Activated Security Administrator for PT1H" in result.output

    def test_activate_needs_duration(self, run):
        """Test that an unattended activation without a duration fails."""
        result = run("activate", "--index", "1", "--yes")

        assert result.exit_code == 1
        assert "A duration is required" in result.output

    def test_unknown_index(self, run):
        """Test that an unknown index is reported."""
        result = run("activate", "--index", "9", "--duration", "1", "--yes")

        assert result.exit_code == 0
        assert "No selectable assignment #9" in result.output

    def test_deactivate(self, run):
        """Test deactivation by index."""
        result = run("deactivate", "--index", "1", "--yes")

        assert result.exit_code == 0
        assert "Deactivated Global Reader" in result.output

    def test_extend(self, run):
        """Test extension by index."""
        result = run("extend", "--index", "1", "--duration", "4", "--justification", "Longer", "--yes")

        assert result.exit_code == 0
        assert "Extended Global Reader for PT4H" in result.output

    @pytest.mark.parametrize("command", ["activate", "extend"])
    def test_sign_in_is_checked_before_prompting(self, run, mocker, command):
        """Test that a missing session is reported before any duration or justification prompt."""
        mocker.patch.object(MockDirectoryClient, "get_current_principal_id",
                            side_effect=ConnectionAuthorizationError("Not signed in to the directory"))

        result = run(command, "--index", "1")

        assert result.exit_code == 1
        assert "Not signed in" in result.output
        assert "Duration in hours" not in result.output
        assert "Justification" not in result.output


class TestApprovalCommands:
    """Test cases for approvals and requests."""

    def test_list_approvals(self, run):
        """Test listing of pending approvals."""
        result = run("approvals", "list")

        assert result.exit_code == 0
        assert "Dana Operator" in result.output
        assert "Security Administrator" in result.output

    def test_review_approve(self, run):
        """Test approving a request during review."""
        result = run("approvals", "review", input="approve\nLooks good\n")

        assert result.exit_code == 0
        assert "Recorded Approve" in result.output

    def test_review_skip(self, run):
        """Test skipping a request during review."""
        result = run("approvals", "review", input="skip\n")

        assert result.exit_code == 0
        assert "Recorded" not in result.output

    def test_my_requests_empty(self, run):
        """Test listing with no pending requests."""
        result = run("requests", "list", "--kind", "group")

        assert result.exit_code == 0
        assert "No pending requests" in result.output

    def test_cancel_unknown_request(self, run):
        """Test cancelling a request id that does not exist."""
        result = run("requests", "cancel", "missing")

        assert result.exit_code == 0
        assert "not found" in result.output


class TestPreferencesCommands:
    """Test cases for prefs show and prefs set."""

    def test_set_then_show(self, run):
        """Test that saved preferences are shown."""
        assert run("prefs", "set", "--justification", "Routine", "--duration", "3").exit_code == 0

        result = run("prefs", "show")

        assert result.exit_code == 0
        assert "Routine" in result.output
        assert "3.0" in result.output

    def test_unattended_run_uses_preferences(self, run):
        """Test that an unattended run falls back to saved preferences."""
        run("prefs", "set", "--justification", "Routine", "--duration", "3")

        result = run("activate", "--index", "2", "--yes")

        assert result.exit_code == 0
        assert "Activated Security Administrator for PT3H" in result.output
