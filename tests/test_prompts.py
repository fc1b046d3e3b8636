"""
Tests for the input sources used by the validation retry loop.
"""

import io

import pytest
from rich.console import Console

from pim_engine.workflows.prompts import ConsoleInputSource, ScriptedInputSource


@pytest.fixture
def source():
    return ConsoleInputSource(Console(file=io.StringIO()))


class TestConsoleInputSource:
    """Test cases for terminal prompting."""

    def test_required_ticket_asks_again_after_empty_answer(self, source, mocker):
        """Test that a required ticket number is asked for until one is given."""
        ask = mocker.patch("pim_engine.workflows.prompts.Prompt.ask", side_effect=["", "   ", "INC-7"])

        answer = source.ask_ticket_number("Ticket number is required", required=True)

        assert answer == "INC-7"
        assert ask.call_count == 3
        assert "A ticket number is required" in source.console.file.getvalue()

    def test_required_ticket_is_stripped(self, source, mocker):
        """Test that surrounding whitespace is removed from the ticket number."""
        mocker.patch("pim_engine.workflows.prompts.Prompt.ask", return_value="  CHG-12 ")

        assert source.ask_ticket_number("Ticket number is required") == "CHG-12"

    def test_optional_ticket_accepts_empty_answer(self, source, mocker):
        """Test that an optional ticket number may be left empty."""
        ask = mocker.patch("pim_engine.workflows.prompts.Prompt.ask", return_value="")

        assert source.ask_ticket_number("Add a ticket?", required=False) is None
        assert ask.call_count == 1

    def test_empty_justification_keeps_current(self, source, mocker):
        """Test that an empty justification answer means keep the current value."""
        mocker.patch("pim_engine.workflows.prompts.Prompt.ask", return_value=" ")

        assert source.ask_justification("Justification is required") is None

    def test_reason_is_shown(self, source, mocker):
        """Test that the provider message is printed before the prompt."""
        mocker.patch("pim_engine.workflows.prompts.Prompt.ask", return_value="Fixing prod")

        source.ask_justification("The justification is too short")

        assert "The justification is too short" in source.console.file.getvalue()


class TestScriptedInputSource:
    """Test cases for pre-set answers."""

    def test_list_is_consumed_in_order(self):
        """Test that list answers are used one per prompt and then run out."""
        source = ScriptedInputSource(ticket_numbers=["INC-1", "INC-2"])

        assert [source.ask_ticket_number("r") for _ in range(3)] == ["INC-1", "INC-2", None]

    def test_string_is_repeated(self):
        """Test that a single string answers every prompt."""
        source = ScriptedInputSource(justifications="Routine")

        assert source.ask_justification("a") == "Routine"
        assert source.ask_justification("b") == "Routine"
        assert source.asked == [("justification", "a"), ("justification", "b")]
