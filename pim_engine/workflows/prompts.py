"""
Input sources for the validation retry loop.

The lifecycle and approval workflows never read the terminal directly;
they ask an InputSource, which is either the interactive console or a
scripted source for tests and unattended runs.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple, Union

from rich.console import Console
from rich.prompt import Prompt


class InputSource(ABC):
    """Supplies replacement values when the directory rejects a request."""

    @abstractmethod
    def ask_justification(self, reason: str) -> Optional[str]:
        """
        Ask for a justification.

        Args:
            reason: Why the value is needed (usually the provider's message)

        Returns:
            The new value, or None to keep the current one
        """
        pass

    @abstractmethod
    def ask_ticket_number(self, reason: str, required: bool = True) -> Optional[str]:
        """Ask for a ticket number; with required=False an empty answer is fine."""
        pass


class ScriptedInputSource(InputSource):
    """
    Answers prompts from pre-set values.

    A list is consumed one answer per prompt; a single string is repeated
    for every prompt. When answers run out, None is returned.
    """

    def __init__(self, justifications: Union[str, Iterable[str], None] = None,
                 ticket_numbers: Union[str, Iterable[str], None] = None):
        self._justifications = self._prepare(justifications)
        self._tickets = self._prepare(ticket_numbers)
        self.asked: List[Tuple[str, str]] = []

    @staticmethod
    def _prepare(values):
        if values is None:
            return []
        if isinstance(values, str):
            return values
        return list(values)

    @staticmethod
    def _next(values) -> Optional[str]:
        if isinstance(values, str):
            return values
        return values.pop(0) if values else None

    def ask_justification(self, reason: str) -> Optional[str]:
        self.asked.append(("justification", reason))
        return self._next(self._justifications)

    def ask_ticket_number(self, reason: str, required: bool = True) -> Optional[str]:
        self.asked.append(("ticket", reason))
        return self._next(self._tickets)


class ConsoleInputSource(InputSource):
    """Prompts on the terminal with rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def ask_justification(self, reason: str) -> Optional[str]:
        self.console.print(f"[yellow]{reason}[/yellow]")
        answer = Prompt.ask("Justification", console=self.console)
        return answer.strip() or None

    def ask_ticket_number(self, reason: str, required: bool = True) -> Optional[str]:
        """With required=True, keep asking until a non-empty answer is given."""
        self.console.print(f"[yellow]{reason}[/yellow]")
        if not required:
            answer = Prompt.ask("Ticket number (optional)", default="", show_default=False,
                                console=self.console)
            return answer.strip() or None

        while True:
            answer = (Prompt.ask("Ticket number", console=self.console) or "").strip()
            if answer:
                return answer
            self.console.print("[red]A ticket number is required[/red]")
