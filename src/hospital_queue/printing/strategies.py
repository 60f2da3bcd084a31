"""
Ticket print strategies.

Each strategy is one way of getting a rendered ticket file onto paper. They are
tried in order by the dispatcher; the acknowledgment strategy closes the list
so a drain always makes progress even on a host with no working printer.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from hospital_queue.printing.models import TicketPrintPayload
from hospital_queue.shared.logging import get_logger
from hospital_queue.shared.process import run_process

logger = get_logger(__name__)


class PrintStrategy(ABC):
    """One way to print a rendered ticket."""

    name: str = "print"

    @abstractmethod
    async def attempt(self, path: Path, payload: TicketPrintPayload) -> bool:
        """Print the file at ``path``; True on success."""
        ...


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class CommandPrintStrategy(PrintStrategy):
    """Runs an OS command built from the ticket file path."""

    def __init__(
        self,
        name: str,
        build_args: Callable[[Path], list[str]],
        timeout_seconds: float = 5.0,
    ) -> None:
        self.name = name
        self._build_args = build_args
        self._timeout = timeout_seconds

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def command_for(self, path: Path) -> list[str]:
        return self._build_args(path)

    async def attempt(self, path: Path, payload: TicketPrintPayload) -> bool:
        return await run_process(self._build_args(path), self._timeout)


class AcknowledgePrintStrategy(PrintStrategy):
    """Terminal fallback: logs the ticket as printed and always succeeds.

    Keeps the queue moving when every physical method is unavailable; the
    ticket number is still shown on the dispenser screen.
    """

    name = "acknowledge"

    async def attempt(self, path: Path, payload: TicketPrintPayload) -> bool:
        logger.warning(
            "No printer method succeeded, acknowledging ticket",
            extra={"ticket_number": payload.ticket_number},
        )
        return True


def default_print_strategies(
    printer_name: str = "Microsoft Print to PDF",
    timeout_seconds: float = 5.0,
) -> list[PrintStrategy]:
    """Windows print methods, most reliable first, acknowledgment last."""
    physical: list[PrintStrategy] = [
        CommandPrintStrategy(
            "powershell_out_printer",
            lambda p: [
                "powershell",
                "-NoProfile",
                "-Command",
                f"Get-Content {_ps_quote(str(p))} | Out-Printer",
            ],
            timeout_seconds,
        ),
        # Notepad opens a print job window; give it longer.
        CommandPrintStrategy(
            "notepad_print",
            lambda p: ["notepad", "/P", str(p)],
            timeout_seconds * 3,
        ),
        CommandPrintStrategy(
            "print_to_named_printer",
            lambda p: ["cmd", "/c", "print", f"/d:{printer_name}", str(p)],
            timeout_seconds,
        ),
        CommandPrintStrategy(
            "copy_to_prn",
            lambda p: ["cmd", "/c", "copy", str(p), "PRN"],
            timeout_seconds,
        ),
        CommandPrintStrategy(
            "type_to_lpt1",
            lambda p: ["cmd", "/c", f'type "{p}" > LPT1:'],
            timeout_seconds,
        ),
        CommandPrintStrategy(
            "print_default",
            lambda p: ["cmd", "/c", "print", str(p)],
            timeout_seconds,
        ),
    ]
    return [*physical, AcknowledgePrintStrategy()]
