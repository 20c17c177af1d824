"""Console output for rowbind: status messages, debug chatter and SQL statement echo."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.theme import Theme

_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "debug": "dim",
        "sql": "magenta",
    }
)

# stdout carries rendered payloads (tables, JSON); stderr carries log chatter.
# Highlighting stays off so numbers and punctuation inside SQL text are not restyled.
_stdout_console = Console(theme=_THEME, highlight=False)
_stderr_console = Console(stderr=True, theme=_THEME, highlight=False)


@dataclass(slots=True)
class Logger:
    """Writes rowbind messages to stderr; ``console`` is the stdout sink for renderers.

    Every message is printed with markup disabled, since table names, column values
    and SQL routinely contain square brackets.
    """

    verbose: bool = False

    @property
    def console(self) -> Console:
        return _stdout_console

    def _emit(self, message: str, style: str) -> None:
        _stderr_console.print(message, style=style, markup=False)

    def info(self, message: str) -> None:
        self._emit(message, "info")

    def success(self, message: str) -> None:
        self._emit(message, "success")

    def warning(self, message: str) -> None:
        self._emit(message, "warning")

    def error(self, message: str) -> None:
        self._emit(message, "error")

    def debug(self, message: str) -> None:
        if self.verbose:
            self._emit(message, "debug")

    def query(self, sql: str, affected: int | None = None) -> None:
        """Echo an executed statement with its affected-row count; verbose only."""
        if not self.verbose:
            return
        suffix = "" if affected is None else f"  -- {affected} row(s)"
        self._emit(f"{sql}{suffix}", "sql")


def get_logger(verbose: bool = False) -> Logger:
    return Logger(verbose=verbose)
