"""
Operator status lines, printed around (and during) the interactive ssh session
"""

from datetime import datetime
from enum import IntEnum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

F = TypeVar("F", bound=Callable[..., Any])

THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red",
        "debug": "dim purple",
        "timestamp": "dim cyan",
    }
)


class LogLevel(IntEnum):
    ERROR = 0
    WARNING = 1
    INFO = 2
    DEBUG = 3


class BaseLogger:
    """Base logger class."""

    def __init__(self) -> None:
        self.verbosity = LogLevel.INFO

    def set_verbosity(self, level: int) -> None:
        self.verbosity = LogLevel(max(LogLevel.ERROR, min(LogLevel.DEBUG, level)))

    def _should_log(self, level: LogLevel) -> bool:
        return self.verbosity >= level

    @staticmethod
    def should_log(level: LogLevel) -> Callable[[F], F]:
        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseLogger", *args: Any, **kwargs: Any) -> Any:
                if self._should_log(level):
                    return func(self, *args, **kwargs)
                return None

            return wrapper  # type: ignore

        return decorator


class Logger(BaseLogger):
    """Rich status lines for ssh-agent-download.

    Lines go to stderr, one per message: ssh shares the terminal and its
    stdout belongs to the remote session.
    """

    _instance: Optional["Logger"] = None

    def __new__(cls) -> "Logger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, "console"):
            super().__init__()
            self.console = Console(theme=THEME, stderr=True, highlight=False)

    def _line(self, icon: str, message: str, style: Optional[str] = None) -> None:
        timestamp = Text(f"[{datetime.now().strftime('%H:%M:%S')}]", style="timestamp")
        self.console.print(timestamp, Text(icon, style=style or ""), Text(message, style=style or ""))

    @BaseLogger.should_log(LogLevel.INFO)
    def success(self, message: str) -> None:
        self._line("✅ ", message, "success")

    @BaseLogger.should_log(LogLevel.INFO)
    def info(self, message: str) -> None:
        self._line("ℹ️ ", message)

    @BaseLogger.should_log(LogLevel.WARNING)
    def warning(self, message: str) -> None:
        self._line("⚠️ ", message, "warning")

    @BaseLogger.should_log(LogLevel.ERROR)
    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        """Log an error, followed by the exception that caused it if given"""
        self._line("❌ ", message, "error")

        if exc:
            self.console.print(
                Text("   ↳ ", style="error"),
                Text(f"{exc.__class__.__name__}: {exc!s}", style="error"),
            )

    @BaseLogger.should_log(LogLevel.DEBUG)
    def debug(self, message: str) -> None:
        self._line("🐞 ", message, "debug")


logger = Logger()
