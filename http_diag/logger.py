"""Severity-tagged log sink for diagnostic runs.

Entries are appended to a single log file through the module logger and,
in verbose or debug mode, echoed to the terminal with rich.
A ``stop`` entry is written and flushed before ``FatalError`` is raised.
"""

import logging
from datetime import datetime

from rich.console import Console
from rich.markup import escape

from http_diag.config import RuntimeConfig
from http_diag.exceptions import FatalError
from http_diag.models import Severity
from http_diag.utils import ensure_directory

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.HEAD: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.STOP: logging.CRITICAL,
}

STYLES = {
    Severity.INFO: "dim",
    Severity.HEAD: "bold",
    Severity.WARN: "yellow",
    Severity.STOP: "bold white on red",
}

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)
logger.propagate = False


def format_entry(timestamp: datetime, source: str, severity: Severity, message: str) -> str:
    """Render a log entry as ``timestamp  source:  [SEVERITY] message``."""
    return f"{timestamp.strftime(TIMESTAMP_FORMAT)}  {source}:  [{severity.value.upper()}] {message}"


class EntryFormatter(logging.Formatter):
    """Formatter producing the fixed log entry layout."""

    def format(self, record: logging.LogRecord) -> str:
        return format_entry(
            datetime.fromtimestamp(record.created),
            getattr(record, "source", record.name),
            getattr(record, "severity", Severity.INFO),
            record.getMessage(),
        )


class ConsoleEchoHandler(logging.Handler):
    """Logging handler that echoes entries to a rich console."""

    def __init__(self, console: Console) -> None:
        super().__init__()
        self.console = console
        self.setFormatter(EntryFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            severity = getattr(record, "severity", Severity.INFO)
            self.console.print(escape(self.format(record)), style=STYLES[severity], highlight=False)
        except Exception:
            self.handleError(record)


class LogSink:
    """Append-only, severity-tagged log writer.

    All sinks share the module logger; each sink attaches its own handlers
    and tags its records so a handler only emits entries from its owner.
    The log directory is created lazily before the first write. If the log
    file cannot be opened, entries fall back to the terminal. In verbose or
    debug mode every entry is also echoed to the terminal; ``stop`` entries
    are always echoed since they end the run.
    """

    def __init__(self, config: RuntimeConfig, console: Console | None = None) -> None:
        """Initialize the LogSink.

        Args:
            config: Runtime configuration holding the log location and mode
            console: Rich console used for terminal echo
        """
        self.config = config
        self.console = console or Console(stderr=True)
        self._file_handler: logging.FileHandler | None = None
        self._file_error: OSError | None = None
        self._echo_handler: ConsoleEchoHandler | None = None
        if config.echo_logs:
            self._add_echo_handler()

    def _owns(self, record: logging.LogRecord) -> bool:
        return getattr(record, "sink", None) is self

    def _attach(self, handler: logging.Handler) -> None:
        handler.addFilter(self._owns)
        logger.addHandler(handler)

    def _add_echo_handler(self) -> ConsoleEchoHandler:
        self._echo_handler = ConsoleEchoHandler(self.console)
        self._attach(self._echo_handler)
        return self._echo_handler

    def _ensure_file_handler(self) -> logging.FileHandler | None:
        if self._file_handler is None and self._file_error is None:
            try:
                ensure_directory(self.config.log_dir)
                handler = logging.FileHandler(self.config.log_path, mode="a", encoding="utf-8")
            except OSError as e:
                self._file_error = e
                if self._echo_handler is None:
                    self._add_echo_handler()
                return None
            handler.setFormatter(EntryFormatter())
            self._attach(handler)
            self._file_handler = handler
        return self._file_handler

    @property
    def file_error(self) -> OSError | None:
        """Error raised opening the log file, None while the file is usable."""
        return self._file_error

    def log(
        self,
        severity: Severity | str,
        source: str,
        message: str,
        error: type[FatalError] = FatalError,
    ) -> None:
        """Append an entry to the log.

        Args:
            severity: Entry severity, as enum or its string value
            source: Name of the component writing the entry
            message: Entry text
            error: Exception class raised for a ``stop`` entry

        Raises:
            FatalError: After the entry is written, if severity is ``stop``.
        """
        severity = Severity(severity)
        file_handler = self._ensure_file_handler()

        logger.log(
            LEVELS[severity],
            message,
            extra={"source": source, "severity": severity, "sink": self},
        )

        if severity == Severity.STOP:
            if file_handler is not None:
                file_handler.flush()
            if self._echo_handler is None:
                record = logging.LogRecord(
                    logger.name, logging.CRITICAL, __file__, 0, message, None, None
                )
                record.source = source
                record.severity = severity
                ConsoleEchoHandler(self.console).emit(record)
            raise error(message)

    def info(self, source: str, message: str) -> None:
        self.log(Severity.INFO, source, message)

    def head(self, source: str, message: str) -> None:
        self.log(Severity.HEAD, source, message)

    def warn(self, source: str, message: str) -> None:
        self.log(Severity.WARN, source, message)

    def stop(self, source: str, message: str, error: type[FatalError] = FatalError) -> None:
        self.log(Severity.STOP, source, message, error)

    def close(self) -> None:
        """Flush and detach this sink's handlers."""
        for handler in (self._file_handler, self._echo_handler):
            if handler is None:
                continue
            handler.flush()
            handler.close()
            logger.removeHandler(handler)
        self._file_handler = None
        self._echo_handler = None
