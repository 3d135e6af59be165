"""Exception classes for diagnostic workflow operations.

This module defines the exception hierarchy used throughout the http_diag
package. Every exception carries the process exit code the top-level driver
uses when the error ends the run.
"""

EXIT_UNKNOWN = 254
EXIT_FATAL = 255


class DiagWorkflowError(Exception):
    """Base exception for all diagnostic workflow operations.

    This is the base class for all exceptions raised by the http_diag
    package. All other exceptions in this module inherit from this class.
    """
    exit_code = EXIT_FATAL


class FatalError(DiagWorkflowError):
    """Raised after a ``stop`` severity entry has been written to the log.

    The log sink raises this instead of exiting the process itself, so the
    abort path stays explicit: only the lifecycle driver turns it into an
    exit status.
    """

    def __init__(self, message: str, exit_code: int = EXIT_FATAL) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class DefinitionError(FatalError):
    """Raised when a task definition cannot be turned into a step list.

    Covers handlers that raise while being evaluated and handlers that
    produce a different number of messages and commands.
    """
    pass


class ConfigurationError(DiagWorkflowError):
    """Raised when a settings file is missing, unreadable or malformed."""
    pass


class TaskNotFoundError(DiagWorkflowError):
    """Raised when a task name is not present in the task registry."""
    pass
