"""Data models for task evaluation, command execution and process exit.

This module defines the core data structures shared by the task runner,
executor, formatter and lifecycle manager. Follows the dataclass and enum
based modelling used across the project.
"""

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from http_diag.exceptions import EXIT_FATAL, EXIT_UNKNOWN, DefinitionError


class Severity(Enum):
    """Severity of a log entry.

    INFO: Routine progress (attempt started, result)
    HEAD: Section headers such as a step announcement
    WARN: Recoverable problems, e.g. a step that exhausted its retries
    STOP: Unrecoverable condition, the run is aborted after it is written
    """
    INFO = "info"
    HEAD = "head"
    WARN = "warn"
    STOP = "stop"


class ScanType(Enum):
    """Whether a step talks to the target directly or via a third party."""
    ACTIVE = "active"
    PASSIVE = "passive"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "ScanType | str | None") -> "ScanType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class FailureReason(Enum):
    """Why an attempt was classified as failed.

    Recorded for reporting only; the retry policy treats all of them alike.
    """
    EXIT_STATUS = "exit_status"
    SPAWN_ERROR = "spawn_error"
    TIMEOUT = "timeout"
    SIGNALED = "signaled"


@dataclass(frozen=True)
class Step:
    """One (message, command) pair executed and reported as a unit."""
    message: str
    command: str

    @property
    def title(self) -> str:
        return self.message.split(":", 1)[0]

    @property
    def detail(self) -> str:
        parts = self.message.split(":", 1)
        return parts[1] if len(parts) > 1 else ""


@dataclass
class StepList:
    """Ordered display messages and their shell commands.

    Returned by evaluating a task definition. A fresh instance is created for
    every evaluation so one task never sees another task's steps.
    """
    messages: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    scan_type: ScanType = ScanType.UNKNOWN
    host: str = ""

    def add(self, message: str, command: str) -> "StepList":
        """Append a step and return self so calls can be chained."""
        self.messages.append(message)
        self.commands.append(command)
        return self

    def validate(self) -> None:
        """Check that messages and commands pair up.

        Raises:
            DefinitionError: If the two sequences differ in length.
        """
        if len(self.messages) != len(self.commands):
            raise DefinitionError(
                f"task definition produced {len(self.messages)} message(s) "
                f"but {len(self.commands)} command(s)"
            )

    def __len__(self) -> int:
        return len(self.commands)

    def __iter__(self) -> Iterator[Step]:
        for message, command in zip(self.messages, self.commands):
            yield Step(message=message, command=command)


@dataclass
class ExecutionAttempt:
    """A single launch of a step's command."""
    command: str
    attempt_number: int
    pid: int | None = None
    succeeded: bool = False
    returncode: int | None = None
    failure_reason: FailureReason | None = None
    error_message: str | None = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    def mark_completed(self, returncode: int | None, reason: FailureReason | None = None,
                       error_message: str | None = None) -> None:
        """Classify the attempt once the process is gone.

        Args:
            returncode: Exit status reported by the process, None if it never ran
            reason: Failure reason to record when the attempt did not succeed
            error_message: Optional detail, e.g. the spawn error text
        """
        self.end_time = time.time()
        self.returncode = returncode
        self.succeeded = reason is None and returncode == 0
        if not self.succeeded:
            if reason is None:
                reason = FailureReason.SIGNALED if returncode is not None and returncode < 0 \
                    else FailureReason.EXIT_STATUS
            self.failure_reason = reason
            self.error_message = error_message

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time


@dataclass
class ExecutionResult:
    """Outcome of the retry loop for one step."""
    command: str
    attempts: list[ExecutionAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].succeeded

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> ExecutionAttempt | None:
        return self.attempts[-1] if self.attempts else None


@dataclass
class StepResult:
    """Result of running one step of a task."""
    index: int
    step: Step
    execution: ExecutionResult

    @property
    def succeeded(self) -> bool:
        return self.execution.succeeded


@dataclass
class TaskRunResult:
    """Summary of one task definition run.

    Step failures are soft: they are counted and reported but never turn
    into a non-zero exit code on their own.
    """
    task_name: str
    scan_type: ScanType = ScanType.UNKNOWN
    host: str = ""
    step_results: list[StepResult] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    def add_step_result(self, result: StepResult) -> None:
        self.step_results.append(result)

    def finalize(self) -> None:
        self.end_time = time.time()

    @property
    def total_steps(self) -> int:
        return len(self.step_results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.step_results if r.succeeded)

    @property
    def failed(self) -> int:
        return self.total_steps - self.passed

    @property
    def execution_time(self) -> float:
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    @property
    def exit_code(self) -> int:
        return 0


class ExitKind(Enum):
    """How the process is leaving the RUNNING state."""
    NORMAL = "normal"
    SIGNALED = "signaled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExitReason:
    """Typed reason consumed once by lifecycle cleanup."""
    kind: ExitKind
    code: int | None = None
    signal_name: str | None = None

    @classmethod
    def normal(cls, code: int = 0) -> "ExitReason":
        return cls(kind=ExitKind.NORMAL, code=code)

    @classmethod
    def signaled(cls, signal_name: str) -> "ExitReason":
        return cls(kind=ExitKind.SIGNALED, signal_name=signal_name)

    @classmethod
    def unknown(cls) -> "ExitReason":
        return cls(kind=ExitKind.UNKNOWN)

    @property
    def status(self) -> int:
        """Exit status for the process.

        An explicit code wins; a recognised signal maps to 255 and anything
        else to 254.
        """
        if self.code is not None:
            return self.code
        if self.kind == ExitKind.SIGNALED:
            return EXIT_FATAL
        return EXIT_UNKNOWN
