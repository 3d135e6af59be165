"""Background command execution with bounded retries.

The executor launches one shell command at a time, redirects its combined
output into the scan output buffer, drives the formatter's liveness
spinner from the child's pid, and retries failed attempts up to a fixed
count. Retries are immediate and every failure cause counts the same.
"""

import asyncio
import os
import signal
import subprocess
from contextlib import suppress

from http_diag.config import RuntimeConfig
from http_diag.formatter import OutputFormatter
from http_diag.logger import LogSink
from http_diag.models import ExecutionAttempt, ExecutionResult, FailureReason
from http_diag.output_buffer import ScanOutputBuffer

SOURCE = "executor"

TERMINATE_GRACE_SECONDS = 5.0
KILL_GRACE_SECONDS = 2.0


class CommandExecutor:
    """Runs a step's command, retrying on failure.

    Only one child process exists at any time. It is exposed as
    ``current_process`` so lifecycle cleanup can stop it when the run is
    interrupted.
    """

    def __init__(self, config: RuntimeConfig, sink: LogSink, formatter: OutputFormatter) -> None:
        """Initialize CommandExecutor.

        Args:
            config: Runtime configuration (attempt ceiling, timeout, environment)
            sink: Log sink for attempt and result entries
            formatter: Formatter driving the liveness spinner
        """
        self.config = config
        self.sink = sink
        self.formatter = formatter
        self.current_process: asyncio.subprocess.Process | None = None

    async def run_with_retry(
        self,
        command: str,
        buffer: ScanOutputBuffer,
        max_attempts: int | None = None,
    ) -> ExecutionResult:
        """Run a command until it exits zero or the attempts run out.

        Args:
            command: Shell command to execute
            buffer: Scan output buffer receiving stdout and stderr
            max_attempts: Attempt ceiling, defaults to the configured value

        Returns:
            ExecutionResult with one ExecutionAttempt per launch. Exhausting
            the attempts is reported through the result, never raised.
        """
        if max_attempts is None:
            max_attempts = self.config.max_attempts
        max_attempts = max(1, max_attempts)

        result = ExecutionResult(command=command)

        for number in range(1, max_attempts + 1):
            self.sink.info(SOURCE, f"attempt {number}/{max_attempts}: {command}")

            attempt = await self._run_attempt(command, number, buffer)
            result.attempts.append(attempt)

            if attempt.succeeded:
                self.sink.info(SOURCE, "result: pass")
                break

            self.sink.info(SOURCE, "result: fail")

        return result

    async def _run_attempt(self, command: str, number: int, buffer: ScanOutputBuffer) -> ExecutionAttempt:
        """Launch the command once and classify the outcome."""
        attempt = ExecutionAttempt(command=command, attempt_number=number)

        handle = buffer.open_for_command()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=subprocess.DEVNULL,
                stdout=handle,
                stderr=subprocess.STDOUT,
                cwd=self.config.work_dir,
                env=self.config.environment(),
                start_new_session=True,
            )
        except OSError as e:
            attempt.mark_completed(None, FailureReason.SPAWN_ERROR, str(e))
            return attempt
        finally:
            handle.close()

        self.current_process = process
        attempt.pid = process.pid
        spinner = asyncio.create_task(self.formatter.spin(process.pid))

        try:
            if self.config.command_timeout:
                try:
                    returncode = await asyncio.wait_for(process.wait(), self.config.command_timeout)
                except asyncio.TimeoutError:
                    await self._terminate_process(process)
                    attempt.mark_completed(
                        process.returncode,
                        FailureReason.TIMEOUT,
                        f"timed out after {self.config.command_timeout:g}s",
                    )
                    return attempt
            else:
                returncode = await process.wait()
        finally:
            # Interrupted while waiting: stop and reap the child
            if process.returncode is None:
                await self._terminate_process(process)
            spinner.cancel()
            with suppress(asyncio.CancelledError):
                await spinner
            self.current_process = None

        attempt.mark_completed(returncode)
        return attempt

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Gracefully terminate a child and its process group.

        Args:
            process: The process to terminate
        """
        if process.returncode is not None:
            return

        _signal_group(process.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            # Force kill if graceful termination fails
            _signal_group(process.pid, signal.SIGKILL)
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)

    def terminate_current(self) -> bool:
        """Send SIGTERM to the in-flight child, if any.

        Synchronous so it can run from cleanup paths outside the event loop.

        Returns:
            True if a running child was signalled.
        """
        process = self.current_process
        if process is None or process.returncode is not None:
            return False
        return _signal_group(process.pid, signal.SIGTERM)


def _signal_group(pid: int, sig: signal.Signals) -> bool:
    """Signal the process group led by ``pid``, falling back to the pid."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(pid, sig)
        else:
            os.kill(pid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        return False
    return True
