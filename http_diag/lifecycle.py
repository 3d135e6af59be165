"""Process lifecycle: working state setup and guaranteed teardown.

``LifecycleManager`` prepares the log and temp directories before any task
runs, drives the main coroutine under signal handlers, and performs the
cleanup exactly once whichever way the run ends: normal return, explicit
exit, ``stop`` log entry, signal delivery or interpreter shutdown.
"""

import asyncio
import atexit
import os
import shutil
import signal
import sys
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from rich.console import Console

from http_diag.config import RuntimeConfig
from http_diag.exceptions import ConfigurationError, FatalError
from http_diag.executor import CommandExecutor
from http_diag.logger import LogSink
from http_diag.models import ExitKind, ExitReason, Severity
from http_diag.output_buffer import ScanOutputBuffer
from http_diag.utils import ensure_directory

SOURCE = "lifecycle"

RECOGNISED_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")


class LifecycleState(Enum):
    """States of a diagnostic session."""
    UNINIT = "uninit"
    READY = "ready"
    RUNNING = "running"
    EXITING_CLEAN = "exiting_clean"
    EXITING_SIGNAL = "exiting_signal"
    TERMINATED = "terminated"


class LifecycleManager:
    """Owns process-wide setup and the single cleanup path."""

    def __init__(
        self,
        config: RuntimeConfig,
        sink: LogSink,
        buffer: ScanOutputBuffer,
        executor: Optional[CommandExecutor] = None,
        console: Optional[Console] = None,
    ) -> None:
        """Initialize the LifecycleManager.

        Args:
            config: Runtime configuration with the log and temp locations
            sink: Log sink receiving the session entries
            buffer: Scan output buffer emptied during cleanup
            executor: Executor whose in-flight child is stopped on cleanup
            console: Rich console whose cursor is hidden while running
        """
        self.config = config
        self.sink = sink
        self.buffer = buffer
        self.executor = executor
        self.console = console or Console()
        self.state = LifecycleState.UNINIT
        self._signal_reason: Optional[ExitReason] = None
        self._status: Optional[int] = None
        self._main_task: Optional[asyncio.Task] = None

    @property
    def exit_status(self) -> Optional[int]:
        """Status computed by cleanup, None until cleanup has run."""
        return self._status

    def before_init(self) -> None:
        """Create working directories and hide the cursor.

        The temp directory is wiped and recreated empty if it already exists.

        Raises:
            ConfigurationError: If either directory cannot be created.
        """
        if self.state != LifecycleState.UNINIT:
            raise RuntimeError(f"before_init called in state {self.state.value}")

        try:
            ensure_directory(self.config.log_dir)
            if self.config.temp_dir.exists():
                shutil.rmtree(self.config.temp_dir)
            ensure_directory(self.config.temp_dir)
        except OSError as e:
            raise ConfigurationError(f"Cannot prepare working directories: {e}") from e

        self.console.show_cursor(False)
        atexit.register(self._atexit_cleanup)

        self.state = LifecycleState.READY
        self.sink.head(SOURCE, f"session started in {self.config.work_dir} (pid {os.getpid()})")

    async def run(self, main: Callable[[], Awaitable[Optional[int]]]) -> int:
        """Run the main coroutine and clean up afterwards.

        Args:
            main: Coroutine factory returning the exit code (None means 0)

        Returns:
            The exit status computed by cleanup.
        """
        if self.state == LifecycleState.UNINIT:
            try:
                self.before_init()
            except ConfigurationError as e:
                try:
                    self.sink.stop(SOURCE, str(e))
                except FatalError as fatal:
                    return self.cleanup(ExitReason.normal(fatal.exit_code))

        loop = asyncio.get_running_loop()
        self._main_task = asyncio.current_task()
        installed = self._install_signal_handlers(loop)
        self.state = LifecycleState.RUNNING

        try:
            code = await main()
            reason = ExitReason.normal(code or 0)
        except FatalError as e:
            reason = ExitReason.normal(e.exit_code)
        except SystemExit as e:
            reason = ExitReason.normal(e.code if isinstance(e.code, int) else int(e.code is not None))
        except asyncio.CancelledError:
            reason = self._signal_reason or ExitReason.unknown()
            if self._main_task is not None and hasattr(self._main_task, "uncancel"):
                self._main_task.uncancel()
        except Exception as e:
            self.sink.warn(SOURCE, f"unexpected error: {type(e).__name__}: {e}")
            reason = ExitReason.unknown()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

        return self.cleanup(reason)

    def exit(self, code: int) -> None:
        """Request an explicit exit with ``code``."""
        raise SystemExit(code)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> List[signal.Signals]:
        installed: List[signal.Signals] = []
        if sys.platform == "win32":
            return installed

        for name in RECOGNISED_SIGNALS:
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            loop.add_signal_handler(sig, self.handle_signal, name)
            installed.append(sig)
        return installed

    def handle_signal(self, signal_name: str) -> None:
        """Record the signal and cancel the main task.

        Only the first signal counts; later ones are ignored so the cleanup
        path is entered once.
        """
        if self._signal_reason is not None:
            return
        self._signal_reason = ExitReason.signaled(signal_name)
        self.state = LifecycleState.EXITING_SIGNAL

        if self.executor is not None:
            self.executor.terminate_current()
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()

    def cleanup(self, reason: ExitReason) -> int:
        """Tear down the session and compute the exit status.

        Runs once; later calls return the first status without side effects.

        Args:
            reason: Why the session is ending

        Returns:
            Exit status for the process.
        """
        if self._status is not None:
            return self._status
        self._status = reason.status

        if reason.kind == ExitKind.SIGNALED:
            self.state = LifecycleState.EXITING_SIGNAL
        else:
            self.state = LifecycleState.EXITING_CLEAN

        if self.executor is not None:
            self.executor.terminate_current()

        self.console.show_cursor(True)
        self.buffer.truncate()
        shutil.rmtree(self.config.temp_dir, ignore_errors=True)

        detail = f" ({reason.signal_name})" if reason.signal_name else ""
        severity = Severity.INFO if self._status == 0 else Severity.WARN
        self.sink.log(
            severity,
            SOURCE,
            f"session finished: {reason.kind.value}{detail}, exit status {self._status}",
        )
        self.sink.close()

        atexit.unregister(self._atexit_cleanup)
        self.state = LifecycleState.TERMINATED
        return self._status

    def _atexit_cleanup(self) -> None:
        self.cleanup(self._signal_reason or ExitReason.unknown())
