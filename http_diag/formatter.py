"""Terminal rendering for step headers, tool output and run summaries.

The formatter announces each step, shows a liveness spinner while the
step's command runs, and drains the scan output buffer into wrapped,
indented lines. In debug mode it routes everything through the log sink
instead of drawing styled output.
"""

import asyncio
import os
import textwrap

from rich.console import Console
from rich.status import Status
from rich.table import Table
from rich.text import Text

from http_diag.config import RuntimeConfig
from http_diag.logger import LogSink
from http_diag.models import ScanType, StepResult, TaskRunResult
from http_diag.output_buffer import ScanOutputBuffer
from http_diag.utils import redact_addresses, strip_ansi

INDENT_MARKER = "  │ "

SOURCE = "formatter"

BADGES = {
    ScanType.ACTIVE: ("active", "bold white on red"),
    ScanType.PASSIVE: ("passive", "bold black on green"),
    ScanType.UNKNOWN: ("unknown", "bold white on grey37"),
}


def pid_alive(pid: int) -> bool:
    """Check whether a process id is still present in the process table."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def format_output(raw: str, width: int, redact: list[str] | None = None) -> list[str]:
    """Turn raw tool output into display lines.

    ANSI sequences and carriage returns are stripped, blank lines dropped,
    and every remaining line is prefixed with the indent marker and wrapped
    so that marker plus text fit in ``width`` columns.

    Args:
        raw: Raw combined stdout/stderr of a command
        width: Maximum display width
        redact: Addresses to mask in the output

    Returns:
        Lines ready to print, without trailing newlines.
    """
    text_width = max(10, width - len(INDENT_MARKER))
    lines: list[str] = []

    for line in strip_ansi(raw).split("\n"):
        line = line.rstrip()
        if not line.strip():
            continue
        if redact:
            line = redact_addresses(line, redact)
        for chunk in textwrap.wrap(line, width=text_width, break_on_hyphens=False) or [line]:
            lines.append(f"{INDENT_MARKER}{chunk}")

    return lines


class OutputFormatter:
    """Renders step announcements, spinner and buffered command output."""

    def __init__(self, config: RuntimeConfig, sink: LogSink, console: Console | None = None) -> None:
        """Initialize the OutputFormatter.

        Args:
            config: Runtime configuration (width, debug mode, redaction)
            sink: Log sink used in debug mode
            console: Rich console for output formatting
        """
        self.config = config
        self.sink = sink
        self.console = console or Console()

    def announce(self, title: str, detail: str, scan_type: ScanType | str, host: str) -> None:
        """Print the header for a step before its command runs."""
        scan_type = ScanType.parse(scan_type)

        if self.config.debug:
            suffix = f": {detail}" if detail else ""
            self.sink.head(SOURCE, f"{title}{suffix} [{scan_type.value}] {host}".rstrip())
            return

        label, style = BADGES[scan_type]
        header = Text()
        header.append(f" {label} ", style=style)
        header.append(" ")
        header.append(title, style="bold cyan")
        if detail:
            header.append(f"  {detail}", style="dim")
        if host:
            header.append("  ▸ ", style="dim")
            header.append(host, style="blue")

        self.console.print()
        self.console.print(header, overflow="fold")

    async def spin(self, pid: int) -> None:
        """Show a rotating indicator while ``pid`` is alive.

        Polls the process table every ``poll_interval`` seconds and returns
        as soon as the pid disappears. Cancelling the coroutine clears the
        indicator; the supervised process is never touched.
        """
        status: Status | None = None
        if self.console.is_terminal and not self.config.debug:
            status = self.console.status(f"[dim]pid {pid}[/dim]", spinner="line")
            status.start()
        try:
            while pid_alive(pid):
                await asyncio.sleep(self.config.poll_interval)
        finally:
            if status is not None:
                status.stop()

    async def flush(self, buffer: ScanOutputBuffer) -> list[str]:
        """Drain the scan output buffer to the terminal.

        In debug mode the raw lines are passed to the log sink instead and
        nothing is rendered. Either way the buffer is empty afterwards.

        Returns:
            The lines that were printed or logged.
        """
        raw = await buffer.read()
        try:
            if self.config.debug:
                lines = [line for line in strip_ansi(raw).split("\n") if line.strip()]
                for line in lines:
                    self.sink.info("output", line.rstrip())
                return lines

            redact = self.config.source_addresses if self.config.hide_source_ip else None
            lines = format_output(raw, self.config.max_width, redact)
            for line in lines:
                self.console.print(line, markup=False, highlight=False, soft_wrap=True)
            return lines
        finally:
            buffer.truncate()

    def report_result(self, result: StepResult) -> None:
        """Print a pass or fail marker for a finished step."""
        if self.config.debug:
            return

        execution = result.execution
        if execution.succeeded:
            self.console.print(f"  [green]✓ pass[/green] [dim]({execution.attempts_used} attempt(s))[/dim]")
            return

        last = execution.last_attempt
        reason = last.failure_reason.value if last and last.failure_reason else "fail"
        code = f", exit {last.returncode}" if last and last.returncode is not None else ""
        self.console.print(
            f"  [red]✗ fail[/red] [dim]({execution.attempts_used} attempt(s), {reason}{code})[/dim]"
        )

    def report_summary(self, result: TaskRunResult) -> None:
        """Print a per-task summary table."""
        if self.config.debug or result.total_steps == 0:
            return

        table = Table(title=f"{result.task_name} summary", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Step")
        table.add_column("Result", justify="center")
        table.add_column("Attempts", justify="right")

        for step_result in result.step_results:
            status = "[green]pass[/green]" if step_result.succeeded else "[red]fail[/red]"
            table.add_row(
                str(step_result.index + 1),
                step_result.step.title,
                status,
                str(step_result.execution.attempts_used),
            )

        self.console.print()
        self.console.print(table)
        self.console.print(
            f"[dim]{result.passed}/{result.total_steps} step(s) passed "
            f"in {result.execution_time:.1f}s[/dim]"
        )
