"""Command line interface for the HTTP diagnostic workflow.

This module provides the ``http-diag`` entry point using the Click
framework. It resolves the runtime configuration, picks the task
definitions selected by flags and hands them to the task runner under the
lifecycle manager.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import click
from rich.console import Console
from rich.table import Table

from http_diag import __version__
from http_diag import tasks as builtin_tasks
from http_diag.config import RuntimeConfig
from http_diag.exceptions import ConfigurationError, FatalError
from http_diag.executor import CommandExecutor
from http_diag.formatter import OutputFormatter
from http_diag.lifecycle import LifecycleManager
from http_diag.logger import LogSink
from http_diag.output_buffer import ScanOutputBuffer
from http_diag.registry import TaskContext, TaskRegistry, registry
from http_diag.task_runner import TaskRunner

EXAMPLES = """\
  http-diag -u https://example.com --http2
  http-diag -u https://example.com --testssl --ssllabs
  http-diag -u https://example.com -H 'Accept: text/html' --waf --mixed-content
  http-diag -u example.com --dns --nse -i eth0
  http-diag -u https://example.com --all-scans --retries 1 --timeout 120
  HTTP_DIAG_MAX_WIDTH=100 http-diag -u https://example.com --observatory -v
"""

TASK_FLAGS = (
    ("testssl", "testssl"),
    ("observatory", "observatory"),
    ("ssllabs", "ssllabs"),
    ("mixed_content", "mixed-content"),
    ("nse", "nse"),
    ("waf", "waf"),
    ("dns", "dns"),
    ("http2", "http2"),
)


def selected_tasks(flags: dict, all_scans: bool) -> List[str]:
    """Map task flags to registered task names, in a stable order."""
    if all_scans:
        return list(builtin_tasks.ALL_SCANS)
    return [name for flag, name in TASK_FLAGS if flags.get(flag)]


async def run_session(
    config: RuntimeConfig,
    context: TaskContext,
    task_names: Sequence[str],
    console: Optional[Console] = None,
    task_registry: Optional[TaskRegistry] = None,
) -> int:
    """Wire the components together and run the selected tasks.

    Args:
        config: Resolved runtime configuration
        context: Request options for the task definitions
        task_names: Task names to run, in order
        console: Rich console for terminal output
        task_registry: Registry to resolve names against

    Returns:
        Process exit status computed by the lifecycle manager.
    """
    console = console or Console(no_color=not config.color)
    sink = LogSink(config, console=Console(stderr=True, no_color=not config.color))
    buffer = ScanOutputBuffer(config.buffer_path)
    formatter = OutputFormatter(config, sink, console)
    executor = CommandExecutor(config, sink, formatter)
    runner = TaskRunner(config, sink, formatter, executor, buffer, task_registry or registry)
    lifecycle = LifecycleManager(config, sink, buffer, executor, console)

    async def main() -> int:
        results = await runner.run_tasks(task_names, context)
        failed = sum(r.failed for r in results)
        if failed:
            sink.warn("cli", f"{failed} step(s) failed across {len(results)} task(s)")
        return 0

    return await lifecycle.run(main)


def _abort_on_configuration_error(error: ConfigurationError) -> None:
    """Escalate a configuration error through a ``stop`` log entry."""
    config = RuntimeConfig.for_reporting()
    sink = LogSink(config, console=Console(stderr=True, no_color=not config.color))
    try:
        sink.stop("config", str(error))
    except FatalError as fatal:
        sink.close()
        sys.exit(fatal.exit_code)


def _print_task_list(console: Console) -> None:
    table = Table(title="Available scans", show_header=True, header_style="bold cyan")
    table.add_column("Task")
    table.add_column("Description", style="dim")
    for name, description in registry.describe():
        table.add_row(name, description)
    console.print(table)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option('-u', '--url', default=None, help='Target URL (scheme optional)')
@click.option('-m', '--method', default='GET', show_default=True, help='HTTP request method')
@click.option('-H', '--header', 'headers', multiple=True, help='Extra request header, repeatable')
@click.option('-p', '--proxy', default=None, help='Proxy URL passed to tools that support it')
@click.option('-i', '--interface', default=None, help='Network interface for raw probes')
@click.option('--user-agent', default=None, help='User-Agent header for request based scans')
@click.option('--testssl', is_flag=True, help='Run testssl.sh TLS/SSL scan')
@click.option('--observatory', is_flag=True, help='Run Mozilla Observatory report')
@click.option('--ssllabs', is_flag=True, help='Run Qualys SSL Labs grade')
@click.option('--mixed-content', 'mixed_content', is_flag=True, help='Scan for mixed content')
@click.option('--nse', is_flag=True, help='Run Nmap NSE web scripts')
@click.option('--waf', is_flag=True, help='Detect a web application firewall')
@click.option('--dns', is_flag=True, help='Enumerate DNS records')
@click.option('--http2', is_flag=True, help='Probe HTTP/2 support')
@click.option('--all-scans', is_flag=True, help='Run every scan')
@click.option('--retries', type=click.IntRange(min=1), default=None, help='Attempts per step (default 3)')
@click.option('--timeout', type=click.FloatRange(min=0, min_open=True), default=None,
              help='Per-attempt command timeout in seconds')
@click.option('--config', 'config_file', type=click.Path(path_type=Path), default=None,
              help='YAML settings file')
@click.option('-v', '--verbose', is_flag=True, help='Echo log entries to the terminal')
@click.option('-d', '--debug', is_flag=True, help='Plain log output instead of formatted results')
@click.option('--no-color', is_flag=True, help='Disable colored output')
@click.option('--examples', is_flag=True, help='Show usage examples and exit')
@click.option('--list-tasks', is_flag=True, help='List available scans and exit')
@click.version_option(version=__version__, prog_name="http-diag")
def main(
    url: Optional[str],
    method: str,
    headers: Tuple[str, ...],
    proxy: Optional[str],
    interface: Optional[str],
    user_agent: Optional[str],
    all_scans: bool,
    retries: Optional[int],
    timeout: Optional[float],
    config_file: Optional[Path],
    verbose: bool,
    debug: bool,
    no_color: bool,
    examples: bool,
    list_tasks: bool,
    **task_flags: bool,
) -> None:
    """HTTP diagnostic workflow - run network and security checks against a host.

    Each selected scan runs its external tool(s) in sequence, retrying failed
    steps, and prints the cleaned-up output. Exit status is 0 when the run
    completes (even if some steps failed), 255 on a fatal error or signal and
    254 on an unexpected termination.
    """
    console = Console(no_color=no_color)

    if examples:
        console.print("[bold cyan]Examples:[/bold cyan]")
        console.print(EXAMPLES, markup=False, highlight=False)
        return

    if list_tasks:
        _print_task_list(console)
        return

    if not url:
        raise click.UsageError("Missing option '-u' / '--url'.")

    names = selected_tasks(task_flags, all_scans)
    if not names:
        raise click.UsageError("No scan selected. Use --all-scans or one of the scan flags.")

    try:
        config = RuntimeConfig.from_env(config_file=config_file)
    except ConfigurationError as e:
        _abort_on_configuration_error(e)
        return

    config = config.with_overrides(
        verbose=verbose or None,
        debug=debug or None,
        color=False if no_color else None,
        max_attempts=retries,
        command_timeout=timeout,
    )
    context = TaskContext(
        config=config,
        url=url,
        method=method,
        headers=tuple(headers),
        proxy=proxy,
        interface=interface,
        user_agent=user_agent,
    )
    if not context.host:
        raise click.BadParameter(f"cannot determine a host from '{url}'", param_hint="--url")

    console = Console(no_color=not config.color)
    status = asyncio.run(run_session(config, context, names, console))
    sys.exit(status)


if __name__ == "__main__":
    main()
