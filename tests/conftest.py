"""Shared test fixtures."""

import io
from pathlib import Path

import pytest
from rich.console import Console

from http_diag.config import RuntimeConfig
from http_diag.executor import CommandExecutor
from http_diag.formatter import OutputFormatter
from http_diag.logger import LogSink
from http_diag.output_buffer import ScanOutputBuffer
from http_diag.registry import TaskContext, TaskRegistry
from http_diag.task_runner import TaskRunner


def make_console(terminal: bool = False) -> Console:
    return Console(file=io.StringIO(), width=100, no_color=True, force_terminal=terminal)


def console_text(console: Console) -> str:
    return console.file.getvalue()


def read_log(config: RuntimeConfig) -> list[str]:
    path = Path(config.log_path)
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


@pytest.fixture()
def config(tmp_path):
    return RuntimeConfig(work_dir=tmp_path, max_width=80, poll_interval=0.01, max_attempts=3)


@pytest.fixture()
def console():
    return make_console()


@pytest.fixture()
def sink(config, console):
    log_sink = LogSink(config, console=console)
    yield log_sink
    log_sink.close()


@pytest.fixture()
def buffer(config):
    return ScanOutputBuffer(config.buffer_path)


@pytest.fixture()
def formatter(config, sink, console):
    return OutputFormatter(config, sink, console)


@pytest.fixture()
def executor(config, sink, formatter):
    return CommandExecutor(config, sink, formatter)


@pytest.fixture()
def task_registry():
    return TaskRegistry()


@pytest.fixture()
def runner(config, sink, formatter, executor, buffer, task_registry):
    return TaskRunner(config, sink, formatter, executor, buffer, task_registry)


@pytest.fixture()
def context(config):
    return TaskContext(config=config, url="https://nghttp2.org/")
