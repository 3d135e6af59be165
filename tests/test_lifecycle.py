import asyncio

import pytest

from conftest import console_text, make_console, read_log
from http_diag.exceptions import FatalError
from http_diag.executor import CommandExecutor
from http_diag.formatter import OutputFormatter, pid_alive
from http_diag.lifecycle import LifecycleManager, LifecycleState
from http_diag.logger import LogSink
from http_diag.models import ExitReason
from http_diag.output_buffer import ScanOutputBuffer

SHOW_CURSOR = "\x1b[?25h"
HIDE_CURSOR = "\x1b[?25l"


@pytest.fixture()
def terminal():
    return make_console(terminal=True)


@pytest.fixture()
def lifecycle(config, sink, buffer, executor, terminal):
    return LifecycleManager(config, sink, buffer, executor, terminal)


def _finished_entries(config) -> list[str]:
    return [line for line in read_log(config) if "session finished" in line]


def test_before_init_prepares_directories(config, lifecycle, terminal) -> None:
    config.temp_dir.mkdir(parents=True)
    stale = config.temp_dir / "stale.txt"
    stale.write_text("left over")

    lifecycle.before_init()

    assert lifecycle.state is LifecycleState.READY
    assert config.log_dir.is_dir()
    assert config.temp_dir.is_dir()
    assert not stale.exists()
    assert HIDE_CURSOR in console_text(terminal)

    lifecycle.cleanup(ExitReason.normal())


def test_before_init_only_once(lifecycle) -> None:
    lifecycle.before_init()
    with pytest.raises(RuntimeError):
        lifecycle.before_init()
    lifecycle.cleanup(ExitReason.normal())


@pytest.mark.asyncio
async def test_normal_run(config, lifecycle, terminal) -> None:
    async def main():
        assert lifecycle.state is LifecycleState.RUNNING
        assert config.temp_dir.is_dir()
        return None

    status = await lifecycle.run(main)

    assert status == 0
    assert lifecycle.state is LifecycleState.TERMINATED
    assert not config.temp_dir.exists()
    assert SHOW_CURSOR in console_text(terminal)
    entries = _finished_entries(config)
    assert len(entries) == 1
    assert "[INFO] session finished: normal, exit status 0" in entries[0]


@pytest.mark.asyncio
async def test_stop_mid_run(config, sink, lifecycle, terminal) -> None:
    async def main():
        sink.info("test", "before")
        sink.stop("test", "unrecoverable condition")
        sink.info("test", "never written")
        return 0

    status = await lifecycle.run(main)

    log = read_log(config)
    assert status == 255
    assert any("[STOP] unrecoverable condition" in line for line in log)
    assert not any("never written" in line for line in log)
    assert not config.temp_dir.exists()
    assert SHOW_CURSOR in console_text(terminal)
    assert lifecycle.state is LifecycleState.TERMINATED


@pytest.mark.asyncio
async def test_explicit_exit_code(lifecycle) -> None:
    async def main():
        lifecycle.exit(3)

    assert await lifecycle.run(main) == 3


@pytest.mark.asyncio
async def test_unexpected_exception_maps_to_unknown(config, lifecycle) -> None:
    async def main():
        raise RuntimeError("surprise")

    status = await lifecycle.run(main)

    assert status == 254
    assert any("unexpected error: RuntimeError: surprise" in line for line in read_log(config))


@pytest.mark.asyncio
async def test_signal_terminates_running_child(config, lifecycle, executor, buffer) -> None:
    seen = {}

    async def main():
        loop = asyncio.get_running_loop()

        def interrupt():
            seen["pid"] = executor.current_process.pid
            lifecycle.handle_signal("SIGINT")

        loop.call_later(0.3, interrupt)
        await executor.run_with_retry("sleep 30", buffer, max_attempts=1)
        return 0

    status = await asyncio.wait_for(lifecycle.run(main), timeout=10)

    assert status == 255
    assert lifecycle.state is LifecycleState.TERMINATED
    assert not config.temp_dir.exists()
    assert "session finished: signaled (SIGINT), exit status 255" in _finished_entries(config)[0]

    for _ in range(100):
        if not pid_alive(seen["pid"]):
            break
        await asyncio.sleep(0.05)
    assert not pid_alive(seen["pid"])


@pytest.mark.asyncio
async def test_second_signal_is_ignored(lifecycle) -> None:
    async def main():
        lifecycle.handle_signal("SIGTERM")
        lifecycle.handle_signal("SIGHUP")
        await asyncio.sleep(5)

    status = await asyncio.wait_for(lifecycle.run(main), timeout=5)

    assert status == 255
    assert lifecycle._signal_reason == ExitReason.signaled("SIGTERM")


def test_cleanup_runs_exactly_once(config, lifecycle) -> None:
    lifecycle.before_init()

    first = lifecycle.cleanup(ExitReason.signaled("SIGTERM"))
    second = lifecycle.cleanup(ExitReason.normal(0))
    lifecycle._atexit_cleanup()

    assert first == second == 255
    assert lifecycle.exit_status == 255
    assert len(_finished_entries(config)) == 1


def test_atexit_backstop_reports_unknown(config, lifecycle) -> None:
    lifecycle.before_init()

    lifecycle._atexit_cleanup()

    assert lifecycle.exit_status == 254
    assert not config.temp_dir.exists()
    assert "[WARN] session finished: unknown, exit status 254" in _finished_entries(config)[0]


@pytest.mark.asyncio
async def test_fatal_error_keeps_its_exit_code(config) -> None:
    sink = LogSink(config, console=make_console())
    formatter = OutputFormatter(config, sink, make_console())
    executor = CommandExecutor(config, sink, formatter)
    lifecycle = LifecycleManager(config, sink, ScanOutputBuffer(config.buffer_path), executor, make_console())

    async def main():
        raise FatalError("custom", exit_code=254)

    assert await lifecycle.run(main) == 254


@pytest.mark.asyncio
async def test_unusable_temp_dir_is_fatal(config, lifecycle) -> None:
    config.temp_dir.write_text("a file where the temp directory belongs")
    called = []

    async def main():
        called.append(True)
        return 0

    status = await lifecycle.run(main)

    assert status == 255
    assert called == []
    assert lifecycle.state is LifecycleState.TERMINATED
    log = read_log(config)
    assert any("[STOP] Cannot prepare working directories" in line for line in log)
    assert "session finished: normal, exit status 255" in log[-1]
