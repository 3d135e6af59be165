import pytest

from conftest import console_text, read_log
from http_diag.exceptions import DefinitionError, FatalError, TaskNotFoundError
from http_diag.formatter import OutputFormatter
from http_diag.models import ScanType, StepList
from http_diag.registry import TaskDefinition
from http_diag.task_runner import TaskRunner


class RecordingFormatter(OutputFormatter):
    """Formatter that records announcements and buffer state."""

    def __init__(self, *args, buffer=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.buffer = buffer
        self.announced = []
        self.buffer_empty_at_announce = []

    def announce(self, title, detail, scan_type, host):
        self.announced.append((title, detail, ScanType.parse(scan_type), host))
        self.buffer_empty_at_announce.append(self.buffer.is_empty())
        super().announce(title, detail, scan_type, host)


@pytest.fixture()
def recording(config, sink, console, buffer):
    return RecordingFormatter(config, sink, console, buffer=buffer)


@pytest.fixture()
def recording_runner(config, sink, recording, executor, buffer, task_registry):
    executor.formatter = recording
    return TaskRunner(config, sink, recording, executor, buffer, task_registry)


def _fail_count(config) -> int:
    return sum(1 for line in read_log(config) if line.endswith("result: fail"))


@pytest.mark.asyncio
async def test_single_passing_step(config, recording, recording_runner, task_registry, context) -> None:
    @task_registry.register("h2")
    def h2(ctx):
        return StepList(scan_type=ScanType.ACTIVE, host=ctx.host).add(
            "Testing HTTP/2:https://nghttp2.org/", "true"
        )

    result = await recording_runner.run_task("h2", context)

    assert recording.announced == [("Testing HTTP/2", "https://nghttp2.org/", ScanType.ACTIVE, "nghttp2.org")]
    assert result.passed == 1
    assert result.failed == 0
    assert result.step_results[0].execution.attempts_used == 1
    assert result.exit_code == 0
    assert _fail_count(config) == 0


@pytest.mark.asyncio
async def test_failing_step_does_not_abort_the_rest(config, runner, task_registry, context) -> None:
    @task_registry.register("mixed")
    def mixed(ctx):
        return StepList().add("Broken:first", "exit 1").add("Works:second", "true")

    result = await runner.run_task("mixed", context)

    assert [r.succeeded for r in result.step_results] == [False, True]
    assert result.step_results[0].execution.attempts_used == 3
    assert _fail_count(config) == 3
    assert result.exit_code == 0
    assert any("[WARN] step 1/2 'Broken' failed after 3 attempt(s)" in line for line in read_log(config))


@pytest.mark.asyncio
async def test_steps_run_in_order(config, runner, task_registry, context) -> None:
    order = config.work_dir / "order"

    @task_registry.register("ordered")
    def ordered(ctx):
        steps = StepList()
        for i in range(4):
            steps.add(f"Step {i}:", f"echo {i} >> {order}")
        return steps

    await runner.run_task("ordered", context)

    assert order.read_text().split() == ["0", "1", "2", "3"]


@pytest.mark.asyncio
async def test_buffer_is_empty_at_every_announcement(recording, recording_runner, task_registry, context, buffer) -> None:
    @task_registry.register("noisy")
    def noisy(ctx):
        return StepList().add("Loud:", "seq 1 5000").add("Failing loud:", "seq 1 100; exit 1").add("Quiet:", "true")

    await recording_runner.run_task("noisy", context)

    assert recording.buffer_empty_at_announce == [True, True, True]
    assert buffer.is_empty()


@pytest.mark.asyncio
async def test_output_is_flushed_to_terminal(runner, task_registry, context, console) -> None:
    @task_registry.register("echo")
    def echo(ctx):
        return StepList().add("Echo:", "printf '\\033[32mcolored\\033[0m\\n'")

    await runner.run_task("echo", context)

    output = console_text(console)
    assert "│ colored" in output
    assert "\x1b[32m" not in output


@pytest.mark.asyncio
async def test_each_evaluation_gets_a_fresh_step_list(runner, task_registry, context) -> None:
    @task_registry.register("fresh")
    def fresh(ctx):
        return StepList().add("Only:", "true")

    first = await runner.run_task("fresh", context)
    second = await runner.run_task("fresh", context)

    assert first.total_steps == 1
    assert second.total_steps == 1


@pytest.mark.asyncio
async def test_definition_arguments_are_passed_through(runner, task_registry, context) -> None:
    @task_registry.register("args")
    def with_args(ctx, *names):
        steps = StepList()
        for name in names:
            steps.add(f"{name}:", "true")
        return steps

    result = await runner.run_task("args", context, "a", "b")

    assert [r.step.title for r in result.step_results] == ["a", "b"]


@pytest.mark.asyncio
async def test_unequal_sequences_are_fatal(config, runner, task_registry, context) -> None:
    @task_registry.register("broken")
    def broken(ctx):
        return StepList(messages=["One:", "Two:"], commands=["true"])

    with pytest.raises(DefinitionError) as exc_info:
        await runner.run_task("broken", context)

    assert exc_info.value.exit_code == 255
    assert "[STOP]" in read_log(config)[-1]
    assert not any("attempt" in line for line in read_log(config))


@pytest.mark.asyncio
async def test_raising_definition_is_fatal(config, runner, task_registry, context) -> None:
    @task_registry.register("explodes")
    def explodes(ctx):
        raise KeyError("missing option")

    with pytest.raises(DefinitionError):
        await runner.run_task("explodes", context)

    assert "could not be evaluated" in read_log(config)[-1]


@pytest.mark.asyncio
async def test_definition_must_return_step_list(runner, context) -> None:
    definition = TaskDefinition(name="wrong", handler=lambda ctx: [("a", "b")])

    with pytest.raises(DefinitionError):
        await runner.run_task(definition, context)


@pytest.mark.asyncio
async def test_stop_from_collaborator_propagates(runner, sink, task_registry, context) -> None:
    @task_registry.register("stopper")
    def stopper(ctx):
        sink.stop("stopper", "required file missing")

    with pytest.raises(FatalError) as exc_info:
        await runner.run_task("stopper", context)

    assert not isinstance(exc_info.value, DefinitionError)


@pytest.mark.asyncio
async def test_unknown_task_name(runner, context) -> None:
    with pytest.raises(TaskNotFoundError):
        await runner.run_task("nope", context)


@pytest.mark.asyncio
async def test_run_tasks_sequentially(runner, task_registry, context) -> None:
    @task_registry.register("first")
    def first(ctx):
        return StepList().add("First:", "true")

    @task_registry.register("second")
    def second(ctx):
        return StepList().add("Second:", "false")

    results = await runner.run_tasks(["first", "second"], context)

    assert [r.task_name for r in results] == ["first", "second"]
    assert [r.passed for r in results] == [1, 0]


@pytest.mark.asyncio
async def test_empty_definition(runner, task_registry, context) -> None:
    @task_registry.register("empty")
    def empty(ctx):
        return StepList()

    result = await runner.run_task("empty", context)

    assert result.total_steps == 0
    assert result.exit_code == 0
