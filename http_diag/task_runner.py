"""Sequential task runner.

The runner evaluates a task definition into a step list and walks it in
order: announce the step, run its command with retries, drain the output
buffer and record the outcome. A failing step is logged and counted but
never stops the remaining steps; only a broken definition or a ``stop``
log entry from a collaborator ends the run.
"""

from typing import Iterable, List, Sequence

from http_diag.config import RuntimeConfig
from http_diag.exceptions import DefinitionError, FatalError
from http_diag.executor import CommandExecutor
from http_diag.formatter import OutputFormatter
from http_diag.logger import LogSink
from http_diag.models import StepList, StepResult, TaskRunResult
from http_diag.output_buffer import ScanOutputBuffer
from http_diag.registry import TaskContext, TaskDefinition, TaskRegistry, registry as default_registry

SOURCE = "runner"


class TaskRunner:
    """Evaluates task definitions and executes their steps one by one."""

    def __init__(
        self,
        config: RuntimeConfig,
        sink: LogSink,
        formatter: OutputFormatter,
        executor: CommandExecutor,
        buffer: ScanOutputBuffer,
        registry: TaskRegistry | None = None,
    ) -> None:
        """Initialize the TaskRunner.

        Args:
            config: Runtime configuration
            sink: Log sink for task and step entries
            formatter: Output formatter for headers, results and summaries
            executor: Executor running each step's command
            buffer: Scan output buffer shared by all steps of the run
            registry: Registry used to resolve task names
        """
        self.config = config
        self.sink = sink
        self.formatter = formatter
        self.executor = executor
        self.buffer = buffer
        self.registry = registry if registry is not None else default_registry

    async def run_task(
        self,
        task: str | TaskDefinition,
        context: TaskContext,
        *args: str,
    ) -> TaskRunResult:
        """Run every step of one task definition.

        Args:
            task: Registered task name or a TaskDefinition
            context: Request options and configuration for the definition
            *args: Extra arguments passed to the definition

        Returns:
            TaskRunResult with one StepResult per step.

        Raises:
            DefinitionError: If the definition fails to evaluate or yields an
                ill-formed step list (after a ``stop`` log entry).
            FatalError: If a collaborator logged at ``stop`` severity.
        """
        definition = self.registry.get(task) if isinstance(task, str) else task
        steps = self._evaluate(definition, context, args)

        result = TaskRunResult(
            task_name=definition.name,
            scan_type=steps.scan_type,
            host=steps.host or context.host,
        )
        self.sink.head(SOURCE, f"task '{definition.name}': {len(steps)} step(s) against {result.host}")

        for index, step in enumerate(steps):
            # Each formatting pass starts from an empty buffer
            self.buffer.truncate()
            self.formatter.announce(step.title, step.detail, result.scan_type, result.host)

            execution = await self.executor.run_with_retry(step.command, self.buffer)
            await self.formatter.flush(self.buffer)

            step_result = StepResult(index=index, step=step, execution=execution)
            result.add_step_result(step_result)
            self.formatter.report_result(step_result)

            if not execution.succeeded:
                self.sink.warn(
                    SOURCE,
                    f"step {index + 1}/{len(steps)} '{step.title}' failed "
                    f"after {execution.attempts_used} attempt(s)",
                )

        result.finalize()
        self.sink.info(
            SOURCE,
            f"task '{definition.name}' finished: {result.passed} passed, {result.failed} failed",
        )
        self.formatter.report_summary(result)
        return result

    async def run_tasks(self, tasks: Iterable[str], context: TaskContext) -> List[TaskRunResult]:
        """Run several task definitions one after another."""
        results: List[TaskRunResult] = []
        for task in tasks:
            results.append(await self.run_task(task, context))
        return results

    def _evaluate(self, definition: TaskDefinition, context: TaskContext, args: Sequence[str]) -> StepList:
        """Evaluate a definition into a fresh, validated step list."""
        try:
            steps = definition.evaluate(context, *args)
            if not isinstance(steps, StepList):
                raise DefinitionError(
                    f"expected a StepList, got {type(steps).__name__}"
                )
            steps.validate()
        except DefinitionError as e:
            self.sink.stop(SOURCE, f"task '{definition.name}' is ill-formed: {e}", error=DefinitionError)
        except FatalError:
            raise
        except Exception as e:
            self.sink.stop(
                SOURCE,
                f"task '{definition.name}' could not be evaluated: {e}",
                error=DefinitionError,
            )
        return steps
