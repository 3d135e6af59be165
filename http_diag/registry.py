"""Task definition registry.

Task definitions are plain functions registered under a name. Evaluating a
definition returns a fresh ``StepList``; the registry replaces dynamic
evaluation of procedure names with a typed lookup.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from http_diag.config import RuntimeConfig
from http_diag.exceptions import TaskNotFoundError
from http_diag.models import StepList
from http_diag.utils import host_from_url


@dataclass
class TaskContext:
    """Everything a task definition may read while building its steps."""
    config: RuntimeConfig
    url: str
    method: str = "GET"
    headers: Tuple[str, ...] = ()
    proxy: Optional[str] = None
    interface: Optional[str] = None
    user_agent: Optional[str] = None
    host: str = field(default="")

    def __post_init__(self) -> None:
        if not self.host:
            self.host = host_from_url(self.url)
        self.method = self.method.upper()


TaskHandler = Callable[..., StepList]


@dataclass
class TaskDefinition:
    """A named handler plus the help text shown by ``--list-tasks``."""
    name: str
    handler: TaskHandler
    description: str = ""

    def evaluate(self, context: TaskContext, *args: str) -> StepList:
        return self.handler(context, *args)


class TaskRegistry:
    """Maps task names to their definitions."""

    def __init__(self) -> None:
        self._definitions: Dict[str, TaskDefinition] = {}

    def register(self, name: str, description: str = "") -> Callable[[TaskHandler], TaskHandler]:
        """Decorator registering a handler under ``name``."""
        def decorator(handler: TaskHandler) -> TaskHandler:
            self.add(TaskDefinition(name=name, handler=handler, description=description))
            return handler
        return decorator

    def add(self, definition: TaskDefinition) -> None:
        if definition.name in self._definitions:
            raise ValueError(f"Task already registered: {definition.name}")
        self._definitions[definition.name] = definition

    def get(self, name: str) -> TaskDefinition:
        try:
            return self._definitions[name]
        except KeyError:
            raise TaskNotFoundError(
                f"Unknown task '{name}'. Available: {', '.join(self.names()) or 'none'}"
            ) from None

    def names(self) -> List[str]:
        return list(self._definitions)

    def describe(self) -> List[Tuple[str, str]]:
        return [(d.name, d.description) for d in self._definitions.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


registry = TaskRegistry()
