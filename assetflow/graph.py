"""Task graph for Assetflow.

Tasks are named units of work registered on a ``TaskGraph``. A task may list
dependencies that run before it, and composite tasks are built with
``series`` (strict order, the series fails once every step ran) or
``parallel`` (no ordering, failures are aggregated).

Key classes:
- Task: A named action with dependencies.
- TaskResult: Outputs and captured per-item errors of one task run.
- TaskContext: Everything a task action needs (project root, config, reloader).
- TaskGraph: Registry and runner.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .transforms import TransformError

if TYPE_CHECKING:
    from .server import LiveReloadServer

logger = logging.getLogger(__name__)

IDLE = "idle"
FAILED = "failed"


class TaskGraphError(Exception):
    """Raised for unknown tasks, unknown dependencies and dependency cycles."""


class TaskFailed(Exception):
    """Raised when a task, or a step of a composite task, fails.

    Attributes:
        task: Name of the task that failed.
        errors: Per-item errors the task captured, if any.
    """

    def __init__(self, task: str, errors: Iterable[TransformError] = ()):
        self.task = task
        self.errors = list(errors)
        detail = f" ({len(self.errors)} error(s))" if self.errors else ""
        super().__init__(f"Task '{task}' failed{detail}")


@dataclass
class TaskResult:
    """Result of one task run.

    Attributes:
        name: Task name.
        outputs: Files the task wrote or deleted.
        errors: Per-item errors captured while the task kept going.
    """

    name: str
    outputs: list[Path] = field(default_factory=list)
    errors: list[TransformError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class TaskContext:
    """Shared state handed to every task action.

    Attributes:
        project_root: Root directory of the project.
        config: Merged project configuration.
        reloader: Live-reload service while watch mode runs, otherwise None.
        graph: Graph running the task, for composite actions.
    """

    project_root: Path
    config: dict[str, Any]
    reloader: LiveReloadServer | None = None
    graph: TaskGraph | None = None

    def path(self, relative: str | Path) -> Path:
        """Resolve a configured path against the project root."""
        return self.project_root / relative


Action = Callable[[TaskContext], "TaskResult | None"]


@dataclass
class Task:
    """A named unit of work.

    Attributes:
        name: Unique task name.
        action: Callable run with the task context.
        deps: Names of tasks that must complete first.
        description: One-line help text.
    """

    name: str
    action: Action
    deps: frozenset[str] = frozenset()
    description: str = ""


class TaskGraph:
    """Registry of tasks and runner for them.

    Attributes:
        context: Context passed to every action.
        tasks: Mapping of task name to Task.
        state: ``idle``, ``running:<name>`` or ``failed``.
    """

    def __init__(self, context: TaskContext):
        self.context = context
        self.context.graph = self
        self.tasks: dict[str, Task] = {}
        self.state = IDLE

    def add(
        self,
        name: str,
        action: Action,
        deps: Iterable[str] = (),
        description: str = "",
    ) -> Task:
        """Register a task, replacing any task with the same name.

        Raises:
            TaskGraphError: If the new task would introduce a cycle.
        """
        task = Task(name, action, frozenset(deps), description)
        previous = self.tasks.get(name)
        self.tasks[name] = task
        try:
            self._check_cycles(name, [])
        except TaskGraphError:
            if previous is None:
                del self.tasks[name]
            else:
                self.tasks[name] = previous
            raise
        return task

    def task(self, name: str, deps: Iterable[str] = (), description: str = ""):
        """Decorator form of ``add``."""

        def decorator(action: Action) -> Action:
            self.add(name, action, deps, description or (action.__doc__ or "").strip())
            return action

        return decorator

    def _check_cycles(self, name: str, trail: list[str]) -> None:
        if name in trail:
            cycle = " -> ".join([*trail[trail.index(name) :], name])
            raise TaskGraphError(f"Dependency cycle: {cycle}")
        task = self.tasks.get(name)
        if task is None:
            return
        for dep in sorted(task.deps):
            self._check_cycles(dep, [*trail, name])

    def get(self, name: str) -> Task:
        try:
            return self.tasks[name]
        except KeyError:
            raise TaskGraphError(f"Unknown task: {name}") from None

    def series(self, *names: str, keep_going: bool = True) -> Action:
        """Return an action running the named tasks one after another.

        Each step starts only after the previous one finished. A step that
        fails with captured per-item errors does not stop the later steps
        when ``keep_going`` is set; the series still fails once all steps
        ran. Any other exception stops the series immediately.
        """

        def run_series(context: TaskContext) -> None:
            failures: list[TaskFailed] = []
            for name in names:
                try:
                    self._run_one(name, set())
                except TaskFailed as exc:
                    if not keep_going:
                        raise
                    failures.append(exc)
            if failures:
                errors = [err for failure in failures for err in failure.errors]
                raise TaskFailed(", ".join(f.task for f in failures), errors)

        run_series.__doc__ = f"Run {', '.join(names)} in series."
        return run_series

    def parallel(self, *names: str, max_workers: int | None = None) -> Action:
        """Return an action running the named tasks concurrently.

        Every step runs to completion; if any fails the composite fails with
        the errors of all failed steps.
        """

        def run_parallel(context: TaskContext) -> None:
            failures: list[TaskFailed] = []
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = [pool.submit(self._run_one, name, set()) for name in names]
                for future in futures:
                    try:
                        future.result()
                    except TaskFailed as exc:
                        failures.append(exc)
            if failures:
                errors = [err for failure in failures for err in failure.errors]
                raise TaskFailed(", ".join(f.task for f in failures), errors)

        run_parallel.__doc__ = f"Run {', '.join(names)} in parallel."
        return run_parallel

    def run(self, name: str) -> TaskResult:
        """Run a task after its dependencies.

        Each dependency runs at most once per call.

        Returns:
            Result of the named task.

        Raises:
            TaskGraphError: If the task or one of its dependencies is unknown.
            TaskFailed: If the task or a dependency fails.
        """
        try:
            result = self._run_one(name, set())
        except Exception:
            self.state = FAILED
            raise
        self.state = IDLE
        return result

    def _run_one(self, name: str, done: set[str]) -> TaskResult:
        task = self.get(name)
        for dep in sorted(task.deps):
            if dep not in done:
                self._run_one(dep, done)
        done.add(name)

        self.state = f"running:{name}"
        logger.info("Starting '%s'...", name)
        started = time.perf_counter()
        result = task.action(self.context) or TaskResult(name)
        elapsed = time.perf_counter() - started

        for error in result.errors:
            logger.error("%s", error)
        if not result.ok:
            logger.error("'%s' failed after %.2fs", name, elapsed)
            raise TaskFailed(name, result.errors)
        logger.info("Finished '%s' after %.2fs", name, elapsed)
        return result
