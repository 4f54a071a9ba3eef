from pathlib import Path

import pytest

from assetflow.graph import (
    FAILED,
    IDLE,
    TaskContext,
    TaskFailed,
    TaskGraph,
    TaskGraphError,
    TaskResult,
)
from assetflow.transforms import TransformError


@pytest.fixture
def empty_graph(tmp_path):
    return TaskGraph(TaskContext(tmp_path, {}))


def recorder(calls, name, fail=False):
    def action(context):
        calls.append(name)
        if fail:
            return TaskResult(name, errors=[TransformError(Path(f"{name}.src"), "broken")])
        return TaskResult(name, outputs=[Path(f"{name}.out")])

    return action


def test_series_runs_in_order(empty_graph):
    calls = []
    for name in ["a", "b", "c"]:
        empty_graph.add(name, recorder(calls, name))
    empty_graph.add("all", empty_graph.series("c", "a", "b"))

    empty_graph.run("all")
    assert calls == ["c", "a", "b"]
    assert empty_graph.state == IDLE
    assert empty_graph.context.graph is empty_graph


def test_dependencies_run_once_before_task(empty_graph):
    calls = []
    empty_graph.add("base", recorder(calls, "base"))
    empty_graph.add("left", recorder(calls, "left"), deps=["base"])
    empty_graph.add("right", recorder(calls, "right"), deps=["base"])
    empty_graph.add("top", recorder(calls, "top"), deps=["left", "right"])

    result = empty_graph.run("top")
    assert calls == ["base", "left", "right", "top"]
    assert result.outputs == [Path("top.out")]


def test_unknown_task_and_dependency(empty_graph):
    with pytest.raises(TaskGraphError, match="Unknown task: missing"):
        empty_graph.run("missing")

    empty_graph.add("orphan", lambda ctx: None, deps=["ghost"])
    with pytest.raises(TaskGraphError, match="ghost"):
        empty_graph.run("orphan")


def test_cycle_is_rejected_and_rolled_back(empty_graph):
    empty_graph.add("a", lambda ctx: None, deps=["b"])
    empty_graph.add("b", lambda ctx: None)

    with pytest.raises(TaskGraphError, match="cycle"):
        empty_graph.add("b", lambda ctx: None, deps=["a"])
    assert empty_graph.get("b").deps == frozenset()

    with pytest.raises(TaskGraphError):
        empty_graph.add("self", lambda ctx: None, deps=["self"])
    assert "self" not in empty_graph.tasks


def test_failed_task_sets_state(empty_graph):
    calls = []
    empty_graph.add("bad", recorder(calls, "bad", fail=True))

    with pytest.raises(TaskFailed) as excinfo:
        empty_graph.run("bad")
    assert excinfo.value.task == "bad"
    assert [e.source_path for e in excinfo.value.errors] == [Path("bad.src")]
    assert "1 error(s)" in str(excinfo.value)
    assert empty_graph.state == FAILED


def test_series_keeps_going_then_fails(empty_graph):
    calls = []
    empty_graph.add("first", recorder(calls, "first", fail=True))
    empty_graph.add("second", recorder(calls, "second"))
    empty_graph.add("third", recorder(calls, "third", fail=True))
    empty_graph.add("all", empty_graph.series("first", "second", "third"))

    with pytest.raises(TaskFailed) as excinfo:
        empty_graph.run("all")
    assert calls == ["first", "second", "third"]
    assert excinfo.value.task == "first, third"
    assert len(excinfo.value.errors) == 2


def test_series_strict_stops_at_first_failure(empty_graph):
    calls = []
    empty_graph.add("first", recorder(calls, "first", fail=True))
    empty_graph.add("second", recorder(calls, "second"))
    empty_graph.add("all", empty_graph.series("first", "second", keep_going=False))

    with pytest.raises(TaskFailed):
        empty_graph.run("all")
    assert calls == ["first"]


def test_unexpected_exception_stops_series(empty_graph):
    calls = []

    def explode(context):
        calls.append("explode")
        raise RuntimeError("disk on fire")

    empty_graph.add("explode", explode)
    empty_graph.add("after", recorder(calls, "after"))
    empty_graph.add("all", empty_graph.series("explode", "after"))

    with pytest.raises(RuntimeError, match="disk on fire"):
        empty_graph.run("all")
    assert calls == ["explode"]
    assert empty_graph.state == FAILED


def test_parallel_runs_all_and_aggregates(empty_graph):
    calls = []
    empty_graph.add("one", recorder(calls, "one", fail=True))
    empty_graph.add("two", recorder(calls, "two"))
    empty_graph.add("three", recorder(calls, "three", fail=True))
    empty_graph.add("all", empty_graph.parallel("one", "two", "three", max_workers=2))

    with pytest.raises(TaskFailed) as excinfo:
        empty_graph.run("all")
    assert sorted(calls) == ["one", "three", "two"]
    assert excinfo.value.task == "one, three"
    assert len(excinfo.value.errors) == 2


def test_task_decorator_uses_docstring(empty_graph):
    @empty_graph.task("hello", deps=())
    def hello(context):
        """Say hello."""
        return None

    assert empty_graph.get("hello").description == "Say hello."
    assert empty_graph.run("hello") == TaskResult("hello")
