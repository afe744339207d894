"""
Tests for the concurrent fan-out executor.
"""

import asyncio
import random
import threading
import time

import pytest

from flowstate.engine.command import Complete
from flowstate.engine.context import ContextKey
from flowstate.engine.errors import FanOutError
from flowstate.engine.executor import WorkflowEngine
from flowstate.engine.fanout import FanOutExecutor, FanOutNode, fan_out
from flowstate.engine.graph import Graph
from flowstate.engine.node import FunctionNode


RESULTS = ContextKey("results", list)


def shout(instruction, item):
    return f"{instruction}:{item}".upper()


def jittery(instruction, item):
    time.sleep(random.uniform(0, 0.02))
    return item * instruction


# ============================================================
# Executor Tests
# ============================================================

class TestFanOutExecutor:
    """Tests for FanOutExecutor.run."""

    def test_results_in_input_order(self):
        """Test results line up with inputs despite random completion order."""
        inputs = list(range(20))
        results = FanOutExecutor(workers=4).run(3, inputs, jittery)
        assert results == [i * 3 for i in inputs]

    def test_order_independent_of_completion(self):
        """Test later inputs finishing first still land in input order."""
        finished = []

        def slow_first(instruction, item):
            time.sleep({"a": 0.06, "b": 0.03, "c": 0.0}[item])
            finished.append(item)
            return f"f({item})"

        results = FanOutExecutor(workers=3).run(None, ["a", "b", "c"], slow_first)

        assert results == ["f(a)", "f(b)", "f(c)"]
        assert finished == ["c", "b", "a"]

    def test_single_item(self):
        """Test one input yields one result."""
        assert FanOutExecutor(workers=8).run("go", ["a"], shout) == ["GO:A"]

    def test_empty_inputs_rejected(self):
        """Test empty inputs raise ValueError."""
        with pytest.raises(ValueError, match="cannot be empty"):
            FanOutExecutor().run("x", [], shout)

    def test_invalid_worker_count(self):
        """Test a non-positive worker count is rejected."""
        with pytest.raises(ValueError):
            FanOutExecutor(workers=0)

    def test_default_workers_from_settings(self):
        """Test the worker count defaults to settings."""
        assert FanOutExecutor().workers == 4

    def test_concurrency_is_bounded(self):
        """Test no more than the configured workers run at once."""
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def track(instruction, item):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.01)
            with lock:
                active[0] -= 1
            return item

        FanOutExecutor(workers=3).run(None, range(12), track)
        assert 1 <= peak[0] <= 3

    def test_failures_collected_after_all_settle(self):
        """Test every failure is reported and every item still runs."""
        finished = []

        def picky(instruction, item):
            if item % 3 == 0:
                raise ValueError(f"bad {item}")
            finished.append(item)
            return item

        with pytest.raises(FanOutError) as exc_info:
            FanOutExecutor(workers=2).run(None, range(7), picky)

        error = exc_info.value
        assert [f.index for f in error.failures] == [0, 3, 6]
        assert all(isinstance(f.error, ValueError) for f in error.failures)
        assert sorted(finished) == [1, 2, 4, 5]
        assert error.code == "FAN_OUT_FAILED"

    def test_convenience_function(self):
        """Test fan_out."""
        assert fan_out("hi", ["a", "b"], shout, workers=2) == ["HI:A", "HI:B"]


class TestAsyncFanOut:
    """Tests for FanOutExecutor.arun."""

    @pytest.mark.asyncio
    async def test_async_worker_order(self):
        """Test coroutine workers keep input order."""
        async def work(instruction, item):
            await asyncio.sleep(random.uniform(0, 0.01))
            return item + instruction

        results = await FanOutExecutor(workers=3).arun(100, list(range(10)), work)
        assert results == [i + 100 for i in range(10)]

    @pytest.mark.asyncio
    async def test_sync_worker_under_arun(self):
        """Test sync workers run in threads under arun."""
        assert await FanOutExecutor(workers=2).arun("x", ["a", "b", "c"], shout) == ["X:A", "X:B", "X:C"]

    @pytest.mark.asyncio
    async def test_async_failures(self):
        """Test arun aggregates failures."""
        async def work(instruction, item):
            if item == 2:
                raise RuntimeError("nope")
            return item

        with pytest.raises(FanOutError) as exc_info:
            await FanOutExecutor().arun(None, [1, 2, 3], work)
        assert [f.index for f in exc_info.value.failures] == [1]

    @pytest.mark.asyncio
    async def test_async_empty_inputs(self):
        """Test arun rejects empty inputs."""
        with pytest.raises(ValueError):
            await FanOutExecutor().arun(None, [], shout)


# ============================================================
# Graph Node Tests
# ============================================================

class TestFanOutNode:
    """Tests for FanOutNode inside a workflow."""

    def build(self, worker):
        return (
            Graph(name="fan")
            .add_node(FanOutNode("spread", worker, RESULTS, instruction="doc", next_node="collect", is_entry_point=True))
            .add_node(FunctionNode("collect", lambda s: Complete(s.get(RESULTS))))
        )

    def test_results_stored_in_context(self):
        """Test results are stored in context and the run continues."""
        result = WorkflowEngine(self.build(shout)).start(["a", "b", "c"])

        assert result.is_completed
        assert result.output == ["DOC:A", "DOC:B", "DOC:C"]

    def test_failure_becomes_error(self):
        """Test a failing item terminates the workflow with FanOutError."""
        def broken(instruction, item):
            raise RuntimeError("broken worker")

        result = WorkflowEngine(self.build(broken)).start(["a"])

        assert result.is_error
        assert isinstance(result.error, FanOutError)
        assert result.error.node_id == "spread"

    def test_empty_payload_is_error(self):
        """Test an empty input list is reported as an execution error."""
        result = WorkflowEngine(self.build(shout)).start([])
        assert result.is_error
        assert "cannot be empty" in result.error.message

    def test_results_key_must_be_list(self):
        """Test the results key must be declared as a list."""
        with pytest.raises(ValueError, match="type list"):
            FanOutNode("spread", shout, ContextKey.string("r"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
