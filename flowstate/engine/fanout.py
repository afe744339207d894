"""
Concurrent fan-out executor.

Runs one worker call per input item on a bounded pool, waits for every
item to settle, and returns results in input order. Failures are
collected and reported together once all work has finished.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar
import asyncio
import functools
import inspect
import logging
import time

from flowstate.config import settings
from flowstate.engine.command import Error, GraphCommand, Traverse
from flowstate.engine.context import ContextKey, WorkflowContext
from flowstate.engine.errors import ExecutionError, FanOutError
from flowstate.engine.node import Node
from flowstate.engine.state import WorkflowState


logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

Worker = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class FanOutFailure:
    """A single failed item."""
    index: int
    item: Any
    error: BaseException

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "item": repr(self.item), "error": str(self.error)}


class FanOutExecutor:
    """
    Apply a worker to many inputs concurrently.

    Usage:
        executor = FanOutExecutor(workers=8)
        summaries = executor.run("summarize", documents, summarize_one)
    """

    def __init__(self, workers: Optional[int] = None):
        self.workers = workers if workers is not None else settings.FANOUT_WORKERS
        if self.workers < 1:
            raise ValueError("Fan-out needs at least one worker")

    def run(self, instruction: Any, inputs: Sequence[ItemT], worker: Callable[[Any, ItemT], ResultT]) -> List[ResultT]:
        """
        Run ``worker(instruction, item)`` for every item.

        Args:
            instruction: Shared argument passed to every call
            inputs: Items to process
            worker: Function applied to each item

        Returns:
            Results in the same order as ``inputs``

        Raises:
            ValueError: If ``inputs`` is empty
            FanOutError: If any call failed, after all calls settled
        """
        items = list(inputs)
        if not items:
            raise ValueError("Fan-out inputs cannot be empty")

        start_time = time.time()
        results: List[Any] = [None] * len(items)
        failures: List[FanOutFailure] = []
        max_workers = min(self.workers, len(items))

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(worker, instruction, item): index
                for index, item in enumerate(items)
            }

            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    logger.error(f"Fan-out item {index} failed: {e}")
                    failures.append(FanOutFailure(index, items[index], e))

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Fan-out of {len(items)} item(s) on {max_workers} worker(s) finished "
            f"in {duration_ms}ms with {len(failures)} failure(s)"
        )
        if failures:
            raise FanOutError(sorted(failures, key=lambda f: f.index))
        return results

    async def arun(self, instruction: Any, inputs: Sequence[ItemT], worker: Callable[..., Any]) -> List[Any]:
        """
        Async variant of ``run``.

        Coroutine workers are awaited; sync workers run in the default
        executor. At most ``workers`` calls are in flight at once.
        """
        items = list(inputs)
        if not items:
            raise ValueError("Fan-out inputs cannot be empty")

        semaphore = asyncio.Semaphore(min(self.workers, len(items)))
        loop = asyncio.get_running_loop()

        async def call(item: Any) -> Any:
            async with semaphore:
                if inspect.iscoroutinefunction(worker):
                    return await worker(instruction, item)
                return await loop.run_in_executor(None, functools.partial(worker, instruction, item))

        outcomes = await asyncio.gather(*(call(item) for item in items), return_exceptions=True)

        failures = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(f"Fan-out item {index} failed: {outcome}")
                failures.append(FanOutFailure(index, items[index], outcome))
        if failures:
            raise FanOutError(failures)
        return list(outcomes)


def fan_out(
    instruction: Any,
    inputs: Sequence[Any],
    worker: Worker,
    workers: Optional[int] = None,
) -> List[Any]:
    """Convenience wrapper around ``FanOutExecutor(workers).run(...)``."""
    return FanOutExecutor(workers).run(instruction, inputs, worker)


class FanOutNode(Node):
    """
    A graph node that fans work out and stores the ordered results in context.

    The inputs come from ``inputs(state)`` (the payload by default). On
    success the node traverses to ``next_node`` (or lets the router pick);
    any failure becomes an Error command carrying the FanOutError.
    """

    def __init__(
        self,
        node_id: str,
        worker: Worker,
        results_key: ContextKey,
        instruction: Any = None,
        inputs: Optional[Callable[[WorkflowState], Sequence[Any]]] = None,
        next_node: Optional[str] = None,
        workers: Optional[int] = None,
        name: str = "",
        description: str = "",
        is_entry_point: bool = False,
    ):
        if not node_id:
            raise ValueError("Node id cannot be empty")
        if results_key.type is not list:
            raise ValueError(f"Results key '{results_key.name}' must be declared with type list")
        self.node_id = node_id
        self.worker = worker
        self.results_key = results_key
        self.instruction = instruction
        self.inputs = inputs or (lambda state: state.data)
        self.next_node = next_node
        self.executor = FanOutExecutor(workers)
        self.name = name
        self.description = description
        self.is_entry_point = is_entry_point

    def process(self, state: WorkflowState) -> GraphCommand:
        try:
            results = self.executor.run(self.instruction, self.inputs(state), self.worker)
        except FanOutError as e:
            return Error(e.with_node(self.node_id))
        except ValueError as e:
            return Error(ExecutionError(str(e), node_id=self.node_id, cause=e))
        return Traverse(
            target=self.next_node,
            context_update=WorkflowContext.of(self.results_key, results),
            reason=f"fanned out {len(results)} item(s)",
        )
