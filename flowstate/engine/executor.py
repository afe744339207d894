"""
Workflow Execution Engine.

The engine runs a graph from an entry point (or from a suspended state),
applying the command each node returns until the workflow completes,
suspends, errors, or runs out of step budget.

The step loop is written once as a generator that yields the node to
invoke and receives the resulting command; ``start``/``resume`` drive it
synchronously and ``astart``/``aresume`` drive it on an event loop.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple, Union
import asyncio
import functools
import inspect
import logging
import time

from flowstate.config import settings
from flowstate.engine.command import Complete, Error, GraphCommand, Suspend, Traverse
from flowstate.engine.context import WorkflowContext
from flowstate.engine.errors import (
    CannotResumeError,
    ExecutionError,
    NoRouteFoundError,
    StepBudgetExceededError,
    StructuralError,
    WorkflowError,
)
from flowstate.engine.graph import Graph
from flowstate.engine.keys import RESUME_COUNT, RESUMED_AT, STARTED_AT, WORKFLOW_ID, WORKFLOW_NAME
from flowstate.engine.merge import ContextConflict, ContextMergeStrategy, merge_contexts
from flowstate.engine.monitor import WorkflowMonitor
from flowstate.engine.node import Node
from flowstate.engine.state import StateManager, WorkflowState, new_workflow_id


logger = logging.getLogger(__name__)

OutputExtractor = Callable[[Any, WorkflowState], Any]


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ExecutionStep:
    """A single node invocation in the execution log."""
    step: int
    node: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    command: Optional[str] = None
    result: str = "success"
    error: Optional[str] = None
    route_taken: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node": self.node,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "command": self.command,
            "result": self.result,
            "error": self.error,
            "route_taken": self.route_taken,
        }


@dataclass
class ExecutionResult:
    """Result of a start or resume call."""
    workflow_id: str
    graph_name: str
    status: ExecutionStatus
    final_state: Optional[WorkflowState]
    output: Any = None
    error: Optional[WorkflowError] = None
    suspension_reason: Optional[str] = None
    suspension_id: Optional[str] = None
    execution_log: List[ExecutionStep] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    steps: int = 0
    merge_conflicts: Tuple[ContextConflict, ...] = ()
    merge_warnings: Tuple[str, ...] = ()

    @property
    def is_completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def is_suspended(self) -> bool:
        return self.status == ExecutionStatus.SUSPENDED

    @property
    def is_error(self) -> bool:
        return self.status == ExecutionStatus.ERROR

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "steps": self.steps,
            "total_duration_ms": self.total_duration_ms,
            "version": self.final_state.version if self.final_state else None,
            "path": list(self.final_state.visited_nodes) if self.final_state else [],
            "merge_conflicts": len(self.merge_conflicts),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "graph_name": self.graph_name,
            "status": self.status.value,
            "output": self.output,
            "final_state": self.final_state.to_dict() if self.final_state else None,
            "error": self.error.to_dict() if self.error else None,
            "suspension_reason": self.suspension_reason,
            "suspension_id": self.suspension_id,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "history": self.history,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "steps": self.steps,
            "merge_conflicts": [c.to_dict() for c in self.merge_conflicts],
            "merge_warnings": list(self.merge_warnings),
        }


class _Run:
    """Bookkeeping for one start/resume call."""

    def __init__(self, workflow_id: str):
        self.manager = StateManager(workflow_id)
        self.execution_log: List[ExecutionStep] = []
        self.steps = 0
        self.started_at = datetime.now()
        self.start_time = time.time()
        self.merge_conflicts: Tuple[ContextConflict, ...] = ()
        self.merge_warnings: Tuple[str, ...] = ()


_COMMANDS = (Traverse, Complete, Suspend, Error)

_StepLoop = Generator[Tuple[Node, WorkflowState], GraphCommand, ExecutionResult]


class WorkflowEngine:
    """
    Runs a workflow graph.

    Handles:
    - Command application (traverse, complete, suspend, error)
    - Edge routing when a node does not name its target
    - A per-call step budget
    - Suspend/resume with context merge strategies
    - Detailed execution logging

    The engine keeps no per-workflow state between calls; a suspended
    run lives only in the WorkflowState returned to the caller.

    Usage:
        engine = WorkflowEngine(graph)
        result = engine.start({"order": 42})
        if result.is_suspended:
            result = engine.resume(result.final_state, approval_context)
    """

    def __init__(
        self,
        graph: Graph,
        max_execution_steps: Optional[int] = None,
        output_extractor: Optional[OutputExtractor] = None,
        merge_strategy: Optional[Union[ContextMergeStrategy, str]] = None,
        on_step: Optional[Callable[[ExecutionStep, WorkflowState], None]] = None,
        monitor: Optional[WorkflowMonitor] = None,
    ):
        """
        Initialize the engine.

        Args:
            graph: The workflow graph to execute
            max_execution_steps: Node invocations allowed per call
            output_extractor: ``extractor(result, final_state)`` producing the output
            merge_strategy: Default strategy used by ``resume``
            on_step: Optional callback invoked after each node
            monitor: Optional lifecycle monitor notified of run and node events
        """
        self.graph = graph
        self.max_execution_steps = (
            max_execution_steps if max_execution_steps is not None else settings.MAX_EXECUTION_STEPS
        )
        if self.max_execution_steps < 1:
            raise ValueError("max_execution_steps must be at least 1")
        self.output_extractor = output_extractor
        self.merge_strategy = ContextMergeStrategy.parse(
            merge_strategy or settings.DEFAULT_MERGE_STRATEGY
        )
        self.on_step = on_step
        self.monitor = monitor

    # Public entry points

    def start(
        self,
        input: Any = None,
        context: Optional[WorkflowContext] = None,
        entry_point: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Start a new workflow run.

        Args:
            input: Initial payload
            context: Initial context (a SecurityContext is carried through)
            entry_point: Override the graph's entry point

        Returns:
            ExecutionResult; failures are reported in ``result.error``
        """
        prepared = self._prepare_start(input, context, entry_point)
        if isinstance(prepared, ExecutionResult):
            return prepared
        return self._drive(self._step_loop(*prepared))

    def resume(
        self,
        saved_state: WorkflowState,
        context_updates: Optional[WorkflowContext] = None,
        merge_strategy: Optional[Union[ContextMergeStrategy, str]] = None,
    ) -> ExecutionResult:
        """
        Resume a suspended run from its saved state.

        The node that suspended is invoked again with the merged context.
        """
        prepared = self._prepare_resume(saved_state, context_updates, merge_strategy)
        if isinstance(prepared, ExecutionResult):
            return prepared
        return self._drive(self._step_loop(*prepared))

    async def astart(
        self,
        input: Any = None,
        context: Optional[WorkflowContext] = None,
        entry_point: Optional[str] = None,
    ) -> ExecutionResult:
        """Async variant of ``start``; awaits coroutine nodes."""
        prepared = self._prepare_start(input, context, entry_point)
        if isinstance(prepared, ExecutionResult):
            return prepared
        return await self._adrive(self._step_loop(*prepared))

    async def aresume(
        self,
        saved_state: WorkflowState,
        context_updates: Optional[WorkflowContext] = None,
        merge_strategy: Optional[Union[ContextMergeStrategy, str]] = None,
    ) -> ExecutionResult:
        """Async variant of ``resume``."""
        prepared = self._prepare_resume(saved_state, context_updates, merge_strategy)
        if isinstance(prepared, ExecutionResult):
            return prepared
        return await self._adrive(self._step_loop(*prepared))

    # Preparation

    def _prepare_start(
        self,
        input: Any,
        context: Optional[WorkflowContext],
        entry_point: Optional[str],
    ) -> Union[ExecutionResult, Tuple[WorkflowState, _Run]]:
        workflow_id = new_workflow_id()
        run = _Run(workflow_id)
        base = context if context is not None else WorkflowContext.empty()

        try:
            self.graph.ensure_valid()
            entry = self.graph.resolve_entry_point(entry_point)
        except StructuralError as e:
            logger.error(f"Cannot start '{self.graph.name}': {e.message}")
            return self._result(run, ExecutionStatus.ERROR, WorkflowState.create(input, base, workflow_id=workflow_id), error=e)

        base = base.update({
            WORKFLOW_ID: workflow_id,
            WORKFLOW_NAME: self.graph.name,
            STARTED_AT: run.started_at,
        })
        state = WorkflowState.create(input, base, node_id=entry, workflow_id=workflow_id)
        run.manager.initialize(state)
        logger.info(f"Starting workflow '{self.graph.name}' ({workflow_id}) at node '{entry}'")
        self._notify("on_workflow_started", workflow_id, self.graph.name, state)
        return state, run

    def _prepare_resume(
        self,
        saved_state: WorkflowState,
        context_updates: Optional[WorkflowContext],
        merge_strategy: Optional[Union[ContextMergeStrategy, str]],
    ) -> Union[ExecutionResult, Tuple[WorkflowState, _Run]]:
        run = _Run(saved_state.workflow_id)
        node_id = saved_state.current_node_id

        errors = self.graph.validate()
        if errors:
            return self._result(run, ExecutionStatus.ERROR, saved_state, error=StructuralError(errors))
        if node_id is None:
            return self._result(run, ExecutionStatus.ERROR, saved_state, error=CannotResumeError(
                f"Workflow {saved_state.workflow_id} has no current node to resume from"
            ))
        if not self.graph.has_node(node_id):
            return self._result(run, ExecutionStatus.ERROR, saved_state, error=CannotResumeError(
                f"Resume node '{node_id}' not found in graph '{self.graph.name}'",
                node_id=node_id,
            ))

        strategy = ContextMergeStrategy.parse(merge_strategy or self.merge_strategy)
        merged = merge_contexts(saved_state.context, context_updates, strategy)
        for warning in merged.warnings:
            self._warn(saved_state.workflow_id, warning, saved_state)
        if merged.has_unresolved_conflicts:
            self._warn(
                saved_state.workflow_id,
                f"Resuming {saved_state.workflow_id} with unresolved context conflicts: "
                f"{[c.key.name for c in merged.conflicts if not c.is_resolved]}",
                saved_state,
            )
        run.merge_conflicts = merged.conflicts
        run.merge_warnings = merged.warnings

        context = merged.merged_context.update({
            RESUME_COUNT: saved_state.context.get(RESUME_COUNT, 0) + 1,
            RESUMED_AT: run.started_at,
        })
        state = saved_state.with_context(context)
        run.manager.initialize(state)
        logger.info(
            f"Resuming workflow '{self.graph.name}' ({state.workflow_id}) at node '{node_id}' "
            f"using {strategy.value}"
        )
        self._notify("on_workflow_resumed", state.workflow_id, state)
        return state, run

    # Step loop

    def _step_loop(self, state: WorkflowState, run: _Run) -> _StepLoop:
        while True:
            node_id = state.current_node_id

            if run.steps >= self.max_execution_steps:
                logger.error(f"Step budget of {self.max_execution_steps} exhausted at node '{node_id}'")
                return self._result(
                    run, ExecutionStatus.ERROR, state,
                    error=StepBudgetExceededError(self.max_execution_steps, node_id),
                )

            node = self.graph.get_node(node_id)
            if node is None:
                return self._result(run, ExecutionStatus.ERROR, state, error=ExecutionError(
                    f"Node '{node_id}' not found in graph", node_id=node_id,
                ))

            run.steps += 1
            step = ExecutionStep(step=run.steps, node=node_id, started_at=datetime.now())
            node_start_time = time.time()
            logger.info(f"Executing node: {node.display_name} (step {run.steps})")
            self._notify("on_node_started", state.workflow_id, node_id, state)

            command = yield node, state

            step.completed_at = datetime.now()
            step.duration_ms = (time.time() - node_start_time) * 1000
            if not isinstance(command, _COMMANDS):
                command = Error(ExecutionError(
                    f"Node '{node_id}' returned {type(command).__name__}, expected a GraphCommand",
                    node_id=node_id,
                ))
            step.command = type(command).__name__
            if not isinstance(command, Error):
                self._notify("on_node_completed", state.workflow_id, node_id, state, step.duration_ms)

            if isinstance(command, Traverse):
                preview = state.apply(command.context_update, command.data)
                edge_id = None
                if command.target is not None:
                    target = command.target
                    if not self.graph.has_node(target):
                        return self._fail_step(run, step, preview, ExecutionError(
                            f"Traverse target '{target}' not found in graph", node_id=node_id,
                        ))
                else:
                    try:
                        edge = self.graph.route(node_id, preview)
                    except NoRouteFoundError as e:
                        return self._fail_step(run, step, preview, e)
                    target, edge_id = edge.target, edge.edge_id
                state = state.advance(target, command.context_update, command.data, edge_id)
                step.route_taken = edge_id or target
                self._record(run, step, state, node_id)
                self._notify("on_node_transition", state.workflow_id, edge_id, node_id, target, state)
                continue

            if isinstance(command, Complete):
                state = state.finish(command.context_update, command.data)
                self._record(run, step, state, node_id)
                try:
                    output = (
                        self.output_extractor(command.result, state)
                        if self.output_extractor else command.result
                    )
                except Exception as e:
                    logger.error(f"Output extraction failed: {e}")
                    return self._result(run, ExecutionStatus.ERROR, state, error=ExecutionError(
                        f"Output extraction failed: {e}", node_id=node_id, cause=e,
                    ))
                logger.info(f"Workflow '{self.graph.name}' completed after {run.steps} step(s)")
                return self._result(run, ExecutionStatus.COMPLETED, state, output=output)

            if isinstance(command, Suspend):
                state = state.apply(command.context_update)
                self._record(run, step, state, node_id)
                logger.info(f"Workflow suspended at node '{node_id}': {command.reason}")
                return self._result(
                    run, ExecutionStatus.SUSPENDED, state,
                    suspension_reason=command.reason,
                    suspension_id=command.suspension_id,
                )

            # Error
            error = command.error.with_node(node_id)
            if command.fallback is not None:
                if self.graph.has_node(command.fallback):
                    logger.warning(
                        f"Node '{node_id}' failed ({error.message}); continuing at fallback '{command.fallback}'"
                    )
                    self._notify("on_node_error", state.workflow_id, node_id, error, state)
                    state = state.advance(command.fallback, command.context_update)
                    step.result = "error"
                    step.error = error.message
                    step.route_taken = command.fallback
                    self._record(run, step, state, node_id)
                    self._notify("on_node_transition", state.workflow_id, None, node_id, command.fallback, state)
                    continue
                self._warn(state.workflow_id, f"Fallback node '{command.fallback}' not found in graph", state)
            return self._fail_step(run, step, state.apply(command.context_update), error)

    def _drive(self, loop: _StepLoop) -> ExecutionResult:
        try:
            node, state = next(loop)
            while True:
                node, state = loop.send(self._invoke(node, state))
        except StopIteration as stop:
            return stop.value

    async def _adrive(self, loop: _StepLoop) -> ExecutionResult:
        try:
            node, state = next(loop)
            while True:
                command = await self._ainvoke(node, state)
                node, state = loop.send(command)
        except StopIteration as stop:
            return stop.value

    def _invoke(self, node: Node, state: WorkflowState) -> GraphCommand:
        if node.is_async:
            return Error(ExecutionError(
                f"Node '{node.node_id}' is async; use astart()/aresume()",
                node_id=node.node_id,
            ))
        try:
            command = node.process(state)
        except Exception as e:
            logger.error(f"Node {node.node_id} failed: {e}")
            return Error(ExecutionError(str(e) or type(e).__name__, node_id=node.node_id, cause=e))
        if inspect.isawaitable(command):
            if inspect.iscoroutine(command):
                command.close()
            return Error(ExecutionError(
                f"Node '{node.node_id}' returned an awaitable; use astart()/aresume()",
                node_id=node.node_id,
            ))
        return command

    async def _ainvoke(self, node: Node, state: WorkflowState) -> GraphCommand:
        try:
            if node.is_async:
                command = await node.process(state)
            else:
                # Run sync nodes in the default executor to not block the loop
                loop = asyncio.get_running_loop()
                command = await loop.run_in_executor(None, functools.partial(node.process, state))
            if inspect.isawaitable(command):
                command = await command
        except Exception as e:
            logger.error(f"Node {node.node_id} failed: {e}")
            return Error(ExecutionError(str(e) or type(e).__name__, node_id=node.node_id, cause=e))
        return command

    # Bookkeeping

    def _record(self, run: _Run, step: ExecutionStep, state: WorkflowState, node_id: str) -> None:
        run.execution_log.append(step)
        run.manager.update(state, node_id)
        if self.on_step:
            try:
                self.on_step(step, state)
            except Exception as e:
                logger.warning(f"Step callback failed: {e}")

    def _notify(self, hook: str, *args: Any) -> None:
        if self.monitor is None:
            return
        try:
            getattr(self.monitor, hook)(*args)
        except Exception as e:
            logger.warning(f"Monitor hook {hook} failed: {e}")

    def _warn(self, workflow_id: str, message: str, state: Optional[WorkflowState]) -> None:
        logger.warning(message)
        self._notify("on_warning", workflow_id, message, state)

    def _fail_step(
        self,
        run: _Run,
        step: ExecutionStep,
        state: WorkflowState,
        error: WorkflowError,
    ) -> ExecutionResult:
        step.result = "error"
        step.error = error.message
        self._record(run, step, state, step.node)
        self._notify("on_node_error", state.workflow_id, step.node, error, state)
        logger.error(f"Workflow '{self.graph.name}' failed at node '{step.node}': {error.message}")
        return self._result(run, ExecutionStatus.ERROR, state, error=error)

    def _result(
        self,
        run: _Run,
        status: ExecutionStatus,
        state: WorkflowState,
        output: Any = None,
        error: Optional[WorkflowError] = None,
        suspension_reason: Optional[str] = None,
        suspension_id: Optional[str] = None,
    ) -> ExecutionResult:
        if status == ExecutionStatus.COMPLETED:
            self._notify("on_workflow_completed", state.workflow_id, state)
        elif status == ExecutionStatus.SUSPENDED:
            self._notify("on_workflow_suspended", state.workflow_id, state)
        elif error is not None:
            self._notify("on_workflow_error", state.workflow_id, error, state)
        return ExecutionResult(
            workflow_id=state.workflow_id,
            graph_name=self.graph.name,
            status=status,
            final_state=state,
            output=output,
            error=error,
            suspension_reason=suspension_reason,
            suspension_id=suspension_id,
            execution_log=run.execution_log,
            history=run.manager.get_history(),
            started_at=run.started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - run.start_time) * 1000,
            steps=run.steps,
            merge_conflicts=run.merge_conflicts,
            merge_warnings=run.merge_warnings,
        )


def run_workflow(
    graph: Graph,
    input: Any = None,
    context: Optional[WorkflowContext] = None,
    **engine_options: Any,
) -> ExecutionResult:
    """
    Convenience function to run a graph once.

    Args:
        graph: The workflow graph
        input: Initial payload
        context: Initial context
        **engine_options: Passed to WorkflowEngine

    Returns:
        ExecutionResult
    """
    return WorkflowEngine(graph, **engine_options).start(input, context)


async def execute_graph(
    graph: Graph,
    input: Any = None,
    context: Optional[WorkflowContext] = None,
    **engine_options: Any,
) -> ExecutionResult:
    """Async counterpart of ``run_workflow``."""
    return await WorkflowEngine(graph, **engine_options).astart(input, context)
