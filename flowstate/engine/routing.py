"""
Confidence-based content routing.

A classifier looks at the payload and proposes a route with a confidence
score. The ConfidenceRouter enforces thresholds, substitutes a fallback
route when confidence is too low, and runs the chosen route (itself a
workflow graph) with failure fallback.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging

from pydantic import BaseModel, Field

from flowstate.config import settings
from flowstate.engine.command import Complete, Error, GraphCommand, Traverse
from flowstate.engine.context import WorkflowContext
from flowstate.engine.errors import (
    ExecutionError,
    LowConfidenceNoFallbackError,
    NoRouteFoundError,
    StructuralError,
    WorkflowError,
)
from flowstate.engine.executor import ExecutionResult, WorkflowEngine
from flowstate.engine.graph import Graph
from flowstate.engine.keys import (
    EXECUTED_ROUTE,
    FALLBACK_REASON,
    ORIGINAL_ROUTE,
    ROUTE_CONFIDENCE,
    ROUTE_REASONING,
    ROUTE_SELECTED,
    USED_FALLBACK,
)
from flowstate.engine.node import FunctionNode
from flowstate.engine.state import WorkflowState


logger = logging.getLogger(__name__)


class RouteCandidate(BaseModel):
    """An alternative route the classifier considered."""
    route: str
    confidence: float = Field(ge=0.0, le=1.0)


class RoutingDecision(BaseModel):
    """A classifier's choice of route."""
    route: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    alternatives: List[RouteCandidate] = Field(default_factory=list)

    def meets_threshold(self, threshold: float) -> bool:
        return self.confidence >= threshold


@dataclass
class Route:
    """
    A named destination backed by its own workflow graph.

    Attributes:
        route_id: Unique route name
        graph: Workflow executed when the route is chosen
        description: Human-readable description (useful to classifiers)
        confidence_threshold: Minimum confidence for this route specifically
        fallback: Route id to try if this route fails
        metadata: Additional route metadata
    """
    route_id: str
    graph: Graph
    description: str = ""
    confidence_threshold: float = 0.0
    fallback: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.route_id or not self.route_id.strip():
            raise ValueError("Route id cannot be empty")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(
                f"Route '{self.route_id}' confidence threshold must be between 0 and 1"
            )

    @classmethod
    def chain(
        cls,
        route_id: str,
        *handlers: Callable[[Any], Any],
        description: str = "",
        confidence_threshold: float = 0.0,
        fallback: Optional[str] = None,
    ) -> "Route":
        """
        Build a route from plain ``payload -> payload`` functions run in order.

        The last function's return value is the route's output.
        """
        if not handlers:
            raise ValueError(f"Route '{route_id}' needs at least one handler")
        graph = Graph(name=route_id, description=description)
        ids = [f"{route_id}.{i}.{getattr(h, '__name__', 'step')}" for i, h in enumerate(handlers)]
        for i, (node_id, handler) in enumerate(zip(ids, handlers)):
            next_id = ids[i + 1] if i + 1 < len(ids) else None
            graph.add_node(FunctionNode(
                node_id=node_id,
                handler=_chain_step(handler, next_id),
                name=getattr(handler, "__name__", node_id),
                is_entry_point=(i == 0),
            ))
            if next_id:
                graph.add_edge(node_id, next_id)
        return cls(
            route_id=route_id,
            graph=graph,
            description=description,
            confidence_threshold=confidence_threshold,
            fallback=fallback,
        )

    def execute(
        self,
        payload: Any,
        context: Optional[WorkflowContext] = None,
        max_execution_steps: Optional[int] = None,
    ) -> ExecutionResult:
        """Run the route's graph to completion in a nested engine."""
        return WorkflowEngine(self.graph, max_execution_steps=max_execution_steps).start(payload, context)


def _chain_step(handler: Callable[[Any], Any], next_id: Optional[str]) -> Callable[[WorkflowState], GraphCommand]:
    def step(state: WorkflowState) -> GraphCommand:
        output = handler(state.data)
        if next_id is None:
            return Complete(result=output, data=output)
        return Traverse(data=output)
    return step


class ContentRouter(ABC):
    """Classifies a payload into one of the available routes."""

    @abstractmethod
    def classify(
        self,
        payload: Any,
        routes: Sequence[Route],
        context: WorkflowContext,
    ) -> RoutingDecision:
        """Return the chosen route with a confidence score."""


Classifier = Union[ContentRouter, Callable[[Any, Sequence[Route], WorkflowContext], RoutingDecision]]


@dataclass
class RoutingRule:
    """A rule for RuleBasedContentRouter."""
    route: str
    predicate: Callable[[Any, WorkflowContext], bool]
    confidence: float = 1.0
    priority: int = 0
    description: str = ""

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Rule for route '{self.route}' confidence must be between 0 and 1")

    @classmethod
    def keywords(
        cls,
        route: str,
        *words: str,
        confidence: float = 0.9,
        priority: int = 0,
    ) -> "RoutingRule":
        """Match string payloads containing any of ``words`` (case-insensitive)."""
        lowered = [w.lower() for w in words]

        def predicate(payload: Any, context: WorkflowContext) -> bool:
            text = str(payload).lower()
            return any(w in text for w in lowered)

        return cls(
            route=route,
            predicate=predicate,
            confidence=confidence,
            priority=priority,
            description=f"keywords {list(words)}",
        )

    def matches(self, payload: Any, context: WorkflowContext) -> bool:
        try:
            return bool(self.predicate(payload, context))
        except Exception as e:
            logger.debug(f"Routing rule for '{self.route}' raised {e!r}; treating as no match")
            return False


class RuleBasedContentRouter(ContentRouter):
    """
    Deterministic classifier driven by predicate rules.

    Rules are evaluated by descending priority; the first match becomes the
    decision and any further matches are listed as alternatives.
    """

    def __init__(
        self,
        rules: Iterable[RoutingRule] = (),
        default_route: Optional[str] = None,
        default_confidence: float = 0.5,
    ):
        self.rules: List[RoutingRule] = sorted(rules, key=lambda r: -r.priority)
        self.default_route = default_route
        self.default_confidence = default_confidence

    def add_rule(self, rule: RoutingRule) -> "RuleBasedContentRouter":
        self.rules = sorted(self.rules + [rule], key=lambda r: -r.priority)
        return self

    def classify(
        self,
        payload: Any,
        routes: Sequence[Route],
        context: WorkflowContext,
    ) -> RoutingDecision:
        available = [r.route_id for r in routes]
        if not available:
            raise NoRouteFoundError("classifier", "No routes available for classification")

        matched = [
            rule for rule in self.rules
            if rule.route in available and rule.matches(payload, context)
        ]
        if matched:
            best = matched[0]
            return RoutingDecision(
                route=best.route,
                confidence=best.confidence,
                reasoning=best.description or f"Matched rule for '{best.route}'",
                alternatives=[RouteCandidate(route=r.route, confidence=r.confidence) for r in matched[1:]],
            )

        if self.default_route in available:
            return RoutingDecision(
                route=self.default_route,
                confidence=self.default_confidence,
                reasoning="No rule matched; using default route",
            )
        return RoutingDecision(
            route=available[0],
            confidence=0.1,
            reasoning="No rule matched and no default route; using first available route",
        )


class ConfidenceRouter:
    """
    Routes a payload to one of several sub-workflows.

    Selection order:
    1. Confidence below the router threshold -> fallback route, or fail
    2. Confidence below the chosen route's own threshold -> same policy
    3. Otherwise the classifier's route

    Execution tries the selected route, then its own fallback chain, then
    the router's fallback route. Each route runs at most once per dispatch.

    Usage:
        router = ConfidenceRouter(classifier, [billing, support], fallback="support")
        result = router.run("Where is my invoice?")
    """

    def __init__(
        self,
        classifier: Classifier,
        routes: Iterable[Route],
        threshold: Optional[float] = None,
        fallback: Optional[str] = None,
        name: str = "confidence-router",
    ):
        self.classifier = classifier
        self.routes: Dict[str, Route] = {}
        for route in routes:
            if route.route_id in self.routes:
                raise StructuralError([f"Route '{route.route_id}' is defined more than once"])
            self.routes[route.route_id] = route
        self.threshold = settings.CONFIDENCE_THRESHOLD if threshold is None else threshold
        self.fallback = fallback
        self.name = name

        problems = []
        if not self.routes:
            problems.append("Router must have at least one route")
        if not 0.0 <= self.threshold <= 1.0:
            problems.append(f"Router threshold {self.threshold} must be between 0 and 1")
        if fallback is not None and fallback not in self.routes:
            problems.append(f"Fallback route '{fallback}' not found in routes")
        for route in self.routes.values():
            if route.fallback is not None and route.fallback not in self.routes:
                problems.append(f"Route '{route.route_id}' fallback '{route.fallback}' not found in routes")
        if problems:
            raise StructuralError(problems)

    def classify(self, payload: Any, context: Optional[WorkflowContext] = None) -> RoutingDecision:
        routes = list(self.routes.values())
        ctx = context if context is not None else WorkflowContext.empty()
        if isinstance(self.classifier, ContentRouter):
            return self.classifier.classify(payload, routes, ctx)
        return self.classifier(payload, routes, ctx)

    def select(self, decision: RoutingDecision) -> Tuple[Route, WorkflowContext]:
        """
        Apply thresholds to a decision.

        Returns:
            The route to execute and the context entries describing any
            fallback substitution

        Raises:
            NoRouteFoundError: The decision names an unknown route
            LowConfidenceNoFallbackError: Confidence too low and no fallback
        """
        route = self.routes.get(decision.route)
        if route is None:
            raise NoRouteFoundError(
                self.name,
                f"Classifier chose unknown route '{decision.route}'; available: {list(self.routes)}",
            )

        if decision.confidence < self.threshold:
            return self._substitute(route, decision.confidence, self.threshold, "router")
        if decision.confidence < route.confidence_threshold:
            return self._substitute(route, decision.confidence, route.confidence_threshold, "route")

        logger.debug(f"Selected route '{route.route_id}' with confidence {decision.confidence:.2f}")
        return route, WorkflowContext.empty()

    def _substitute(
        self,
        route: Route,
        confidence: float,
        threshold: float,
        level: str,
    ) -> Tuple[Route, WorkflowContext]:
        if self.fallback is None:
            raise LowConfidenceNoFallbackError(route.route_id, confidence, threshold)
        reason = (
            f"Confidence {confidence:.2f} below {level} threshold {threshold:.2f} "
            f"for route '{route.route_id}'"
        )
        logger.info(f"{reason}; using fallback route '{self.fallback}'")
        context = WorkflowContext.of(
            ORIGINAL_ROUTE, route.route_id,
            FALLBACK_REASON, reason,
            USED_FALLBACK, True,
        )
        return self.routes[self.fallback], context

    def _attempt_order(self, route: Route) -> List[Route]:
        order: List[str] = []
        current: Optional[Route] = route
        while current is not None and current.route_id not in order:
            order.append(current.route_id)
            current = self.routes.get(current.fallback) if current.fallback else None
        if self.fallback is not None and self.fallback not in order:
            order.append(self.fallback)
        return [self.routes[route_id] for route_id in order]

    def execute(
        self,
        route: Route,
        payload: Any,
        context: Optional[WorkflowContext] = None,
        max_execution_steps: Optional[int] = None,
    ) -> Tuple[Any, Route]:
        """
        Run a route, falling back on failure.

        ``max_execution_steps`` limits each nested route run.

        Returns:
            The output of the first route that completed and that route

        Raises:
            ExecutionError: Every candidate route failed
        """
        attempts = self._attempt_order(route)
        last_error: Optional[WorkflowError] = None
        for candidate in attempts:
            logger.info(f"Executing route '{candidate.route_id}'")
            result = candidate.execute(payload, context, max_execution_steps)
            if result.is_completed:
                return result.output, candidate
            last_error = result.error or ExecutionError(
                f"Route '{candidate.route_id}' ended with status {result.status.value}"
            )
            logger.warning(f"Route '{candidate.route_id}' failed: {last_error.message}")
        raise ExecutionError(
            f"Route '{route.route_id}' failed and no fallback succeeded "
            f"(tried {[r.route_id for r in attempts]})",
            cause=last_error,
        )

    # Graph integration

    def classifier_node(self, node_id: str = "classify") -> FunctionNode:
        """Node that classifies the payload and records the decision in context."""
        def classify(state: WorkflowState) -> GraphCommand:
            decision = self.classify(state.data, state.context)
            logger.debug(
                f"Classifier chose '{decision.route}' ({decision.confidence:.2f}): {decision.reasoning}"
            )
            update = WorkflowContext.of(
                ROUTE_SELECTED, decision.route,
                ROUTE_CONFIDENCE, float(decision.confidence),
            )
            if decision.reasoning:
                update = update.set(ROUTE_REASONING, decision.reasoning)
            return Traverse(context_update=update, reason=f"classified as {decision.route}")

        return FunctionNode(node_id=node_id, handler=classify, name="Classify", is_entry_point=True)

    def dispatch_node(
        self,
        node_id: str = "dispatch",
        max_execution_steps: Optional[int] = None,
    ) -> FunctionNode:
        """Node that applies thresholds, runs the selected route and completes."""
        def dispatch(state: WorkflowState) -> GraphCommand:
            decision = RoutingDecision(
                route=state.get(ROUTE_SELECTED),
                confidence=state.get(ROUTE_CONFIDENCE),
                reasoning=state.get(ROUTE_REASONING, ""),
            )
            try:
                route, substitution = self.select(decision)
                output, executed = self.execute(
                    route, state.data, state.context.merge(substitution), max_execution_steps,
                )
            except WorkflowError as e:
                return Error(e)
            return Complete(
                result=output,
                context_update=substitution.set(EXECUTED_ROUTE, executed.route_id),
            )

        return FunctionNode(node_id=node_id, handler=dispatch, name="Dispatch")

    def build_graph(self, max_execution_steps: Optional[int] = None) -> Graph:
        """A two-node graph: classify -> dispatch. The step budget also applies to each route run."""
        return (
            Graph(name=self.name, description="Classify the payload and run the selected route")
            .add_node(self.classifier_node())
            .add_node(self.dispatch_node(max_execution_steps=max_execution_steps))
            .add_edge("classify", "dispatch")
        )

    def run(
        self,
        payload: Any,
        context: Optional[WorkflowContext] = None,
        max_execution_steps: Optional[int] = None,
    ) -> ExecutionResult:
        """Classify and execute in one call."""
        graph = self.build_graph(max_execution_steps)
        return WorkflowEngine(graph, max_execution_steps=max_execution_steps).start(payload, context)
