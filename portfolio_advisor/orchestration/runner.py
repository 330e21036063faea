"""Plan execution against a tool registry and a run-scoped blackboard."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .metrics import Timer
from .plan import Plan, PlanStep
from .templates import resolve_template
from .tools import ExecutionContext, PlanDefinitionError, Tool, ToolFailure, ToolRegistry

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    GRAPH = "graph"


class FailurePolicy(str, Enum):
    ABORT = "abort"
    SKIP = "skip"
    RETRY = "retry"


class EventStatus(str, Enum):
    STARTING = "starting"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PlanEvent:
    step: str
    message: str
    status: EventStatus
    timestamp: int = field(default_factory=_now_ms)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "message": self.message,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }


@dataclass
class StepOutcome:
    """Value or failure of one step, after any retries."""

    step: str
    tool: str
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 1
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise ToolFailure(self.step, self.tool, self.error, attempts=self.attempts) from self.error
        return self.value


@dataclass
class PlanResult:
    blackboard: Dict[str, Any]
    events: List[PlanEvent]
    outcomes: Dict[str, StepOutcome] = field(default_factory=dict)

    @property
    def failed_steps(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if not outcome.ok]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "blackboard": self.blackboard,
            "events": [event.to_payload() for event in self.events],
        }


EventCallback = Callable[[PlanEvent], Any]


class PlanRunner:
    """Execute plans step by step or as a dependency graph.

    The runner owns the blackboard of each execution: tools receive resolved
    inputs and return outputs, and only the runner writes results back.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        context: Optional[ExecutionContext] = None,
        *,
        mode: ExecutionMode | str = ExecutionMode.SEQUENTIAL,
        failure_policy: FailurePolicy | str = FailurePolicy.ABORT,
        max_attempts: int = 1,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.registry = registry
        self.context = context or ExecutionContext()
        self.mode = ExecutionMode(mode)
        self.failure_policy = FailurePolicy(failure_policy)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts if self.failure_policy is FailurePolicy.RETRY else 1
        self.on_event = on_event

    async def execute_plan(
        self, plan: Plan, initial_blackboard: Optional[Mapping[str, Any]] = None
    ) -> PlanResult:
        blackboard: Dict[str, Any] = dict(initial_blackboard or {})
        result = PlanResult(blackboard=blackboard, events=[])
        tools = {step.name: self.registry.get(step.tool) for step in plan.steps}

        logger.info(
            "Executing plan",
            extra={
                "plan": plan.name,
                "mode": self.mode.value,
                "failure_policy": self.failure_policy.value,
                "request_id": self.context.request_id,
                "steps": plan.step_names,
            },
        )
        absent = sorted(plan.external_references() - set(blackboard))
        if absent:
            logger.debug(
                "Plan inputs absent from the blackboard resolve to None",
                extra={"plan": plan.name, "keys": absent, "request_id": self.context.request_id},
            )
        started = time.perf_counter()
        if self.mode is ExecutionMode.GRAPH:
            await self._execute_graph(plan, tools, result)
        else:
            await self._execute_sequential(plan, tools, result)

        self.context.metrics.observe("plan_latency_seconds", time.perf_counter() - started, labels={"plan": plan.name})
        logger.info(
            "Plan completed",
            extra={
                "plan": plan.name,
                "request_id": self.context.request_id,
                "failed_steps": result.failed_steps,
                "duration": time.perf_counter() - started,
            },
        )
        return result

    async def _execute_sequential(self, plan: Plan, tools: Mapping[str, Tool], result: PlanResult) -> None:
        for step in plan.steps:
            tool_input = resolve_template(step.template, result.blackboard)
            outcome = await self._run_step(step, tools[step.name], tool_input, result, threaded=False)
            self._record(step, outcome, result)

    async def _execute_graph(self, plan: Plan, tools: Mapping[str, Tool], result: PlanResult) -> None:
        dependencies = plan.dependencies()
        self._validate_graph(plan, dependencies)

        remaining: List[PlanStep] = list(plan.steps)
        finished: Set[str] = set()
        running: Dict["asyncio.Future[StepOutcome]", PlanStep] = {}
        try:
            while remaining or running:
                ready = [step for step in remaining if dependencies[step.name] <= finished]
                for step in ready:
                    remaining.remove(step)
                    tool_input = resolve_template(step.template, result.blackboard)
                    task = asyncio.ensure_future(
                        self._run_step(step, tools[step.name], tool_input, result, threaded=True)
                    )
                    running[task] = step
                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    step = running.pop(task)
                    self._record(step, task.result(), result)
                    finished.add(step.name)
        finally:
            for task in running:
                task.cancel()

    def _validate_graph(self, plan: Plan, dependencies: Mapping[str, Set[str]]) -> None:
        # Kahn's algorithm; anything left unvisited sits on a cycle.
        pending = {name: set(deps) for name, deps in dependencies.items()}
        resolved: Set[str] = set()
        while True:
            free = [name for name, deps in pending.items() if deps <= resolved]
            if not free:
                break
            for name in free:
                resolved.add(name)
                del pending[name]
        if pending:
            raise PlanDefinitionError(
                f"Plan {plan.name} has a dependency cycle between steps: {', '.join(sorted(pending))}"
            )

    async def _run_step(
        self,
        step: PlanStep,
        tool: Tool,
        tool_input: Any,
        result: PlanResult,
        *,
        threaded: bool,
    ) -> StepOutcome:
        self._emit(result, PlanEvent(step.name, f"Executing {step.name}...", EventStatus.STARTING))
        labels = {"step": step.name, "tool": step.tool}
        attempt = 0
        while True:
            attempt += 1
            timer = Timer(self.context.metrics, "plan_step_latency_seconds", labels=labels)
            try:
                with timer:
                    value = await self._invoke(tool, tool_input, threaded=threaded)
            except Exception as exc:
                logger.warning(
                    "Plan step raised",
                    extra={
                        "step": step.name,
                        "tool": step.tool,
                        "attempt": attempt,
                        "error": str(exc),
                        "request_id": self.context.request_id,
                    },
                    exc_info=attempt >= self.max_attempts,
                )
                if attempt < self.max_attempts:
                    self._emit(
                        result,
                        PlanEvent(
                            step.name,
                            f"Retrying {step.name} (attempt {attempt + 1} of {self.max_attempts})",
                            EventStatus.RETRYING,
                        ),
                    )
                    continue
                return StepOutcome(step.name, step.tool, error=exc, attempts=attempt, elapsed=timer.elapsed or 0.0)
            return StepOutcome(step.name, step.tool, value=value, attempts=attempt, elapsed=timer.elapsed or 0.0)

    async def _invoke(self, tool: Tool, tool_input: Any, *, threaded: bool) -> Any:
        if inspect.iscoroutinefunction(tool.run):
            return await tool.run(tool_input, self.context)
        if threaded:
            value = await asyncio.to_thread(tool.run, tool_input, self.context)
        else:
            value = tool.run(tool_input, self.context)
        if inspect.isawaitable(value):
            value = await value
        return value

    def _record(self, step: PlanStep, outcome: StepOutcome, result: PlanResult) -> None:
        result.outcomes[step.name] = outcome
        if outcome.ok:
            result.blackboard[step.name] = outcome.value
            self.context.metrics.inc("plan_steps_total", labels={"tool": step.tool, "status": "completed"})
            self._emit(result, PlanEvent(step.name, f"Completed {step.name}", EventStatus.COMPLETED))
            logger.debug(
                "Plan step completed",
                extra={"step": step.name, "tool": step.tool, "attempts": outcome.attempts, "duration": outcome.elapsed},
            )
            return

        self.context.metrics.inc("plan_steps_total", labels={"tool": step.tool, "status": "failed"})
        self._emit(result, PlanEvent(step.name, f"Failed {step.name}: {outcome.error}", EventStatus.FAILED))
        if self.failure_policy is FailurePolicy.SKIP:
            logger.warning(
                "Skipping failed plan step",
                extra={"step": step.name, "tool": step.tool, "request_id": self.context.request_id},
            )
            return
        outcome.unwrap()

    def _emit(self, result: PlanResult, event: PlanEvent) -> None:
        result.events.append(event)
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Plan event callback failed", extra={"step": event.step})


async def execute_plan(
    plan: Plan,
    initial_blackboard: Optional[Mapping[str, Any]] = None,
    *,
    registry: ToolRegistry,
    context: Optional[ExecutionContext] = None,
    mode: ExecutionMode | str = ExecutionMode.SEQUENTIAL,
    failure_policy: FailurePolicy | str = FailurePolicy.ABORT,
    max_attempts: int = 1,
    on_event: Optional[EventCallback] = None,
) -> PlanResult:
    runner = PlanRunner(
        registry,
        context,
        mode=mode,
        failure_policy=failure_policy,
        max_attempts=max_attempts,
        on_event=on_event,
    )
    return await runner.execute_plan(plan, initial_blackboard)
