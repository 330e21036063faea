"""Plan runner, tool contract and built-in tools.

A plan is an ordered list of steps naming a registered tool and an input
template. The runner resolves each template against the run-scoped
blackboard, invokes the tool and records the output under the step name.
"""

from .builtin_tools import build_default_registry
from .metrics import HistogramSummary, MetricRegistry, Timer
from .plan import ANALYZE_PORTFOLIO, BUILTIN_PLANS, FIND_OPPORTUNITIES, REBALANCE_ADVISOR, Plan, PlanStep, load_plan
from .runner import (
    ExecutionMode,
    FailurePolicy,
    PlanEvent,
    PlanResult,
    PlanRunner,
    StepOutcome,
    execute_plan,
)
from .templates import Literal, Reference, parse_template, resolve_template
from .tools import (
    ExecutionContext,
    PlanDefinitionError,
    PlanError,
    Tool,
    ToolFailure,
    ToolNotFoundError,
    ToolRegistry,
)

__all__ = [
    "ANALYZE_PORTFOLIO",
    "BUILTIN_PLANS",
    "FIND_OPPORTUNITIES",
    "REBALANCE_ADVISOR",
    "ExecutionContext",
    "ExecutionMode",
    "FailurePolicy",
    "HistogramSummary",
    "Literal",
    "MetricRegistry",
    "Plan",
    "PlanDefinitionError",
    "PlanError",
    "PlanEvent",
    "PlanResult",
    "PlanRunner",
    "PlanStep",
    "Reference",
    "StepOutcome",
    "Timer",
    "Tool",
    "ToolFailure",
    "ToolNotFoundError",
    "ToolRegistry",
    "build_default_registry",
    "execute_plan",
    "load_plan",
    "parse_template",
    "resolve_template",
]
