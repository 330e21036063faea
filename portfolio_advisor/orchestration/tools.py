"""Tool contract, execution context and registry."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from .metrics import MetricRegistry


class PlanError(Exception):
    """Base class for plan definition and execution errors."""


class PlanDefinitionError(PlanError, ValueError):
    """Raised for malformed plans, duplicate steps or unsatisfiable dependencies."""


class ToolNotFoundError(PlanError, LookupError):
    def __init__(self, tool: str) -> None:
        super().__init__(f"Tool {tool} not found")
        self.tool = tool


class ToolFailure(PlanError):
    """A tool raised while executing a plan step.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, step: str, tool: str, error: BaseException, *, attempts: int = 1) -> None:
        super().__init__(f"Step {step} ({tool}) failed: {error}")
        self.step = step
        self.tool = tool
        self.error = error
        self.attempts = attempts


@dataclass
class ExecutionContext:
    """Per-request data handed to every tool invocation."""

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    user_id: str = "default"
    user_keys: Mapping[str, str] = field(default_factory=dict, repr=False)
    metrics: MetricRegistry = field(default_factory=MetricRegistry)

    def key(self, name: str) -> str:
        return str(self.user_keys.get(name) or "")


@runtime_checkable
class Tool(Protocol):
    """Uniform computation unit invoked by the plan runner.

    ``run`` returns a JSON-like value, or an awaitable resolving to one.
    """

    name: str

    def run(self, input: Any, context: ExecutionContext) -> Any:
        ...


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool, *, name: Optional[str] = None) -> None:
        key = name or getattr(tool, "name", None)
        if not key:
            raise ValueError(f"Tool {tool!r} has no name")
        if key in self._tools:
            raise ValueError(f"Tool {key} already registered")
        self._tools[key] = tool

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def names(self) -> List[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
