"""Plan definitions and the built-in analysis plans."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Set, Tuple

from .templates import Node, parse_template, referenced_keys
from .tools import PlanDefinitionError


@dataclass(frozen=True)
class PlanStep:
    name: str
    tool: str
    input: Any = None

    @property
    def template(self) -> Node:
        return parse_template(self.input)

    def references(self) -> Set[str]:
        return referenced_keys(self.input)

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "tool": self.tool, "input": self.input}

    @classmethod
    def from_mapping(cls, payload: Any) -> "PlanStep":
        if not isinstance(payload, Mapping):
            raise PlanDefinitionError(f"Plan step must be an object, got {type(payload).__name__}")
        name = payload.get("name")
        tool = payload.get("tool")
        if not isinstance(name, str) or not name.strip():
            raise PlanDefinitionError("Plan step requires a non-empty 'name'")
        if not isinstance(tool, str) or not tool.strip():
            raise PlanDefinitionError(f"Plan step {name} requires a non-empty 'tool'")
        try:
            parse_template(payload.get("input"))
        except ValueError as exc:
            raise PlanDefinitionError(f"Plan step {name} has an invalid input template: {exc}") from exc
        return cls(name=name.strip(), tool=tool.strip(), input=payload.get("input"))


@dataclass(frozen=True)
class Plan:
    """An ordered sequence of steps with unique names."""

    name: str
    steps: Tuple[PlanStep, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        seen: Set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise PlanDefinitionError(f"Plan {self.name} declares step {step.name} more than once")
            seen.add(step.name)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def dependencies(self) -> Dict[str, Set[str]]:
        """Map each step to the other plan steps its input references."""

        names = set(self.step_names)
        return {step.name: (step.references() & names) - {step.name} for step in self.steps}

    def external_references(self) -> Set[str]:
        """Referenced keys that no step of this plan produces."""

        names = set(self.step_names)
        keys: Set[str] = set()
        for step in self.steps:
            keys |= step.references() - names
        return keys

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "steps": [step.to_payload() for step in self.steps]}

    @classmethod
    def from_mapping(cls, payload: Any) -> "Plan":
        if not isinstance(payload, Mapping):
            raise PlanDefinitionError("Plan definition must be a JSON object")
        name = str(payload.get("name") or "").strip()
        if not name:
            raise PlanDefinitionError("Plan definition requires a 'name'")
        raw_steps = payload.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise PlanDefinitionError(f"Plan {name} must declare a non-empty 'steps' list")
        return cls(name=name, steps=tuple(PlanStep.from_mapping(step) for step in raw_steps))


def load_plan(path: Path) -> Plan:
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Plan file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise PlanDefinitionError(f"Invalid JSON in plan file {path}: {exc}") from exc
    return Plan.from_mapping(payload)


ANALYZE_PORTFOLIO = Plan(
    name="Analyze Portfolio",
    steps=(
        PlanStep("fetch_history", "history", {"symbols": "$symbols", "windowDays": "$window_days"}),
        PlanStep("compute_risk", "risk_metrics", {"history": "$fetch_history", "weights": "$weights"}),
        PlanStep(
            "compute_health",
            "health_scores",
            {
                "risk": "$compute_risk",
                "pnlPct": "$pnl_pct",
                "weights": "$weights",
                "history": "$fetch_history",
            },
        ),
        PlanStep("check_alerts", "alerts", {"risk": "$compute_risk", "policy": "$policy", "weights": "$weights"}),
    ),
)

REBALANCE_ADVISOR = Plan(
    name="Rebalance Advisor",
    steps=(
        PlanStep("fetch_prices", "prices", {"symbols": "$symbols"}),
        PlanStep("fetch_history", "history", {"symbols": "$symbols", "windowDays": "$window_days"}),
        PlanStep("compute_risk", "risk_metrics", {"history": "$fetch_history", "weights": "$weights"}),
        PlanStep(
            "generate_rebalance",
            "rebalance",
            {
                "holdings": "$holdings",
                "prices": "$fetch_prices",
                "history": "$fetch_history",
                "constraints": "$constraints",
            },
        ),
        PlanStep("check_alerts", "alerts", {"risk": "$compute_risk", "policy": "$policy", "weights": "$weights"}),
    ),
)

FIND_OPPORTUNITIES = Plan(
    name="Find Opportunities",
    steps=(
        PlanStep("fetch_history", "history", {"symbols": "$symbols", "windowDays": "$window_days"}),
        PlanStep(
            "scan_opportunities",
            "opportunity_scanner",
            {"symbols": "$symbols", "history": "$fetch_history", "sentiment": "$sentiment"},
        ),
    ),
)

BUILTIN_PLANS: Dict[str, Plan] = {
    "analyze": ANALYZE_PORTFOLIO,
    "rebalance": REBALANCE_ADVISOR,
    "opportunities": FIND_OPPORTUNITIES,
}
