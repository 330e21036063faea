"""Advisor facade used by the HTTP layer and the command line."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from services.cache import TTLCache
from services.market_data import CcxtMarketData, MarketDataProvider, StaticMarketData
from services.telemetry import Telemetry

from .analytics.rebalance import MIN_ASSETS
from .config.models import AdvisorConfig, RebalanceConstraints, RiskPolicy
from .models import coerce_history, coerce_prices
from .narrative import NarrativeSummarizer, RuleBasedSummarizer, summarize_safely
from .normalize import normalize_holdings, validate_minimum_assets
from .orchestration import (
    ANALYZE_PORTFOLIO,
    BUILTIN_PLANS,
    FIND_OPPORTUNITIES,
    REBALANCE_ADVISOR,
    ExecutionContext,
    MetricRegistry,
    Plan,
    PlanEvent,
    PlanResult,
    PlanRunner,
    ToolRegistry,
    build_default_registry,
    load_plan,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[PlanEvent], Any]


def build_market_data(
    config: AdvisorConfig,
    *,
    cache: Optional[TTLCache] = None,
    telemetry: Optional[Telemetry] = None,
) -> MarketDataProvider:
    settings = config.market_data
    if settings.static_fixtures is not None:
        return StaticMarketData.from_json(settings.static_fixtures)
    return CcxtMarketData.create(
        settings.exchange,
        quote=settings.quote,
        cache=cache,
        telemetry=telemetry,
        price_ttl_seconds=settings.cache_ttl_seconds,
        history_ttl_seconds=settings.history_ttl_seconds,
    )


class AdvisorService:
    """Run the analysis and rebalance plans for one holdings payload at a time.

    Every call builds its own blackboard and execution context; only the
    market-data provider (and its cache) is shared between calls.
    """

    def __init__(
        self,
        config: AdvisorConfig,
        market_data: MarketDataProvider,
        *,
        telemetry: Optional[Telemetry] = None,
        registry: Optional[ToolRegistry] = None,
        summarizer: Optional[NarrativeSummarizer] = None,
        user_keys: Optional[Mapping[str, str]] = None,
        metrics: Optional[MetricRegistry] = None,
    ) -> None:
        self.config = config
        self.market_data = market_data
        self.telemetry = telemetry or getattr(market_data, "telemetry", None) or Telemetry(policy=config.resilience)
        self.registry = registry or build_default_registry(
            market_data,
            benchmark=config.benchmark,
            policy=config.policy,
            constraints=config.constraints,
        )
        self.summarizer = summarizer or RuleBasedSummarizer()
        self.user_keys = dict(user_keys or {})
        self.metrics = metrics or MetricRegistry()
        self.plans: Dict[str, Plan] = dict(BUILTIN_PLANS)
        for path in config.plan_paths:
            plan = load_plan(path)
            self.plans[plan.name] = plan
            logger.info("Registered plan from file", extra={"plan": plan.name, "path": str(path)})

    @classmethod
    def from_config(
        cls, config: AdvisorConfig, *, user_keys: Optional[Mapping[str, str]] = None
    ) -> "AdvisorService":
        telemetry = Telemetry(policy=config.resilience)
        market_data = build_market_data(config, cache=TTLCache(), telemetry=telemetry)
        return cls(config, market_data, telemetry=telemetry, user_keys=user_keys)

    def _runner(self, request_id: str, on_event: Optional[EventCallback]) -> PlanRunner:
        context = ExecutionContext(request_id=request_id, user_keys=self.user_keys, metrics=self.metrics)
        return PlanRunner(
            self.registry,
            context,
            mode=self.config.execution_mode,
            failure_policy=self.config.failure_policy,
            max_attempts=self.config.max_attempts,
            on_event=on_event,
        )

    async def run_plan(
        self,
        plan: Plan | str,
        initial_blackboard: Mapping[str, Any],
        *,
        on_event: Optional[EventCallback] = None,
        request_id: Optional[str] = None,
    ) -> PlanResult:
        if isinstance(plan, str):
            try:
                plan = self.plans[plan]
            except KeyError:
                raise ValueError(f"Unknown plan: {plan}") from None
        return await self._runner(request_id or uuid.uuid4().hex[:12], on_event).execute_plan(
            plan, initial_blackboard
        )

    async def _valued_holdings(self, amounts: Mapping[str, float]) -> tuple[List[Dict[str, Any]], Dict[str, float]]:
        prices = await self.market_data.prices(list(amounts))
        holdings: List[Dict[str, Any]] = []
        total = 0.0
        for symbol, amount in amounts.items():
            value = amount * (prices.get(symbol) or 0.0)
            total += value
            holdings.append({"symbol": symbol, "amount": amount, "value": value})
        weights = {item["symbol"]: (item["value"] / total if total > 0 else 0.0) for item in holdings}
        return holdings, weights

    async def analyze(
        self,
        holdings: Any,
        *,
        pnl_pct: float = 0.0,
        policy: Optional[Mapping[str, Any] | RiskPolicy] = None,
        on_event: Optional[EventCallback] = None,
    ) -> Dict[str, Any]:
        """Risk, health and alerts for ``holdings`` plus narrative insights.

        Raises ``ValueError`` for invalid holdings; plan failures propagate as
        ``PlanError`` subclasses.
        """

        amounts = normalize_holdings(holdings)
        if not amounts:
            raise ValueError("No holdings provided")
        request_id = uuid.uuid4().hex[:12]
        started = time.perf_counter()
        valued, weights = await self._valued_holdings(amounts)
        resolved_policy = RiskPolicy.from_mapping(policy, base=self.config.policy) if policy else self.config.policy

        result = await self.run_plan(
            ANALYZE_PORTFOLIO,
            {
                "symbols": list(amounts),
                "weights": weights,
                "holdings": valued,
                "policy": resolved_policy.to_payload(),
                "pnl_pct": pnl_pct,
                "window_days": self.config.window_days,
            },
            on_event=on_event,
            request_id=request_id,
        )
        steps = {name: result.blackboard.get(name) for name in ANALYZE_PORTFOLIO.step_names}
        insights = summarize_safely(self.summarizer, steps)
        logger.info(
            "Portfolio analysis complete",
            extra={
                "request_id": request_id,
                "symbols": list(amounts),
                "duration": time.perf_counter() - started,
            },
        )
        return {
            "requestId": request_id,
            "blackboard": steps,
            "events": [event.to_payload() for event in result.events],
            "holdings": valued,
            "weights": weights,
            "insights": insights,
        }

    async def rebalance(
        self,
        holdings: Any,
        *,
        constraints: Optional[Mapping[str, Any] | RebalanceConstraints] = None,
        policy: Optional[Mapping[str, Any] | RiskPolicy] = None,
        on_event: Optional[EventCallback] = None,
    ) -> Dict[str, Any]:
        """Risk-parity rebalance plan for ``holdings`` given as ``symbol -> amount``."""

        amounts = normalize_holdings(holdings)
        if not amounts:
            raise ValueError("No holdings provided")
        request_id = uuid.uuid4().hex[:12]
        _, weights = await self._valued_holdings(amounts)
        resolved_constraints = (
            RebalanceConstraints.from_mapping(constraints) if constraints else self.config.constraints
        )
        resolved_policy = RiskPolicy.from_mapping(policy, base=self.config.policy) if policy else self.config.policy

        result = await self.run_plan(
            REBALANCE_ADVISOR,
            {
                "symbols": list(amounts),
                "weights": weights,
                "holdings": amounts,
                "constraints": resolved_constraints.to_payload(),
                "policy": resolved_policy.to_payload(),
                "window_days": self.config.window_days,
            },
            on_event=on_event,
            request_id=request_id,
        )

        plan_payload = dict(result.blackboard.get("generate_rebalance") or {})
        eligibility = validate_minimum_assets(
            list(amounts),
            coerce_prices(result.blackboard.get("fetch_prices")),
            coerce_history(result.blackboard.get("fetch_history")),
            min_assets=MIN_ASSETS,
            min_history_points=min(60, self.config.window_days),
        )
        if len(amounts) >= MIN_ASSETS and len(eligibility.eligible) < MIN_ASSETS:
            plan_payload = {
                "targetWeights": {},
                "actions": [],
                "notes": [
                    f"Insufficient eligible assets ({len(eligibility.eligible)}/{MIN_ASSETS})",
                    *eligibility.notes,
                ],
                "method": "none",
                "defaults": [],
            }
        elif plan_payload and len(amounts) >= MIN_ASSETS:
            notes = list(plan_payload.get("notes") or [])
            plan_payload["notes"] = notes + [note for note in eligibility.notes if note not in notes]

        logger.info(
            "Rebalance analysis complete",
            extra={
                "request_id": request_id,
                "eligible": eligibility.eligible,
                "actions": len(plan_payload.get("actions") or []),
            },
        )
        return {
            "requestId": request_id,
            "rebalance": plan_payload,
            "alerts": result.blackboard.get("check_alerts") or [],
            "risk": result.blackboard.get("compute_risk"),
            "events": [event.to_payload() for event in result.events],
        }

    async def find_opportunities(
        self,
        symbols: Any,
        *,
        sentiment: Optional[Mapping[str, float]] = None,
        on_event: Optional[EventCallback] = None,
    ) -> Dict[str, Any]:
        """Screen ``symbols`` for momentum and moving-average setups."""

        if isinstance(symbols, str) or not isinstance(symbols, (list, tuple)):
            raise ValueError("Symbols array is required")
        candidates: List[str] = []
        for item in symbols:
            symbol = str(item or "").strip().upper()
            if symbol and symbol not in candidates:
                candidates.append(symbol)
        if not candidates:
            raise ValueError("Symbols array is required")
        request_id = uuid.uuid4().hex[:12]

        result = await self.run_plan(
            FIND_OPPORTUNITIES,
            {
                "symbols": candidates,
                "window_days": self.config.window_days,
                "sentiment": dict(sentiment) if sentiment else None,
            },
            on_event=on_event,
            request_id=request_id,
        )
        scan = result.blackboard.get("scan_opportunities") or {}
        opportunities = list(scan.get("opportunities") or [])
        logger.info(
            "Opportunity scan complete",
            extra={"request_id": request_id, "symbols": candidates, "hits": len(opportunities)},
        )
        return {
            "requestId": request_id,
            "opportunities": opportunities,
            "events": [event.to_payload() for event in result.events],
        }

    def health(self) -> Dict[str, Any]:
        return self.telemetry.health_snapshot()

    def metrics_snapshot(self) -> Dict[str, Any]:
        """Plan counters and latency summaries accumulated by this service."""

        return self.metrics.snapshot()

    async def close(self) -> None:
        await self.market_data.close()
