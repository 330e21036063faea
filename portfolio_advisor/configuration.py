"""Loading advisor configuration files and environment overrides."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

from services.telemetry import ResiliencePolicy

from .config.models import AdvisorConfig, MarketDataSettings, RebalanceConstraints, RiskPolicy
from .logging_setup import configure_logging, debug_to_logging_level

logger = logging.getLogger(__name__)

EXECUTION_MODES = ("sequential", "graph")
FAILURE_POLICIES = ("abort", "skip", "retry")
USER_KEY_PREFIX = "ADVISOR_KEY_"


def _ensure_logger_level(target: logging.Logger, level: int) -> None:
    """Ensure ``target`` and its handlers are set to at most ``level``."""

    if target.level in {logging.NOTSET} or target.level > level:
        target.setLevel(level)
    for handler in target.handlers:
        if handler.level in {logging.NOTSET} or handler.level > level:
            handler.setLevel(level)


def _configure_default_logging(debug_level: int = 1) -> bool:
    """Install the advisor logging handler unless the root logger already has one."""

    root_logger = logging.getLogger()
    already_configured = bool(root_logger.handlers)
    if not already_configured:
        configure_logging(debug=debug_level)

    desired_level = debug_to_logging_level(debug_level)
    _ensure_logger_level(root_logger, desired_level)
    _ensure_logger_level(logging.getLogger("portfolio_advisor"), desired_level)
    return not already_configured


def _load_json(path: Path) -> Dict[str, Any]:
    """Return parsed JSON payload from ``path`` with helpful error messages."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Configuration file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file {path}: {exc}") from exc


def _ensure_mapping(payload: Any, *, description: str) -> MutableMapping[str, Any]:
    """Return ``payload`` when it is a mapping, otherwise raise ``TypeError``."""

    if isinstance(payload, MutableMapping):
        return payload
    if isinstance(payload, Mapping):
        return dict(payload)
    raise TypeError(f"{description} must be a JSON object, not {type(payload).__name__}.")


def _resolve_path_relative_to(base: Path, candidate: Any) -> Path:
    path = Path(str(candidate)).expanduser()
    if not path.is_absolute():
        return (base / path).resolve()
    return path.resolve()


def _coerce_int(value: Any, *, description: str, minimum: int = 0) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{description} must be an integer, got {value!r}") from exc
    if result < minimum:
        raise ValueError(f"{description} must be at least {minimum}, got {result}")
    return result


def _choice(value: Any, options: tuple[str, ...], *, description: str) -> str:
    text = str(value).strip().lower()
    if text not in options:
        raise ValueError(f"{description} must be one of {', '.join(options)}, got {value!r}")
    return text


def _parse_market_data(raw: Any, *, base_dir: Path) -> MarketDataSettings:
    if raw is None:
        return MarketDataSettings()
    payload = _ensure_mapping(raw, description="Advisor configuration 'market_data'")
    defaults = MarketDataSettings()
    fixtures = payload.get("static_fixtures")
    return MarketDataSettings(
        exchange=str(payload.get("exchange") or defaults.exchange).lower(),
        quote=str(payload.get("quote") or defaults.quote).upper(),
        cache_ttl_seconds=float(payload.get("cache_ttl_seconds", defaults.cache_ttl_seconds)),
        history_ttl_seconds=float(payload.get("history_ttl_seconds", defaults.history_ttl_seconds)),
        static_fixtures=_resolve_path_relative_to(base_dir, fixtures) if fixtures else None,
    )


def validate_advisor_config(
    config: Mapping[str, Any], *, source_path: Optional[Path] = None
) -> AdvisorConfig:
    """Validate and normalise an advisor configuration payload."""

    base_dir = source_path.parent.resolve() if source_path else Path.cwd()

    policy_raw = config.get("policy")
    if policy_raw is not None:
        _ensure_mapping(policy_raw, description="Advisor configuration 'policy'")
    constraints_raw = config.get("constraints")
    if constraints_raw is not None:
        _ensure_mapping(constraints_raw, description="Advisor configuration 'constraints'")

    plans_raw = config.get("plans") or []
    if isinstance(plans_raw, (str, bytes, Mapping)):
        raise TypeError("Advisor configuration 'plans' must be an array of plan file paths.")
    plan_paths: List[Path] = [_resolve_path_relative_to(base_dir, item) for item in plans_raw]

    resilience_raw = config.get("resilience")
    if resilience_raw is not None:
        _ensure_mapping(resilience_raw, description="Advisor configuration 'resilience'")

    return AdvisorConfig(
        policy=RiskPolicy.from_mapping(policy_raw or {}, base=RiskPolicy()),
        constraints=RebalanceConstraints.from_mapping(constraints_raw or {}),
        window_days=_coerce_int(config.get("window_days", 90), description="'window_days'", minimum=2),
        benchmark=str(config.get("benchmark") or "BTC").upper(),
        execution_mode=_choice(
            config.get("execution_mode", "sequential"), EXECUTION_MODES, description="'execution_mode'"
        ),
        failure_policy=_choice(
            config.get("failure_policy", "abort"), FAILURE_POLICIES, description="'failure_policy'"
        ),
        max_attempts=_coerce_int(config.get("max_attempts", 1), description="'max_attempts'", minimum=1),
        market_data=_parse_market_data(config.get("market_data"), base_dir=base_dir),
        resilience=ResiliencePolicy.from_mapping(resilience_raw),
        plan_paths=plan_paths,
        debug=_coerce_int(config.get("debug", 1), description="'debug'"),
        config_root=base_dir,
        config_path=source_path,
    )


def load_advisor_payload(path: Path | str) -> tuple[MutableMapping[str, Any], Path]:
    path = Path(path).expanduser().resolve()
    payload = _load_json(path)
    return _ensure_mapping(payload, description="Advisor configuration"), path


def load_advisor_config(path: Path | str) -> AdvisorConfig:
    """Load and validate an advisor configuration file from disk."""

    payload, resolved_path = load_advisor_payload(path)
    config = validate_advisor_config(payload, source_path=resolved_path)
    logger.debug(
        "Loaded advisor configuration",
        extra={"path": str(resolved_path), "execution_mode": config.execution_mode},
    )
    return config


@dataclass
class Settings:
    """Advisor configuration plus ``ADVISOR_*`` environment overrides.

    ``ADVISOR_KEY_<NAME>`` variables populate the per-user provider keys
    handed to tools through the execution context.
    """

    config: AdvisorConfig
    user_keys: Dict[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_environment(
        cls, *, config: Optional[AdvisorConfig] = None, env: Optional[Mapping[str, str]] = None
    ) -> "Settings":
        env = os.environ if env is None else env
        base = copy.deepcopy(config) if config is not None else AdvisorConfig()

        config_file = env.get("ADVISOR_CONFIG")
        if config is None and config_file:
            base = load_advisor_config(config_file)

        policy_overrides: Dict[str, float] = {}
        for key, env_name in (
            ("maxWeight", "ADVISOR_MAX_WEIGHT"),
            ("minStablePct", "ADVISOR_MIN_STABLE_PCT"),
            ("maxVolPct", "ADVISOR_MAX_VOL_PCT"),
            ("maxDrawdownDayPct", "ADVISOR_MAX_DRAWDOWN_DAY_PCT"),
        ):
            value = _env_float(env.get(env_name))
            if value is not None:
                policy_overrides[key] = value
        if policy_overrides:
            base.policy = RiskPolicy.from_mapping(policy_overrides, base=base.policy)

        min_trade = _env_float(env.get("ADVISOR_MIN_TRADE_USD"))
        if min_trade is not None:
            base.constraints.min_trade_usd = min_trade
        max_turnover = _env_float(env.get("ADVISOR_MAX_TURNOVER_PCT"))
        if max_turnover is not None:
            base.constraints.max_turnover_pct = max_turnover if max_turnover > 0 else None

        window_days = _env_int(env.get("ADVISOR_WINDOW_DAYS"))
        if window_days is not None and window_days >= 2:
            base.window_days = window_days
        if env.get("ADVISOR_BENCHMARK"):
            base.benchmark = env["ADVISOR_BENCHMARK"].strip().upper()
        if env.get("ADVISOR_EXECUTION_MODE"):
            base.execution_mode = _choice(
                env["ADVISOR_EXECUTION_MODE"], EXECUTION_MODES, description="ADVISOR_EXECUTION_MODE"
            )
        if env.get("ADVISOR_FAILURE_POLICY"):
            base.failure_policy = _choice(
                env["ADVISOR_FAILURE_POLICY"], FAILURE_POLICIES, description="ADVISOR_FAILURE_POLICY"
            )
        max_attempts = _env_int(env.get("ADVISOR_MAX_ATTEMPTS"))
        if max_attempts is not None and max_attempts > 0:
            base.max_attempts = max_attempts

        if env.get("ADVISOR_EXCHANGE"):
            base.market_data.exchange = env["ADVISOR_EXCHANGE"].strip().lower()
        if env.get("ADVISOR_QUOTE"):
            base.market_data.quote = env["ADVISOR_QUOTE"].strip().upper()
        cache_ttl = _env_float(env.get("ADVISOR_CACHE_TTL_SECONDS"))
        if cache_ttl is not None:
            base.market_data.cache_ttl_seconds = cache_ttl
        if env.get("ADVISOR_MARKET_DATA_FIXTURES"):
            base.market_data.static_fixtures = Path(env["ADVISOR_MARKET_DATA_FIXTURES"]).expanduser().resolve()

        debug = _env_int(env.get("ADVISOR_DEBUG"))
        if debug is not None:
            base.debug = debug

        user_keys = {
            key[len(USER_KEY_PREFIX):]: value
            for key, value in env.items()
            if key.startswith(USER_KEY_PREFIX) and value
        }
        return cls(config=base, user_keys=user_keys)


def _env_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _env_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "Settings",
    "load_advisor_config",
    "load_advisor_payload",
    "validate_advisor_config",
]
