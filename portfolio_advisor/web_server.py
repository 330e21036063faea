"""Command line entry point for the portfolio advisor HTTP API."""

from __future__ import annotations

import argparse
import copy
import importlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .configuration import Settings, _configure_default_logging, load_advisor_config
from .service import AdvisorService
from .web import create_app

if TYPE_CHECKING:  # pragma: no cover - used only for type hints
    import uvicorn

logger = logging.getLogger(__name__)


def _import_uvicorn() -> "uvicorn":
    """Import :mod:`uvicorn` with a helpful error message when missing."""

    try:
        import uvicorn  # type: ignore[import]
    except ModuleNotFoundError as exc:  # pragma: no cover - depends on runtime environment
        raise ModuleNotFoundError(
            "The 'uvicorn' package is required to run the portfolio advisor server. "
            "Install it alongside fastapi to serve the HTTP API."
        ) from exc
    return uvicorn


def _determine_uvicorn_logging(debug: int) -> tuple[Optional[dict], str]:
    """Return logging configuration overrides for uvicorn."""

    if debug < 2:
        return None, "info"
    try:
        uvicorn_config = importlib.import_module("uvicorn.config")
    except ModuleNotFoundError:  # pragma: no cover - uvicorn not importable in tests
        return None, "debug"
    logging_config = getattr(uvicorn_config, "LOGGING_CONFIG", None)
    if logging_config is None:  # pragma: no cover - unexpected configuration shape
        return None, "debug"

    log_config = copy.deepcopy(logging_config)
    loggers = log_config.setdefault("loggers", {})
    advisor_logger = loggers.setdefault(
        "portfolio_advisor", {"handlers": ["default"], "level": "INFO", "propagate": False}
    )
    if not advisor_logger.get("handlers"):
        advisor_logger["handlers"] = ["default"]
    advisor_logger["level"] = "DEBUG"
    return log_config, "debug"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Launch the portfolio advisor HTTP API")
    parser.add_argument("--config", type=Path, help="Path to the advisor configuration file")
    parser.add_argument("--host", default="127.0.0.1", help="Host address for the web server")
    parser.add_argument("--port", type=int, default=8000, help="Port for the web server")
    parser.add_argument(
        "--debug",
        type=int,
        choices=(0, 1, 2),
        help="Logging verbosity: 0 warnings, 1 info, 2 debug (overrides the configuration file)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    config = load_advisor_config(args.config) if args.config else None
    settings = Settings.from_environment(config=config)
    if args.debug is not None:
        settings.config.debug = args.debug
    _configure_default_logging(settings.config.debug)

    service = AdvisorService.from_config(settings.config, user_keys=settings.user_keys)
    app = create_app(settings.config, service=service)
    log_config, log_level = _determine_uvicorn_logging(settings.config.debug)

    logger.info(
        "Starting portfolio advisor",
        extra={
            "host": args.host,
            "port": args.port,
            "execution_mode": settings.config.execution_mode,
            "exchange": settings.config.market_data.exchange,
        },
    )
    uvicorn = _import_uvicorn()
    run_kwargs = {"host": args.host, "port": args.port, "log_level": log_level}
    if log_config is not None:
        run_kwargs["log_config"] = log_config
    uvicorn.run(app, **run_kwargs)


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
