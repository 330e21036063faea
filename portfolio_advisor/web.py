"""FastAPI application exposing the advisor plans over HTTP.

Progress of the rebalance and opportunity plans can be followed live through
server-sent event streams.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from .config.models import AdvisorConfig
from .orchestration import PlanError, PlanEvent
from .service import AdvisorService

logger = logging.getLogger(__name__)

_STREAM_DONE = object()

EventSink = Callable[[PlanEvent], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _sse(payload: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _failure_step(exc: BaseException) -> str:
    step = getattr(exc, "step", None)
    if step:
        return str(step)
    # PlanDefinitionError is also a ValueError; plan problems win.
    if isinstance(exc, PlanError):
        return "plan"
    if isinstance(exc, ValueError):
        return "validation"
    return "error"


async def _read_payload(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, Mapping):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload must be an object")
    return dict(payload)


def _holdings_from(payload: Mapping[str, Any]) -> Any:
    portfolio = payload.get("portfolio")
    if isinstance(portfolio, Mapping) and "holdings" in portfolio:
        return portfolio.get("holdings")
    return payload.get("holdings")


def _optional_mapping(payload: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"'{key}' must be an object")
    return value


def _rebalance_arguments(payload: Mapping[str, Any]) -> Tuple[Any, Optional[Mapping[str, Any]], Optional[Mapping[str, Any]]]:
    holdings = _holdings_from(payload)
    if holdings is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid portfolio data")
    return holdings, _optional_mapping(payload, "constraints"), _optional_mapping(payload, "policy")


def _event_stream(
    run: Callable[[EventSink], Awaitable[Any]],
    *,
    label: str,
    start_message: str,
    complete_message: str,
) -> StreamingResponse:
    """Stream plan progress as SSE ``progress`` frames and one final frame.

    The final frame is ``complete`` carrying the result, or ``error`` naming
    the failing step (``validation`` for rejected input).
    """

    async def events() -> AsyncIterator[str]:
        queue: "asyncio.Queue[Any]" = asyncio.Queue()

        def on_event(event: PlanEvent) -> None:
            queue.put_nowait({"type": "progress", **event.to_payload()})

        async def runner() -> None:
            try:
                result = await run(on_event)
            except Exception as exc:
                step = _failure_step(exc)
                logger.warning("%s stream failed", label, extra={"step": step, "error": str(exc)}, exc_info=True)
                queue.put_nowait({"type": "error", "step": step, "message": str(exc), "timestamp": _now_ms()})
            else:
                queue.put_nowait(
                    {
                        "type": "complete",
                        "step": "complete",
                        "message": complete_message,
                        "data": result,
                        "timestamp": _now_ms(),
                    }
                )
            finally:
                queue.put_nowait(_STREAM_DONE)

        yield _sse({"type": "progress", "step": "start", "message": start_message, "timestamp": _now_ms()})
        task = asyncio.create_task(runner())
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_DONE:
                    break
                yield _sse(item)
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def create_app(config: AdvisorConfig, *, service: Optional[AdvisorService] = None) -> FastAPI:
    if service is None:
        service = AdvisorService.from_config(config)

    app = FastAPI(title="Portfolio Advisor")
    app.state.service = service
    app.state.config = config

    def get_service(request: Request) -> AdvisorService:
        return request.app.state.service

    @app.exception_handler(HTTPException)
    async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.get("/health", response_class=JSONResponse)
    async def health(service: AdvisorService = Depends(get_service)) -> JSONResponse:
        return JSONResponse(service.health())

    @app.get("/metrics", response_class=JSONResponse)
    async def metrics(service: AdvisorService = Depends(get_service)) -> JSONResponse:
        return JSONResponse(service.metrics_snapshot())

    @app.post("/api/analyze", response_class=JSONResponse)
    async def api_analyze(request: Request, service: AdvisorService = Depends(get_service)) -> JSONResponse:
        payload = await _read_payload(request)
        holdings = _holdings_from(payload)
        if not isinstance(holdings, (list, Mapping)):
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid portfolio data")
        policy = _optional_mapping(payload, "policy")
        try:
            pnl_pct = float(payload.get("pnlPct") or 0.0)
        except (TypeError, ValueError):
            return _error(status.HTTP_400_BAD_REQUEST, "pnlPct must be numeric")
        try:
            result = await service.analyze(holdings, pnl_pct=pnl_pct, policy=policy)
        except PlanError as exc:
            logger.error("Portfolio analysis failed", extra={"error": str(exc)}, exc_info=True)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except ValueError as exc:
            return _error(status.HTTP_400_BAD_REQUEST, str(exc))
        return JSONResponse(result)

    @app.post("/api/analyze/rebalance", response_class=JSONResponse)
    async def api_rebalance(request: Request, service: AdvisorService = Depends(get_service)) -> JSONResponse:
        payload = await _read_payload(request)
        holdings, constraints, policy = _rebalance_arguments(payload)
        try:
            result = await service.rebalance(holdings, constraints=constraints, policy=policy)
        except PlanError as exc:
            logger.error("Rebalance analysis failed", extra={"error": str(exc)}, exc_info=True)
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except ValueError as exc:
            return _error(status.HTTP_400_BAD_REQUEST, str(exc))
        return JSONResponse(result)

    @app.post("/api/analyze/rebalance/stream")
    async def api_rebalance_stream(
        request: Request, service: AdvisorService = Depends(get_service)
    ) -> StreamingResponse:
        payload = await _read_payload(request)
        holdings, constraints, policy = _rebalance_arguments(payload)
        return _event_stream(
            lambda on_event: service.rebalance(holdings, constraints=constraints, policy=policy, on_event=on_event),
            label="Rebalance",
            start_message="Starting rebalance analysis...",
            complete_message="Rebalance analysis complete",
        )

    @app.post("/api/opportunities")
    async def api_opportunities(
        request: Request, service: AdvisorService = Depends(get_service)
    ) -> StreamingResponse:
        payload = await _read_payload(request)
        symbols = payload.get("symbols")
        return _event_stream(
            lambda on_event: service.find_opportunities(symbols, on_event=on_event),
            label="Opportunity scan",
            start_message="Scanning for opportunities...",
            complete_message="Opportunity scan complete",
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
        await app.state.service.close()

    return app


__all__ = ["create_app"]
