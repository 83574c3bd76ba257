"""Portfolio collector sidecar entry point.

Lets a host process drive the collector over stdin/stdout using
newline-delimited JSON messages.

Protocol:
    Request:  {"id": "uuid", "method": "string", "params": {}}
    Response: {"id": "uuid", "result": {}}
    Error:    {"id": "uuid", "error": {"message": "string"}}

Dates in params are ISO strings ("2024-06-01"); dates and timestamps in
results are serialized the same way.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
import traceback
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

import numpy as np

from portfoliocollector import log_config
from portfoliocollector.collector.backfill import (
    DEFAULT_RANGE,
    drain_queued_backfills,
    request_backfill,
    retry_failed_backfill,
)
from portfoliocollector.collector.retention import (
    cleanup_old_data,
    get_collector_stats,
)
from portfoliocollector.collector.snapshots import record_daily_snapshot
from portfoliocollector.context import CollectorContext
from portfoliocollector.db.market_store import get_latest_date, query_price_history
from portfoliocollector.db.portfolio_store import get_portfolio_snapshots
from portfoliocollector.market.price_cache import PriceCache

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = 1


class _NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles NumPy types, dates and dataclasses."""

    def default(self, o: Any) -> Any:
        """Convert non-JSON types to JSON-serializable Python types."""
        if isinstance(o, np.integer):
            return int(o)
        if isinstance(o, np.floating):
            return float(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        if dataclasses.is_dataclass(o) and not isinstance(o, type):
            return dataclasses.asdict(o)
        return super().default(o)


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _handle_daily_snapshot(
    ctx: CollectorContext,
    user_id: int = DEFAULT_USER_ID,
    date: str | None = None,
) -> Any:
    return record_daily_snapshot(
        ctx.conn, ctx.provider, user_id, ctx.config, today=_parse_date(date)
    )


def _handle_run_backfills(
    ctx: CollectorContext,
    user_id: int = DEFAULT_USER_ID,
) -> dict[str, Any]:
    outcomes = drain_queued_backfills(ctx.conn, ctx.provider, user_id, ctx.config)
    return {"processed": len(outcomes), "jobs": outcomes}


def _handle_request_backfill(
    ctx: CollectorContext,
    asset_id: int,
    range: str = DEFAULT_RANGE,  # noqa: A002
    user_id: int = DEFAULT_USER_ID,
) -> Any:
    return request_backfill(ctx.conn, user_id, asset_id, range)


def _handle_retry_backfill(
    ctx: CollectorContext,
    job_id: int,
    include_running: bool = False,
) -> Any:
    return retry_failed_backfill(ctx.conn, job_id, include_running=include_running)


def _handle_cleanup(
    ctx: CollectorContext,
    user_id: int = DEFAULT_USER_ID,
    retention_days: int | None = None,
    audit_retention_days: int | None = None,
) -> Any:
    """Prune old rows, defaulting both windows to the configured ones."""
    return cleanup_old_data(
        ctx.conn,
        user_id,
        (
            retention_days
            if retention_days is not None
            else ctx.config.retention_days
        ),
        audit_retention_days=(
            audit_retention_days
            if audit_retention_days is not None
            else ctx.config.audit_retention_days
        ),
    )


def _handle_stats(ctx: CollectorContext, user_id: int = DEFAULT_USER_ID) -> Any:
    return get_collector_stats(
        ctx.conn, user_id, stuck_after_minutes=ctx.config.stuck_after_minutes
    )


def _handle_snapshots(
    ctx: CollectorContext,
    user_id: int = DEFAULT_USER_ID,
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[dict[str, Any]]:
    return get_portfolio_snapshots(
        ctx.conn, user_id, _parse_date(start_date), _parse_date(end_date)
    )


def _handle_price_history(
    ctx: CollectorContext,
    asset_id: int,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    return {
        "asset_id": asset_id,
        "latest_date": get_latest_date(ctx.conn, asset_id),
        "points": query_price_history(
            ctx.conn, asset_id, _parse_date(start_date), _parse_date(end_date)
        ),
    }


def _handle_current_price(ctx: CollectorContext, asset_id: int) -> dict[str, Any]:
    """Read the cached price for an asset without contacting the provider."""
    cache = PriceCache(
        ctx.conn, max_age=timedelta(hours=ctx.config.price_cache_max_age_hours)
    )
    entry = cache.peek(asset_id)
    return {
        "asset_id": asset_id,
        "price": entry.price if entry else None,
        "updated_at": entry.updated_at if entry else None,
        "fresh": cache.get(asset_id) is not None,
    }


_HANDLERS: dict[str, Callable[..., Any]] = {
    # Periodic jobs
    "collector.daily_snapshot": _handle_daily_snapshot,
    "collector.run_backfills": _handle_run_backfills,
    # Backfill queue
    "collector.request_backfill": _handle_request_backfill,
    "collector.retry_backfill": _handle_retry_backfill,
    # Maintenance
    "collector.cleanup": _handle_cleanup,
    "collector.stats": _handle_stats,
    # Reporting
    "collector.snapshots": _handle_snapshots,
    "collector.price_history": _handle_price_history,
    "collector.current_price": _handle_current_price,
}


def dispatch(ctx: CollectorContext, method: str, params: dict[str, Any]) -> Any:
    """Route a method call to the appropriate handler.

    Args:
        ctx: Open collector resources.
        method: The method name (e.g., "collector.stats").
        params: The parameters for the method.

    Returns:
        The result of the method call.

    Raises:
        ValueError: If the method is not recognized.

    """
    if method not in _HANDLERS:
        msg = f"Unknown method: {method}"
        raise ValueError(msg)
    return _HANDLERS[method](ctx, **params)


def serve(ctx: CollectorContext) -> None:
    """Run the sidecar message loop until stdin is closed.

    Reads newline-delimited JSON from stdin, dispatches to handlers,
    and writes JSON responses to stdout.
    """
    for raw_line in sys.stdin:
        stripped = raw_line.strip()
        if not stripped:
            continue

        request: dict[str, Any] = {}
        try:
            request = json.loads(stripped)
            request_id = request.get("id", "unknown")
            method = request["method"]
            params = request.get("params", {})
            result = dispatch(ctx, method, params)
            response: dict[str, Any] = {"id": request_id, "result": result}
        except Exception as exc:  # noqa: BLE001
            request_id = (
                request.get("id", "unknown") if isinstance(request, dict) else "unknown"
            )
            logger.warning("Request %s failed: %s", request_id, exc)
            response = {
                "id": request_id,
                "error": {
                    "message": str(exc),
                    "traceback": traceback.format_exc(),
                },
            }
        sys.stdout.write(json.dumps(response, cls=_NumpyEncoder) + "\n")
        sys.stdout.flush()


def main() -> None:
    """Open the collector from the environment and serve requests."""
    log_config.setup()
    ctx = CollectorContext.open()
    try:
        serve(ctx)
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
