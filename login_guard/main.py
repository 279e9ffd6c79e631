"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, status

from . import config
from .auth import router as auth_router
from .config import ConfigError, Settings
from .credentials import SupabaseCredentialVerifier
from .logging_utils import configure_logging
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

app = FastAPI(title="Console Login Guard", version="1.0.0")


async def stale_record_sweeper(limiter: RateLimiter, settings: Settings) -> None:
    while True:
        await asyncio.sleep(settings.limiter_sweep_interval_seconds)
        try:
            limiter.purge_stale(settings.limiter_stale_after_ms)
        except Exception:
            logger.exception("stale record sweep failed")


@app.on_event("startup")
async def startup_event() -> None:
    try:
        settings = config.get_settings()
    except ConfigError as exc:
        app.state.startup_error = str(exc)
        app.state.settings = None
        app.state.policies = None
        app.state.rate_limiter = None
        app.state.credential_verifier = None
        logger.error("startup configuration error", extra={"error": str(exc)})
        return

    configure_logging(settings)
    limiter = RateLimiter()

    app.state.settings = settings
    app.state.policies = settings.policies()
    app.state.rate_limiter = limiter
    app.state.credential_verifier = SupabaseCredentialVerifier(settings.supabase_url, settings.supabase_anon_key)
    app.state.sweeper_task = asyncio.create_task(stale_record_sweeper(limiter, settings))
    app.state.startup_error = None


@app.on_event("shutdown")
async def shutdown_event() -> None:
    task = getattr(app.state, "sweeper_task", None)
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        app.state.sweeper_task = None


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    valid, reason = config.is_environment_valid()
    if not valid:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=reason or "invalid configuration")
    body: Dict[str, Any] = {"status": "ok"}
    limiter = getattr(app.state, "rate_limiter", None)
    if limiter is not None:
        stats = limiter.stats()
        body.update(tracked_keys=stats.tracked_keys, blocked_keys=stats.blocked_keys)
    return body


app.include_router(auth_router)
