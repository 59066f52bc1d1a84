from __future__ import annotations

import asyncio
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from .config import Settings
from .connectors.base import Connector
from .connectors.core import COREConnector
from .search import run_search
from .utils import CancelToken

DISCONNECT_POLL_SECONDS = 0.5

app = FastAPI(title="CORE Search API", version="0.1.0")


def _get_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()


def _get_connector(settings: Settings) -> Connector:
    return COREConnector(settings)


async def _cancel_on_disconnect(request: Request, token: CancelToken) -> None:
    """Cancel the running search once the client goes away."""
    while not token.cancelled:
        if await request.is_disconnected():
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/search")
async def search(
    request: Request,
    q: str = Query(..., min_length=1, description="Search query"),
    max_pages: int | None = Query(None, ge=1, le=1000),
) -> dict[str, Any]:
    settings = _get_settings()
    if not settings.core_api_key:
        raise HTTPException(status_code=503, detail="CORE_API_KEY is not configured")

    # Each request runs its own search with a fresh cursor and accumulator
    token = CancelToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        report, _ = await run_in_threadpool(
            run_search,
            q,
            settings,
            connector=_get_connector(settings),
            max_pages=max_pages,
            cancel=token,
        )
    finally:
        watcher.cancel()

    if report.error is not None and not report.results:
        raise HTTPException(
            status_code=502,
            detail={"message": "Failed to fetch results", **(report.error_dict() or {})},
        )
    return report.to_dict()
