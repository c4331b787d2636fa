"""
touchgrass.main.

FastAPI trigger surface for the ingestion pipeline.

Responsibilities
----------------
• Health monitoring
• Batch ingestion triggers (crawler callbacks, API polls, manual submissions)
• Search re-indexing of already-persisted records

Environment
-----------
DATABASE_URL (SQLAlchemy format) selects the Postgres store and SEARCH_URL
the OpenSearch index; without them both fall back to in-memory backends.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse

from touchgrass import __version__
from touchgrass.configs.config import Config
from touchgrass.configs.settings import get_settings
from touchgrass.ingestion.errors import StorageError
from touchgrass.ingestion.handler import (
    build_orchestrator,
    handle_batch_request,
    load_source_shapes,
)
from touchgrass.ingestion.orchestrator import IngestionOrchestrator
from touchgrass.ingestion.persist import PostgresEventStore
from touchgrass.monitoring.logging import configure_logging

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "invalid_payload": 400,
    "store_unavailable": 503,
    "internal_error": 500,
}

# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline clients on startup and close them on shutdown."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    orchestrator = build_orchestrator(settings)
    store = orchestrator.gateway.store
    if isinstance(store, PostgresEventStore):
        try:
            await store.ensure_schema()
        except StorageError as e:
            # Keep serving: batches will report the store as unavailable
            logger.error(f"Failed to prepare event store: {e}")

    source_shapes: dict[str, str] = {}
    if settings.INGESTION_CONFIG_PATH.exists():
        source_shapes = load_source_shapes(Config.load_ingestion_config())

    app.state.orchestrator = orchestrator
    app.state.source_shapes = source_shapes

    yield

    await orchestrator.gateway.store.close()
    await orchestrator.propagator.client.close()


app = FastAPI(
    title="TouchGrass DC Ingestion API",
    version=__version__,
    description="Normalizes, stores and indexes event batches.",
    lifespan=lifespan,
)


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    return request.app.state.orchestrator


# ---------------------------------------------------------------------------
# HEALTH ENDPOINT
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Monitoring"])
def health_check(request: Request) -> dict[str, Any]:
    """
    Check API health.

    Returns
    -------
    dict
        Service status indicator and the active backends.
    """
    orchestrator = get_orchestrator(request)
    return {
        "status": "ok",
        "store": type(orchestrator.gateway.store).__name__,
        "search_index": type(orchestrator.propagator.client).__name__,
    }


@app.get("/events/stats", tags=["Monitoring"])
def execution_stats(request: Request, source: str | None = None) -> dict[str, Any]:
    """Aggregate statistics of the batches run by this process."""
    return get_orchestrator(request).get_execution_stats(source)


# ---------------------------------------------------------------------------
# INGESTION ENDPOINTS
# ---------------------------------------------------------------------------


@app.post("/events/ingest", tags=["Ingestion"])
async def ingest_events(request: Request, payload: Any = Body(...)) -> JSONResponse:
    """
    Run one batch through normalize -> persist -> index.

    The body is any accepted trigger envelope, e.g.
    {"events": [...], "source": "washingtonian", "sourceType": "listing-shape"}.
    """
    result = await handle_batch_request(
        payload, get_orchestrator(request), request.app.state.source_shapes
    )
    status_code = 200 if result["success"] else ERROR_STATUS_CODES.get(result["error"], 500)
    return JSONResponse(status_code=status_code, content=result)


@app.post("/events/reindex", tags=["Ingestion"])
async def reindex_events(request: Request, payload: Any = Body(...)) -> dict[str, Any]:
    """
    Push persisted records into the search index again.

    Accepts {"records": [...]}, a list of records, or a single record.
    """
    if isinstance(payload, dict) and isinstance(payload.get("records"), list):
        records = payload["records"]
    elif isinstance(payload, list):
        records = payload
    else:
        records = [payload]

    summary = await get_orchestrator(request).reindex(records)
    return {"success": True, **summary.to_dict()}
