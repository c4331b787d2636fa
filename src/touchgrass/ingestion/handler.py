"""
Trigger handling.

Decodes the payloads batch triggers send (HTTP bodies, workflow step
messages, scheduled jobs) into a BatchRequest, runs it through the
orchestrator, and turns the outcome into a plain success/failure summary.
Callers never see a stack trace.

Also wires the pipeline together from Settings.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from touchgrass.configs.settings import Settings
from touchgrass.ingestion.deduplication import get_deduplicator
from touchgrass.ingestion.errors import InvalidPayloadError, StoreUnavailableError
from touchgrass.ingestion.normalizer import EventNormalizer, RawEventShape
from touchgrass.ingestion.orchestrator import IngestionOrchestrator
from touchgrass.ingestion.persist import (
    EventPersistenceGateway,
    EventStore,
    InMemoryEventStore,
    PostgresEventStore,
)
from touchgrass.ingestion.rate_limit import build_throttle
from touchgrass.ingestion.search_index import (
    IndexPropagator,
    InMemorySearchIndex,
    OpenSearchIndexClient,
    SearchIndexClient,
)
from touchgrass.monitoring.logging import with_context

logger = logging.getLogger(__name__)

GROUP_EVENT_TYPE = "group"
_MAX_ENVELOPE_DEPTH = 5


@dataclass
class BatchRequest:
    """A decoded trigger payload."""

    events: list[Any]
    source: str | None
    source_type: RawEventShape
    event_type: str | None = None
    test_mode: bool = False

    @property
    def is_group_batch(self) -> bool:
        if self.event_type == GROUP_EVENT_TYPE:
            return True
        return any(
            isinstance(item, dict)
            and (item.get("isGroup") is True or item.get("type") == GROUP_EVENT_TYPE)
            for item in self.events
        )


# ============================================================================
# PAYLOAD DECODING
# ============================================================================


def _unwrap(payload: Any, depth: int = 0) -> dict[str, Any]:
    """Peel envelopes until the dict carrying "events" is reached."""
    if depth > _MAX_ENVELOPE_DEPTH:
        raise InvalidPayloadError("Payload envelopes nested too deeply")

    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPayloadError(f"Request body is not valid UTF-8: {e}") from e

    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidPayloadError(f"Invalid request body format: {e}") from e
        # Double-encoded bodies decode to another JSON string
        return _unwrap(decoded, depth + 1)

    if isinstance(payload, list):
        return {"events": payload}

    if not isinstance(payload, dict):
        raise InvalidPayloadError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    if "events" in payload:
        return payload
    if "Payload" in payload:
        return _unwrap(payload["Payload"], depth + 1)
    if "body" in payload:
        return _unwrap(payload["body"], depth + 1)
    return payload


def parse_batch_payload(
    payload: Any, source_shapes: dict[str, str] | None = None
) -> BatchRequest:
    """
    Decode a trigger payload into a BatchRequest.

    Accepted envelopes: a dict with "events", a JSON string, a double-encoded
    JSON string, {"body": ...} and {"body": {"Payload": ...}}.

    The raw shape comes from "sourceType"/"source_type" when given, then from
    the legacy "eventType" tag, then from `source_shapes` keyed by source.

    Raises:
        InvalidPayloadError: if the payload is undecodable or has no events list
    """
    body = _unwrap(payload)

    events = body.get("events")
    if not isinstance(events, list):
        raise InvalidPayloadError(
            f"Events array is required (received {type(events).__name__})"
        )

    source = body.get("source")
    source = source.strip() if isinstance(source, str) and source.strip() else None
    event_type = body.get("eventType") or body.get("event_type")
    explicit_type = body.get("sourceType") or body.get("source_type")

    if explicit_type:
        shape = RawEventShape.from_value(explicit_type)
    elif event_type and event_type != GROUP_EVENT_TYPE:
        shape = RawEventShape.from_value(event_type)
    elif source and source_shapes and source in source_shapes:
        shape = RawEventShape.from_value(source_shapes[source])
    else:
        shape = RawEventShape.NORMALIZED

    return BatchRequest(
        events=events,
        source=source,
        source_type=shape,
        event_type=event_type,
        test_mode=body.get("testMode") is True,
    )


async def handle_batch_request(
    payload: Any,
    orchestrator: IngestionOrchestrator,
    source_shapes: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Run one trigger payload end to end.

    Returns:
        {"success": True, ...batch summary} or
        {"success": False, "error": <code>, "message": <text>}
    """
    try:
        request = parse_batch_payload(payload, source_shapes)
    except InvalidPayloadError as e:
        logger.warning(f"Rejected trigger payload: {e}", extra={"stage": "trigger"})
        return {"success": False, "error": "invalid_payload", "message": str(e)}

    log = with_context(logger, source=request.source, stage="trigger")
    log.info(
        f"Received {len(request.events)} items "
        f"({'groups' if request.is_group_batch else request.source_type.value})"
    )

    try:
        if request.is_group_batch:
            summary = await orchestrator.run_groups(request.events, request.source)
        else:
            summary = await orchestrator.run(
                request.events, request.source, request.source_type
            )
    except StoreUnavailableError as e:
        log.error(f"Batch failed: {e}")
        return {
            "success": False,
            "error": "store_unavailable",
            "message": str(e),
            "retryable": True,
        }
    except Exception:
        log.error("Batch failed unexpectedly", exc_info=True)
        return {
            "success": False,
            "error": "internal_error",
            "message": "The batch could not be processed",
        }

    return {"success": True, **summary.to_dict()}


# ============================================================================
# WIRING
# ============================================================================


def build_store(settings: Settings) -> EventStore:
    """Postgres when DATABASE_URL is set, otherwise an in-memory store."""
    if settings.uses_postgres:
        return PostgresEventStore(
            conn_params=settings.get_psycopg2_params(), table=settings.EVENTS_TABLE
        )
    logger.warning("DATABASE_URL not set, using in-memory event store")
    return InMemoryEventStore()


def build_index_client(settings: Settings) -> SearchIndexClient:
    """OpenSearch when SEARCH_URL is set, otherwise an in-memory index."""
    if settings.uses_search_service:
        password = (
            settings.SEARCH_PASSWORD.get_secret_value()
            if settings.SEARCH_PASSWORD
            else None
        )
        return OpenSearchIndexClient(
            base_url=settings.SEARCH_URL,
            username=settings.SEARCH_USERNAME,
            password=password,
            timeout=settings.INDEX_TIMEOUT_SECONDS,
        )
    logger.warning("SEARCH_URL not set, using in-memory search index")
    return InMemorySearchIndex()


def build_orchestrator(
    settings: Settings,
    store: EventStore | None = None,
    index_client: SearchIndexClient | None = None,
) -> IngestionOrchestrator:
    """Assemble the pipeline from settings; injected clients take precedence."""
    if store is None:
        store = build_store(settings)
    if index_client is None:
        index_client = build_index_client(settings)

    gateway = EventPersistenceGateway(
        store=store,
        throttle=build_throttle(settings.WRITE_DELAY_SECONDS),
        item_timeout=settings.ITEM_TIMEOUT_SECONDS,
    )
    propagator = IndexPropagator(
        client=index_client,
        index_name=settings.SEARCH_INDEX_NAME,
        timeout=settings.INDEX_TIMEOUT_SECONDS,
    )
    return IngestionOrchestrator(
        gateway=gateway,
        propagator=propagator,
        normalizer=EventNormalizer(default_currency=settings.DEFAULT_CURRENCY),
        deduplicator=get_deduplicator(settings.DEDUPLICATION_STRATEGY),
    )


def load_source_shapes(config: dict[str, Any]) -> dict[str, str]:
    """Map source name -> raw shape from the ingestion YAML."""
    sources = config.get("sources") or {}
    return {
        name: conf["source_type"]
        for name, conf in sources.items()
        if isinstance(conf, dict) and conf.get("source_type")
    }
