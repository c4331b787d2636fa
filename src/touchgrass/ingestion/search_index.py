"""
Search Index Propagation.

Mirrors persisted records into the search index on a best-effort basis. The
primary store is authoritative; the index is an eventually-consistent copy
that may lag or miss writes. Indexing failures come back as IndexResult
values and are only logged: they never fail a batch and never touch the
primary store.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from touchgrass.ingestion.errors import IndexingError
from touchgrass.ingestion.identity import GROUP_PREFIX, storage_key
from touchgrass.ingestion.normalization.category import parse_categories
from touchgrass.schemas.event import SearchCost, SearchDocument

logger = logging.getLogger(__name__)

DEFAULT_INDEX_NAME = "events-groups-index"
DEFAULT_INDEX_TIMEOUT_SECONDS = 10.0

INDEX_MAPPINGS = {
    "mappings": {
        "properties": {
            "type": {"type": "keyword"},
            "title": {"type": "text"},
            "description": {"type": "text"},
            "category": {"type": "keyword"},
            "location": {"type": "text"},
            "venue": {"type": "text"},
            "cost.type": {"type": "keyword"},
            "cost.amount": {"type": "float"},
            "is_public": {"type": "boolean"},
            "created_at_ms": {"type": "long"},
            "start_date": {"type": "date", "format": "yyyy-MM-dd"},
            "end_date": {"type": "date", "format": "yyyy-MM-dd"},
        }
    }
}


# ============================================================================
# CLIENTS
# ============================================================================


class SearchIndexClient(ABC):
    """Upsert-by-id document writer."""

    @abstractmethod
    async def index_document(
        self, index: str, doc_id: str, document: dict[str, Any]
    ) -> None:
        """Create or overwrite `doc_id` in `index`."""
        pass

    async def close(self) -> None:
        return None


class InMemorySearchIndex(SearchIndexClient):
    """Keeps documents in a dict per index name."""

    def __init__(self) -> None:
        self.indices: dict[str, dict[str, dict[str, Any]]] = {}

    async def index_document(
        self, index: str, doc_id: str, document: dict[str, Any]
    ) -> None:
        self.indices.setdefault(index, {})[doc_id] = dict(document)

    def documents(self, index: str = DEFAULT_INDEX_NAME) -> dict[str, dict[str, Any]]:
        return dict(self.indices.get(index, {}))


class OpenSearchIndexClient(SearchIndexClient):
    """
    OpenSearch/Elasticsearch REST client.

    Writes go to PUT /{index}/_doc/{id}, so repeated indexing of the same
    record overwrites instead of duplicating.
    """

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_INDEX_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = (username, password) if username and password else None
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=self.auth,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    async def index_document(
        self, index: str, doc_id: str, document: dict[str, Any]
    ) -> None:
        client = self._get_client()
        try:
            response = await client.put(
                f"/{quote(index, safe='')}/_doc/{quote(doc_id, safe='')}",
                json=document,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IndexingError(f"Indexing {doc_id} into {index} failed: {e}") from e

    async def ensure_index(self, index: str) -> bool:
        """
        Create the index with field mappings when it does not exist.

        Returns:
            True when the index was created, False when it already existed
        """
        client = self._get_client()
        try:
            response = await client.head(f"/{quote(index, safe='')}")
            if response.status_code == 200:
                return False
            response = await client.put(f"/{quote(index, safe='')}", json=INDEX_MAPPINGS)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IndexingError(f"Creating index {index} failed: {e}") from e
        logger.info(f"Created search index {index}")
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ============================================================================
# PROPAGATOR
# ============================================================================


@dataclass
class IndexResult:
    """Outcome of one indexing attempt; `error` is set when `ok` is False."""

    doc_id: str
    ok: bool
    error: str | None = None


def _as_mapping(record: Any) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", exclude_none=True)
    if isinstance(record, dict):
        return record
    raise TypeError(f"Cannot index record of type {type(record).__name__}")


def is_group_record(record: Any) -> bool:
    """
    Tell groups from events: a GROUP# key, an explicit group flag, or
    schedule fields.
    """
    data = _as_mapping(record)
    pk = data.get("pk")
    if isinstance(pk, str) and pk.startswith(GROUP_PREFIX):
        return True
    if data.get("is_group") is True or data.get("isGroup") is True:
        return True
    if data.get("type") == "group":
        return True
    return bool(data.get("schedule_day") or data.get("scheduleDay"))


def build_search_document(record: Any) -> SearchDocument:
    """
    Project a persisted event or group into its search document.

    Raises:
        ValueError: when the record has no key to use as the document id
    """
    data = _as_mapping(record)
    pk = data.get("pk") or data.get("id")
    if not pk:
        raise ValueError("record has no pk")

    doc_id = storage_key(pk, data.get("sk"))
    created_at_ms = data.get("created_at_ms") or data.get("createdAt")
    if not isinstance(created_at_ms, int):
        created_at_ms = int(datetime.now(timezone.utc).timestamp() * 1000)

    common = {
        "id": doc_id,
        "title": data.get("title") or "",
        "description": data.get("description") or "",
        "category": parse_categories(data.get("category")),
        "image_url": data.get("image_url"),
        "socials": data.get("socials") or {},
        "is_public": data.get("is_public", True) is not False,
        "created_at_ms": created_at_ms,
    }

    if is_group_record(data):
        schedule_location = data.get("schedule_location") or data.get("scheduleLocation")
        return SearchDocument(
            type="group",
            location=schedule_location,
            schedule_day=data.get("schedule_day") or data.get("scheduleDay"),
            schedule_time=data.get("schedule_time") or data.get("scheduleTime"),
            schedule_location=schedule_location,
            **common,
        )

    cost = data.get("cost")
    search_cost = (
        SearchCost(
            type=str(cost.get("type") or "unknown"),
            amount=cost.get("amount") or 0.0,
            currency=cost.get("currency") or "USD",
        )
        if isinstance(cost, dict)
        else SearchCost()
    )
    return SearchDocument(
        type="event",
        location=data.get("location"),
        venue=data.get("venue"),
        cost=search_cost,
        date=data.get("start_date"),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        start_time=data.get("start_time"),
        **common,
    )


class IndexPropagator:
    """
    Writes persisted records into the search index, best effort.

    `index` and `index_many` never raise: every failure is logged and
    reported in the returned IndexResult.
    """

    def __init__(
        self,
        client: SearchIndexClient,
        index_name: str = DEFAULT_INDEX_NAME,
        timeout: float | None = DEFAULT_INDEX_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.index_name = index_name
        self.timeout = timeout

    async def index(self, record: Any) -> IndexResult:
        doc_id = "<unknown>"
        try:
            document = build_search_document(record)
            doc_id = document.id
            await asyncio.wait_for(
                self.client.index_document(
                    self.index_name, doc_id, document.to_document()
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Indexing {doc_id} timed out after {self.timeout}s",
                extra={"event_id": doc_id, "stage": "index"},
            )
            return IndexResult(doc_id=doc_id, ok=False, error="timeout")
        except Exception as e:
            logger.warning(
                f"Failed to index {doc_id}: {e}",
                extra={"event_id": doc_id, "stage": "index"},
            )
            return IndexResult(doc_id=doc_id, ok=False, error=str(e))

        logger.debug(f"Indexed {doc_id}", extra={"event_id": doc_id, "stage": "index"})
        return IndexResult(doc_id=doc_id, ok=True)

    async def index_many(self, records: list[Any]) -> list[IndexResult]:
        """Index all records concurrently and wait for every attempt to settle."""
        if not records:
            return []
        results = await asyncio.gather(*(self.index(record) for record in records))
        failed = sum(1 for result in results if not result.ok)
        if failed:
            logger.warning(
                f"Search indexing: {failed}/{len(results)} documents failed",
                extra={"stage": "index"},
            )
        return list(results)
