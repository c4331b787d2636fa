"""
Ingestion Orchestrator.

Drives one batch through Normalizer -> Persistence Gateway -> Index Propagator.

Stage ordering is what gives the failure policy:
- rejected events never reach the store
- per-item storage failures never stop the rest of the batch, nor the
  indexing of records that did persist
- indexing failures are logged only; they are not batch errors
- an unreachable store (StoreUnavailableError) is the one batch-level error
  and propagates to the caller, which decides whether to retry
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from touchgrass.ingestion.deduplication import EventDeduplicator, IdentityKeyDeduplicator
from touchgrass.ingestion.errors import StoreUnavailableError
from touchgrass.ingestion.normalizer import EventNormalizer, RawEventShape
from touchgrass.ingestion.persist import EventPersistenceGateway
from touchgrass.ingestion.search_index import IndexPropagator
from touchgrass.schemas.event import GroupRecord

logger = logging.getLogger(__name__)


class BatchStatus(str, Enum):
    """Outcome of a batch run."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass
class BatchSummary:
    """JSON-serializable summary of one batch run."""

    source: str | None
    source_type: str
    processed_count: int = 0
    inserted_count: int = 0
    rejected_count: int = 0
    duplicate_count: int = 0
    event_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    index_failures: int = 0
    status: BatchStatus = BatchStatus.SUCCESS
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["duration_seconds"] = self.duration_seconds
        return data


class IngestionOrchestrator:
    """
    Coordinates normalization, persistence and indexing for ingestion batches.

    The gateway and propagator come in already wired to their clients; the
    caller owns those clients' lifecycle.
    """

    def __init__(
        self,
        gateway: EventPersistenceGateway,
        propagator: IndexPropagator,
        normalizer: EventNormalizer | None = None,
        deduplicator: EventDeduplicator | None = None,
    ):
        self.gateway = gateway
        self.propagator = propagator
        self.normalizer = normalizer or EventNormalizer()
        self.deduplicator = deduplicator or IdentityKeyDeduplicator()
        self.execution_history: list[BatchSummary] = []

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run(
        self,
        raw_events: list[Any],
        source: str | None,
        source_type: RawEventShape | str,
    ) -> BatchSummary:
        """
        Ingest one batch of raw events.

        Args:
            raw_events: Raw event objects as received from the source
            source: Provenance tag (e.g. "washingtonian", "seed-data")
            source_type: Raw shape tag

        Returns:
            BatchSummary with counts, identity keys and hard errors

        Raises:
            StoreUnavailableError: when the primary store cannot be reached
        """
        shape = RawEventShape.from_value(source_type)
        summary = BatchSummary(
            source=source,
            source_type=shape.value,
            processed_count=len(raw_events),
        )
        logger.info(
            f"Starting batch: {len(raw_events)} raw events ({shape.value})",
            extra={"source": source, "stage": "orchestrate"},
        )

        # 1. Normalize
        normalized = self.normalizer.normalize_batch(raw_events, shape, source)
        summary.rejected_count = normalized.rejected_count

        # 2. Collapse in-batch duplicates
        unique_events = self.deduplicator.deduplicate(normalized.events)
        summary.duplicate_count = len(normalized.events) - len(unique_events)
        if summary.duplicate_count:
            logger.info(
                f"Dropped {summary.duplicate_count} in-batch duplicates",
                extra={"source": source, "stage": "deduplicate"},
            )

        # 3. Persist
        try:
            saved = await self.gateway.save_many(unique_events, source)
        except StoreUnavailableError as e:
            logger.error(
                f"Batch aborted, event store unavailable: {e}",
                extra={"source": source, "stage": "persist"},
            )
            summary.errors.append(str(e))
            self._finish(summary, BatchStatus.FAILED)
            raise

        summary.inserted_count = saved.inserted_count
        summary.event_ids = saved.event_ids
        summary.errors = saved.errors

        # 4. Index (best effort)
        index_results = await self.propagator.index_many(saved.saved_records)
        summary.index_failures = sum(1 for result in index_results if not result.ok)

        status = BatchStatus.PARTIAL_SUCCESS if summary.errors else BatchStatus.SUCCESS
        self._finish(summary, status)
        logger.info(
            f"Batch complete: {summary.processed_count} processed, "
            f"{summary.inserted_count} inserted, {summary.rejected_count} rejected, "
            f"{len(summary.errors)} errors",
            extra={"source": source, "stage": "orchestrate"},
        )
        return summary

    async def run_groups(
        self, groups: list[dict[str, Any] | GroupRecord], source: str | None = None
    ) -> BatchSummary:
        """
        Persist and index pre-keyed group items.

        Groups skip normalization: they arrive already keyed and are written
        unconditionally.
        """
        summary = BatchSummary(
            source=source, source_type="group", processed_count=len(groups)
        )
        saved_records = []

        for group in groups:
            try:
                result = await self.gateway.save_group(group)
            except StoreUnavailableError as e:
                summary.errors.append(str(e))
                self._finish(summary, BatchStatus.FAILED)
                raise
            except Exception as e:
                logger.error(f"Failed to save group: {e}", extra={"stage": "persist"})
                summary.errors.append(str(e))
                continue

            summary.event_ids.append(result.event_id)
            saved_records.append(result.record)
            if result.was_newly_created:
                summary.inserted_count += 1

        index_results = await self.propagator.index_many(saved_records)
        summary.index_failures = sum(1 for result in index_results if not result.ok)

        self._finish(
            summary, BatchStatus.PARTIAL_SUCCESS if summary.errors else BatchStatus.SUCCESS
        )
        return summary

    async def reindex(self, records: list[Any]) -> BatchSummary:
        """Push already-persisted records into the search index again."""
        summary = BatchSummary(source=None, source_type="reindex", processed_count=len(records))
        results = await self.propagator.index_many(records)
        summary.event_ids = [result.doc_id for result in results if result.ok]
        summary.index_failures = sum(1 for result in results if not result.ok)
        self._finish(summary, BatchStatus.SUCCESS)
        return summary

    def _finish(self, summary: BatchSummary, status: BatchStatus) -> None:
        summary.status = status
        summary.ended_at = datetime.now(UTC)
        self.execution_history.append(summary)

    # ========================================================================
    # HISTORY & STATS
    # ========================================================================

    def get_execution_history(
        self, source: str | None = None, limit: int = 10
    ) -> list[BatchSummary]:
        """Get execution history, optionally filtered by source."""
        results = self.execution_history

        if source:
            results = [r for r in results if r.source == source]

        return results[-limit:]

    def get_execution_stats(self, source: str | None = None) -> dict:
        """Get aggregate statistics about batch runs."""
        results = self.execution_history
        if source:
            results = [r for r in results if r.source == source]

        if not results:
            return {"total_executions": 0}

        successful = sum(1 for r in results if r.status == BatchStatus.SUCCESS)
        total_processed = sum(r.processed_count for r in results)

        return {
            "total_executions": len(results),
            "successful_executions": successful,
            "success_rate": successful / len(results) * 100,
            "total_events_processed": total_processed,
            "total_events_inserted": sum(r.inserted_count for r in results),
            "total_events_rejected": sum(r.rejected_count for r in results),
            "average_events_per_run": total_processed / len(results),
        }
