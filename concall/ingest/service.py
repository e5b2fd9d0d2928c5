from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, Sequence

from concall.common.errors import ConcallError, PipelineTimeoutError
from concall.common.logging import log_event
from concall.enrichment.gemini_client import Enrichment

from .dedup import dedup_against_store
from .feed_api import FeedClient
from .models import NA_SENTINEL, Announcement, DateRange, GuidanceRecord, PipelineResult
from .retriever import Retriever, document_filename, downloaded_document

logger = logging.getLogger(__name__)


class GuidanceSink(Protocol):
    async def existing_names(self, names: Sequence[str]) -> set[str]: ...

    async def insert_many(self, records: Sequence[GuidanceRecord]) -> int: ...


class ConcallIngestor:
    """
    One ingestion invocation per call to `run()`.

    FETCHING -> (empty) -> DEDUPING -> (all known) -> PREPARING-WORKDIR -> ENRICHING -> PERSISTING

    - Items are enriched strictly one after another with a fixed pause after each,
      to stay under the AI service's rate limit.
    - A failing item is logged and counted; the loop moves on.
    - "NA" guidance and attachment-less items are skipped, not stored.
    - Persisting is a single bulk insert; a failure there is reported with the number
      of records that were produced but not saved.
    """

    def __init__(
        self,
        *,
        feed: FeedClient,
        retriever: Retriever,
        enrichment: Enrichment,
        store: GuidanceSink,
        dest_dir: Path,
        inter_item_delay_s: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.feed = feed
        self.retriever = retriever
        self.enrichment = enrichment
        self.store = store
        self.dest_dir = Path(dest_dir)
        self.inter_item_delay_s = max(0.0, float(inter_item_delay_s))
        self._sleep = sleep

    async def run_with_deadline(self, date_range: DateRange, *, deadline_s: float) -> PipelineResult:
        try:
            return await asyncio.wait_for(self.run(date_range), timeout=deadline_s)
        except asyncio.TimeoutError as e:
            log_event(logger, "concall_ingest.timeout", severity="ERROR", deadline_s=deadline_s)
            raise PipelineTimeoutError(
                f"concall ingestion exceeded its deadline of {deadline_s:.0f}s", deadline_s=deadline_s
            ) from e

    async def run(self, date_range: DateRange) -> PipelineResult:
        result = PipelineResult()

        announcements = await self.feed.fetch(date_range)
        result.fetched = len(announcements)
        log_event(logger, "concall_ingest.fetched", count=result.fetched)
        if not announcements:
            result.status = "empty"
            return result

        survivors = await dedup_against_store(announcements, self.store)
        result.after_dedup = len(survivors)
        log_event(logger, "concall_ingest.dedup", total=result.fetched, new=result.after_dedup)
        if not survivors:
            result.status = "noop"
            return result

        with_pdf = sum(1 for a in survivors if a.has_attachment)
        log_event(logger, "concall_ingest.workdir", dest_dir=str(self.dest_dir), with_attachment=with_pdf)
        try:
            self.dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConcallError(f"failed to create directory {self.dest_dir}: {e}") from e

        stored: set[str] = set()
        for i, a in enumerate(survivors):
            await self._process_item(a, position=i + 1, total=len(survivors), result=result, stored=stored)
            await self._sleep(self.inter_item_delay_s)

        log_event(logger, "concall_ingest.enriched", **result.counts())

        if result.records:
            try:
                saved = await self.store.insert_many(result.records)
            except ConcallError as e:
                result.status = "persist_failed"
                result.error = str(e)
                log_event(
                    logger,
                    "concall_ingest.persist_failed",
                    severity="ERROR",
                    unsaved=len(result.records),
                    error=str(e),
                )
                return result
            log_event(logger, "concall_ingest.persisted", inserted=saved)
        else:
            logger.warning("concall_ingest.nothing_to_save (all announcements skipped or failed)")

        result.status = "processed"
        log_event(logger, "concall_ingest.complete", status=result.status, **result.counts())
        return result

    async def _process_item(
        self, a: Announcement, *, position: int, total: int, result: PipelineResult, stored: set[str]
    ) -> None:
        ctx = {"issuer": a.issuer_name, "position": position, "total": total, "attachment": a.attachment_name}

        # One record per issuer per run; the first item that yields guidance wins.
        if a.issuer_name in stored:
            result.skipped += 1
            log_event(logger, "concall_ingest.item_skipped", reason="duplicate_in_batch", **ctx)
            return

        if not a.has_attachment:
            result.skipped += 1
            log_event(logger, "concall_ingest.item_skipped", reason="no_attachment", **ctx)
            return

        try:
            record = await self._enrich(a)
        except Exception as e:
            result.errored += 1
            log_event(
                logger,
                "concall_ingest.item_failed",
                severity="ERROR",
                error_type=type(e).__name__,
                error=str(e),
                **ctx,
            )
            return

        if record.guidance_text == NA_SENTINEL:
            result.skipped += 1
            log_event(logger, "concall_ingest.item_skipped", reason="no_guidance", **ctx)
            return

        result.enriched += 1
        result.records.append(record)
        stored.add(a.issuer_name)
        log_event(logger, "concall_ingest.item_processed", **ctx)

    async def _enrich(self, a: Announcement) -> GuidanceRecord:
        date_part = a.disclosure_date
        save_as = document_filename(a.issuer_name, date_part)
        async with downloaded_document(self.retriever, a.attachment_name, self.dest_dir, save_as=save_as) as path:
            guidance = await self.enrichment.summarize(path)
        return GuidanceRecord(issuer_name=a.issuer_name, disclosure_date=date_part, guidance_text=guidance)
