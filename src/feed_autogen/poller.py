"""Polling of sources: fetch, ingest, then dispatch to article generation."""

import asyncio
import logging
import os
import sqlite3
from datetime import datetime, timedelta
from typing import Callable

from feed_autogen.database import Database
from feed_autogen.dispatcher import dispatch
from feed_autogen.feed_parser import FeedParseError, fetch_entries
from feed_autogen.generator import ArticleGenerator, LLMArticleGenerator
from feed_autogen.ingestion import IngestionError, ingest_entries
from feed_autogen.models import PollSummary, RawEntry, Source
from feed_autogen.source_config import SourceConfig, normalize_config

logger = logging.getLogger(__name__)

DEFAULT_LOOP_INTERVAL = 60  # seconds between checks for due sources

Fetcher = Callable[[str], list[RawEntry]]


async def poll_source(
    db: Database,
    source_id: int,
    *,
    fetcher: Fetcher = fetch_entries,
    generator: ArticleGenerator | None = None,
) -> PollSummary:
    """Poll one source and return a summary of what happened.

    Upstream failures are recorded on the source and reported in the
    summary with status "failed"; they are not raised. Raises
    SourceNotFoundError if the source does not exist.
    """
    source = db.require_source(source_id)
    config = normalize_config(source.config)

    if not config.enabled:
        logger.info("Source '%s' is disabled, skipping poll", source.name)
        return PollSummary(source_id=source.id, status="disabled")

    attempted_at = datetime.utcnow()
    try:
        entries = await asyncio.to_thread(fetcher, source.url)
    except FeedParseError as e:
        logger.warning("Source '%s' error: %s", source.name, e)
        _record_attempt(db, source, attempted_at, str(e))
        return PollSummary(source_id=source.id, status="failed", error=str(e))
    except Exception as e:
        logger.warning("Source '%s' unexpected error: %s", source.name, e)
        _record_attempt(db, source, attempted_at, str(e))
        return PollSummary(source_id=source.id, status="failed", error=str(e))

    error = None
    try:
        ingested = ingest_entries(db, source.id, entries, config)
    except IngestionError as e:
        logger.warning("Source '%s': ingestion stopped: %s", source.name, e)
        ingested, error = e.result, str(e)
    _record_attempt(db, source, attempted_at, error)
    logger.info(
        "Source '%s': %d fetched, %d new, %d duplicate, %d malformed",
        source.name, ingested.fetched, ingested.new, ingested.duplicate, ingested.malformed,
    )

    # Items stored before an ingestion failure are dispatched as well
    if config.auto_generate and generator is None:
        generator = LLMArticleGenerator(db)
    dispatched = await dispatch(db, source, ingested.items, config, generator)

    return PollSummary(
        source_id=source.id,
        status="failed" if error else "ok",
        fetched=ingested.fetched,
        new=ingested.new,
        duplicate=ingested.duplicate,
        malformed=ingested.malformed,
        generated=dispatched.generated,
        failed=dispatched.failed,
        outcomes=dispatched.outcomes,
        error=error,
    )


def _record_attempt(
    db: Database, source: Source, attempted_at: datetime, error: str | None
) -> None:
    try:
        if error is None:
            db.record_fetch_success(source.id, attempted_at)
        else:
            db.record_fetch_failure(source.id, error, attempted_at)
    except sqlite3.Error as e:
        logger.warning("Source '%s': could not record poll attempt: %s", source.name, e)


def is_due(source: Source, config: SourceConfig, now: datetime) -> bool:
    """Whether a source should be polled, per its advisory polling interval."""
    if not config.enabled:
        return False
    if source.last_fetch_at is None:
        return True
    return source.last_fetch_at + timedelta(seconds=config.polling_interval) <= now


async def poll_due_sources_once(
    db: Database,
    *,
    fetcher: Fetcher = fetch_entries,
    generator: ArticleGenerator | None = None,
) -> list[PollSummary]:
    """Poll every source that is due. Returns one summary per polled source."""
    now = datetime.utcnow()
    summaries = []

    for source in db.get_all_sources():
        if not is_due(source, normalize_config(source.config), now):
            continue
        summaries.append(
            await poll_source(db, source.id, fetcher=fetcher, generator=generator)
        )

    return summaries


async def start_polling(db: Database, generator: ArticleGenerator | None = None) -> None:
    """Run the polling loop indefinitely."""
    interval = int(os.environ.get("FEED_AUTOGEN_LOOP_INTERVAL", DEFAULT_LOOP_INTERVAL))
    logger.info("Poller started (interval: %ds)", interval)

    while True:
        try:
            summaries = await poll_due_sources_once(db, generator=generator)
            new_count = sum(s.new for s in summaries)
            if new_count > 0:
                logger.info(
                    "Poll cycle complete: %d new items, %d articles generated",
                    new_count, sum(s.generated for s in summaries),
                )
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)

        await asyncio.sleep(interval)
