"""Auto-generation dispatch policy for newly ingested feed items."""

import asyncio
import logging
import sqlite3

from feed_autogen.database import Database
from feed_autogen.generator import ArticleGenerator, GenerationError, GenerationRequest
from feed_autogen.models import DispatchSummary, FeedItem, ItemOutcome, Source
from feed_autogen.source_config import SourceConfig

logger = logging.getLogger(__name__)


async def dispatch(
    db: Database,
    source: Source,
    new_items: list[FeedItem],
    config: SourceConfig,
    generator: ArticleGenerator,
) -> DispatchSummary:
    """Generate articles for a source's new and previously failed items.

    Does nothing unless auto-generation is enabled for the source; new
    items then stay NEW until someone processes them by hand. Items are
    handled one at a time in order, and a failure on one item never stops
    the others.
    """
    summary = DispatchSummary()
    if not config.auto_generate:
        if new_items:
            logger.info(
                "Source '%s': auto-generation off, %d new items left for manual processing",
                source.name, len(new_items),
            )
        return summary

    new_ids = {item.id for item in new_items}
    try:
        pending = db.get_pending_items(source.id)
    except sqlite3.Error as e:
        logger.warning("Source '%s': could not load pending items: %s", source.name, e)
        pending = []
    retries = [item for item in pending if item.id not in new_ids]
    if retries:
        logger.info("Source '%s': retrying %d pending items", source.name, len(retries))

    for item in [*new_items, *retries]:
        try:
            outcome = await dispatch_item(db, item.id, generator)
        except (sqlite3.Error, ValueError) as e:
            logger.warning("Feed item %d: dispatch failed: %s", item.id, e)
            outcome = ItemOutcome(item.id, "failed", error=str(e))
        summary.outcomes.append(outcome)

    logger.info(
        "Source '%s': generated %d articles, %d failed",
        source.name, summary.generated, summary.failed,
    )
    return summary


async def dispatch_item(db: Database, item_id: int, generator: ArticleGenerator) -> ItemOutcome:
    """Run one feed item through the generator and record the outcome."""
    item = db.get_feed_item(item_id)
    if item is None:
        raise ValueError(f"Feed item {item_id} not found")
    if item.processed or not db.begin_attempt(item.id):
        return _already_processed(db, item.id)

    request = GenerationRequest(
        feed_item_id=item.id,
        title=item.title,
        content=item.content,
        url=item.url,
    )
    try:
        article_id = await asyncio.to_thread(generator.generate, request)
    except GenerationError as e:
        logger.warning("Feed item %d: generation failed: %s", item.id, e)
        return _record_failure(db, item.id, str(e))
    except Exception as e:
        logger.warning("Feed item %d: unexpected generation error: %s", item.id, e)
        return _record_failure(db, item.id, str(e))

    try:
        transitioned = db.mark_processed(item.id, article_id)
    except sqlite3.Error as e:
        # Item stays PENDING; the retry resolves to the same stored article
        logger.warning("Feed item %d: could not mark processed: %s", item.id, e)
        return _record_failure(db, item.id, str(e), article_id=article_id)

    if not transitioned:
        return _already_processed(db, item.id)
    return ItemOutcome(item.id, "generated", article_id=article_id)


def process_item(db: Database, item_id: int, generator: ArticleGenerator) -> ItemOutcome:
    """Generate an article for one item on demand, whatever the source's settings."""
    return asyncio.run(dispatch_item(db, item_id, generator))


def _already_processed(db: Database, item_id: int) -> ItemOutcome:
    current = db.get_feed_item(item_id)
    return ItemOutcome(
        item_id,
        "skipped",
        article_id=current.article_id if current else None,
        error="already processed",
    )


def _record_failure(
    db: Database, item_id: int, error: str, article_id: int | None = None
) -> ItemOutcome:
    try:
        db.record_item_error(item_id, error)
    except sqlite3.Error as e:
        logger.warning("Feed item %d: could not record failure: %s", item_id, e)
    return ItemOutcome(item_id, "failed", article_id=article_id, error=error)
