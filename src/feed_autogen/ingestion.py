"""Deduplicating ingestion of raw feed entries into feed items."""

import logging
import sqlite3
from datetime import datetime

from feed_autogen.database import Database
from feed_autogen.models import FeedItem, IngestResult, RawEntry
from feed_autogen.source_config import SourceConfig

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Raised when the store fails part-way through ingestion.

    The items committed before the failure are available on `result`.
    """

    def __init__(self, message: str, result: IngestResult):
        super().__init__(message)
        self.result = result


def ingest_entries(
    db: Database,
    source_id: int,
    entries: list[RawEntry],
    config: SourceConfig,
) -> IngestResult:
    """Persist the entries whose natural key is not yet stored for the source.

    Entries are handled in the given order. At most config.max_items new
    items are created; once the cap is hit the remaining entries are left
    for the next poll. The store's uniqueness constraint has the final say,
    so an insert that loses a race with a concurrent poll counts as a
    duplicate.

    Raises:
        IngestionError: If the store fails with anything other than a
            uniqueness conflict. Items created so far stay stored.
    """
    result = IngestResult(fetched=len(entries))
    try:
        _ingest(db, source_id, entries, config, result)
    except sqlite3.Error as e:
        raise IngestionError(str(e), result) from e
    return result


def _ingest(
    db: Database,
    source_id: int,
    entries: list[RawEntry],
    config: SourceConfig,
    result: IngestResult,
) -> None:
    candidate_keys = [e.natural_key for e in entries if _is_valid(e)]
    seen = db.get_existing_keys(source_id, list(dict.fromkeys(candidate_keys)))
    fetched_at = datetime.utcnow()

    for entry in entries:
        if result.new >= config.max_items:
            logger.info(
                "Source %d: reached max_items=%d, leaving remaining entries for next poll",
                source_id, config.max_items,
            )
            break

        if not _is_valid(entry):
            result.malformed += 1
            logger.warning(
                "Source %d: skipping malformed entry %r", source_id, entry.title or entry.url
            )
            continue

        if entry.natural_key in seen:
            result.duplicate += 1
            continue
        seen.add(entry.natural_key)

        item = db.insert_feed_item(
            FeedItem(
                source_id=source_id,
                natural_key=entry.natural_key,
                title=(entry.title or "").strip() or "Untitled",
                content=entry.content,
                url=entry.url,
                published_at=entry.published_at,
                fetched_at=fetched_at,
            )
        )
        if item is None:
            result.duplicate += 1
            continue

        result.new += 1
        result.items.append(item)


def _is_valid(entry: RawEntry) -> bool:
    return isinstance(entry.natural_key, str) and bool(entry.natural_key.strip())
