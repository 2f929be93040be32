"""Admin tool implementations for the feed-autogen assistant."""

import asyncio
import json
import sqlite3

from langchain_core.tools import tool

from feed_autogen.database import Database, SourceInUseError
from feed_autogen.dispatcher import process_item
from feed_autogen.feed_parser import FeedParseError, validate_url
from feed_autogen.generator import ArticleGenerator, LLMArticleGenerator
from feed_autogen.models import ItemState, Source
from feed_autogen.poller import poll_source
from feed_autogen.source_config import merge_config, normalize_config

# Module-level references, set during agent initialization
_db: Database | None = None
_generator: ArticleGenerator | None = None


def set_database(db: Database, generator: ArticleGenerator | None = None) -> None:
    """Set the database (and optionally the article generator) used by all tools."""
    global _db, _generator
    _db = db
    _generator = generator


def _get_db() -> Database:
    """Get the database instance, raising if not set."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call set_database() first.")
    return _db


def _get_generator() -> ArticleGenerator:
    global _generator
    if _generator is None:
        _generator = LLMArticleGenerator(_get_db())
    return _generator


def _error(message: str, **extra) -> str:
    return json.dumps({"status": "error", "message": message, **extra})


def _resolve_source(db: Database, identifier: str) -> tuple[Source | None, str | None]:
    """Resolve an id, URL or name to exactly one source, or an error payload."""
    matches = db.find_sources_by_identifier(identifier)
    if not matches:
        return None, _error(f"No source found matching '{identifier}'")
    if len(matches) > 1:
        exact = [s for s in matches if s.url == identifier or s.name == identifier]
        if len(exact) != 1:
            return None, _error(
                "Multiple sources match. Please be more specific.",
                matches=[s.name for s in matches],
            )
        matches = exact
    return matches[0], None


def _source_dict(db: Database, source: Source) -> dict:
    config = normalize_config(source.config)
    return {
        "id": source.id,
        "name": source.name,
        "url": source.url,
        "status": source.status.value,
        "enabled": config.enabled,
        "auto_generate": config.auto_generate,
        "max_items": config.max_items,
        "polling_interval": config.polling_interval,
        "last_fetch_at": source.last_fetch_at.isoformat() if source.last_fetch_at else None,
        "item_count": db.get_item_count_for_source(source.id),
        **({"last_error": source.last_error} if source.last_error else {}),
    }


@tool
def add_source(
    name: str,
    url: str,
    auto_generate: bool = False,
    max_items: int = 10,
    polling_interval: int = 60,
) -> str:
    """Add an RSS or Atom source to poll.

    Args:
        name: Display name for the source.
        url: The feed URL.
        auto_generate: If true, new items are sent to article generation automatically.
        max_items: Maximum number of new items to ingest per poll.
        polling_interval: Seconds between polls of this source.
    """
    db = _get_db()

    try:
        validate_url(url)
    except FeedParseError as e:
        return _error(str(e))

    config = normalize_config({
        "enabled": True,
        "autoGenerate": auto_generate,
        "maxItems": max_items,
        "pollingInterval": polling_interval,
    })
    try:
        source = db.add_source(Source(name=name, url=url, config=config.to_dict()))
    except sqlite3.IntegrityError:
        return _error("A source with this URL already exists")

    return json.dumps({"status": "added", "source": _source_dict(db, source)})


@tool
def list_sources() -> str:
    """List all sources with their status and effective configuration."""
    db = _get_db()
    sources = db.get_all_sources()

    return json.dumps({
        "sources": [_source_dict(db, s) for s in sources],
        "total": len(sources),
    })


@tool
def update_source_config(
    source_identifier: str,
    enabled: bool | None = None,
    auto_generate: bool | None = None,
    max_items: int | None = None,
    polling_interval: int | None = None,
) -> str:
    """Change a source's configuration. Only the given options are changed.

    Args:
        source_identifier: The id, name or URL of the source.
        enabled: Whether the source is polled at all.
        auto_generate: Whether new items are sent to article generation automatically.
        max_items: Maximum number of new items to ingest per poll.
        polling_interval: Seconds between polls of this source.
    """
    db = _get_db()
    source, error = _resolve_source(db, source_identifier)
    if error:
        return error

    updates = {
        key: value
        for key, value in (
            ("enabled", enabled),
            ("autoGenerate", auto_generate),
            ("maxItems", max_items),
            ("pollingInterval", polling_interval),
        )
        if value is not None
    }
    db.update_source_config(source.id, merge_config(source.config, updates))

    return json.dumps({
        "status": "updated",
        "source": _source_dict(db, db.require_source(source.id)),
    })


@tool
def poll_source_now(source_identifier: str) -> str:
    """Fetch a source right away, ingest new items and run auto-generation.

    Args:
        source_identifier: The id, name or URL of the source.
    """
    db = _get_db()
    source, error = _resolve_source(db, source_identifier)
    if error:
        return error

    generator = _generator
    if generator is None and normalize_config(source.config).auto_generate:
        generator = _get_generator()
    summary = asyncio.run(poll_source(db, source.id, generator=generator))
    return json.dumps(summary.to_dict())


@tool
def list_items(source_identifier: str = "", state: str = "", limit: int = 20) -> str:
    """List ingested feed items, optionally filtered by source and state.

    Args:
        source_identifier: Optional id, name or URL of a source.
        state: Optional state filter: "new", "pending" or "processed".
        limit: Maximum number of items to return (default 20).
    """
    db = _get_db()

    source_id = None
    if source_identifier:
        source, error = _resolve_source(db, source_identifier)
        if error:
            return error
        source_id = source.id

    item_state = None
    if state:
        try:
            item_state = ItemState(state.lower())
        except ValueError:
            return _error(f"Unknown state '{state}'. Use new, pending or processed.")

    items = db.get_items(source_id=source_id, state=item_state, limit=limit)

    return json.dumps({
        "items": [
            {
                "id": item.id,
                "source_id": item.source_id,
                "title": item.title,
                "url": item.url,
                "published_at": item.published_at.isoformat() if item.published_at else None,
                "state": item.state.value,
                "article_id": item.article_id,
                "attempts": item.attempts,
                **({"last_error": item.last_error} if item.last_error else {}),
            }
            for item in items
        ],
        "total": len(items),
    })


@tool
def process_feed_item(item_id: int) -> str:
    """Generate an article for one feed item now, even if auto-generation is off.

    Args:
        item_id: The id of the feed item.
    """
    db = _get_db()

    try:
        outcome = process_item(db, item_id, _get_generator())
    except ValueError as e:
        return _error(str(e))

    return json.dumps({
        "status": outcome.status,
        "feed_item_id": outcome.feed_item_id,
        "article_id": outcome.article_id,
        **({"error": outcome.error} if outcome.error else {}),
    })


@tool
def delete_source(source_identifier: str) -> str:
    """Delete a source. Sources that still have feed items cannot be deleted.

    Args:
        source_identifier: The id, name or URL of the source.
    """
    db = _get_db()
    source, error = _resolve_source(db, source_identifier)
    if error:
        return error

    try:
        db.delete_source(source.id)
    except SourceInUseError as e:
        return _error(str(e))

    return json.dumps({"status": "deleted", "source_name": source.name})
