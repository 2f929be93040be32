"""SQLite database operations for feed ingestion and generated articles."""

import json
import sqlite3
import threading
from datetime import datetime

from feed_autogen.models import FeedItem, ItemState, Source, SourceStatus

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'rss',
    url TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    config TEXT,
    last_fetch_at TEXT,
    last_error TEXT,
    last_error_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS feed_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL REFERENCES sources(id) ON DELETE RESTRICT,
    natural_key TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT,
    url TEXT,
    published_at TEXT,
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    state TEXT NOT NULL DEFAULT 'new',
    article_id INTEGER,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    UNIQUE(source_id, natural_key)
);

CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_item_id INTEGER UNIQUE NOT NULL REFERENCES feed_items(id),
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    model TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_feed_items_source_id ON feed_items(source_id);
CREATE INDEX IF NOT EXISTS idx_feed_items_state ON feed_items(state);
"""


class SourceNotFoundError(Exception):
    """Raised when a source id does not exist."""


class SourceInUseError(Exception):
    """Raised when deleting a source that still owns feed items."""


class Database:
    """SQLite database manager for sources, feed items and articles.

    One connection is shared by the poll loop, generation worker threads
    and the admin tools. Every write runs under a lock together with its
    commit, so one caller never commits or discards another's statement.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._write_lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # --- Source operations ---

    def add_source(self, source: Source) -> Source:
        """Insert a new source and return it with its assigned id."""
        with self._write_lock:
            cursor = self.conn.execute(
                """INSERT INTO sources (name, type, url, status, config,
                   last_fetch_at, last_error, last_error_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    source.name,
                    source.type,
                    source.url,
                    SourceStatus(source.status).value,
                    _config_to_str(source.config),
                    _dt_to_str(source.last_fetch_at),
                    source.last_error,
                    _dt_to_str(source.last_error_at),
                    _dt_to_str(source.created_at),
                ),
            )
            self.conn.commit()
        source.id = cursor.lastrowid
        return source

    def get_source_by_id(self, source_id: int) -> Source | None:
        """Look up a source by its id."""
        row = self.conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def require_source(self, source_id: int) -> Source:
        """Like get_source_by_id, but raise SourceNotFoundError when missing."""
        source = self.get_source_by_id(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        return source

    def get_all_sources(self) -> list[Source]:
        """Return all sources, oldest fetch first."""
        rows = self.conn.execute(
            "SELECT * FROM sources ORDER BY last_fetch_at IS NOT NULL, last_fetch_at, id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def find_sources_by_identifier(self, identifier: str) -> list[Source]:
        """Find sources by id, URL, or name (case-insensitive substring)."""
        if identifier.isdigit():
            source = self.get_source_by_id(int(identifier))
            if source:
                return [source]
        rows = self.conn.execute(
            """SELECT * FROM sources
               WHERE url = ? OR name LIKE ? COLLATE NOCASE""",
            (identifier, f"%{identifier}%"),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def update_source_config(self, source_id: int, config: dict) -> None:
        """Replace the stored configuration of a source."""
        with self._write_lock:
            cursor = self.conn.execute(
                "UPDATE sources SET config = ? WHERE id = ?",
                (_config_to_str(config), source_id),
            )
            self.conn.commit()
        if cursor.rowcount == 0:
            raise SourceNotFoundError(f"Source {source_id} not found")

    def record_fetch_success(self, source_id: int, timestamp: datetime) -> None:
        """Mark a source active after a successful fetch and clear its error."""
        with self._write_lock:
            self.conn.execute(
                """UPDATE sources SET last_fetch_at = ?, status = ?,
                   last_error = NULL, last_error_at = NULL WHERE id = ?""",
                (_dt_to_str(timestamp), SourceStatus.ACTIVE.value, source_id),
            )
            self.conn.commit()

    def record_fetch_failure(
        self, source_id: int, error_message: str, timestamp: datetime
    ) -> None:
        """Mark a source as erroring and store the error message."""
        with self._write_lock:
            self.conn.execute(
                """UPDATE sources SET last_fetch_at = ?, status = ?,
                   last_error = ?, last_error_at = ? WHERE id = ?""",
                (
                    _dt_to_str(timestamp),
                    SourceStatus.ERROR.value,
                    error_message,
                    _dt_to_str(timestamp),
                    source_id,
                ),
            )
            self.conn.commit()

    def delete_source(self, source_id: int) -> bool:
        """Delete a source that owns no feed items. Returns True if deleted.

        Raises:
            SourceInUseError: If feed items still reference the source.
        """
        with self._write_lock:
            try:
                cursor = self.conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            except sqlite3.IntegrityError:
                # SQLite undoes the failed statement only
                raise SourceInUseError(
                    f"Source {source_id} still has feed items and cannot be deleted"
                )
            self.conn.commit()
        return cursor.rowcount > 0

    # --- Feed item operations ---

    def get_existing_keys(self, source_id: int, keys: list[str]) -> set[str]:
        """Return which of the given natural keys are already stored for a source."""
        if not keys:
            return set()
        placeholders = ",".join("?" for _ in keys)
        rows = self.conn.execute(
            f"""SELECT natural_key FROM feed_items
                WHERE source_id = ? AND natural_key IN ({placeholders})""",
            [source_id, *keys],
        ).fetchall()
        return {r["natural_key"] for r in rows}

    def insert_feed_item(self, item: FeedItem) -> FeedItem | None:
        """Insert a feed item. Returns None if (source_id, natural_key) already exists."""
        with self._write_lock:
            try:
                cursor = self.conn.execute(
                    """INSERT INTO feed_items (source_id, natural_key, title, content,
                       url, published_at, fetched_at, state)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        item.source_id,
                        item.natural_key,
                        item.title,
                        item.content,
                        item.url,
                        _dt_to_str(item.published_at),
                        _dt_to_str(item.fetched_at),
                        ItemState.NEW.value,
                    ),
                )
            except sqlite3.IntegrityError:
                # Duplicate (source_id, natural_key), e.g. from a concurrent poll
                return None
            self.conn.commit()
        item.id = cursor.lastrowid
        item.state = ItemState.NEW
        return item

    def get_feed_item(self, item_id: int) -> FeedItem | None:
        """Look up a feed item by its id."""
        row = self.conn.execute(
            "SELECT * FROM feed_items WHERE id = ?", (item_id,)
        ).fetchone()
        return _row_to_item(row) if row else None

    def get_items(
        self,
        source_id: int | None = None,
        state: ItemState | None = None,
        limit: int = 50,
    ) -> list[FeedItem]:
        """Get feed items in ingestion order, optionally filtered."""
        query = "SELECT * FROM feed_items WHERE 1=1"
        params: list = []

        if source_id is not None:
            query += " AND source_id = ?"
            params.append(source_id)
        if state is not None:
            query += " AND state = ?"
            params.append(ItemState(state).value)

        query += " ORDER BY id LIMIT ?"
        params.append(limit)

        rows = self.conn.execute(query, params).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_pending_items(self, source_id: int) -> list[FeedItem]:
        """Return a source's items whose last generation attempt failed."""
        rows = self.conn.execute(
            "SELECT * FROM feed_items WHERE source_id = ? AND state = ? ORDER BY id",
            (source_id, ItemState.PENDING.value),
        ).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_item_count_for_source(self, source_id: int) -> int:
        """Get the number of feed items stored for a source."""
        row = self.conn.execute(
            "SELECT COUNT(*) as cnt FROM feed_items WHERE source_id = ?", (source_id,)
        ).fetchone()
        return row["cnt"] if row else 0

    def mark_processed(self, item_id: int, article_id: int) -> bool:
        """Atomically move an item to PROCESSED unless it already is.

        Returns True if this call made the transition.
        """
        with self._write_lock:
            cursor = self.conn.execute(
                """UPDATE feed_items SET state = ?, article_id = ?, last_error = NULL
                   WHERE id = ? AND state != ?""",
                (ItemState.PROCESSED.value, article_id, item_id, ItemState.PROCESSED.value),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def begin_attempt(self, item_id: int) -> bool:
        """Move an unprocessed item to PENDING and count the attempt.

        Returns False if the item is already processed. An item left PENDING
        by a crash mid-generation is picked up again on the next poll.
        """
        with self._write_lock:
            cursor = self.conn.execute(
                """UPDATE feed_items SET state = ?, attempts = attempts + 1
                   WHERE id = ? AND state != ?""",
                (ItemState.PENDING.value, item_id, ItemState.PROCESSED.value),
            )
            self.conn.commit()
        return cursor.rowcount == 1

    def record_item_error(self, item_id: int, error_message: str) -> None:
        """Store the error of the latest failed attempt on an unprocessed item."""
        with self._write_lock:
            self.conn.execute(
                "UPDATE feed_items SET last_error = ? WHERE id = ? AND state != ?",
                (error_message, item_id, ItemState.PROCESSED.value),
            )
            self.conn.commit()

    # --- Article operations ---

    def save_article(
        self, feed_item_id: int, title: str, content: str, model: str | None = None
    ) -> int:
        """Store a generated article and return its id.

        A feed item has at most one article: if one exists already, its id
        is returned and the new text is discarded.
        """
        with self._write_lock:
            self.conn.execute(
                """INSERT INTO articles (feed_item_id, title, content, model, created_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(feed_item_id) DO NOTHING""",
                (feed_item_id, title, content, model, _dt_to_str(datetime.utcnow())),
            )
            self.conn.commit()
            row = self.conn.execute(
                "SELECT id FROM articles WHERE feed_item_id = ?", (feed_item_id,)
            ).fetchone()
        return row["id"]

    def get_article(self, article_id: int) -> dict | None:
        """Return a stored article as a dict."""
        row = self.conn.execute(
            "SELECT * FROM articles WHERE id = ?", (article_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_article_count_for_item(self, feed_item_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) as cnt FROM articles WHERE feed_item_id = ?",
            (feed_item_id,),
        ).fetchone()
        return row["cnt"] if row else 0


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _config_to_str(config: dict | str | None) -> str | None:
    if config is None or isinstance(config, str):
        return config
    return json.dumps(config)


def _str_to_config(s: str | None) -> dict | str | None:
    """Decode stored configuration, keeping undecodable text as-is."""
    if s is None:
        return None
    try:
        return json.loads(s)
    except ValueError:
        return s


def _row_to_source(row: sqlite3.Row) -> Source:
    """Convert a database row to a Source dataclass."""
    return Source(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        url=row["url"],
        status=SourceStatus(row["status"]),
        config=_str_to_config(row["config"]),
        last_fetch_at=_str_to_dt(row["last_fetch_at"]),
        last_error=row["last_error"],
        last_error_at=_str_to_dt(row["last_error_at"]),
        created_at=_str_to_dt(row["created_at"]) or datetime.utcnow(),
    )


def _row_to_item(row: sqlite3.Row) -> FeedItem:
    """Convert a database row to a FeedItem dataclass."""
    return FeedItem(
        id=row["id"],
        source_id=row["source_id"],
        natural_key=row["natural_key"],
        title=row["title"],
        content=row["content"],
        url=row["url"],
        published_at=_str_to_dt(row["published_at"]),
        fetched_at=_str_to_dt(row["fetched_at"]) or datetime.utcnow(),
        state=ItemState(row["state"]),
        article_id=row["article_id"],
        attempts=row["attempts"],
        last_error=row["last_error"],
    )
