"""Data models for feed ingestion and auto-generation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceStatus(str, Enum):
    """Operational status of a source, set by poll attempts."""

    ACTIVE = "active"
    ERROR = "error"


class ItemState(str, Enum):
    """Processing state of a feed item.

    NEW items were ingested but never dispatched. PENDING items were
    dispatched but have no recorded article yet (the attempt failed or was
    interrupted); they are retried on the next poll. PROCESSED is terminal.
    """

    NEW = "new"
    PENDING = "pending"
    PROCESSED = "processed"


@dataclass
class Source:
    """Represents a configured content origin (an RSS/Atom feed)."""

    name: str
    url: str
    type: str = "rss"
    status: SourceStatus = SourceStatus.ACTIVE
    config: dict | str | None = field(default_factory=dict)  # as stored
    last_fetch_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    id: int | None = None


@dataclass
class FeedItem:
    """Represents a single entry ingested from a source."""

    source_id: int
    natural_key: str
    title: str
    content: str | None = None
    url: str | None = None
    published_at: datetime | None = None
    fetched_at: datetime = field(default_factory=datetime.utcnow)
    state: ItemState = ItemState.NEW
    article_id: int | None = None
    attempts: int = 0
    last_error: str | None = None
    id: int | None = None

    @property
    def processed(self) -> bool:
        return self.state is ItemState.PROCESSED


@dataclass(frozen=True)
class RawEntry:
    """An entry as returned by the upstream feed, before validation."""

    natural_key: str | None
    title: str | None
    content: str | None = None
    url: str | None = None
    published_at: datetime | None = None


@dataclass
class IngestResult:
    """Counts and created items from one ingestion pass."""

    fetched: int = 0
    new: int = 0
    duplicate: int = 0
    malformed: int = 0
    items: list[FeedItem] = field(default_factory=list)


@dataclass(frozen=True)
class ItemOutcome:
    """Outcome of dispatching one feed item to the generator."""

    feed_item_id: int
    status: str  # "generated", "failed" or "skipped"
    article_id: int | None = None
    error: str | None = None


@dataclass
class DispatchSummary:
    """Per-item outcomes of one dispatch cycle."""

    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def generated(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "generated")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")


@dataclass
class PollSummary:
    """Structured result handed back to whatever triggered a poll."""

    source_id: int
    status: str  # "ok", "failed" or "disabled"
    fetched: int = 0
    new: int = 0
    duplicate: int = 0
    malformed: int = 0
    generated: int = 0
    failed: int = 0
    outcomes: list[ItemOutcome] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "status": self.status,
            "fetched": self.fetched,
            "new": self.new,
            "duplicate": self.duplicate,
            "malformed": self.malformed,
            "generated": self.generated,
            "failed": self.failed,
            "outcomes": [
                {
                    "feed_item_id": o.feed_item_id,
                    "status": o.status,
                    "article_id": o.article_id,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
            "error": self.error,
        }
