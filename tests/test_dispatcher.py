"""Tests for the auto-generation dispatch policy."""

import sqlite3

import pytest
from conftest import FakeGenerator, make_entries

from feed_autogen.dispatcher import dispatch, dispatch_item, process_item
from feed_autogen.ingestion import ingest_entries
from feed_autogen.models import FeedItem, ItemState
from feed_autogen.source_config import SourceConfig, normalize_config


def _ingest(db, source, count=3):
    return ingest_entries(db, source.id, make_entries(count), SourceConfig()).items


class TestDispatch:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [None, {}, {"autoGenerate": "yes"}, {"autoGenerate": False}])
    async def test_auto_generate_off_generates_nothing(self, db, add_source, generator, raw):
        source = add_source(raw)
        items = _ingest(db, source)

        summary = await dispatch(db, source, items, normalize_config(raw), generator)

        assert generator.calls == []
        assert summary.outcomes == []
        assert all(db.get_feed_item(i.id).state is ItemState.NEW for i in items)

    @pytest.mark.asyncio
    async def test_all_succeed(self, db, add_source, generator):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source)

        summary = await dispatch(db, source, items, SourceConfig(auto_generate=True), generator)

        assert summary.generated == 3
        assert summary.failed == 0
        assert [c.title for c in generator.calls] == ["Entry 0", "Entry 1", "Entry 2"]
        for item in items:
            stored = db.get_feed_item(item.id)
            assert stored.processed
            assert stored.article_id is not None

    @pytest.mark.asyncio
    async def test_failure_is_isolated_per_item(self, db, add_source):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source)
        generator = FakeGenerator(db, fail_titles={"Entry 1"})

        summary = await dispatch(db, source, items, SourceConfig(auto_generate=True), generator)

        assert [o.status for o in summary.outcomes] == ["generated", "failed", "generated"]
        assert summary.generated == 2
        assert summary.failed == 1
        assert "model refused" in summary.outcomes[1].error

        first, second, third = (db.get_feed_item(i.id) for i in items)
        assert first.processed and first.article_id is not None
        assert third.processed and third.article_id is not None
        assert second.state is ItemState.PENDING
        assert second.article_id is None
        assert second.attempts == 1
        assert "model refused" in second.last_error

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self, db, add_source):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source, count=2)

        class Exploding(FakeGenerator):
            def generate(self, request):
                if request.title == "Entry 0":
                    raise TimeoutError("read timed out")
                return super().generate(request)

        summary = await dispatch(
            db, source, items, SourceConfig(auto_generate=True), Exploding(db)
        )

        assert [o.status for o in summary.outcomes] == ["failed", "generated"]
        assert summary.outcomes[0].error == "read timed out"

    @pytest.mark.asyncio
    async def test_store_error_on_claim_is_isolated(self, db, add_source, generator, monkeypatch):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source)
        real_begin_attempt = db.begin_attempt

        def flaky_begin_attempt(item_id):
            if item_id == items[1].id:
                raise sqlite3.OperationalError("database is locked")
            return real_begin_attempt(item_id)

        monkeypatch.setattr(db, "begin_attempt", flaky_begin_attempt)
        summary = await dispatch(db, source, items, SourceConfig(auto_generate=True), generator)

        assert [o.status for o in summary.outcomes] == ["generated", "failed", "generated"]
        assert summary.outcomes[1].error == "database is locked"
        assert [c.title for c in generator.calls] == ["Entry 0", "Entry 2"]
        assert db.get_feed_item(items[1].id).state is ItemState.NEW

    @pytest.mark.asyncio
    async def test_item_missing_from_store_is_isolated(self, db, add_source, generator):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source, count=1)
        gone = FeedItem(source_id=source.id, natural_key="gone", title="Gone", id=9999)

        summary = await dispatch(
            db, source, [gone, *items], SourceConfig(auto_generate=True), generator
        )

        assert [o.status for o in summary.outcomes] == ["failed", "generated"]
        assert "not found" in summary.outcomes[0].error

    @pytest.mark.asyncio
    async def test_store_error_loading_pending_items(self, db, add_source, generator, monkeypatch):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source, count=2)

        def broken(source_id):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(db, "get_pending_items", broken)
        summary = await dispatch(db, source, items, SourceConfig(auto_generate=True), generator)

        assert summary.generated == 2

    @pytest.mark.asyncio
    async def test_pending_items_are_retried_next_cycle(self, db, add_source):
        source = add_source({"autoGenerate": True})
        config = SourceConfig(auto_generate=True)
        items = _ingest(db, source, count=2)
        await dispatch(db, source, items, config, FakeGenerator(db, fail_titles={"Entry 1"}))

        retry_generator = FakeGenerator(db)
        summary = await dispatch(db, source, [], config, retry_generator)

        assert [c.title for c in retry_generator.calls] == ["Entry 1"]
        assert summary.generated == 1
        assert db.get_feed_item(items[1].id).attempts == 2
        assert db.get_feed_item(items[1].id).processed

    @pytest.mark.asyncio
    async def test_processed_items_are_never_regenerated(self, db, add_source, generator):
        source = add_source({"autoGenerate": True})
        items = _ingest(db, source, count=1)
        await dispatch(db, source, items, SourceConfig(auto_generate=True), generator)

        outcome = await dispatch_item(db, items[0].id, generator)

        assert outcome.status == "skipped"
        assert len(generator.calls) == 1

    @pytest.mark.asyncio
    async def test_crash_before_flag_update_yields_one_article(
        self, db, add_source, generator, monkeypatch
    ):
        source = add_source({"autoGenerate": True})
        config = SourceConfig(auto_generate=True)
        item = _ingest(db, source, count=1)[0]

        real_mark_processed = db.mark_processed

        def failing_mark_processed(item_id, article_id):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "mark_processed", failing_mark_processed)
        first = await dispatch(db, source, [item], config, generator)
        assert first.outcomes[0].status == "failed"
        assert first.outcomes[0].article_id is not None
        stored = db.get_feed_item(item.id)
        assert stored.state is ItemState.PENDING
        assert stored.last_error == "database is locked"

        monkeypatch.setattr(db, "mark_processed", real_mark_processed)
        second = await dispatch(db, source, [], config, generator)

        assert second.outcomes[0].status == "generated"
        assert second.outcomes[0].article_id == first.outcomes[0].article_id
        assert db.get_article_count_for_item(item.id) == 1
        assert db.get_feed_item(item.id).article_id == first.outcomes[0].article_id

        third = await dispatch(db, source, [], config, generator)
        assert third.outcomes == []
        assert len(generator.calls) == 2

    @pytest.mark.asyncio
    async def test_lost_compare_and_set_is_skipped(self, db, add_source, generator):
        source = add_source({"autoGenerate": True})
        item = _ingest(db, source, count=1)[0]

        class RacingGenerator(FakeGenerator):
            def generate(self, request):
                article_id = super().generate(request)
                # A concurrent dispatcher finishes first
                self.db.mark_processed(request.feed_item_id, article_id)
                return article_id

        outcome = await dispatch_item(db, item.id, RacingGenerator(db))

        assert outcome.status == "skipped"
        assert outcome.article_id is not None
        assert db.get_article_count_for_item(item.id) == 1


class TestProcessItem:
    def test_processes_item_with_auto_generation_off(self, db, add_source, generator):
        source = add_source({})
        item = _ingest(db, source, count=1)[0]

        outcome = process_item(db, item.id, generator)

        assert outcome.status == "generated"
        assert db.get_feed_item(item.id).processed

    def test_unknown_item_raises(self, db, generator):
        with pytest.raises(ValueError):
            process_item(db, 12345, generator)
