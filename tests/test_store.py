"""
SupabaseStore adapter tests with a mocked Supabase client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from fontgarden.models import ChangeType
from fontgarden.utils.store import StoreError, SupabaseStore, _change_event

QUERY_METHODS = ("select", "order", "eq", "is_", "limit", "insert", "update", "delete")


def make_query(data=None, error=None):
    """A chainable PostgREST query builder whose execute() returns data."""
    query = MagicMock()
    for method in QUERY_METHODS:
        getattr(query, method).return_value = query
    if error:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data))
    return query


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return SupabaseStore(client)


class TestRows:

    async def test_fetch_fonts_embeds_counts(self, client, store):
        query = make_query([{"id": 1, "name": "Inter"}])
        client.table.return_value = query

        rows = await store.fetch_fonts()

        assert rows == [{"id": 1, "name": "Inter"}]
        client.table.assert_called_with("fonts")
        query.select.assert_called_with("*, font_projects(count)")
        query.order.assert_called_with("name")

    async def test_fetch_projects_newest_first(self, client, store):
        query = make_query(None)
        client.table.return_value = query

        assert await store.fetch_projects() == []
        query.order.assert_called_with("created_at", desc=True)

    async def test_failures_raise_store_error(self, client, store):
        client.table.return_value = make_query(error=RuntimeError("connection reset"))

        with pytest.raises(StoreError) as exc_info:
            await store.fetch_fonts()

        assert exc_info.value.operation == "select"
        assert "connection reset" in str(exc_info.value)

    async def test_insert_returns_row(self, client, store):
        client.table.return_value = make_query([{"id": "f1", "name": "Inter"}])
        assert (await store.insert("fonts", {"name": "Inter"}))["id"] == "f1"

    async def test_insert_without_rows_is_an_error(self, client, store):
        client.table.return_value = make_query([])
        with pytest.raises(StoreError):
            await store.insert("fonts", {"name": "Inter"})

    async def test_update_if_null_is_conditional(self, client, store):
        query = make_query([{"id": "p1"}])
        client.table.return_value = query

        assert await store.update_if_null("projects", "p1", "preview_image_url", "x.png")
        query.update.assert_called_with({"preview_image_url": "x.png"})
        query.is_.assert_called_with("preview_image_url", "null")

    async def test_update_if_null_reports_no_change(self, client, store):
        client.table.return_value = make_query([])
        assert not await store.update_if_null("projects", "p1", "preview_image_url", "x.png")

    async def test_delete_applies_every_filter(self, client, store):
        query = make_query([{"id": "l1"}])
        client.table.return_value = query

        assert await store.delete("font_projects", font_id="f1", project_id="p1") == 1
        query.eq.assert_any_call("font_id", "f1")
        query.eq.assert_any_call("project_id", "p1")

    async def test_delete_requires_filter(self, store):
        with pytest.raises(ValueError):
            await store.delete("fonts")

    async def test_fetch_api_key(self, client, store):
        client.table.return_value = make_query([{"key_value": "secret"}])
        assert await store.fetch_api_key("openrouter") == "secret"


class TestAuth:

    async def test_current_user(self, client, store):
        session = MagicMock()
        session.user.id = "user-9"
        client.auth.get_session = AsyncMock(return_value=session)

        assert await store.current_user_id() == "user-9"

    async def test_no_session(self, client, store):
        client.auth.get_session = AsyncMock(return_value=None)
        assert await store.current_user_id() is None

    async def test_session_error(self, client, store):
        client.auth.get_session = AsyncMock(side_effect=RuntimeError("expired"))
        assert await store.current_user_id() is None


class TestRealtime:

    async def test_subscribe_wraps_payload(self, client, store):
        channel = MagicMock()
        channel.subscribe = AsyncMock()
        client.channel.return_value = channel
        received = []

        assert await store.subscribe("fonts", received.append) is channel

        kwargs = channel.on_postgres_changes.call_args.kwargs
        assert kwargs["table"] == "fonts"
        assert kwargs["schema"] == "public"
        kwargs["callback"]({"data": {"table": "fonts", "type": "DELETE", "old_record": {"id": 7}}})

        assert received[0].event_type == ChangeType.DELETE
        assert received[0].record_id == "7"

    async def test_unsubscribe_failure(self, client, store):
        client.remove_channel = AsyncMock(side_effect=RuntimeError("closed"))
        with pytest.raises(StoreError):
            await store.unsubscribe(MagicMock(topic="realtime:fonts-changes"))

    def test_change_event_variants(self):
        event = _change_event("projects", {"eventType": "insert", "new": {"id": "p1"}})
        assert (event.table, event.event_type, event.record_id) == ("projects", ChangeType.INSERT, "p1")

        event = _change_event("projects", {"data": {"type": "TRUNCATE"}})
        assert event.event_type is None
        assert event.record_id is None


class TestStorage:

    async def test_upload_returns_public_url(self, client, store):
        bucket = MagicMock()
        bucket.upload = AsyncMock()
        bucket.get_public_url = AsyncMock(return_value="https://cdn.test/fonts/a.ttf")
        client.storage.from_.return_value = bucket

        url = await store.upload("fonts", "u/a.ttf", b"\x00", "font/ttf")

        assert url == "https://cdn.test/fonts/a.ttf"
        bucket.upload.assert_awaited_with("u/a.ttf", b"\x00", {"content-type": "font/ttf"})

    async def test_bucket_not_accessible(self, client, store):
        bucket = MagicMock()
        bucket.list = AsyncMock(side_effect=RuntimeError("not found"))
        client.storage.from_.return_value = bucket

        assert not await store.bucket_accessible("fonts")
