"""Remote store adapter over the Supabase async client."""

import logging
from typing import Any, Callable, Optional

from fontgarden.models import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

FONTS_TABLE = "fonts"
PROJECTS_TABLE = "projects"
FONT_PROJECTS_TABLE = "font_projects"
EXTERNAL_REFERENCES_TABLE = "external_references"
API_KEYS_TABLE = "api_keys"


class StoreError(Exception):
    """A Supabase request failed (network, permission, constraint violation)."""

    def __init__(self, operation: str, table: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.table = table
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation} on {table} failed{detail}")


class SupabaseStore:
    """
    Thin async wrapper around the tables, realtime channels and storage
    buckets the catalog uses.

    Every method raises StoreError on failure so that "no rows" and
    "request failed" stay distinguishable for callers.
    """

    def __init__(self, supabase_client: Any, schema: str = "public"):
        """
        Initialize the store.

        Args:
            supabase_client: supabase AsyncClient instance
            schema: Postgres schema the realtime subscriptions listen on
        """
        self.client = supabase_client
        self.schema = schema

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def current_user_id(self) -> Optional[str]:
        """Return the signed-in user's id, or None without a session."""
        try:
            session = await self.client.auth.get_session()
        except Exception as e:
            logger.error(f"Session lookup error: {e}")
            return None

        if not session or not session.user:
            return None
        return str(session.user.id)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def fetch_fonts(self) -> list[dict]:
        """All font rows with their association count embedded."""
        try:
            response = await (
                self.client.table(FONTS_TABLE)
                .select(f"*, {FONT_PROJECTS_TABLE}(count)")
                .order("name")
                .execute()
            )
        except Exception as e:
            raise StoreError("select", FONTS_TABLE, e) from e
        return response.data or []

    async def fetch_projects(self) -> list[dict]:
        """All project rows with their association count, newest first."""
        try:
            response = await (
                self.client.table(PROJECTS_TABLE)
                .select(f"*, {FONT_PROJECTS_TABLE}(count)")
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise StoreError("select", PROJECTS_TABLE, e) from e
        return response.data or []

    async def fetch_associations(
        self,
        font_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> list[dict]:
        """Association rows, optionally restricted to one font or project."""
        try:
            query = self.client.table(FONT_PROJECTS_TABLE).select("*")
            if font_id is not None:
                query = query.eq("font_id", font_id)
            if project_id is not None:
                query = query.eq("project_id", project_id)
            response = await query.execute()
        except Exception as e:
            raise StoreError("select", FONT_PROJECTS_TABLE, e) from e
        return response.data or []

    async def fetch_api_key(self, name: str) -> Optional[str]:
        """Look up a stored third-party API key by name."""
        try:
            response = await (
                self.client.table(API_KEYS_TABLE)
                .select("key_value")
                .eq("name", name)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise StoreError("select", API_KEYS_TABLE, e) from e

        rows = response.data or []
        return rows[0].get("key_value") if rows else None

    async def insert(self, table: str, row: dict) -> dict:
        """Insert one row and return it as stored."""
        try:
            response = await self.client.table(table).insert(row).execute()
        except Exception as e:
            raise StoreError("insert", table, e) from e

        rows = response.data or []
        if not rows:
            raise StoreError("insert", table)
        return rows[0]

    async def update(self, table: str, row_id: str, values: dict) -> list[dict]:
        """Update one row by id, returning the updated rows."""
        try:
            response = await self.client.table(table).update(values).eq("id", row_id).execute()
        except Exception as e:
            raise StoreError("update", table, e) from e
        return response.data or []

    async def update_if_null(self, table: str, row_id: str, column: str, value: Any) -> bool:
        """
        Set a column only while it is still null.

        Returns True if a row was changed, False if the column already had
        a value (or the row is gone).
        """
        try:
            response = await (
                self.client.table(table)
                .update({column: value})
                .eq("id", row_id)
                .is_(column, "null")
                .execute()
            )
        except Exception as e:
            raise StoreError("update", table, e) from e
        return len(response.data or []) > 0

    async def delete(self, table: str, **match: Any) -> int:
        """Delete rows matching all given column values; returns rows removed."""
        if not match:
            raise ValueError("delete requires at least one filter")

        try:
            query = self.client.table(table).delete()
            for column, value in match.items():
                query = query.eq(column, value)
            response = await query.execute()
        except Exception as e:
            raise StoreError("delete", table, e) from e
        return len(response.data or [])

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def subscribe(self, table: str, callback: Callable[[ChangeEvent], None]) -> Any:
        """
        Subscribe to insert/update/delete notifications for a table.

        Returns the channel handle to pass to unsubscribe().
        """
        def handle(payload: dict) -> None:
            callback(_change_event(table, payload))

        try:
            channel = self.client.channel(f"{table}-changes")
            channel.on_postgres_changes("*", schema=self.schema, table=table, callback=handle)
            await channel.subscribe()
        except Exception as e:
            raise StoreError("subscribe", table, e) from e

        logger.debug(f"Subscribed to {table} changes")
        return channel

    async def unsubscribe(self, channel: Any) -> None:
        """Release a realtime channel."""
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            raise StoreError("unsubscribe", getattr(channel, "topic", "channel"), e) from e

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def bucket_accessible(self, bucket: str) -> bool:
        """Check a storage bucket can be listed before uploading to it."""
        try:
            await self.client.storage.from_(bucket).list()
        except Exception as e:
            logger.error(f"Bucket {bucket} is not accessible: {e}")
            return False
        return True

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Upload a blob and return its public URL."""
        try:
            storage = self.client.storage.from_(bucket)
            await storage.upload(path, data, {"content-type": content_type})
            return await storage.get_public_url(path)
        except Exception as e:
            raise StoreError("upload", bucket, e) from e


def _change_event(table: str, payload: Any) -> ChangeEvent:
    """Normalize a realtime payload into a ChangeEvent."""
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    raw_type = data.get("type") or data.get("eventType")

    event_type = None
    if raw_type:
        try:
            event_type = ChangeType(str(raw_type).upper())
        except ValueError:
            logger.debug(f"Unknown change type {raw_type!r} on {table}")

    record = data.get("record") or data.get("old_record") or data.get("new") or data.get("old") or {}
    record_id = record.get("id") if isinstance(record, dict) else None

    return ChangeEvent(
        table=data.get("table", table),
        event_type=event_type,
        record_id=str(record_id) if record_id is not None else None,
    )
