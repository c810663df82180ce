"""
Pytest configuration and fixtures for Font Garden tests.
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from fontgarden.crawlers.open_graph import PreviewImageResolver
from fontgarden.data_cache import DataCache
from fontgarden.models import ChangeEvent, ChangeType
from fontgarden.utils.store import (
    API_KEYS_TABLE,
    EXTERNAL_REFERENCES_TABLE,
    FONT_PROJECTS_TABLE,
    FONTS_TABLE,
    PROJECTS_TABLE,
    StoreError,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class InMemoryStore:
    """
    Stand-in for SupabaseStore with the same method names.

    Rows live in plain dicts; deletes cascade to font_projects like the
    real schema. Operations listed in `failing` raise StoreError.
    """

    def __init__(self, user_id: Optional[str] = "user-1"):
        self.user_id = user_id
        self.tables: dict[str, list[dict]] = {
            FONTS_TABLE: [],
            PROJECTS_TABLE: [],
            FONT_PROJECTS_TABLE: [],
            EXTERNAL_REFERENCES_TABLE: [],
            API_KEYS_TABLE: [],
        }
        self.files: dict[str, dict[str, bytes]] = {"fonts": {}, "project-images": {}}
        self.failing: set[str] = set()
        self.writes: list[tuple[str, str]] = []
        self.subscribers: dict[str, Callable[[ChangeEvent], Any]] = {}
        self.unsubscribed: list[str] = []
        self._ids = itertools.count(1)

    # -- helpers ---------------------------------------------------------

    def _check(self, operation: str, table: str) -> None:
        if operation in self.failing or f"{operation}:{table}" in self.failing:
            raise StoreError(operation, table, RuntimeError("simulated failure"))

    def _stamp(self, table: str, row: dict) -> dict:
        n = next(self._ids)
        stored = {"id": f"{table}-{n}", **row}
        stored.setdefault("created_at", BASE_TIME + timedelta(minutes=n))
        stored.setdefault("updated_at", stored["created_at"])
        return stored

    def _count_links(self, column: str, row_id: str) -> list[dict]:
        count = sum(1 for link in self.tables[FONT_PROJECTS_TABLE] if link[column] == row_id)
        return [{"count": count}]

    def seed_font(self, name: str, family: Optional[str] = None, category: str = "sans-serif", **fields) -> str:
        row = self._stamp(FONTS_TABLE, {
            "name": name,
            "font_family": family if family is not None else (None if fields.get("is_custom") else name),
            "category": category,
            "is_custom": False,
            **fields,
        })
        self.tables[FONTS_TABLE].append(row)
        return row["id"]

    def seed_project(self, name: str, **fields) -> str:
        row = self._stamp(PROJECTS_TABLE, {"name": name, "type": "personal", "images": [], **fields})
        self.tables[PROJECTS_TABLE].append(row)
        return row["id"]

    def link(self, font_id: str, project_id: str) -> str:
        row = self._stamp(FONT_PROJECTS_TABLE, {"font_id": font_id, "project_id": project_id})
        self.tables[FONT_PROJECTS_TABLE].append(row)
        return row["id"]

    def row(self, table: str, row_id: str) -> Optional[dict]:
        return next((r for r in self.tables[table] if r["id"] == row_id), None)

    def emit(self, table: str, event_type: str = "UPDATE", record_id: Optional[str] = None):
        """Deliver a realtime notification as the subscription callback would."""
        return self.subscribers[table](
            ChangeEvent(table=table, event_type=ChangeType(event_type), record_id=record_id)
        )

    # -- SupabaseStore interface ------------------------------------------

    async def current_user_id(self) -> Optional[str]:
        return self.user_id

    async def fetch_fonts(self) -> list[dict]:
        self._check("fetch_fonts", FONTS_TABLE)
        rows = sorted(self.tables[FONTS_TABLE], key=lambda r: r["name"])
        return [{**copy.deepcopy(r), "font_projects": self._count_links("font_id", r["id"])} for r in rows]

    async def fetch_projects(self) -> list[dict]:
        self._check("fetch_projects", PROJECTS_TABLE)
        rows = sorted(self.tables[PROJECTS_TABLE], key=lambda r: r["created_at"], reverse=True)
        return [{**copy.deepcopy(r), "font_projects": self._count_links("project_id", r["id"])} for r in rows]

    async def fetch_associations(self, font_id: Optional[str] = None, project_id: Optional[str] = None) -> list[dict]:
        self._check("fetch_associations", FONT_PROJECTS_TABLE)
        return [
            dict(r)
            for r in self.tables[FONT_PROJECTS_TABLE]
            if (font_id is None or r["font_id"] == font_id)
            and (project_id is None or r["project_id"] == project_id)
        ]

    async def fetch_api_key(self, name: str) -> Optional[str]:
        self._check("fetch_api_key", API_KEYS_TABLE)
        row = next((r for r in self.tables[API_KEYS_TABLE] if r["name"] == name), None)
        return row["key_value"] if row else None

    async def insert(self, table: str, row: dict) -> dict:
        self.writes.append(("insert", table))
        self._check("insert", table)
        if table == FONT_PROJECTS_TABLE and any(
            r["font_id"] == row["font_id"] and r["project_id"] == row["project_id"]
            for r in self.tables[table]
        ):
            raise StoreError("insert", table, RuntimeError("duplicate key value"))
        stored = self._stamp(table, row)
        self.tables[table].append(stored)
        return dict(stored)

    async def update(self, table: str, row_id: str, values: dict) -> list[dict]:
        self.writes.append(("update", table))
        self._check("update", table)
        row = self.row(table, row_id)
        if row is None:
            return []
        row.update(copy.deepcopy(values))
        return [dict(row)]

    async def update_if_null(self, table: str, row_id: str, column: str, value: Any) -> bool:
        self.writes.append(("update_if_null", table))
        self._check("update_if_null", table)
        row = self.row(table, row_id)
        if row is None or row.get(column) is not None:
            return False
        row[column] = value
        return True

    async def delete(self, table: str, **match: Any) -> int:
        self.writes.append(("delete", table))
        self._check("delete", table)
        doomed = [r for r in self.tables[table] if all(r.get(k) == v for k, v in match.items())]
        self.tables[table] = [r for r in self.tables[table] if r not in doomed]

        cascade_column = {FONTS_TABLE: "font_id", PROJECTS_TABLE: "project_id"}.get(table)
        if cascade_column:
            ids = {r["id"] for r in doomed}
            self.tables[FONT_PROJECTS_TABLE] = [
                link for link in self.tables[FONT_PROJECTS_TABLE] if link[cascade_column] not in ids
            ]
        return len(doomed)

    async def subscribe(self, table: str, callback: Callable[[ChangeEvent], Any]) -> str:
        self._check("subscribe", table)
        self.subscribers[table] = callback
        return f"{table}-changes"

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribed.append(channel)
        self.subscribers.pop(channel.removesuffix("-changes"), None)

    async def bucket_accessible(self, bucket: str) -> bool:
        return bucket in self.files and f"bucket:{bucket}" not in self.failing

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self.writes.append(("upload", bucket))
        self._check("upload", bucket)
        self.files[bucket][path] = data
        return f"https://storage.test/{bucket}/{path}"


def og_page(image: str) -> str:
    return f'<html><head><meta property="og:image" content="{image}"></head><body></body></html>'


@pytest.fixture
def store():
    """Empty in-memory store with a signed-in user."""
    return InMemoryStore()


@pytest.fixture
def pages():
    """URL -> HTML served to the preview resolver; unknown URLs answer 404."""
    return {}


@pytest.fixture
def fetched():
    """URLs requested by the preview resolver, in order."""
    return []


@pytest.fixture
def resolver(pages, fetched):
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        fetched.append(url)
        if url in pages:
            return httpx.Response(200, text=pages[url])
        return httpx.Response(404, text="not found")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PreviewImageResolver(client=client)


@pytest.fixture
def cache(store, resolver):
    return DataCache(store, resolver)
