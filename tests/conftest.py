"""Shared test fixtures for workroute."""

from __future__ import annotations

import itertools
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from workroute.errors import StoreError
from workroute.routing.cache import LookupCache
from workroute.routing.catalog import PatternCatalog
from workroute.routing.router import Router
from workroute.storage.db import get_connection
from workroute.storage.store import TableStore
from workroute.tables import PHASES, PROJECTS


class FlakyStore(TableStore):
    """TableStore that fails selects or updates on chosen tables."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        failing_selects: set[str] | None = None,
        failing_updates: set[str] | None = None,
    ) -> None:
        super().__init__(conn)
        self.failing_selects = failing_selects or set()
        self.failing_updates = failing_updates or set()

    def select(self, table, *args, **kwargs):
        if table in self.failing_selects:
            raise StoreError(f"select from {table} failed: no such column: phase_id")
        return super().select(table, *args, **kwargs)

    def update(self, table, patch, *, eq):
        if table in self.failing_updates:
            raise StoreError(f"update of {table} failed: database is locked")
        return super().update(table, patch, eq=eq)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db_conn(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn: sqlite3.Connection) -> TableStore:
    return TableStore(db_conn)


@pytest.fixture
def seeded_store(store: TableStore) -> TableStore:
    """Store with a two-level project hierarchy and phases on both umbrellas."""
    for project in [
        {"id": "p-nextbid", "name": "NextBid", "slug": "nextbid", "client_id": "c-nb"},
        {"id": "p-studios", "name": "Studios Platform", "slug": "studios", "client_id": "c-st"},
        {"id": "p-engine", "name": "NextBid Engine", "slug": "nextbid-engine",
         "parent_id": "p-nextbid", "client_id": "c-nb"},
        {"id": "p-core", "name": "NextBid Core", "slug": None,
         "parent_id": "p-nextbid", "client_id": "c-nb"},
        {"id": "p-dash", "name": "Kodiack Dashboard", "slug": "kodiack-dashboard",
         "parent_id": "p-studios", "client_id": "c-st"},
    ]:
        store.insert(PROJECTS, project)

    for phase in [
        {"id": "ph-nb-core", "project_id": "p-nextbid", "name": "Core Platform", "phase_number": 1},
        {"id": "ph-nb-code", "project_id": "p-nextbid", "name": "Code Development", "phase_number": 2},
        {"id": "ph-st-core", "project_id": "p-studios", "name": "Core Platform", "phase_number": 1},
        {"id": "ph-st-web", "project_id": "p-studios", "name": "Web Development", "phase_number": 2},
    ]:
        store.insert(PHASES, phase)
    return store


@pytest.fixture
def make_item(store: TableStore):
    """Insert an item with strictly increasing created_at, oldest first."""
    base = datetime(2024, 6, 1, 9, 0, 0)
    counter = itertools.count()

    def _make(table: str, **fields) -> dict:
        fields.setdefault("created_at", (base + timedelta(minutes=next(counter))).isoformat())
        return store.insert(table, fields)

    return _make


@pytest.fixture
def catalog() -> PatternCatalog:
    return PatternCatalog.default()


@pytest.fixture
def cache(seeded_store: TableStore) -> LookupCache:
    return LookupCache(seeded_store)


@pytest.fixture
def router(seeded_store: TableStore, catalog: PatternCatalog, cache: LookupCache) -> Router:
    return Router(seeded_store, catalog, cache)


@pytest.fixture
def flaky_store(db_conn: sqlite3.Connection, seeded_store: TableStore):
    """Factory for a FlakyStore over the seeded database."""

    def _make(failing_selects: set[str] | None = None, failing_updates: set[str] | None = None) -> FlakyStore:
        return FlakyStore(db_conn, failing_selects, failing_updates)

    return _make
