"""TTL-bounded lookup cache for projects and phases.

Classification runs once per item, so resolving labels straight from the
store would cost a query per item. The cache holds two maps:

- projects keyed by lowercase name and lowercase slug
- phases keyed by the id of the project that owns them

Each map carries an absolute expiry. An expired map is treated as absent and
reloaded synchronously; a reload builds the new map first and swaps it in, so
readers never see it half-filled. There is no locking: two callers racing a
reload both fetch and the last one wins, which is fine since both read the
same source.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from workroute.models import Phase, Project
from workroute.storage.store import TableStore
from workroute.tables import PHASES, PROJECTS

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60  # seconds


class LookupCache:
    def __init__(
        self,
        store: TableStore,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._projects: dict[str, Project] | None = None
        self._projects_expiry = 0.0
        self._phases: dict[str, list[Phase]] = {}
        self._phases_expiry = 0.0

    def resolve_project(self, name_or_slug: str) -> Project | None:
        """Find a project by display name or slug, case-insensitively."""
        key = (name_or_slug or "").strip().lower()
        if not key:
            return None
        return self._project_map().get(key)

    def resolve_phases(self, parent_project_id: str) -> list[Phase]:
        """Return the phases owned by `parent_project_id` (possibly empty)."""
        if not parent_project_id:
            return []

        now = self._clock()
        if now >= self._phases_expiry:
            self._phases = {}

        cached = self._phases.get(parent_project_id)
        if cached is not None:
            return list(cached)

        rows = self._store.select(
            PHASES,
            "id, project_id, name, phase_number, status",
            eq={"project_id": parent_project_id},
            order_by="phase_number",
        )
        phases = [Phase.from_row(row) for row in rows]

        # Empty results stay uncached so freshly created phases show up on the next call
        if phases:
            if not self._phases:
                # Expiry covers the whole map, counted from its first entry
                self._phases_expiry = now + self._ttl
            updated = dict(self._phases)
            updated[parent_project_id] = phases
            self._phases = updated
        return list(phases)

    def invalidate(self) -> None:
        self._projects = None
        self._projects_expiry = 0.0
        self._phases = {}
        self._phases_expiry = 0.0
        logger.debug("Lookup cache invalidated")

    def _project_map(self) -> dict[str, Project]:
        now = self._clock()
        if self._projects is not None and now < self._projects_expiry:
            return self._projects

        rows = self._store.select(PROJECTS, "id, name, slug, client_id, parent_id")
        projects: dict[str, Project] = {}
        for row in rows:
            project = Project.from_row(row)
            projects[project.name.lower()] = project
            if project.slug:
                projects[project.slug.lower()] = project

        self._projects = projects
        self._projects_expiry = now + self._ttl
        logger.debug(f"Loaded {len(rows)} projects into lookup cache")
        return projects
