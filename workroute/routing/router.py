"""Content-based project and phase routing across destination tables.

The router is a correction pass, not the primary placement authority: it
re-derives an item's project (and, for todos and bugs, its phase) from the
item's text and rewrites the reference only when the classification disagrees
with what is stored. Every operation is safe to re-run; a second pass over
unchanged data finds nothing to fix.
"""

from __future__ import annotations

import logging

from workroute.errors import StoreError
from workroute.models import (
    PathRouteResult,
    PhaseAssignment,
    PhaseRouteResult,
    ProjectMatch,
    RouteAllResult,
    RouteResult,
    TableFailure,
)
from workroute.routing.cache import LookupCache
from workroute.routing.catalog import PatternCatalog
from workroute.routing.classifier import classify_phase, classify_project
from workroute.storage.store import TableStore, like_escape
from workroute.tables import BUGS, DESTINATION_TABLES, PATH_ROUTED_TABLES, PROJECTS, TODOS, get_table

logger = logging.getLogger(__name__)


class Router:
    def __init__(self, store: TableStore, catalog: PatternCatalog, cache: LookupCache) -> None:
        self._store = store
        self._catalog = catalog
        self._cache = cache

    def classify_one(self, title: str, body: str) -> ProjectMatch | None:
        """Classify content without touching the store's items."""
        return classify_project(title, body, self._catalog, self._cache)

    def route_table(self, table: str, limit: int = 100, dry_run: bool = False) -> RouteResult:
        """Re-route up to `limit` items of `table` to their detected project.

        Raises UnknownTableError for a table outside the fixed configuration and
        StoreError when the items cannot be fetched.
        """
        spec = get_table(table)
        logger.info(f"Routing {table} (limit={limit}, dry_run={dry_run})")

        items = self._store.select(
            table,
            ["id", spec.title_column, spec.body_column, "project_path", "project_id", "client_id"],
            limit=limit,
        )

        result = RouteResult()
        for item in items:
            result.checked += 1
            match = self.classify_one(item.get(spec.title_column) or "", item.get(spec.body_column) or "")
            if match is None or match.project_id == item.get("project_id"):
                continue

            logger.info(
                f"Rerouting {table}/{item['id']}: {item.get('project_id')} -> "
                f"{match.project_id} ({match.project_name}, pattern={match.matched_pattern!r})"
            )
            if dry_run or self._write_project(table, item["id"], match):
                result.rerouted += 1
            else:
                result.errors += 1

        logger.info(
            f"Routing complete for {table}: checked={result.checked}, "
            f"rerouted={result.rerouted}, dry_run={dry_run}"
        )
        return result

    def route_all_tables(self, limit: int = 100, dry_run: bool = False) -> RouteAllResult:
        """Run route_table over every destination table. One table failing does not stop the rest."""
        aggregate = RouteAllResult()
        for table in DESTINATION_TABLES:
            try:
                result = self.route_table(table, limit=limit, dry_run=dry_run)
            except StoreError as e:
                logger.error(f"Failed to route {table}: {e}")
                aggregate.tables[table] = TableFailure(error=str(e))
                continue
            aggregate.tables[table] = result
            aggregate.total_rerouted += result.rerouted
        return aggregate

    def route_by_path(self, path: str, limit: int = 500, dry_run: bool = False) -> PathRouteResult:
        """Re-route items whose recorded origin path contains `path`. Used for backfills."""
        result = PathRouteResult(path=path, dry_run=dry_run)
        for table in PATH_ROUTED_TABLES:
            spec = get_table(table)
            try:
                items = self._store.select(
                    table,
                    ["id", spec.title_column, spec.body_column, "project_id"],
                    ilike={"project_path": f"%{like_escape(path)}%"},
                    limit=limit,
                )
            except StoreError as e:
                logger.error(f"Route by path failed for {table}: {e}")
                result.errors.append(f"{table}: {e}")
                continue

            for item in items:
                result.checked += 1
                match = self.classify_one(item.get(spec.title_column) or "", item.get(spec.body_column) or "")
                if match is None or match.project_id == item.get("project_id"):
                    continue
                if dry_run or self._write_project(table, item["id"], match):
                    result.rerouted += 1
        return result

    def get_parent_project(self, project_id: str) -> str | None:
        row = self._store.get(PROJECTS, project_id, "id, parent_id")
        return row.get("parent_id") if row else None

    def assign_phase_to_item(self, table: str, item: dict) -> PhaseAssignment | None:
        """Link an item without a phase to the best-matching phase of its project family.

        Phases live on the umbrella (parent) project when there is one, otherwise
        on the item's own project.
        """
        spec = get_table(table)
        if item.get("phase_id") or not item.get("project_id"):
            return None

        phase_owner = self.get_parent_project(item["project_id"]) or item["project_id"]
        phases = self._cache.resolve_phases(phase_owner)
        if not phases:
            return None

        phase = classify_phase(
            item.get(spec.title_column) or "",
            item.get(spec.body_column) or "",
            phases,
            self._catalog,
        )
        if phase is None:
            return None

        try:
            self._store.update(table, {"phase_id": phase.id}, eq={"id": item["id"]})
        except StoreError as e:
            logger.error(f"Failed to set phase on {table}/{item['id']}: {e}")
            return None
        return PhaseAssignment(item_id=item["id"], phase_id=phase.id, phase_name=phase.name)

    def route_todos_to_phases(self, limit: int = 100) -> PhaseRouteResult:
        return self._route_to_phases(TODOS, limit, tolerate_missing_column=False)

    def route_bugs_to_phases(self, limit: int = 100) -> PhaseRouteResult:
        # Deployments can lag on the bugs phase_id column; a failed fetch means "skip", not "fail"
        return self._route_to_phases(BUGS, limit, tolerate_missing_column=True)

    def route_all_to_phases(self, limit: int = 100) -> dict:
        todos = self.route_todos_to_phases(limit)
        bugs = self.route_bugs_to_phases(limit)
        return {"todos": todos, "bugs": bugs, "total_assigned": todos.assigned + bugs.assigned}

    def _route_to_phases(self, table: str, limit: int, tolerate_missing_column: bool) -> PhaseRouteResult:
        spec = get_table(table)
        try:
            items = self._store.select(
                table,
                ["id", spec.title_column, spec.body_column, "project_id", "phase_id"],
                is_null=["phase_id"],
                limit=limit,
            )
        except StoreError as e:
            if not tolerate_missing_column:
                raise
            logger.warning(f"{table} phase routing skipped, phase_id column may not exist: {e}")
            return PhaseRouteResult(skipped=True)

        result = PhaseRouteResult(total=len(items))
        for item in items:
            if not item.get("project_id"):
                continue
            try:
                assignment = self.assign_phase_to_item(table, item)
            except StoreError as e:
                logger.error(f"Phase lookup failed for {table}/{item['id']}: {e}")
                continue
            if assignment:
                result.assigned += 1
                logger.info(f"{table}/{assignment.item_id} assigned to phase {assignment.phase_name}")
        return result

    def _write_project(self, table: str, item_id: str, match: ProjectMatch) -> bool:
        try:
            self._store.update(
                table,
                {"project_id": match.project_id, "client_id": match.client_id},
                eq={"id": item_id},
            )
        except StoreError as e:
            logger.error(f"Failed to update {table}/{item_id}: {e}")
            return False
        return True
