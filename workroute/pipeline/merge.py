"""Near-duplicate detection and merging for todos and bugs.

A sliding-window cleanup, not an all-time dedup: each run looks at the oldest
active items (bounded batch), compares titles pairwise within a project and
folds later look-alikes into the earliest one. Nothing is deleted; duplicates
are closed out with a pointer to the item that absorbed them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from workroute.errors import StoreError
from workroute.models import MergeResult
from workroute.storage.store import TableStore
from workroute.tables import BUGS, TODOS

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ["open", "pending", "in_progress", "flagged"]
MAX_BATCH = 500
MAX_DESCRIPTION = 5000
MIN_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class MergePolicy:
    threshold: float
    limit: int
    merged_status: str


POLICIES = {
    TODOS: MergePolicy(threshold=0.5, limit=500, merged_status="completed"),
    BUGS: MergePolicy(threshold=0.6, limit=200, merged_status="fixed"),
}


def similarity(a: str | None, b: str | None) -> float:
    """Word-overlap Dice coefficient between two titles, 0.0 to 1.0.

    Identical titles (ignoring case and surrounding whitespace) score 1.0.
    Words shorter than three characters are ignored.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    words1 = {w for w in s1.split() if len(w) >= MIN_TOKEN_LENGTH}
    words2 = {w for w in s2.split() if len(w) >= MIN_TOKEN_LENGTH}
    total = len(words1) + len(words2)
    if total == 0:
        return 0.0
    return 2 * len(words1 & words2) / total


def find_duplicate_groups(items: list[dict], threshold: float) -> list[tuple[dict, list[dict]]]:
    """Group items as (primary, duplicates). `items` must be oldest first."""
    absorbed: set = set()
    groups: list[tuple[dict, list[dict]]] = []

    for i, primary in enumerate(items):
        if primary["id"] in absorbed:
            continue
        duplicates = []
        for other in items[i + 1:]:
            if other["id"] in absorbed:
                continue
            if other.get("project_id") != primary.get("project_id"):
                continue
            if similarity(primary.get("title"), other.get("title")) >= threshold:
                duplicates.append(other)
                absorbed.add(other["id"])
        if duplicates:
            groups.append((primary, duplicates))
    return groups


def combine_descriptions(primary: dict, duplicates: list[dict]) -> str:
    combined = primary.get("description") or ""
    for dup in duplicates:
        description = dup.get("description")
        if description and description not in combined:
            combined += "\n\n---\n" + description
    return combined[:MAX_DESCRIPTION]


class SimilarityMerger:
    def __init__(self, store: TableStore) -> None:
        self._store = store

    def merge_table(
        self,
        table: str,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> MergeResult:
        """Merge near-duplicate active items of `table` (todos or bugs).

        Raises StoreError when the active items cannot be fetched.
        """
        policy = POLICIES.get(table)
        if policy is None:
            raise ValueError(f"Merging is not supported for table: {table}")
        threshold = policy.threshold if threshold is None else threshold
        limit = min(policy.limit if limit is None else limit, MAX_BATCH)

        items = self._store.select(
            table,
            ["id", "title", "description", "project_id", "status", "created_at"],
            in_={"status": ACTIVE_STATUSES},
            order_by="created_at",
            limit=limit,
        )
        if len(items) < 2:
            return MergeResult(merged=0, checked=len(items))

        merged = 0
        for primary, duplicates in find_duplicate_groups(items, threshold):
            merged += self._apply_merge(table, policy, primary, duplicates)

        return MergeResult(merged=merged, checked=len(items))

    def merge_similar_todos(self, threshold: float | None = None, limit: int | None = None) -> MergeResult:
        return self.merge_table(TODOS, threshold, limit)

    def merge_similar_bugs(self, threshold: float | None = None, limit: int | None = None) -> MergeResult:
        return self.merge_table(BUGS, threshold, limit)

    def merge_all_similar(self, limit: int | None = None) -> dict:
        todos = self.merge_similar_todos(limit=limit)
        bugs = self.merge_similar_bugs(limit=limit)
        return {"todos": todos, "bugs": bugs, "total_merged": todos.merged + bugs.merged}

    def _apply_merge(self, table: str, policy: MergePolicy, primary: dict, duplicates: list[dict]) -> int:
        primary_title = primary.get("title") or ""
        try:
            self._store.update(
                table,
                {
                    "description": combine_descriptions(primary, duplicates),
                    "title": f"{primary_title} (+{len(duplicates)} merged)",
                },
                eq={"id": primary["id"]},
            )
        except StoreError as e:
            # Leave the duplicates open so the next run can retry the whole group
            logger.error(f"Failed to update merge primary {table}/{primary['id']}: {e}")
            return 0

        merged = 0
        for dup in duplicates:
            try:
                self._store.update(
                    table,
                    {
                        "status": policy.merged_status,
                        "description": (dup.get("description") or "") + f"\n\n[Merged into: {primary_title}]",
                    },
                    eq={"id": dup["id"]},
                )
            except StoreError as e:
                logger.error(f"Failed to close duplicate {table}/{dup['id']}: {e}")
                continue
            merged += 1

        logger.info(f"Merged {merged} {table} item(s) into {primary['id']} ({primary_title})")
        return merged
