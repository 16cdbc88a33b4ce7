"""Todo organization using Claude.

Groups a project's todos into short categories, moves non-actionable items
(ideas, questions, musings) over to knowledge, and consolidates duplicates.
Claude only proposes; this module applies a fixed set of allowed actions and
never deletes anything, whatever the response asks for.

Projects with children registered in `dev_project_paths` are organized bottom
up: every child path first, then the parent receives one consolidated todo per
group of related child todos.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

import anthropic

from workroute.errors import StoreError
from workroute.storage.store import TableStore
from workroute.tables import KNOWLEDGE, PROJECT_PATHS, PROJECTS, TODOS

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds
MAX_TOKENS = 2000
PARENT_MAX_TOKENS = 3000

# Categories the child organizer assigns to items that are no longer actionable
SETTLED_CATEGORIES = {"moved_to_knowledge", "duplicate"}

ORGANIZE_PROMPT = """\
You are a todo organizer that filters and organizes ACTIONABLE tasks only.

Only actionable items belong in categories: things that can be done, usually \
starting with a verb such as Create, Build, Fix, Add, Update, Implement, Write, \
Remove, Refactor, Deploy, Configure, Migrate or Test. Ideas, questions, notes and \
"maybe we should..." musings are rejected and will be kept as knowledge instead.

Rules:
1. Output ONLY valid JSON, no explanations, no markdown
2. Never delete anything; the only actions are categorize, reject, mark_complete, consolidate
3. Category names are short (1-3 words), e.g. "Phase 1", "Auth", "Deployment"
4. Consolidate duplicate or near-identical items into one clear actionable task

## Todos ({count})
{todos}

## Output schema
{{
  "categories": {{"Phase 1": [{{"id": "uuid", "title": "Create X feature"}}]}},
  "rejected": [{{"id": "uuid", "reason": "idea not action"}}],
  "mark_complete": ["uuid"],
  "consolidated": [{{"kept_id": "uuid", "merged_ids": ["uuid2"], "title": "merged actionable title"}}]
}}
"""

PARENT_PROMPT = """\
You are consolidating todos from the child projects of a parent project.

Group related todos across children into parent-level tasks. A parent task is \
a short actionable title covering one or more child todos, assigned to a phase \
such as "Phase 1" or "Phase 2".

Rules:
1. Output ONLY valid JSON, no explanations, no markdown
2. Every child todo belongs to at most one consolidated todo
3. Priority is one of low, medium, high

## Child todos ({count})
{todos}

## Output schema
{{
  "consolidated_todos": [
    {{
      "title": "Build unified login",
      "phase": "Phase 1",
      "priority": "high",
      "child_todos": [{{"child_project": "Engine", "todo_id": "uuid", "title": "Add login page"}}]
    }}
  ]
}}
"""


@dataclass
class ChildProject:
    project_id: str
    name: str
    paths: list[str] = field(default_factory=list)


@dataclass
class ProjectHierarchy:
    """The project owning a path and its children that have paths of their own."""

    project: dict | None = None
    is_parent: bool = False
    children: list[ChildProject] = field(default_factory=list)


@dataclass
class OrganizeResult:
    project_path: str
    categories: dict[str, list[dict]] = field(default_factory=dict)
    organized: int = 0
    rejected: int = 0
    merged: int = 0
    completed: int = 0
    is_parent: bool = False
    children_organized: int = 0
    consolidated: int = 0
    error: str | None = None


class TodoOrganizer:
    def __init__(self, store: TableStore, client: anthropic.Anthropic) -> None:
        self._store = store
        self._client = client

    def get_todos_for_project(self, project_path: str) -> list[dict]:
        return self._store.select(
            TODOS,
            ["id", "title", "description", "status", "priority", "category", "created_at"],
            eq={"project_path": project_path},
            order_by="created_at",
        )

    def get_project_hierarchy(self, project_path: str) -> ProjectHierarchy:
        rows = self._store.select(PROJECT_PATHS, ["project_id"], eq={"path": project_path}, limit=1)
        if not rows:
            return ProjectHierarchy()
        project = self._store.get(PROJECTS, rows[0]["project_id"], ["id", "name", "parent_id"])
        if project is None:
            return ProjectHierarchy()

        children = self._store.select(PROJECTS, ["id", "name"], eq={"parent_id": project["id"]}, order_by="name")
        hierarchy = ProjectHierarchy(project=project, is_parent=bool(children))
        for child in children:
            paths = self._store.select(PROJECT_PATHS, ["path"], eq={"project_id": child["id"]}, order_by="path")
            if paths:
                hierarchy.children.append(ChildProject(child["id"], child["name"], [p["path"] for p in paths]))
        return hierarchy

    def organize_project(self, project_path: str) -> OrganizeResult:
        """Organize a path, consolidating into the parent when it owns child projects."""
        hierarchy = self.get_project_hierarchy(project_path)
        if not (hierarchy.is_parent and hierarchy.children):
            return self.organize_child_project(project_path)

        logger.info(f"{project_path} is a parent project with {len(hierarchy.children)} children")
        organized = 0
        for child in hierarchy.children:
            for path in child.paths:
                try:
                    child_result = self.organize_child_project(path)
                except StoreError as e:
                    logger.error(f"Failed to organize child {child.name} at {path}: {e}")
                    continue
                if child_result.error:
                    logger.error(f"Failed to organize child {child.name} at {path}: {child_result.error}")
                    continue
                organized += 1

        result = self.consolidate_parent_project(project_path, hierarchy.children)
        result.children_organized = organized
        return result

    def organize_child_project(self, project_path: str) -> OrganizeResult:
        """Ask Claude for an organization plan and apply the allowed parts of it."""
        result = OrganizeResult(project_path=project_path)
        todos = self.get_todos_for_project(project_path)
        if not todos:
            logger.info(f"No todos found for {project_path}")
            return result

        todo_list = [
            {
                "id": t["id"],
                "title": t["title"],
                "description": t.get("description") or "",
                "status": t.get("status"),
                "current_category": t.get("category") or "uncategorized",
            }
            for t in todos
        ]
        prompt = ORGANIZE_PROMPT.format(count=len(todos), todos=json.dumps(todo_list, indent=2))
        plan = self._request_plan(prompt, MAX_TOKENS)
        if plan is None:
            result.error = "No usable organization plan returned"
            return result

        known_ids = {t["id"] for t in todos}
        self._apply_categories(plan, known_ids, result)
        self._apply_rejections(plan, known_ids, project_path, result)
        self._apply_consolidations(plan, known_ids, result)
        for todo_id in plan.get("mark_complete") or []:
            if todo_id in known_ids and self._safe_update({"status": "completed"}, todo_id):
                result.completed += 1

        logger.info(
            f"Organized {project_path}: categorized={result.organized}, "
            f"rejected={result.rejected}, merged={result.merged}"
        )
        return result

    def consolidate_parent_project(self, project_path: str, children: list[ChildProject]) -> OrganizeResult:
        """Add one parent todo per group of related, still actionable child todos.

        Groups whose title the parent already has are skipped, so re-running
        after new child todos arrive only adds the new groups.
        """
        result = OrganizeResult(project_path=project_path, is_parent=True)
        child_todos = []
        for child in children:
            for path in child.paths:
                for todo in self.get_todos_for_project(path):
                    if todo.get("status") == "completed" or todo.get("category") in SETTLED_CATEGORIES:
                        continue
                    child_todos.append(
                        {
                            "child_project": child.name,
                            "todo_id": todo["id"],
                            "title": todo["title"],
                            "category": todo.get("category") or "uncategorized",
                            "priority": todo.get("priority") or "medium",
                        }
                    )
        if not child_todos:
            logger.info(f"No child todos to consolidate into {project_path}")
            return result

        prompt = PARENT_PROMPT.format(count=len(child_todos), todos=json.dumps(child_todos, indent=2))
        plan = self._request_plan(prompt, PARENT_MAX_TOKENS)
        if plan is None:
            result.error = "No usable consolidation plan returned"
            return result

        existing = {t["title"] for t in self.get_todos_for_project(project_path)}
        for group in plan.get("consolidated_todos") or []:
            title = group.get("title")
            if not title or title in existing:
                continue
            sources = "\n".join(
                f"- {c.get('child_project')}: {c.get('title')}" for c in group.get("child_todos") or []
            )
            try:
                self._store.insert(
                    TODOS,
                    {
                        "project_path": project_path,
                        "title": title,
                        "description": f"Consolidated from children:\n{sources}",
                        "category": group.get("phase") or "Phase 1",
                        "priority": group.get("priority") or "medium",
                        "status": "pending",
                        "created_by": "workroute",
                    },
                )
            except StoreError as e:
                logger.error(f"Failed to add consolidated todo {title!r} to {project_path}: {e}")
                continue
            existing.add(title)
            result.consolidated += 1

        logger.info(f"Consolidated {len(child_todos)} child todos into {result.consolidated} for {project_path}")
        return result

    def organize_all_projects(self) -> list[OrganizeResult]:
        """Organize every path that has todos: children first, then parents.

        A failing path is recorded in its result and does not stop the others.
        """
        rows = self._store.select(TODOS, ["project_path"], order_by="created_at")
        paths = list(dict.fromkeys(r["project_path"] for r in rows if r.get("project_path")))

        results: list[OrganizeResult] = []
        parents: list[tuple[str, ProjectHierarchy]] = []
        children: list[str] = []
        for path in paths:
            try:
                hierarchy = self.get_project_hierarchy(path)
            except StoreError as e:
                logger.error(f"Failed to look up project for {path}: {e}")
                results.append(OrganizeResult(project_path=path, error=str(e)))
                continue
            if hierarchy.is_parent:
                parents.append((path, hierarchy))
            else:
                children.append(path)

        for path in children:
            try:
                results.append(self.organize_child_project(path))
            except StoreError as e:
                logger.error(f"Failed to organize {path}: {e}")
                results.append(OrganizeResult(project_path=path, error=str(e)))
        for path, hierarchy in parents:
            try:
                results.append(self.consolidate_parent_project(path, hierarchy.children))
            except StoreError as e:
                logger.error(f"Failed to consolidate {path}: {e}")
                results.append(OrganizeResult(project_path=path, is_parent=True, error=str(e)))

        logger.info(f"Organized {len(children)} child and {len(parents)} parent project paths")
        return results

    def get_formatted_todos(self, project_path: str) -> dict:
        todos = self.get_todos_for_project(project_path)
        categories: dict[str, list[dict]] = {}
        for todo in todos:
            categories.setdefault(todo.get("category") or "General", []).append(
                {
                    "id": todo["id"],
                    "title": todo["title"],
                    "completed": todo.get("status") == "completed",
                }
            )
        completed = sum(1 for t in todos if t.get("status") == "completed")
        return {
            "project_path": project_path,
            "categories": categories,
            "stats": {"total": len(todos), "completed": completed, "pending": len(todos) - completed},
        }

    def mark_complete(self, todo_id: str) -> dict | None:
        self._store.update(
            TODOS,
            {"status": "completed", "completed_at": datetime.now().isoformat()},
            eq={"id": todo_id},
        )
        return self._store.get(TODOS, todo_id)

    def add_todo(
        self,
        project_path: str,
        title: str,
        category: str = "General",
        priority: str = "medium",
    ) -> dict:
        return self._store.insert(
            TODOS,
            {
                "project_path": project_path,
                "title": title,
                "category": category,
                "priority": priority,
                "status": "pending",
                "created_by": "workroute",
            },
        )

    def _request_plan(self, prompt: str, max_tokens: int) -> dict | None:
        for attempt in range(MAX_RETRIES):
            try:
                response = self._client.messages.create(
                    model="claude-sonnet-4-20250514",
                    max_tokens=max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                )
                break
            except anthropic.RateLimitError:
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_BASE_DELAY * (2**attempt)
                    logger.warning(f"Rate limited, retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"Rate limited after {MAX_RETRIES} retries, skipping")
                    return None
            except anthropic.APIError as e:
                logger.error(f"API error during todo organization: {e}")
                return None

        return _parse_plan(response)

    def _apply_categories(self, plan: dict, known_ids: set, result: OrganizeResult) -> None:
        categories = plan.get("categories") or {}
        for category, items in categories.items():
            for item in items or []:
                if item.get("id") not in known_ids:
                    continue
                if self._safe_update({"category": category}, item["id"]):
                    result.organized += 1
        result.categories = categories

    def _apply_rejections(self, plan: dict, known_ids: set, project_path: str, result: OrganizeResult) -> None:
        for item in plan.get("rejected") or []:
            todo = self._store.get(TODOS, item.get("id")) if item.get("id") in known_ids else None
            if not todo:
                continue
            try:
                self._store.insert(
                    KNOWLEDGE,
                    {
                        "project_path": project_path,
                        "title": todo["title"],
                        "content": (
                            f"{todo.get('description') or todo['title']}\n\n"
                            f"[Moved from todo - Reason: {item.get('reason', 'not actionable')}]"
                        ),
                        "category": "Ideas",
                        "source": "todo_organizer",
                        "status": "pending",
                    },
                )
            except StoreError as e:
                logger.error(f"Failed to move todo {todo['id']} to knowledge: {e}")
                continue
            if self._safe_update({"category": "moved_to_knowledge", "status": "completed"}, todo["id"]):
                result.rejected += 1

    def _apply_consolidations(self, plan: dict, known_ids: set, result: OrganizeResult) -> None:
        for group in plan.get("consolidated") or []:
            kept_id = group.get("kept_id")
            merged_ids = [i for i in group.get("merged_ids") or [] if i in known_ids and i != kept_id]
            if kept_id not in known_ids or not merged_ids:
                continue
            if group.get("title"):
                self._safe_update({"title": group["title"]}, kept_id)
            for merged_id in merged_ids:
                if self._safe_update({"category": "duplicate", "status": "completed"}, merged_id):
                    result.merged += 1

    def _safe_update(self, patch: dict, todo_id: str) -> bool:
        try:
            self._store.update(TODOS, patch, eq={"id": todo_id})
        except StoreError as e:
            logger.error(f"Failed to update todo {todo_id}: {e}")
            return False
        return True


def _parse_plan(response: anthropic.types.Message) -> dict | None:
    """Parse Claude's JSON plan, dropping any action outside the allowed set."""
    if not response.content:
        logger.warning("Empty response from todo organization")
        return None
    text = response.content[0].text.strip()

    # Handle markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse organization plan: {text[:200]}")
        return None
    if not isinstance(data, dict):
        return None

    for key in ("delete", "remove", "deleted"):
        if data.pop(key, None) is not None:
            logger.warning(f"Ignoring disallowed '{key}' action in organization plan")
    return data
