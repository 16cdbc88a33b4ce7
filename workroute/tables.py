"""Destination table configuration.

Every destination table differs in which columns hold the title and body text,
in the status an item lands in once refined, and in which attributes get
defaulted on the way. The router, the status pipeline and the merger all look
tables up here rather than hardcoding column names.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workroute.errors import UnknownTableError

INTAKE_STATUS = "pending"

TODOS = "dev_ai_todos"
BUGS = "dev_ai_bugs"
KNOWLEDGE = "dev_ai_knowledge"
DECISIONS = "dev_ai_decisions"
LESSONS = "dev_ai_lessons"
DOCS = "dev_ai_docs"
CONVENTIONS = "dev_ai_conventions"
JOURNAL = "dev_ai_journal"
SNIPPETS = "dev_ai_snippets"

PROJECTS = "dev_projects"
PHASES = "dev_project_phases"
PROJECT_PATHS = "dev_project_paths"  # working directories owned by a project


@dataclass(frozen=True)
class TableSpec:
    name: str
    title_column: str
    body_column: str
    terminal_status: str
    defaults: dict[str, object] = field(default_factory=dict)  # column -> default when unset
    has_phase: bool = False


TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec(TODOS, "title", "description", "open", {"priority": "medium"}, has_phase=True),
        TableSpec(BUGS, "title", "description", "open", {"severity": "medium"}, has_phase=True),
        TableSpec(KNOWLEDGE, "title", "content", "published", {"importance": 5}),
        TableSpec(DECISIONS, "title", "description", "decided"),
        TableSpec(LESSONS, "title", "description", "published"),
        TableSpec(DOCS, "title", "content", "draft", {"doc_type": "reference"}),
        TableSpec(CONVENTIONS, "name", "description", "active", {"convention_type": "other"}),
        TableSpec(JOURNAL, "title", "content", "published", {"entry_type": "journal"}),
        TableSpec(SNIPPETS, "name", "content", "published"),
    )
}

DESTINATION_TABLES = list(TABLES)

# Tables scanned when backfilling by origin path
PATH_ROUTED_TABLES = [TODOS, BUGS, KNOWLEDGE]


def get_table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise UnknownTableError(name) from None
