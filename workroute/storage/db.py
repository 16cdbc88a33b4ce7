"""SQLite database setup and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS dev_projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT,
    parent_id TEXT REFERENCES dev_projects(id),
    client_id TEXT,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_project_phases (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES dev_projects(id),
    name TEXT NOT NULL,
    phase_number INTEGER,
    status TEXT DEFAULT 'pending',
    created_at TIMESTAMP,
    UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS dev_project_paths (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES dev_projects(id),
    path TEXT NOT NULL UNIQUE,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_todos (
    id TEXT PRIMARY KEY,
    title TEXT,
    description TEXT,
    project_id TEXT,
    client_id TEXT,
    phase_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    priority TEXT,
    category TEXT,
    created_by TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_bugs (
    id TEXT PRIMARY KEY,
    title TEXT,
    description TEXT,
    project_id TEXT,
    client_id TEXT,
    phase_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    severity TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_knowledge (
    id TEXT PRIMARY KEY,
    title TEXT,
    content TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    importance INTEGER,
    category TEXT,
    source TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_decisions (
    id TEXT PRIMARY KEY,
    title TEXT,
    description TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_lessons (
    id TEXT PRIMARY KEY,
    title TEXT,
    description TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_docs (
    id TEXT PRIMARY KEY,
    title TEXT,
    content TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    doc_type TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_conventions (
    id TEXT PRIMARY KEY,
    name TEXT,
    description TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    convention_type TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_journal (
    id TEXT PRIMARY KEY,
    title TEXT,
    content TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    entry_type TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS dev_ai_snippets (
    id TEXT PRIMARY KEY,
    name TEXT,
    content TEXT,
    project_id TEXT,
    client_id TEXT,
    project_path TEXT,
    status TEXT DEFAULT 'pending',
    bucket TEXT,
    created_at TIMESTAMP,
    refined_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_phases_project ON dev_project_phases(project_id);
CREATE INDEX IF NOT EXISTS idx_paths_project ON dev_project_paths(project_id);
CREATE INDEX IF NOT EXISTS idx_todos_status ON dev_ai_todos(status, created_at);
CREATE INDEX IF NOT EXISTS idx_todos_phase ON dev_ai_todos(phase_id);
CREATE INDEX IF NOT EXISTS idx_bugs_status ON dev_ai_bugs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_bugs_phase ON dev_ai_bugs(phase_id);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Create or open a SQLite database with the workroute schema."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
    conn.commit()

    return conn
