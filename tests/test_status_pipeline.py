"""Tests for workroute.pipeline.status: intake promotion and scheduling."""

from __future__ import annotations

import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from workroute.errors import UnknownTableError
from workroute.models import CycleResult
from workroute.pipeline.status import PipelineScheduler, StatusPipeline, refine_item
from workroute.storage.store import TableStore
from workroute.tables import (
    BUGS,
    CONVENTIONS,
    DECISIONS,
    DESTINATION_TABLES,
    DOCS,
    JOURNAL,
    KNOWLEDGE,
    SNIPPETS,
    TODOS,
)

NOW = datetime(2024, 7, 1, 12, 0, 0)


class TestRefineItem:
    def test_todo_defaults(self):
        updates = refine_item(TODOS, {"id": "t"}, now=NOW)
        assert updates == {"status": "open", "refined_at": NOW.isoformat(), "priority": "medium"}

    def test_existing_values_kept(self):
        assert refine_item(TODOS, {"priority": "high"}, now=NOW)["priority"] == "high"
        assert refine_item(KNOWLEDGE, {"importance": 8}, now=NOW)["importance"] == 8

    def test_terminal_statuses(self):
        expected = {
            TODOS: "open",
            BUGS: "open",
            KNOWLEDGE: "published",
            DOCS: "draft",
            CONVENTIONS: "active",
            SNIPPETS: "published",
            DECISIONS: "decided",
            "dev_ai_lessons": "published",
            JOURNAL: "published",
        }
        assert set(expected) == set(DESTINATION_TABLES)
        for table, status in expected.items():
            assert refine_item(table, {}, now=NOW)["status"] == status

    def test_table_defaults(self):
        assert refine_item(BUGS, {}, now=NOW)["severity"] == "medium"
        assert refine_item(KNOWLEDGE, {}, now=NOW)["importance"] == 5
        assert refine_item(DOCS, {}, now=NOW)["doc_type"] == "reference"
        assert refine_item(CONVENTIONS, {}, now=NOW)["convention_type"] == "other"
        assert refine_item(JOURNAL, {}, now=NOW)["entry_type"] == "journal"

    def test_no_defaults_for_decisions(self):
        assert set(refine_item(DECISIONS, {}, now=NOW)) == {"status", "refined_at"}

    def test_bugs_fixed_bucket(self):
        assert refine_item(BUGS, {"bucket": "Bugs Fixed"}, now=NOW)["status"] == "fixed"
        assert refine_item(BUGS, {"bucket": "Bugs Open"}, now=NOW)["status"] == "open"

    def test_work_log_bucket(self):
        updates = refine_item(JOURNAL, {"bucket": "Work Log", "entry_type": "journal"}, now=NOW)
        assert updates["entry_type"] == "work_log"

    def test_unknown_table(self):
        with pytest.raises(UnknownTableError):
            refine_item("dev_ai_recipes", {})


class TestStatusPipeline:
    def test_intake_todo_promoted(self, store: TableStore, make_item):
        make_item(TODOS, id="t-1", title="New task", status="pending")
        result = StatusPipeline(store).run_cycle()

        todo = store.get(TODOS, "t-1")
        assert todo["status"] == "open"
        assert todo["priority"] == "medium"
        assert todo["refined_at"] is not None
        assert result.processed == 1
        assert result.errors == 0

    def test_second_cycle_leaves_item_unchanged(self, store: TableStore, make_item):
        make_item(TODOS, id="t-1", title="New task", status="pending")
        pipeline = StatusPipeline(store)
        pipeline.run_cycle()
        before = store.get(TODOS, "t-1")

        result = pipeline.run_cycle()
        assert result.processed == 0
        assert store.get(TODOS, "t-1") == before

    def test_non_intake_items_ignored(self, store: TableStore, make_item):
        make_item(TODOS, id="t-1", title="Already open", status="open")
        make_item(TODOS, id="t-2", title="Done", status="completed")
        assert StatusPipeline(store).run_cycle().processed == 0
        assert store.get(TODOS, "t-1")["priority"] is None

    def test_every_table_processed(self, store: TableStore, make_item):
        make_item(BUGS, id="b-1", title="Crash", bucket="Bugs Fixed")
        make_item(JOURNAL, id="j-1", title="Monday", bucket="Work Log")
        make_item(CONVENTIONS, id="cv-1", name="Snake case")
        make_item(SNIPPETS, id="s-1", name="retry helper")
        result = StatusPipeline(store).run_cycle()

        assert result.processed == 4
        assert store.get(BUGS, "b-1")["status"] == "fixed"
        assert store.get(BUGS, "b-1")["severity"] == "medium"
        assert store.get(JOURNAL, "j-1")["entry_type"] == "work_log"
        assert store.get(CONVENTIONS, "cv-1")["status"] == "active"
        assert store.get(SNIPPETS, "s-1")["status"] == "published"
        assert result.tables[BUGS].processed == 1

    def test_batch_is_oldest_first_and_bounded(self, store: TableStore, make_item):
        for i in range(5):
            make_item(TODOS, id=f"t-{i}", title=f"Task {i}")
        result = StatusPipeline(store, batch_size=2).process_table(TODOS)

        assert result.processed == 2
        assert store.get(TODOS, "t-0")["status"] == "open"
        assert store.get(TODOS, "t-1")["status"] == "open"
        assert store.get(TODOS, "t-2")["status"] == "pending"

    def test_item_promoted_by_overlapping_run_not_counted(self, db_conn, make_item):
        class OverlappingStore(TableStore):
            """Another run promotes every fetched item before this run writes."""

            def select(self, table, *args, **kwargs):
                rows = super().select(table, *args, **kwargs)
                for row in rows:
                    super().update(table, {"status": "open"}, eq={"id": row["id"]})
                return rows

        make_item(TODOS, id="t-1", title="New task")
        result = StatusPipeline(OverlappingStore(db_conn)).process_table(TODOS)
        assert result.processed == 0
        assert result.errors == 0
        assert TableStore(db_conn).get(TODOS, "t-1")["refined_at"] is None

    def test_fetch_failure_isolated_to_table(self, flaky_store, make_item):
        store = flaky_store(failing_selects={BUGS})
        make_item(TODOS, id="t-1", title="New task")
        result = StatusPipeline(store).run_cycle()
        assert result.processed == 1
        assert result.errors == 1
        assert result.tables[BUGS].errors == 1

    def test_write_failure_leaves_item_in_intake(self, flaky_store, make_item):
        store = flaky_store(failing_updates={TODOS})
        make_item(TODOS, id="t-1", title="New task")
        make_item(DOCS, id="d-1", title="Guide")
        result = StatusPipeline(store).run_cycle()

        assert result.processed == 1
        assert result.errors == 1
        assert store.get(TODOS, "t-1")["status"] == "pending"
        assert store.get(DOCS, "d-1")["status"] == "draft"


class TestPipelineScheduler:
    def test_runs_requested_cycles(self):
        pipeline = MagicMock()
        pipeline.run_cycle.return_value = CycleResult()
        scheduler = PipelineScheduler(pipeline, interval=0)
        assert scheduler.run_forever(max_cycles=3) == 3
        assert pipeline.run_cycle.call_count == 3

    def test_failed_cycle_does_not_stop_loop(self):
        pipeline = MagicMock()
        pipeline.run_cycle.side_effect = [RuntimeError("store down"), CycleResult()]
        scheduler = PipelineScheduler(pipeline, interval=0)
        assert scheduler.run_forever(max_cycles=2) == 2

    def test_stop_from_another_thread(self):
        pipeline = MagicMock()
        pipeline.run_cycle.return_value = CycleResult()
        scheduler = PipelineScheduler(pipeline, interval=60)

        thread = threading.Thread(target=scheduler.run_forever)
        thread.start()
        # First cycle runs immediately, then the loop waits on the interval
        while pipeline.run_cycle.call_count == 0:
            pass
        scheduler.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert pipeline.run_cycle.call_count == 1
        assert scheduler.running is False
