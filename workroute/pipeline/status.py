"""Status pipeline: promote intake items to their table's terminal status.

Captured items land with status 'pending'. Each cycle picks up the oldest
pending items per destination table, fills in table-specific defaults that are
still unset, stamps `refined_at` and moves them to the terminal status in a
single update. Promoted items drop out of the status filter, so overlapping or
repeated cycles converge instead of double-processing.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from workroute.errors import StoreError
from workroute.models import CycleResult, TableCycleResult
from workroute.storage.store import TableStore
from workroute.tables import BUGS, DESTINATION_TABLES, INTAKE_STATUS, JOURNAL, get_table

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
DEFAULT_INTERVAL = 30  # seconds

BUGS_FIXED_BUCKET = "Bugs Fixed"
WORK_LOG_BUCKET = "Work Log"


def refine_item(table: str, item: dict, now: datetime | None = None) -> dict:
    """Build the update that promotes `item` out of intake."""
    spec = get_table(table)
    updates: dict = {
        "status": spec.terminal_status,
        "refined_at": (now or datetime.now()).isoformat(),
    }
    for column, default in spec.defaults.items():
        value = item.get(column)
        updates[column] = default if value in (None, "") else value

    if table == BUGS and item.get("bucket") == BUGS_FIXED_BUCKET:
        updates["status"] = "fixed"
    if table == JOURNAL and item.get("bucket") == WORK_LOG_BUCKET:
        updates["entry_type"] = "work_log"
    return updates


def _select_columns(table: str) -> list[str]:
    spec = get_table(table)
    # Only ask for columns the table actually has
    return ["id", "bucket", *spec.defaults]


class StatusPipeline:
    def __init__(self, store: TableStore, batch_size: int = BATCH_SIZE) -> None:
        self._store = store
        self._batch_size = batch_size

    def process_table(self, table: str) -> TableCycleResult:
        result = TableCycleResult()
        try:
            items = self._store.select(
                table,
                _select_columns(table),
                eq={"status": INTAKE_STATUS},
                order_by="created_at",
                limit=self._batch_size,
            )
        except StoreError as e:
            logger.error(f"Failed to fetch pending items from {table}: {e}")
            result.errors += 1
            return result

        if not items:
            return result
        logger.info(f"Processing {len(items)} pending items in {table}")

        for item in items:
            updates = refine_item(table, item)
            try:
                # The status predicate keeps an overlapping run from re-promoting
                touched = self._store.update(table, updates, eq={"id": item["id"], "status": INTAKE_STATUS})
            except StoreError as e:
                logger.error(f"Failed to update {table}/{item['id']}: {e}")
                result.errors += 1
                continue
            if touched == 0:
                logger.debug(f"{table}/{item['id']} already left intake, skipping")
                continue
            result.processed += 1
        return result

    def run_cycle(self) -> CycleResult:
        """Process every destination table once."""
        cycle = CycleResult()
        for table in DESTINATION_TABLES:
            table_result = self.process_table(table)
            cycle.tables[table] = table_result
            cycle.processed += table_result.processed
            cycle.errors += table_result.errors

        if cycle.processed > 0 or cycle.errors > 0:
            logger.info(f"Pipeline cycle complete: processed={cycle.processed}, errors={cycle.errors}")
        return cycle


class PipelineScheduler:
    """Runs pipeline cycles immediately and then every `interval` seconds."""

    def __init__(self, pipeline: StatusPipeline, interval: float = DEFAULT_INTERVAL) -> None:
        self._pipeline = pipeline
        self._interval = interval
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def run_forever(self, max_cycles: int | None = None) -> int:
        """Block running cycles until stop() is called. Returns cycles run."""
        self._stop.clear()
        logger.info(f"Starting pipeline processor ({self._interval}s interval)")
        cycles = 0
        while not self._stop.is_set():
            try:
                self._pipeline.run_cycle()
            except Exception:
                logger.exception("Pipeline cycle failed")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop.wait(self._interval)
        logger.info("Pipeline processor stopped")
        return cycles
