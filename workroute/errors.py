"""Exceptions raised by workroute."""

from __future__ import annotations


class WorkrouteError(Exception):
    """Base class for workroute errors."""


class UnknownTableError(WorkrouteError, ValueError):
    def __init__(self, table: str) -> None:
        super().__init__(f"Unknown table: {table}")
        self.table = table


class StoreError(WorkrouteError):
    """A select, update or insert against the tabular store failed."""
