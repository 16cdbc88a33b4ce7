"""Core data models for workroute."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class Project:
    id: str
    name: str  # display name, e.g. "NextBid Engine"
    slug: str | None = None
    parent_id: str | None = None  # umbrella project owning shared phases
    client_id: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> Project:
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row.get("slug"),
            parent_id=row.get("parent_id"),
            client_id=row.get("client_id"),
        )


@dataclass
class Phase:
    id: str
    project_id: str
    name: str  # unique within project_id
    phase_number: int | None = None
    status: str = "pending"  # "pending" | "in_progress" | "completed"

    @classmethod
    def from_row(cls, row: dict) -> Phase:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            phase_number=row.get("phase_number"),
            status=row.get("status") or "pending",
        )


@dataclass
class ProjectMatch:
    project_id: str
    project_name: str
    client_id: str | None
    matched_pattern: str
    score: int = 1

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PhaseAssignment:
    item_id: str
    phase_id: str
    phase_name: str


@dataclass
class RouteResult:
    checked: int = 0
    rerouted: int = 0
    errors: int = 0


@dataclass
class TableFailure:
    error: str


@dataclass
class RouteAllResult:
    tables: dict[str, RouteResult | TableFailure] = field(default_factory=dict)
    total_rerouted: int = 0


@dataclass
class PathRouteResult:
    path: str
    checked: int = 0
    rerouted: int = 0
    dry_run: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class PhaseRouteResult:
    assigned: int = 0
    total: int = 0
    skipped: bool = False


@dataclass
class MergeResult:
    merged: int = 0
    checked: int = 0


@dataclass
class TableCycleResult:
    processed: int = 0
    errors: int = 0


@dataclass
class CycleResult:
    processed: int = 0
    errors: int = 0
    tables: dict[str, TableCycleResult] = field(default_factory=dict)
