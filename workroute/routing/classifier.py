"""Keyword scoring of item text against the pattern catalog.

Both classifiers lowercase `title + " " + body` and score every candidate
label by how many of its patterns occur in that text. The strictly highest
score wins; on a tie the label that comes first in the catalog keeps the win.
"""

from __future__ import annotations

from workroute.models import Phase, ProjectMatch
from workroute.routing.cache import LookupCache
from workroute.routing.catalog import PatternCatalog


def search_text(title: str | None, body: str | None) -> str:
    return f"{title or ''} {body or ''}".lower()


def best_label(text: str, labels: dict[str, list[str]]) -> tuple[str, str, int] | None:
    """Return (label, first matched pattern, score) for the top label, or None."""
    best: tuple[str, str, int] | None = None
    for label, patterns in labels.items():
        found = [p for p in patterns if p in text]
        if found and (best is None or len(found) > best[2]):
            best = (label, found[0], len(found))
    return best


def classify_project(
    title: str | None,
    body: str | None,
    catalog: PatternCatalog,
    cache: LookupCache,
) -> ProjectMatch | None:
    """Detect which project the content is really about."""
    winner = best_label(search_text(title, body), catalog.project_labels())
    if winner is None:
        return None

    label, pattern, score = winner
    project = cache.resolve_project(label)
    if project is None:
        return None

    return ProjectMatch(
        project_id=project.id,
        project_name=project.name,
        client_id=project.client_id,
        matched_pattern=pattern,
        score=score,
    )


def classify_phase(
    title: str | None,
    body: str | None,
    phases: list[Phase],
    catalog: PatternCatalog,
) -> Phase | None:
    """Pick the best phase among `phases`, which must all belong to one project."""
    if not phases:
        return None

    labels = catalog.phase_labels()
    by_name = {phase.name: phase for phase in phases}
    # Catalog order decides ties, not the order phases came back from the store
    candidates = {name: labels[name] for name in labels if name in by_name}

    winner = best_label(search_text(title, body), candidates)
    if winner is None:
        return None
    return by_name[winner[0]]
