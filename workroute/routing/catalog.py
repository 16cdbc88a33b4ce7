"""Keyword pattern catalog for project and phase routing.

Rules are data: each maps a list of lowercase literal substrings to a label
(a project display name or a phase name). Operators can append rules at
runtime and they apply to the next classification. Nothing is persisted, so a
restart falls back to the built-in rules plus whatever the configured rules
file adds.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    patterns: tuple[str, ...]
    label: str


DEFAULT_PROJECT_RULES: list[tuple[list[str], str]] = [
    # NextBid family
    (["nextbid engine", "nextbid-engine", "engine api", "auction engine"], "NextBid Engine"),
    (["nextbid core", "nextbid-core", "core module", "core api"], "NextBid Core"),
    (["nextbid internal", "nextbid-internal", "internal tools"], "NextBid Internal"),
    (["nexttask", "next-task", "task management"], "NextTask"),
    (["nextlive", "next-live", "live streaming", "live auction"], "NextLive"),
    (["nextseller", "next-seller", "seller dashboard"], "NextSeller"),
    (["nextbid prime", "nextbid-prime", "prime module"], "NextBid Prime"),
    (["nextbid pro", "nextbid-pro", "pro features"], "NextBid Pro"),
    # Studios platform
    (["kodiack studio", "kodiack-studio", "studios platform", "ai team"], "Studios Platform"),
    (["kodiack dashboard", "kodiack-dashboard", "dashboard 5500"], "Kodiack Dashboard"),
    # Trailing spaces stand in for a word boundary
    (["internal claude", "claude mcp", "susan ", "jen ", "clair ", "ryan ", "chad "], "Internal Claude"),
]

DEFAULT_PHASE_RULES: list[tuple[list[str], str]] = [
    (
        [
            "auth", "login", "permission", "role", "access control", "user management",
            "project management", "dashboard", "task tracking", "deadline",
            "file storage", "upload", "file management", "asset storage",
            "collaboration", "team", "chat", "notification", "messaging",
            "client portal", "client access", "customer portal",
            "billing", "invoice", "payment", "subscription",
            "crm", "lead", "contract", "client relationship",
        ],
        "Core Platform",
    ),
    (
        [
            "git", "version control", "branch", "commit", "merge", "repository",
            "ci/cd", "cicd", "pipeline", "deploy", "build process", "automation",
            "code review", "pull request", "pr review", "merge request",
            "documentation", "docs", "readme", "api docs", "jsdoc",
            "testing", "test", "unit test", "integration test", "e2e", "jest", "mocha",
            "dev environment", "docker", "container", "devops",
        ],
        "Code Development",
    ),
    (
        [
            "asset", "image", "graphic", "design", "artwork", "illustration",
            "style guide", "design system", "color", "typography", "ui kit",
            "brand", "logo", "icon", "brand kit", "visual identity",
            "image processing", "video", "resize", "compress", "optimize",
            "3d", "model", "blender", "maya", "render",
            "texture", "sprite", "animation", "tileset",
        ],
        "Creative/Graphics",
    ),
    (
        [
            "website", "template", "theme", "landing page", "web page",
            "cms", "content management", "wordpress", "strapi",
            "ecommerce", "e-commerce", "shopping", "cart", "checkout", "store",
            "seo", "meta tag", "sitemap", "search engine",
            "analytics", "tracking", "conversion", "google analytics",
            "hosting", "server", "ssl", "domain", "dns", "nginx",
        ],
        "Web Development",
    ),
    (
        [
            "mobile", "app", "ios", "android", "smartphone",
            "react native", "flutter", "native app", "expo",
            "app store", "play store", "submission", "app release",
            "push notification", "firebase messaging", "apns",
            "in-app purchase", "iap", "subscription", "monetization",
            "crash report", "app analytics", "crashlytics",
        ],
        "App Development",
    ),
    (
        [
            "game", "gaming", "gameplay", "player",
            "game engine", "unity", "unreal", "godot", "phaser",
            "level editor", "level", "map", "world builder",
            "character", "rigging", "skeletal", "npc",
            "multiplayer", "matchmaking", "netcode", "realtime",
            "leaderboard", "achievement", "score", "ranking",
        ],
        "Game Development",
    ),
]


def _make_rule(patterns: list[str], label: str) -> PatternRule:
    # Lowercased but not stripped: surrounding spaces are part of the literal
    cleaned = tuple(p.lower() for p in patterns if p and p.strip())
    if not cleaned:
        raise ValueError(f"Rule for {label!r} has no usable patterns")
    if not label or not label.strip():
        raise ValueError("Rule label must not be empty")
    return PatternRule(patterns=cleaned, label=label.strip())


def _labels(rules: list[PatternRule]) -> dict[str, list[str]]:
    # dict preserves first-seen order, which is the tie-break order
    labels: dict[str, list[str]] = {}
    for rule in rules:
        patterns = labels.setdefault(rule.label, [])
        for pattern in rule.patterns:
            if pattern not in patterns:
                patterns.append(pattern)
    return labels


class PatternCatalog:
    """Append-only, ordered rule sets for project and phase routing."""

    def __init__(
        self,
        project_rules: list[tuple[list[str], str]] | None = None,
        phase_rules: list[tuple[list[str], str]] | None = None,
    ) -> None:
        self._project_rules: list[PatternRule] = []
        self._phase_rules: list[PatternRule] = []
        for patterns, label in project_rules or []:
            self._project_rules.append(_make_rule(patterns, label))
        for patterns, label in phase_rules or []:
            self._phase_rules.append(_make_rule(patterns, label))

    @classmethod
    def default(cls) -> PatternCatalog:
        return cls(DEFAULT_PROJECT_RULES, DEFAULT_PHASE_RULES)

    @property
    def project_rules(self) -> list[PatternRule]:
        return list(self._project_rules)

    @property
    def phase_rules(self) -> list[PatternRule]:
        return list(self._phase_rules)

    def add_project_rule(self, patterns: list[str], project_name: str) -> PatternRule:
        rule = _make_rule(patterns, project_name)
        self._project_rules.append(rule)
        logger.info(f"Added project pattern {list(rule.patterns)} -> {rule.label}")
        return rule

    def add_phase_rule(self, patterns: list[str], phase_name: str) -> PatternRule:
        rule = _make_rule(patterns, phase_name)
        self._phase_rules.append(rule)
        logger.info(f"Added phase pattern {list(rule.patterns)} -> {rule.label}")
        return rule

    def project_labels(self) -> dict[str, list[str]]:
        return _labels(self._project_rules)

    def phase_labels(self) -> dict[str, list[str]]:
        return _labels(self._phase_rules)

    def load_rules_file(self, path: Path) -> int:
        """Append rules from a JSON file. Returns the number of rules added.

        Expected shape::

            {"projects": [{"patterns": ["..."], "label": "Project Name"}],
             "phases": [{"patterns": ["..."], "label": "Phase Name"}]}
        """
        data = json.loads(Path(path).read_text())
        added = 0
        for entry in data.get("projects", []):
            self.add_project_rule(entry["patterns"], entry["label"])
            added += 1
        for entry in data.get("phases", []):
            self.add_phase_rule(entry["patterns"], entry["label"])
            added += 1
        return added

    def to_dict(self) -> dict:
        def dump(rule: PatternRule) -> dict:
            d = asdict(rule)
            d["patterns"] = list(rule.patterns)
            return d

        return {
            "projects": [dump(r) for r in self._project_rules],
            "phases": [dump(r) for r in self._phase_rules],
        }
