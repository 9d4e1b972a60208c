from __future__ import annotations

from dataclasses import dataclass, field
import importlib.resources
import os
from pathlib import Path
from typing import Any, Mapping

import yaml


@dataclass(frozen=True)
class ScoringPolicy:
    """One of the two mutually exclusive weighting schemes for the four verticals."""

    name: str
    engagement: float
    results: float
    relationship: float
    surveys: float

    @property
    def includes_results(self) -> bool:
        return self.results != 0

    @staticmethod
    def from_mapping(name: str, raw: Mapping[str, Any]) -> "ScoringPolicy":
        return ScoringPolicy(
            name=name,
            engagement=float(raw["engagement"]),
            results=float(raw["results"]),
            relationship=float(raw["relationship"]),
            surveys=float(raw["surveys"]),
        )


@dataclass(frozen=True)
class FlagRule:
    min_score: float
    color: str
    action: str


@dataclass(frozen=True)
class ScoringConfig:
    verticals: dict[str, dict[str, dict[str, float]]]
    roi_by_tenure: dict[str, dict[str, float]]
    growth: dict[str, float]
    engagement_vs_avg: dict[str, float]
    standard_policy: ScoringPolicy
    results_excluded_policy: ScoringPolicy
    flags: list[FlagRule]
    roi_not_measurable_penalty: float = -15.0
    vertical_budget: float = 25.0
    roi_share: float = 15.0
    social_share: float = 10.0
    short_tenure_max_months: int = 2
    medium_tenure_max_months: int = 6

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "ScoringConfig":
        def _table(values: Mapping[str, Any]) -> dict[str, float]:
            return {str(k): float(v) for k, v in values.items()}

        verticals = {
            name: {question: _table(answers) for question, answers in questions.items()}
            for name, questions in (raw.get("verticals", {}) or {}).items()
        }
        results = raw.get("results", {}) or {}
        buckets = raw.get("tenure_buckets", {}) or {}
        policies = raw.get("policies", {}) or {}
        flags = sorted(
            (FlagRule(float(f["min_score"]), str(f["color"]), str(f["action"])) for f in raw.get("flags", []) or []),
            key=lambda f: f.min_score,
            reverse=True,
        )
        return ScoringConfig(
            verticals=verticals,
            roi_by_tenure={bucket: _table(t) for bucket, t in (results.get("roi_by_tenure", {}) or {}).items()},
            growth=_table(results.get("growth", {}) or {}),
            engagement_vs_avg=_table(results.get("engagement_vs_avg", {}) or {}),
            standard_policy=ScoringPolicy.from_mapping("standard", policies["standard"]),
            results_excluded_policy=ScoringPolicy.from_mapping("results_excluded", policies["results_excluded"]),
            flags=flags,
            roi_not_measurable_penalty=float(results.get("roi_not_measurable_penalty", -15)),
            vertical_budget=float(results.get("vertical_budget", 25)),
            roi_share=float(results.get("roi_share", 15)),
            social_share=float(results.get("social_share", 10)),
            short_tenure_max_months=int(buckets.get("short_max_months", 2)),
            medium_tenure_max_months=int(buckets.get("medium_max_months", 6)),
        )

    @staticmethod
    def from_yaml(path: str | Path) -> "ScoringConfig":
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        return ScoringConfig.from_mapping(raw)


def default_scoring_config() -> ScoringConfig:
    text = importlib.resources.files("agencypulse.resources").joinpath("health_scoring.yaml").read_text(encoding="utf-8")
    return ScoringConfig.from_mapping(yaml.safe_load(text))


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""

    db_path: Path = field(default_factory=lambda: Path(os.environ.get("AGENCYPULSE_DB", "agencypulse.db")))
    allowed_domain: str = field(default_factory=lambda: os.environ.get("AGENCYPULSE_ALLOWED_DOMAIN", "v4company.com"))
    master_email: str = field(default_factory=lambda: os.environ.get("AGENCYPULSE_MASTER_EMAIL", "").strip().lower())
    log_level: str = field(default_factory=lambda: os.environ.get("AGENCYPULSE_LOG_LEVEL", "INFO").upper())
    allowed_origins: list[str] = field(
        default_factory=lambda: [
            o.strip()
            for o in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
            if o.strip()
        ]
    )
