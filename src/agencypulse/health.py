"""Client health score.

A monthly qualitative assessment is turned into a 0-100 score across four
verticals (engagement, results, relationship, surveys). Every answer maps to
fixed points; the results vertical depends on client tenure and on which
outcome the client cares about. Clients that do not expect measurable results
are scored under a separate policy that spreads the results budget over the
other three verticals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from .config import ScoringConfig, ScoringPolicy, default_scoring_config
from .periods import tenure_months
from .types import ClientConfig

ENGAGEMENT_QUESTIONS = ("checkin", "whatsapp", "adimplencia", "recarga")
RELATIONSHIP_QUESTIONS = (
    "checkin_produtivo",
    "progresso",
    "relacionamento_interno",
    "aviso_previo",
    "pesquisa_respondida",
)
SURVEY_QUESTIONS = ("csat_tecnico", "nps", "mhs", "pesquisa_geral_respondida")


class HealthInput(BaseModel):
    client_id: str
    month_key: str = Field(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")

    # Engagement
    checkin: Literal["semanal", "quinzenal", "mensal", "sem_frequencia"]
    whatsapp: Literal["na_hora", "mesmo_dia", "dia_seguinte", "dias_depois", "nao_responde"]
    adimplencia: Literal["em_dia", "ate_10_dias", "mais_30_dias"]
    recarga: Literal["no_dia", "ate_10_dias", "mais_30_dias"]

    # Results
    roi_bucket: Literal["roi_lt_3", "roi_3", "roi_2", "roi_1", "roi_gt_1"]
    growth: Literal[
        "perfil_a_lt_50k",
        "perfil_b_gt_50k",
        "negativo",
        "growth_high",
        "growth_medium",
        "growth_low",
        "growth_negative",
    ]
    engagement_vs_avg: Literal["alta_perf", "estavel", "atencao", "critico"]
    expects_measurable_results: bool = True
    financial_results_measurable: bool = True
    results_focus: Literal["roi", "social", "both"] = "both"

    # Relationship
    checkin_produtivo: Literal["sim", "parcial", "nao"]
    progresso: Literal["muito", "parcial", "nao"]
    relacionamento_interno: Literal["melhorou", "neutro", "piorou"]
    aviso_previo: Literal["gt_60_dias", "30_60_dias", "lt_30_dias"]
    pesquisa_respondida: Literal["sim", "nao"]

    # Surveys
    csat_tecnico: Literal["gt_4.5", "ate_4", "ate_3.5", "lt_3"]
    nps: Literal["promotor", "neutro", "detrator"]
    mhs: Literal["muito_desapontado", "pouco", "indiferente", "nada"]
    pesquisa_geral_respondida: Literal["sim", "nao"]

    last_updated: Optional[datetime] = None


class TenureBucket(str, Enum):
    UP_TO_2 = "up_to_2"
    FROM_3_TO_6 = "from_3_to_6"
    OVER_6 = "over_6"


class FlagColor(str, Enum):
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"
    BLACK = "Black"


@dataclass(frozen=True)
class VerticalBreakdown:
    engagement: float
    results: float
    relationship: float
    surveys: float


@dataclass(frozen=True)
class HealthScoreResult:
    client_id: str
    month_key: str
    score: float
    flag: FlagColor
    action: str
    breakdown: VerticalBreakdown
    policy: str


def tenure_bucket(months: int, config: ScoringConfig) -> TenureBucket:
    if months <= config.short_tenure_max_months:
        return TenureBucket.UP_TO_2
    if months <= config.medium_tenure_max_months:
        return TenureBucket.FROM_3_TO_6
    return TenureBucket.OVER_6


def select_policy(data: HealthInput, config: ScoringConfig) -> ScoringPolicy:
    if data.expects_measurable_results:
        return config.standard_policy
    return config.results_excluded_policy


def vertical_points(data: HealthInput, vertical: str, questions: Iterable[str], config: ScoringConfig) -> float:
    table = config.verticals[vertical]
    return sum(table[q][getattr(data, q)] for q in questions)


def results_points(data: HealthInput, bucket: TenureBucket, config: ScoringConfig) -> float:
    """Raw points of the results vertical before the policy multiplier."""
    if data.financial_results_measurable:
        roi = config.roi_by_tenure[bucket.value][data.roi_bucket]
    else:
        roi = config.roi_not_measurable_penalty
    social = config.growth[data.growth] + config.engagement_vs_avg[data.engagement_vs_avg]

    if data.results_focus == "roi":
        return roi * (config.vertical_budget / config.roi_share)
    if data.results_focus == "social":
        return social * (config.vertical_budget / config.social_share)
    return roi + social


def flag_for(score: float, config: ScoringConfig) -> tuple[FlagColor, str]:
    for rule in config.flags:
        if score >= rule.min_score:
            return FlagColor(rule.color), rule.action
    last = config.flags[-1]
    return FlagColor(last.color), last.action


def score_health(
    data: HealthInput,
    client: ClientConfig,
    today: date,
    config: Optional[ScoringConfig] = None,
) -> HealthScoreResult:
    """Score one client's monthly assessment.

    ``today`` anchors the tenure calculation; ``client`` is only read for its
    contract start date. The flag is chosen from the rounded score, so the
    reported score and flag always agree.
    """
    config = config or default_scoring_config()
    policy = select_policy(data, config)

    engagement = vertical_points(data, "engagement", ENGAGEMENT_QUESTIONS, config) * policy.engagement
    relationship = vertical_points(data, "relationship", RELATIONSHIP_QUESTIONS, config) * policy.relationship
    surveys = vertical_points(data, "surveys", SURVEY_QUESTIONS, config) * policy.surveys

    results = 0.0
    if policy.includes_results:
        bucket = tenure_bucket(tenure_months(client.contract_start_date, today), config)
        results = results_points(data, bucket, config) * policy.results

    score = round(max(0.0, min(100.0, engagement + results + relationship + surveys)), 2)
    flag, action = flag_for(score, config)
    return HealthScoreResult(
        client_id=data.client_id,
        month_key=data.month_key,
        score=score,
        flag=flag,
        action=action,
        breakdown=VerticalBreakdown(
            engagement=round(engagement, 2),
            results=round(results, 2),
            relationship=round(relationship, 2),
            surveys=round(surveys, 2),
        ),
        policy=policy.name,
    )


def score_portfolio(
    inputs: Iterable[HealthInput],
    clients: Iterable[ClientConfig],
    month_key: str,
    today: date,
    config: Optional[ScoringConfig] = None,
) -> dict[str, HealthScoreResult]:
    """Score every active client that has an assessment saved for ``month_key``."""
    config = config or default_scoring_config()
    active = {c.id: c for c in clients if c.is_active}
    scores: dict[str, HealthScoreResult] = {}
    for data in inputs:
        client = active.get(data.client_id)
        if client is None or data.month_key != month_key:
            continue
        scores[data.client_id] = score_health(data, client, today, config)
    return scores
