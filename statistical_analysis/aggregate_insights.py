from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import pandas as pd

from ab_testing.experiment_intelligence import analyze_experiment
from ab_testing.risk_detector import RiskType
from experiment_design.experiment_models import Experiment, ExperimentStatus


@dataclass(frozen=True)
class RiskFrequency:
    type: str
    count: int


@dataclass(frozen=True)
class WinnerSummary:
    experiment_id: str
    name: str
    improvement: float


@dataclass
class AggregateInsights:
    total_experiments: int
    active_experiments: int
    completed_experiments: int
    avg_win_rate: float
    avg_effect_size: float
    common_risks: List[RiskFrequency] = field(default_factory=list)
    recent_winners: List[WinnerSummary] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


def _common_risks(active: List[Experiment], now: Optional[datetime], top_n: int = 5) -> List[RiskFrequency]:
    rows = [
        {"experiment_id": experiment.experiment_id, "type": risk.type.value}
        for experiment in active
        for risk in analyze_experiment(experiment, now).risks
    ]
    if not rows:
        return []

    # First-seen order breaks ties between equally common risks
    counts = (
        pd.DataFrame(rows)
        .groupby("type", sort=False)
        .size()
        .sort_values(ascending=False, kind="stable")
        .head(top_n)
    )
    return [RiskFrequency(type=str(risk_type), count=int(count)) for risk_type, count in counts.items()]


def generate_aggregate_insights(
    experiments: List[Experiment],
    now: Optional[datetime] = None
) -> AggregateInsights:
    """Roll up outcomes and risks across a portfolio of experiments"""
    active = [e for e in experiments if e.status == ExperimentStatus.RUNNING]
    completed = [e for e in experiments if e.status == ExperimentStatus.COMPLETED]

    with_winner = [e for e in completed if e.winner]
    avg_win_rate = len(with_winner) / len(completed) if completed else 0.0

    effect_sizes = pd.Series(
        [
            r.improvement
            for e in completed
            for r in e.results or []
            if r.is_significant and r.improvement > 0
        ],
        dtype=float,
    )
    avg_effect_size = float(effect_sizes.mean()) if not effect_sizes.empty else 0.0

    common_risks = _common_risks(active, now)

    # Input order stands in for recency
    recent_winners = []
    for experiment in [e for e in with_winner if e.results is not None][:5]:
        winner_result = next(
            (r for r in experiment.results if r.variant_id == experiment.winner), None
        )
        recent_winners.append(WinnerSummary(
            experiment_id=experiment.experiment_id,
            name=experiment.name,
            improvement=winner_result.improvement if winner_result is not None else 0.0
        ))

    recommendations = []
    if avg_win_rate < 0.3:
        recommendations.append(
            "Low win rate detected. Consider improving hypothesis quality or increasing sample sizes."
        )
    if any(r.type == RiskType.PEEKING.value and r.count > 2 for r in common_risks):
        recommendations.append(
            "Multiple experiments show peeking risk. Consider implementing sequential testing."
        )
    if len(active) > 5:
        recommendations.append(
            "Many concurrent experiments may cause interaction effects. Consider prioritization."
        )

    return AggregateInsights(
        total_experiments=len(experiments),
        active_experiments=len(active),
        completed_experiments=len(completed),
        avg_win_rate=avg_win_rate,
        avg_effect_size=avg_effect_size,
        common_risks=common_risks,
        recent_winners=recent_winners,
        recommendations=recommendations
    )
