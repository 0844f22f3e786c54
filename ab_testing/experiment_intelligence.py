import logging
import warnings
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ab_testing.recommendation_engine import (
    ExperimentInsight,
    ExperimentRecommendation,
    generate_insights,
    generate_recommendation,
)
from ab_testing.risk_detector import (
    ExperimentRisk,
    RiskLevel,
    RiskType,
    detect_risks,
)
from experiment_design.experiment_models import Experiment

logger = logging.getLogger(__name__)


RISK_PENALTIES: Dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 40,
    RiskLevel.HIGH: 25,
    RiskLevel.MEDIUM: 15,
    RiskLevel.LOW: 5,
}


@dataclass(frozen=True)
class DataQuality:
    sample_ratio_ok: bool
    sufficient_sample_size: bool
    stable_metrics: bool

    @property
    def sample_ratio_mismatch(self) -> bool:
        """Legacy flag that is True when there is *no* mismatch.

        Use ``sample_ratio_ok``; this alias keeps the inverted meaning of the
        legacy dashboard field.
        """
        warnings.warn(
            "DataQuality.sample_ratio_mismatch is inverted and deprecated; use sample_ratio_ok",
            DeprecationWarning,
            stacklevel=2,
        )
        return self.sample_ratio_ok


@dataclass(frozen=True)
class ExperimentIntelligence:
    experiment_id: str
    analyzed_at: datetime
    risks: List[ExperimentRisk]
    insights: List[ExperimentInsight]
    recommendation: ExperimentRecommendation
    health_score: int  # 0-100
    data_quality: DataQuality


def calculate_health_score(risks: List[ExperimentRisk]) -> int:
    """100 minus a fixed penalty per risk severity, clamped to 0-100"""
    score = 100 - sum(RISK_PENALTIES[risk.level] for risk in risks)
    return max(0, min(100, score))


def analyze_experiment(
    experiment: Experiment,
    now: Optional[datetime] = None
) -> ExperimentIntelligence:
    """Risks, insights, recommendation and health of a single experiment"""
    now = now or datetime.now(timezone.utc)

    risks = detect_risks(experiment, now)
    insights = generate_insights(experiment)
    recommendation = generate_recommendation(experiment, risks)
    health_score = calculate_health_score(risks)

    risk_types = {risk.type for risk in risks}
    data_quality = DataQuality(
        sample_ratio_ok=RiskType.SAMPLE_RATIO_MISMATCH not in risk_types,
        sufficient_sample_size=(
            experiment.results is not None
            and experiment.total_samples >= experiment.required_sample_size * 0.25
        ),
        stable_metrics=not risk_types & {RiskType.METRIC_QUALITY, RiskType.HIGH_VARIANCE},
    )

    logger.debug(
        "Analyzed experiment %s: %d risks, health %d, action %s",
        experiment.experiment_id, len(risks), health_score, recommendation.action.value
    )

    return ExperimentIntelligence(
        experiment_id=experiment.experiment_id,
        analyzed_at=now,
        risks=risks,
        insights=insights,
        recommendation=recommendation,
        health_score=health_score,
        data_quality=data_quality
    )
