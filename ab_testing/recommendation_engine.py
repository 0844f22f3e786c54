import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ab_testing.risk_detector import ExperimentRisk, RiskLevel
from engine_settings import settings
from experiment_design.experiment_models import Experiment, validate_results


class InsightType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    WARNING = "warning"


class RecommendedAction(str, Enum):
    CONTINUE = "continue"
    STOP_WINNER = "stop_winner"
    STOP_NO_EFFECT = "stop_no_effect"
    EXTEND = "extend"
    INVESTIGATE = "investigate"


@dataclass(frozen=True)
class ExperimentInsight:
    type: InsightType
    title: str
    message: str
    metric: Optional[str] = None
    impact: Optional[float] = None


@dataclass(frozen=True)
class ExperimentRecommendation:
    action: RecommendedAction
    confidence: float  # 0-1
    reason: str
    details: List[str] = field(default_factory=list)


def _variant_name(experiment: Experiment, variant_id: str) -> str:
    variant = experiment.find_variant(variant_id)
    return variant.name if variant is not None else variant_id


def _clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def generate_insights(experiment: Experiment) -> List[ExperimentInsight]:
    """Human-readable findings about winners, losers, progress and revenue"""
    validate_results(experiment)
    insights: List[ExperimentInsight] = []

    if not experiment.results or len(experiment.results) < 2:
        return insights

    control = experiment.control_result
    treatments = experiment.treatment_results

    significant_winner = next((t for t in treatments if t.is_significant and t.improvement > 0), None)
    if significant_winner is not None:
        insights.append(ExperimentInsight(
            type=InsightType.POSITIVE,
            title="Clear Winner",
            message=(
                f"{_variant_name(experiment, significant_winner.variant_id)} shows a statistically "
                f"significant {significant_winner.improvement * 100:.1f}% improvement."
            ),
            impact=significant_winner.improvement
        ))

    significant_loser = next((t for t in treatments if t.is_significant and t.improvement < -0.05), None)
    if significant_loser is not None:
        insights.append(ExperimentInsight(
            type=InsightType.NEGATIVE,
            title="Significant Decline",
            message=(
                f"{_variant_name(experiment, significant_loser.variant_id)} shows a "
                f"{abs(significant_loser.improvement * 100):.1f}% decrease. Consider stopping this variant."
            ),
            impact=significant_loser.improvement
        ))

    progress = experiment.progress_percent
    if progress >= 100:
        insights.append(ExperimentInsight(
            type=InsightType.NEUTRAL,
            title="Target Sample Reached",
            message="Experiment has collected the required sample size for statistical validity."
        ))
    elif progress >= 50:
        insights.append(ExperimentInsight(
            type=InsightType.NEUTRAL,
            title="Halfway Complete",
            message=f"{progress:.0f}% of required samples collected."
        ))

    # Incremental revenue of the best treatment at its current sample size
    revenue_impact = 0.0
    if control is not None:
        for treatment in treatments:
            impact = (treatment.avg_revenue - control.avg_revenue) * treatment.sample_size
            revenue_impact = max(revenue_impact, impact)

    if revenue_impact > settings.REVENUE_OPPORTUNITY_THRESHOLD:
        insights.append(ExperimentInsight(
            type=InsightType.POSITIVE,
            title="Revenue Opportunity",
            message=f"Potential additional revenue of ${revenue_impact:.0f} based on current results.",
            metric="revenue",
            impact=revenue_impact
        ))

    return insights


def generate_recommendation(
    experiment: Experiment,
    risks: List[ExperimentRisk]
) -> ExperimentRecommendation:
    """Pick one action for the experiment.

    Rules are checked in priority order and the first match wins:
    no data, critical risk, clear winner, clear loser, full sample with a
    hint of an effect, full sample with nothing, and finally keep running.
    """
    validate_results(experiment)
    has_critical_risk = any(r.level == RiskLevel.CRITICAL for r in risks)
    has_high_risk = any(r.level == RiskLevel.HIGH for r in risks)

    if not experiment.results or len(experiment.results) < 2:
        return ExperimentRecommendation(
            action=RecommendedAction.CONTINUE,
            confidence=0.9,
            reason="Insufficient data",
            details=["Waiting for experiment results to accumulate"]
        )

    total_samples = experiment.total_samples
    progress = experiment.progress_percent

    if has_critical_risk:
        return ExperimentRecommendation(
            action=RecommendedAction.INVESTIGATE,
            confidence=0.9,
            reason="Critical issues detected",
            details=[r.message for r in risks if r.level == RiskLevel.CRITICAL]
        )

    treatments = experiment.treatment_results

    significant_winner = next(
        (r for r in treatments if r.is_significant and r.improvement > 0.05), None
    )
    if significant_winner is not None and progress >= 50 and not has_high_risk:
        return ExperimentRecommendation(
            action=RecommendedAction.STOP_WINNER,
            confidence=_clamp_confidence(0.95 - len(risks) * 0.1),
            reason="Clear winner detected",
            details=[
                f"Treatment shows {significant_winner.improvement * 100:.1f}% improvement",
                f"P-value: {significant_winner.p_value:.4f}",
                f"{progress:.0f}% of required sample collected",
            ]
        )

    significant_loser = next(
        (r for r in treatments if r.is_significant and r.improvement < -0.1), None
    )
    if significant_loser is not None and progress >= 30:
        return ExperimentRecommendation(
            action=RecommendedAction.STOP_NO_EFFECT,
            confidence=0.85,
            reason="Treatment is performing worse",
            details=[
                f"Treatment shows {abs(significant_loser.improvement * 100):.1f}% decrease",
                "Consider stopping to avoid losing conversions",
            ]
        )

    if progress >= 100:
        if any(r.improvement > 0.02 for r in treatments):
            return ExperimentRecommendation(
                action=RecommendedAction.EXTEND,
                confidence=0.7,
                reason="Potential effect detected but not significant",
                details=[
                    "Effect size may be smaller than expected",
                    "Consider running longer or accepting smaller MDE",
                ]
            )

        return ExperimentRecommendation(
            action=RecommendedAction.STOP_NO_EFFECT,
            confidence=0.8,
            reason="No significant effect detected",
            details=[
                "Full sample collected without finding a winner",
                "Treatment may not have meaningful impact",
            ]
        )

    days_remaining = math.ceil(
        (experiment.required_sample_size - total_samples) / settings.ETA_DAILY_SAMPLES
    )
    return ExperimentRecommendation(
        action=RecommendedAction.CONTINUE,
        confidence=_clamp_confidence(0.9 - len(risks) * 0.1),
        reason="Experiment running normally",
        details=[
            f"{progress:.0f}% of required samples collected",
            f"Estimated {days_remaining} days remaining",
        ]
    )
