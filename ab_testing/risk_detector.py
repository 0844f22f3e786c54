import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

import scipy.stats as stats

from engine_settings import settings
from experiment_design.experiment_models import Experiment, validate_results

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskType(str, Enum):
    SAMPLE_RATIO_MISMATCH = "sample_ratio_mismatch"
    NOVELTY_EFFECT = "novelty_effect"
    PEEKING = "peeking"
    UNDERPOWERED = "underpowered"
    METRIC_QUALITY = "metric_quality"
    HIGH_VARIANCE = "high_variance"


@dataclass(frozen=True)
class ExperimentRisk:
    type: RiskType
    level: RiskLevel
    message: str
    details: Optional[str] = None
    recommendation: Optional[str] = None


def detect_sample_ratio_mismatch(experiment: Experiment) -> Optional[ExperimentRisk]:
    """Check that observed traffic matches the configured split.

    Each variant is tested on its own with a one-degree-of-freedom chi-square
    statistic; the first variant over the threshold is reported.
    """
    results = experiment.results
    if not results or len(results) < 2:
        return None

    total_samples = experiment.total_samples
    if total_samples < settings.SRM_MIN_TOTAL_SAMPLES:
        return None

    for variant in experiment.variants:
        result = next((r for r in results if r.variant_id == variant.variant_id), None)
        if result is None:
            continue

        expected_ratio = variant.traffic_percent / 100
        actual_ratio = result.sample_size / total_samples

        if expected_ratio <= 0:
            # Any traffic to a variant configured at 0% is a mismatch
            if result.sample_size == 0:
                continue
            deviation = chi_square = math.inf
        else:
            deviation = abs(actual_ratio - expected_ratio) / expected_ratio
            expected_count = total_samples * expected_ratio
            chi_square = (result.sample_size - expected_count) ** 2 / expected_count

        if chi_square > settings.SRM_CHI_SQUARE_THRESHOLD:
            p_value = stats.chi2.sf(chi_square, df=1)
            level = RiskLevel.CRITICAL if deviation > settings.SRM_CRITICAL_DEVIATION else RiskLevel.HIGH
            logger.warning(
                "Sample ratio mismatch in experiment %s on variant %s (chi2=%.2f)",
                experiment.experiment_id, variant.name, chi_square
            )
            return ExperimentRisk(
                type=RiskType.SAMPLE_RATIO_MISMATCH,
                level=level,
                message=f"Traffic split differs from expected by {deviation * 100:.1f}%",
                details=(
                    f"{variant.name} has {actual_ratio * 100:.1f}% vs expected "
                    f"{expected_ratio * 100:.1f}% (chi-square {chi_square:.2f}, p={p_value:.4f})"
                ),
                recommendation="Investigate assignment logic. Results may be invalid."
            )

    return None


def detect_novelty_effect(
    experiment: Experiment,
    now: Optional[datetime] = None
) -> Optional[ExperimentRisk]:
    """Flag significant treatment results seen in the first days of a test"""
    if experiment.start_date is None or experiment.results is None:
        return None

    now = now or datetime.now(timezone.utc)
    start_date = experiment.start_date
    if start_date.tzinfo is None:
        start_date = start_date.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    days_since_start = math.floor((now - start_date).total_seconds() / 86400)
    if days_since_start >= settings.NOVELTY_WINDOW_DAYS:
        return None

    has_significant_treatment = any(r.is_significant for r in experiment.treatment_results)
    if not has_significant_treatment:
        return None

    level = RiskLevel.HIGH if days_since_start < settings.NOVELTY_HIGH_RISK_DAYS else RiskLevel.MEDIUM
    return ExperimentRisk(
        type=RiskType.NOVELTY_EFFECT,
        level=level,
        message="Results may be inflated by novelty effect",
        details=(
            f"Only {days_since_start} days since start. "
            "Users may be exploring the new experience."
        ),
        recommendation=f"Wait at least {settings.NOVELTY_WINDOW_DAYS} days before drawing conclusions."
    )


def detect_peeking_risk(experiment: Experiment) -> Optional[ExperimentRisk]:
    """Flag significance declared before half the planned sample is in"""
    if experiment.results is None:
        return None

    progress = experiment.progress_percent
    if progress >= 50:
        return None

    if not any(r.is_significant for r in experiment.results):
        return None

    return ExperimentRisk(
        type=RiskType.PEEKING,
        level=RiskLevel.HIGH if progress < 25 else RiskLevel.MEDIUM,
        message="Early significance may be unreliable",
        details=(
            f"Only {progress:.0f}% of required sample collected. "
            "P-values are not valid with repeated peeking."
        ),
        recommendation="Use sequential testing or wait for full sample size."
    )


def detect_underpowered(experiment: Experiment) -> Optional[ExperimentRisk]:
    if experiment.results is None:
        return None

    progress = experiment.progress_percent
    if progress <= 80:
        return None

    if any(r.is_significant for r in experiment.results):
        return None

    return ExperimentRisk(
        type=RiskType.UNDERPOWERED,
        level=RiskLevel.MEDIUM,
        message="Experiment may be underpowered",
        details=(
            f"{progress:.0f}% complete with no significant results. "
            "Effect size may be smaller than expected."
        ),
        recommendation="Consider extending the experiment or accepting smaller effects."
    )


def detect_metric_issues(experiment: Experiment) -> Optional[ExperimentRisk]:
    """Flag implausible conversion rates, then a noisy control"""
    results = experiment.results
    if not results or len(results) < 2:
        return None

    for result in results:
        if result.conversion_rate > 0.9 or result.conversion_rate < 0.001:
            return ExperimentRisk(
                type=RiskType.METRIC_QUALITY,
                level=RiskLevel.MEDIUM,
                message="Unusual conversion rate detected",
                details=f"Conversion rate of {result.conversion_rate * 100:.2f}% seems extreme.",
                recommendation="Verify metric definition and data collection."
            )

    control = experiment.control_result
    if control is not None:
        ci_low, ci_high = control.confidence_interval
        if ci_high - ci_low > control.conversion_rate * 0.5:
            return ExperimentRisk(
                type=RiskType.HIGH_VARIANCE,
                level=RiskLevel.LOW,
                message="High variance in results",
                details="Wide confidence intervals may make it hard to detect effects.",
                recommendation="Consider longer runtime or larger sample size."
            )

    return None


def detect_risks(experiment: Experiment, now: Optional[datetime] = None) -> List[ExperimentRisk]:
    """Run every detector and collect the risks found"""
    validate_results(experiment)
    detectors: List[Callable[[Experiment], Optional[ExperimentRisk]]] = [
        detect_sample_ratio_mismatch,
        lambda e: detect_novelty_effect(e, now),
        detect_peeking_risk,
        detect_underpowered,
        detect_metric_issues,
    ]

    risks = []
    for detector in detectors:
        risk = detector(experiment)
        if risk is not None:
            logger.info(
                "Experiment %s: %s risk (%s)", experiment.experiment_id, risk.type.value, risk.level.value
            )
            risks.append(risk)
    return risks
