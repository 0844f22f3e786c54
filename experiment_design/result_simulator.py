"""Turning raw per-variant counts into ``VariantResult`` snapshots.

Results are produced outside the analysis engine: either imported from real
tracking counts (``summarize_variant_results``) or simulated for demos
(``generate_mock_results``, ``sample_experiments``).
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np
from statsmodels.stats.proportion import proportion_confint

from engine_errors import ExperimentValidationError
from experiment_design.experiment_models import (
    Experiment,
    ExperimentMetric,
    ExperimentStatus,
    ExperimentType,
    MetricType,
    Variant,
    VariantResult,
)
from statistical_analysis.sampling import make_rng
from statistical_engine import StatisticalEngine

# (sample_size, conversions, revenue)
Observation = Tuple[int, int, float]


def _rate_interval(conversions: int, sample_size: int, alpha: float) -> Tuple[float, float]:
    if sample_size == 0:
        return (0.0, 0.0)
    low, high = proportion_confint(conversions, sample_size, alpha=alpha, method="normal")
    return (float(low), float(high))


def summarize_variant_results(
    experiment: Experiment,
    observations: Dict[str, Observation],
    engine: Optional[StatisticalEngine] = None
) -> List[VariantResult]:
    """Build one result per variant from raw counts, in variant order.

    Treatments are z-tested against the control; the control itself carries
    zero improvement and a p-value of 1.
    """
    engine = engine or StatisticalEngine()
    control = experiment.control_variant
    if control is None:
        raise ExperimentValidationError("Experiment has no control variant")

    unknown = set(observations) - {v.variant_id for v in experiment.variants}
    if unknown:
        raise ExperimentValidationError(f"Observations for unknown variants: {sorted(unknown)}")

    control_n, control_conversions, _ = observations.get(control.variant_id, (0, 0, 0.0))

    results = []
    for variant in experiment.variants:
        if variant.variant_id not in observations:
            continue
        sample_size, conversions, revenue = observations[variant.variant_id]
        rate = conversions / sample_size if sample_size > 0 else 0.0

        improvement, p_value, is_significant = 0.0, 1.0, False
        if not variant.is_control and sample_size > 0 and control_n > 0:
            test = engine.analyze_results(
                control_conversions, control_n,
                conversions, sample_size,
                experiment.significance_level
            )
            improvement, p_value, is_significant = test.improvement, test.p_value, test.is_significant

        results.append(VariantResult(
            variant_id=variant.variant_id,
            sample_size=sample_size,
            conversions=conversions,
            conversion_rate=rate,
            revenue=revenue,
            avg_revenue=revenue / conversions if conversions > 0 else 0.0,
            confidence_interval=_rate_interval(conversions, sample_size, experiment.significance_level),
            improvement=improvement,
            p_value=p_value,
            is_significant=is_significant
        ))

    return results


def generate_mock_results(
    experiment: Experiment,
    rng: Optional[np.random.Generator] = None,
    engine: Optional[StatisticalEngine] = None
) -> List[VariantResult]:
    """Plausible demo results around the experiment's baseline rate"""
    rng = rng if rng is not None else make_rng()
    base_rate = experiment.baseline_conversion_rate

    observations: Dict[str, Observation] = {}
    for variant in experiment.variants:
        if variant.is_control:
            actual_rate = base_rate
        else:
            # Treatments land between -5% and +25% relative lift
            actual_rate = base_rate * (1 + (rng.random() * 0.3 - 0.05))

        sample_size = math.floor(
            experiment.required_sample_size * (variant.traffic_percent / 100) * (0.8 + rng.random() * 0.4)
        )
        conversions = min(sample_size, math.floor(sample_size * actual_rate))
        revenue = conversions * (15 + rng.random() * 10)
        observations[variant.variant_id] = (sample_size, conversions, revenue)

    return summarize_variant_results(experiment, observations, engine)


def _demo_variants(*specs: Tuple[str, str, str, float]) -> List[Variant]:
    return [
        Variant(variant_id=vid, name=name, description=description,
                traffic_percent=traffic, is_control=index == 0)
        for index, (vid, name, description, traffic) in enumerate(specs)
    ]


def sample_experiments(
    now: Optional[datetime] = None,
    rng: Optional[np.random.Generator] = None
) -> List[Experiment]:
    """The demo portfolio: one running, one completed and one draft experiment"""
    now = now or datetime.now(timezone.utc)
    rng = rng if rng is not None else make_rng()

    experiments = [
        Experiment(
            experiment_id="exp_onboarding_flow",
            name="Onboarding Flow Optimization",
            description="Test simplified vs original onboarding tutorial",
            hypothesis="A simplified 3-step onboarding will increase D7 retention by 15%",
            experiment_type=ExperimentType.AB,
            status=ExperimentStatus.RUNNING,
            variants=_demo_variants(
                ("v1", "Control", "Original 7-step onboarding", 50),
                ("v2", "Simplified", "3-step onboarding", 50),
            ),
            metrics=[
                ExperimentMetric("m1", "D7 Retention", MetricType.RETENTION, True, minimum_detectable_effect=0.15),
                ExperimentMetric("m2", "Tutorial Completion", MetricType.CONVERSION, False),
            ],
            target_audience="New Users",
            baseline_conversion_rate=0.18,
            minimum_detectable_effect=0.15,
            required_sample_size=3500,
            start_date=now - timedelta(days=12),
            estimated_duration=21,
            tags=["onboarding", "retention"],
        ),
        Experiment(
            experiment_id="exp_starter_pack_pricing",
            name="Starter Pack Pricing",
            description="Test different price points for the starter pack",
            hypothesis="$3.99 will generate more total revenue than $2.99 or $4.99",
            experiment_type=ExperimentType.MULTIVARIATE,
            status=ExperimentStatus.COMPLETED,
            variants=_demo_variants(
                ("v1", "$2.99", "Lower price point", 33),
                ("v2", "$3.99", "Medium price point", 33),
                ("v3", "$4.99", "Higher price point", 34),
            ),
            metrics=[
                ExperimentMetric("m1", "Purchase Rate", MetricType.CONVERSION, True, minimum_detectable_effect=0.1),
                ExperimentMetric("m2", "Total Revenue", MetricType.REVENUE, False),
            ],
            target_audience="Non-Payers Day 3+",
            baseline_conversion_rate=0.08,
            minimum_detectable_effect=0.2,
            required_sample_size=8000,
            start_date=now - timedelta(days=30),
            end_date=now - timedelta(days=5),
            estimated_duration=25,
            winner="v2",
            conclusion_notes=(
                "$3.99 showed 23% higher revenue per user than $2.99, with only 8% lower "
                "conversion. Implementing as default."
            ),
            tags=["pricing", "monetization"],
        ),
        Experiment(
            experiment_id="exp_push_timing",
            name="Push Notification Timing",
            description="Test morning vs evening push notifications for re-engagement",
            hypothesis="Evening notifications (6PM) will have higher open rates than morning (9AM)",
            experiment_type=ExperimentType.AB,
            status=ExperimentStatus.DRAFT,
            variants=_demo_variants(
                ("v1", "Morning (9AM)", "Send at 9AM local time", 50),
                ("v2", "Evening (6PM)", "Send at 6PM local time", 50),
            ),
            metrics=[
                ExperimentMetric("m1", "Open Rate", MetricType.ENGAGEMENT, True, minimum_detectable_effect=0.1),
                ExperimentMetric("m2", "Session Start Rate", MetricType.ENGAGEMENT, False),
            ],
            target_audience="Lapsed Users (3-7 days inactive)",
            traffic_allocation=50,
            baseline_conversion_rate=0.12,
            minimum_detectable_effect=0.15,
            required_sample_size=5000,
            estimated_duration=14,
            tags=["engagement", "notifications"],
        ),
    ]

    for experiment in experiments:
        experiment.created_at = experiment.updated_at = now
        if experiment.status in (ExperimentStatus.RUNNING, ExperimentStatus.COMPLETED):
            experiment.results = generate_mock_results(experiment, rng)

    return experiments
