import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple

from engine_errors import ExperimentValidationError, InvalidArgumentError, InvalidTransitionError
from engine_settings import settings
from statistical_engine import calculate_sample_size

logger = logging.getLogger(__name__)


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ExperimentType(str, Enum):
    AB = "ab"
    MULTIVARIATE = "multivariate"
    FEATURE_FLAG = "feature_flag"


class MetricType(str, Enum):
    CONVERSION = "conversion"
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"
    RETENTION = "retention"
    CUSTOM = "custom"


@dataclass
class Variant:
    variant_id: str
    name: str
    description: str = ""
    traffic_percent: float = 50.0  # 0-100
    is_control: bool = False


@dataclass
class ExperimentMetric:
    metric_id: str
    name: str
    metric_type: MetricType = MetricType.CONVERSION
    is_primary: bool = False
    target_value: Optional[float] = None
    minimum_detectable_effect: Optional[float] = None


@dataclass
class VariantResult:
    variant_id: str
    sample_size: int
    conversions: int
    conversion_rate: float
    revenue: float = 0.0
    avg_revenue: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    improvement: float = 0.0  # relative to control, 0 for the control itself
    p_value: float = 1.0
    is_significant: bool = False


@dataclass
class Experiment:
    experiment_id: str
    name: str
    variants: List[Variant]
    description: str = ""
    hypothesis: str = ""
    experiment_type: ExperimentType = ExperimentType.AB
    status: ExperimentStatus = ExperimentStatus.DRAFT
    metrics: List[ExperimentMetric] = field(default_factory=list)
    target_audience: str = "All Users"
    traffic_allocation: float = 100.0  # percentage of users in the experiment

    # Timing
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    estimated_duration: Optional[int] = None  # days

    # Statistical configuration
    baseline_conversion_rate: float = 0.05
    minimum_detectable_effect: float = 0.2
    statistical_power: float = 0.8
    significance_level: float = 0.05
    required_sample_size: int = 0

    # Results are written by an external simulation or sync step, never by the engine
    results: Optional[List[VariantResult]] = None
    winner: Optional[str] = None
    conclusion_notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def control_variant(self) -> Optional[Variant]:
        return next((v for v in self.variants if v.is_control), None)

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        return next((v for v in self.variants if v.variant_id == variant_id), None)

    def is_control_result(self, result: VariantResult) -> bool:
        variant = self.find_variant(result.variant_id)
        return variant is not None and variant.is_control

    @property
    def control_result(self) -> Optional[VariantResult]:
        return next((r for r in self.results or [] if self.is_control_result(r)), None)

    @property
    def treatment_results(self) -> List[VariantResult]:
        """Results not attributed to the control, including unknown variant ids"""
        return [r for r in self.results or [] if not self.is_control_result(r)]

    @property
    def total_samples(self) -> int:
        return sum(r.sample_size for r in self.results or [])

    @property
    def progress_percent(self) -> float:
        """Collected samples as a percentage of the required sample size"""
        total = self.total_samples
        if self.required_sample_size > 0:
            return total / self.required_sample_size * 100
        return math.inf if total > 0 else 0.0


def _generate_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_variant(
    name: str,
    description: str,
    traffic_percent: float,
    is_control: bool = False
) -> Variant:
    return Variant(
        variant_id=_generate_id(),
        name=name,
        description=description,
        traffic_percent=traffic_percent,
        is_control=is_control
    )


def create_experiment(name: str, description: str, **options: Any) -> Experiment:
    """Create a validated draft experiment.

    Without explicit variants the experiment gets a 50/50 Control/Treatment
    split and a primary conversion metric. The required sample size is
    derived from the statistical configuration unless supplied.
    """
    now = _utcnow()

    # An explicit empty list is kept so validation can reject it
    variants = options.pop("variants", None)
    if variants is None:
        variants = [
            create_variant("Control", "Original experience", 50, is_control=True),
            create_variant("Treatment", "New experience", 50),
        ]
    metrics = options.pop("metrics", None)
    if metrics is None:
        metrics = [
            ExperimentMetric(
                metric_id=_generate_id(),
                name="Conversion Rate",
                metric_type=MetricType.CONVERSION,
                is_primary=True,
                minimum_detectable_effect=0.05
            )
        ]

    options.setdefault("baseline_conversion_rate", settings.DEFAULT_BASELINE_RATE)
    options.setdefault("minimum_detectable_effect", settings.DEFAULT_MINIMUM_DETECTABLE_EFFECT)
    options.setdefault("statistical_power", settings.DEFAULT_POWER)
    options.setdefault("significance_level", settings.DEFAULT_SIGNIFICANCE_LEVEL)
    if options.get("required_sample_size") is None:
        options["required_sample_size"] = calculate_sample_size(
            options["baseline_conversion_rate"],
            options["minimum_detectable_effect"],
            options["statistical_power"],
            options["significance_level"]
        ).total

    for managed in ("status", "created_at", "updated_at"):
        options.pop(managed, None)
    experiment = Experiment(
        experiment_id=options.pop("experiment_id", None) or _generate_id(),
        name=name,
        description=description,
        variants=variants,
        metrics=metrics,
        status=ExperimentStatus.DRAFT,
        created_at=now,
        updated_at=now,
        **options
    )

    validate_experiment(experiment)
    return experiment


def validate_experiment(experiment: Experiment) -> bool:
    """Check the structural invariants of an experiment configuration"""
    variants = experiment.variants
    if not variants or len(variants) < 2:
        raise ExperimentValidationError("Experiment must have at least 2 variants")

    variant_ids = [v.variant_id for v in variants]
    if len(set(variant_ids)) != len(variant_ids):
        raise ExperimentValidationError("Variant ids must be unique")

    controls = [v for v in variants if v.is_control]
    if len(controls) != 1:
        raise ExperimentValidationError(
            f"Experiment must have exactly one control variant, found {len(controls)}"
        )

    for variant in variants:
        if not 0 <= variant.traffic_percent <= 100:
            raise ExperimentValidationError(
                f"Variant {variant.name} traffic percent must be between 0 and 100"
            )

    total_traffic = sum(v.traffic_percent for v in variants)
    if abs(total_traffic - 100) > settings.TRAFFIC_PERCENT_TOLERANCE:
        raise ExperimentValidationError(
            f"Variant traffic percents must sum to 100, got {total_traffic:g}",
            details={"total_traffic": total_traffic}
        )

    if not 0 < experiment.baseline_conversion_rate < 1:
        raise ExperimentValidationError("Baseline conversion rate must be between 0 and 1")

    if not 0 < experiment.traffic_allocation <= 100:
        raise ExperimentValidationError("Traffic allocation must be in (0, 100]")

    if experiment.required_sample_size < 0:
        raise ExperimentValidationError("Required sample size must not be negative")

    return True


def validate_results(experiment: Experiment) -> None:
    """Reject result snapshots whose counts cannot be analyzed"""
    if experiment.required_sample_size < 0:
        raise InvalidArgumentError(
            f"Required sample size must not be negative, got {experiment.required_sample_size}"
        )

    for result in experiment.results or []:
        if result.sample_size < 0:
            raise InvalidArgumentError(
                f"Variant {result.variant_id} has a negative sample size",
                details={"variant_id": result.variant_id, "sample_size": result.sample_size}
            )
        if not 0 <= result.conversions <= result.sample_size:
            raise InvalidArgumentError(
                f"Variant {result.variant_id} conversions must be between 0 and the sample size",
                details={"variant_id": result.variant_id, "conversions": result.conversions}
            )
        if math.isnan(result.conversion_rate) or math.isnan(result.improvement):
            raise InvalidArgumentError(f"Variant {result.variant_id} has a NaN rate or improvement")


def _transition(
    experiment: Experiment,
    target: ExperimentStatus,
    allowed_from: Tuple[ExperimentStatus, ...],
    now: Optional[datetime],
    **changes: Any
) -> Experiment:
    if experiment.status not in allowed_from:
        raise InvalidTransitionError(
            f"Cannot move experiment {experiment.experiment_id} "
            f"from {experiment.status.value} to {target.value}"
        )
    logger.info(
        "Experiment %s: %s -> %s", experiment.experiment_id, experiment.status.value, target.value
    )
    return replace(experiment, status=target, updated_at=now or _utcnow(), **changes)


def start_experiment(experiment: Experiment, now: Optional[datetime] = None) -> Experiment:
    now = now or _utcnow()
    # Resuming a paused experiment keeps the original start date
    start_date = experiment.start_date or now
    return _transition(
        experiment,
        ExperimentStatus.RUNNING,
        (ExperimentStatus.DRAFT, ExperimentStatus.PAUSED),
        now,
        start_date=start_date
    )


def pause_experiment(experiment: Experiment, now: Optional[datetime] = None) -> Experiment:
    return _transition(experiment, ExperimentStatus.PAUSED, (ExperimentStatus.RUNNING,), now)


def complete_experiment(
    experiment: Experiment,
    winner: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> Experiment:
    now = now or _utcnow()
    if winner is not None and experiment.find_variant(winner) is None:
        raise ExperimentValidationError(f"Winner {winner} is not a variant of this experiment")

    return _transition(
        experiment,
        ExperimentStatus.COMPLETED,
        (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED),
        now,
        end_date=now,
        winner=winner or experiment.winner,
        conclusion_notes=notes or experiment.conclusion_notes
    )


def archive_experiment(experiment: Experiment, now: Optional[datetime] = None) -> Experiment:
    now = now or _utcnow()
    return _transition(
        experiment,
        ExperimentStatus.ARCHIVED,
        (
            ExperimentStatus.DRAFT,
            ExperimentStatus.RUNNING,
            ExperimentStatus.PAUSED,
            ExperimentStatus.COMPLETED,
        ),
        now,
        end_date=experiment.end_date or now
    )


def with_results(experiment: Experiment, results: List[VariantResult]) -> Experiment:
    """Return a copy of the experiment carrying a new results snapshot"""
    return replace(experiment, results=list(results), updated_at=_utcnow())
