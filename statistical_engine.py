import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from engine_errors import InvalidArgumentError
from engine_settings import settings
from statistical_analysis.distributions import inverse_normal_cdf, normal_cdf
from statistical_analysis.sampling import beta_sample, make_rng

logger = logging.getLogger(__name__)


class Winner(str, Enum):
    CONTROL = "control"
    TREATMENT = "treatment"
    NONE = "none"


@dataclass(frozen=True)
class SampleSizeResult:
    per_variant: int
    total: int


@dataclass(frozen=True)
class SignificanceResult:
    control_rate: float
    treatment_rate: float
    improvement: float  # relative lift of treatment over control
    p_value: float
    is_significant: bool
    confidence_interval: Tuple[float, float]  # for treatment_rate - control_rate
    winner: Winner


@dataclass(frozen=True)
class BayesianProbability:
    control_probability: float
    treatment_probability: float


def _require_finite(name: str, value: float) -> None:
    if value is None or math.isnan(value) or math.isinf(value):
        raise InvalidArgumentError(f"{name} must be a finite number, got {value}")


def _require_open_unit(name: str, value: float) -> None:
    _require_finite(name, value)
    if not 0 < value < 1:
        raise InvalidArgumentError(f"{name} must be between 0 and 1 (exclusive), got {value}")


def _require_counts(label: str, conversions: int, sample_size: int) -> None:
    _require_finite(f"{label} sample size", sample_size)
    _require_finite(f"{label} conversions", conversions)
    if sample_size <= 0:
        raise InvalidArgumentError(f"{label} sample size must be positive, got {sample_size}")
    if conversions < 0 or conversions > sample_size:
        raise InvalidArgumentError(
            f"{label} conversions must be between 0 and the sample size, got {conversions}"
        )


class StatisticalEngine:
    """Frequentist and Bayesian statistics for two-arm conversion experiments"""

    def __init__(
        self,
        default_alpha: Optional[float] = None,
        default_power: Optional[float] = None,
        simulations: Optional[int] = None,
        seed: Optional[int] = None
    ):
        self.default_alpha = default_alpha if default_alpha is not None else settings.DEFAULT_SIGNIFICANCE_LEVEL
        self.default_power = default_power if default_power is not None else settings.DEFAULT_POWER
        self.simulations = simulations if simulations is not None else settings.BAYESIAN_SIMULATIONS
        self.rng = make_rng(seed)

    def calculate_sample_size(
        self,
        baseline_rate: float,
        minimum_detectable_effect: float,
        power: Optional[float] = None,
        significance_level: Optional[float] = None
    ) -> SampleSizeResult:
        """Required sample size per variant for a relative lift in conversion rate"""
        power = power if power is not None else self.default_power
        alpha = significance_level if significance_level is not None else self.default_alpha

        _require_open_unit("baseline_rate", baseline_rate)
        _require_finite("minimum_detectable_effect", minimum_detectable_effect)
        _require_open_unit("power", power)
        _require_open_unit("significance_level", alpha)
        if minimum_detectable_effect == 0:
            raise InvalidArgumentError("minimum_detectable_effect must be non-zero")

        treatment_rate = baseline_rate * (1 + minimum_detectable_effect)
        if not 0 < treatment_rate < 1:
            raise InvalidArgumentError(
                f"Expected treatment rate {treatment_rate:.4f} must be between 0 and 1"
            )

        z_alpha = inverse_normal_cdf(1 - alpha / 2)
        z_beta = inverse_normal_cdf(power)

        pooled_rate = (baseline_rate + treatment_rate) / 2
        pooled_std_err = math.sqrt(2 * pooled_rate * (1 - pooled_rate))
        effect_size = abs(treatment_rate - baseline_rate)

        per_variant = int(np.ceil(2 * ((z_alpha + z_beta) * pooled_std_err / effect_size) ** 2))

        return SampleSizeResult(per_variant=per_variant, total=per_variant * 2)

    def estimate_duration(
        self,
        required_sample_size: int,
        daily_traffic: float,
        traffic_allocation: float = 100
    ) -> int:
        """Days needed to collect the required sample at the given daily traffic"""
        _require_finite("required_sample_size", required_sample_size)
        _require_finite("daily_traffic", daily_traffic)
        _require_finite("traffic_allocation", traffic_allocation)
        if required_sample_size < 0:
            raise InvalidArgumentError("required_sample_size must not be negative")
        if daily_traffic <= 0:
            raise InvalidArgumentError("daily_traffic must be positive")
        if not 0 < traffic_allocation <= 100:
            raise InvalidArgumentError("traffic_allocation must be in (0, 100]")

        effective_traffic = daily_traffic * (traffic_allocation / 100)
        return int(np.ceil(required_sample_size / effective_traffic))

    def analyze_results(
        self,
        control_conversions: int,
        control_sample_size: int,
        treatment_conversions: int,
        treatment_sample_size: int,
        significance_level: Optional[float] = None
    ) -> SignificanceResult:
        """Two-proportion pooled z-test of treatment against control"""
        alpha = significance_level if significance_level is not None else self.default_alpha
        _require_counts("control", control_conversions, control_sample_size)
        _require_counts("treatment", treatment_conversions, treatment_sample_size)
        _require_open_unit("significance_level", alpha)

        control_rate = control_conversions / control_sample_size
        treatment_rate = treatment_conversions / treatment_sample_size
        improvement = (treatment_rate - control_rate) / control_rate if control_rate > 0 else 0.0

        pooled_rate = (control_conversions + treatment_conversions) / (
            control_sample_size + treatment_sample_size
        )
        standard_error = math.sqrt(
            pooled_rate * (1 - pooled_rate) * (1 / control_sample_size + 1 / treatment_sample_size)
        )

        diff = treatment_rate - control_rate
        z_score = diff / standard_error if standard_error > 0 else 0.0
        p_value = 2 * (1 - normal_cdf(abs(z_score)))

        critical_z = inverse_normal_cdf(1 - alpha / 2)
        margin_of_error = critical_z * standard_error
        confidence_interval = (diff - margin_of_error, diff + margin_of_error)

        is_significant = p_value < alpha

        winner = Winner.NONE
        if is_significant:
            winner = Winner.TREATMENT if treatment_rate > control_rate else Winner.CONTROL

        logger.debug(
            "z-test control=%.4f treatment=%.4f z=%.3f p=%.4f",
            control_rate, treatment_rate, z_score, p_value
        )

        return SignificanceResult(
            control_rate=control_rate,
            treatment_rate=treatment_rate,
            improvement=improvement,
            p_value=p_value,
            is_significant=is_significant,
            confidence_interval=confidence_interval,
            winner=winner
        )

    def calculate_bayesian_probability(
        self,
        control_conversions: int,
        control_sample_size: int,
        treatment_conversions: int,
        treatment_sample_size: int,
        simulations: Optional[int] = None,
        rng: Optional[np.random.Generator] = None
    ) -> BayesianProbability:
        """Monte Carlo probability that each arm has the higher conversion rate"""
        simulations = simulations if simulations is not None else self.simulations
        rng = rng if rng is not None else self.rng
        _require_counts("control", control_conversions, control_sample_size)
        _require_counts("treatment", treatment_conversions, treatment_sample_size)
        if simulations < 1:
            raise InvalidArgumentError("simulations must be at least 1")

        # Beta posteriors under a uniform Beta(1, 1) prior
        control_alpha = control_conversions + 1
        control_beta = control_sample_size - control_conversions + 1
        treatment_alpha = treatment_conversions + 1
        treatment_beta = treatment_sample_size - treatment_conversions + 1

        control_wins = 0
        treatment_wins = 0
        for _ in range(simulations):
            control_sample = beta_sample(control_alpha, control_beta, rng)
            treatment_sample = beta_sample(treatment_alpha, treatment_beta, rng)

            if control_sample > treatment_sample:
                control_wins += 1
            else:
                treatment_wins += 1

        return BayesianProbability(
            control_probability=control_wins / simulations,
            treatment_probability=treatment_wins / simulations
        )


_default_engine = StatisticalEngine()


def calculate_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    power: Optional[float] = None,
    significance_level: Optional[float] = None
) -> SampleSizeResult:
    return _default_engine.calculate_sample_size(
        baseline_rate, minimum_detectable_effect, power, significance_level
    )


def estimate_duration(
    required_sample_size: int,
    daily_traffic: float,
    traffic_allocation: float = 100
) -> int:
    return _default_engine.estimate_duration(required_sample_size, daily_traffic, traffic_allocation)


def analyze_results(
    control_conversions: int,
    control_sample_size: int,
    treatment_conversions: int,
    treatment_sample_size: int,
    significance_level: Optional[float] = None
) -> SignificanceResult:
    return _default_engine.analyze_results(
        control_conversions, control_sample_size,
        treatment_conversions, treatment_sample_size,
        significance_level
    )


def calculate_bayesian_probability(
    control_conversions: int,
    control_sample_size: int,
    treatment_conversions: int,
    treatment_sample_size: int,
    simulations: Optional[int] = None,
    rng: Optional[np.random.Generator] = None
) -> BayesianProbability:
    """Bayesian win probabilities with a fresh random source per call.

    Without ``rng`` every call draws from ``make_rng()``, so a configured
    ``RANDOM_SEED`` makes each call reproducible on its own. Use a
    ``StatisticalEngine`` to share one stream across calls.
    """
    return _default_engine.calculate_bayesian_probability(
        control_conversions, control_sample_size,
        treatment_conversions, treatment_sample_size,
        simulations, rng if rng is not None else make_rng()
    )
