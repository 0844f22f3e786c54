import logging
from dataclasses import dataclass, field
from enum import Enum
from math import ceil, e, log, sqrt
from typing import List, Optional

import scipy.stats as stats

from engine_errors import InvalidArgumentError

logger = logging.getLogger(__name__)

FUTILITY_CONDITIONAL_POWER = 0.1


class SpendingFunction(str, Enum):
    OBRIEN_FLEMING = "obrien_fleming"
    POCOCK = "pocock"
    HAYBITTLE_PETO = "haybittle_peto"
    ALPHA_SPENDING = "alpha_spending"  # Lan-DeMets


class SequentialStatus(str, Enum):
    CONTINUE = "continue"
    STOP_EFFICACY = "stop_efficacy"
    STOP_FUTILITY = "stop_futility"
    COMPLETE = "complete"


class SequentialDecision(str, Enum):
    REJECT_NULL = "reject_null"
    FAIL_TO_REJECT = "fail_to_reject"


# Approximate max-sample inflation over a fixed-horizon design
INFLATION_FACTORS = {
    SpendingFunction.OBRIEN_FLEMING: 1.015,
    SpendingFunction.POCOCK: 1.18,
    SpendingFunction.HAYBITTLE_PETO: 1.01,
    SpendingFunction.ALPHA_SPENDING: 1.05,
}


@dataclass(frozen=True)
class SequentialDesign:
    max_looks: int = 5
    alpha: float = 0.05
    power: float = 0.8
    two_sided: bool = True
    spending_function: SpendingFunction = SpendingFunction.OBRIEN_FLEMING


@dataclass(frozen=True)
class InterimAnalysis:
    look_number: int  # 1-based
    information_fraction: float
    z_score: float
    p_value: float
    critical_boundary: float
    stop_for_efficacy: bool
    stop_for_futility: bool
    alpha_spent: float  # cumulative
    alpha_remaining: float


@dataclass(frozen=True)
class SequentialTestResult:
    design: SequentialDesign
    status: SequentialStatus
    analyses: List[InterimAnalysis] = field(default_factory=list)
    boundaries: List[float] = field(default_factory=list)
    information_schedule: List[float] = field(default_factory=list)
    decision: Optional[SequentialDecision] = None
    adjusted_p_value: Optional[float] = None


@dataclass(frozen=True)
class EarlyStopDecision:
    should_stop: bool
    reason: Optional[str]  # "efficacy", "futility" or None
    p_value: float


@dataclass(frozen=True)
class SequentialSampleSize:
    per_look: List[int]
    total: int


def obrien_fleming_spending(t: float, alpha: float) -> float:
    """Cumulative alpha spent at information fraction t; very little early on"""
    if t <= 0:
        return 0.0
    if t >= 1:
        return alpha
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    return 2 * (1 - stats.norm.cdf(z_alpha / sqrt(t)))


def pocock_spending(t: float, alpha: float) -> float:
    if t <= 0:
        return 0.0
    if t >= 1:
        return alpha
    return alpha * log(1 + (e - 1) * t)


def haybittle_peto_spending(t: float, alpha: float, is_interim: bool) -> float:
    """Near-zero spending at interim looks, the rest saved for the final one"""
    if t <= 0:
        return 0.0
    if t >= 1:
        return alpha
    if is_interim:
        return 0.001 * t
    return alpha


def lan_demets_spending(t: float, alpha: float, rho: float = 1.0) -> float:
    """Power family alpha * t**rho; rho 1 and 0.5 map to O'Brien-Fleming and Pocock"""
    if t <= 0:
        return 0.0
    if t >= 1:
        return alpha
    if rho == 1:
        return obrien_fleming_spending(t, alpha)
    if rho == 0.5:
        return pocock_spending(t, alpha)
    return alpha * t ** rho


def _two_sided_p_value(z_score: float) -> float:
    return 2 * (1 - stats.norm.cdf(abs(z_score)))


class SequentialTestEngine:
    """Group sequential test with a fixed number of equally spaced looks"""

    def __init__(self, design: Optional[SequentialDesign] = None):
        self.design = design or SequentialDesign()
        if self.design.max_looks < 1:
            raise InvalidArgumentError("max_looks must be at least 1")
        if not 0 < self.design.alpha < 1:
            raise InvalidArgumentError(f"alpha must be between 0 and 1, got {self.design.alpha}")
        if not 0 < self.design.power < 1:
            raise InvalidArgumentError(f"power must be between 0 and 1, got {self.design.power}")

        self.analyses: List[InterimAnalysis] = []
        self.boundaries: List[float] = []
        self.information_schedule: List[float] = []
        self.cumulative_alpha_spent = 0.0
        self._calculate_boundaries()

    def _calculate_boundaries(self) -> None:
        design = self.design
        self.boundaries = []
        self.information_schedule = []

        cumulative_spent = 0.0
        for look in range(1, design.max_looks + 1):
            t = look / design.max_looks
            self.information_schedule.append(t)

            if design.spending_function == SpendingFunction.HAYBITTLE_PETO:
                alpha_to_spend = 0.001 if look < design.max_looks else design.alpha - cumulative_spent
            else:
                alpha_to_spend = self._cumulative_spending(t, look) - cumulative_spent

            if alpha_to_spend <= 0:
                boundary = float('inf')
            else:
                boundary_alpha = alpha_to_spend / 2 if design.two_sided else alpha_to_spend
                boundary = stats.norm.ppf(1 - boundary_alpha)

            self.boundaries.append(max(float(boundary), 1.0))
            cumulative_spent += alpha_to_spend

    def _cumulative_spending(self, t: float, look: int) -> float:
        design = self.design
        if design.spending_function == SpendingFunction.OBRIEN_FLEMING:
            return obrien_fleming_spending(t, design.alpha)
        if design.spending_function == SpendingFunction.POCOCK:
            return pocock_spending(t, design.alpha)
        if design.spending_function == SpendingFunction.HAYBITTLE_PETO:
            return haybittle_peto_spending(t, design.alpha, look < design.max_looks)
        return lan_demets_spending(t, design.alpha)

    def perform_interim_analysis(
        self,
        look_number: int,
        control_sample_size: int,
        treatment_sample_size: int,
        control_mean: float,
        treatment_mean: float,
        pooled_std_dev: float
    ) -> InterimAnalysis:
        """Compare the arms at one planned look and apply the stopping rules.

        Efficacy: |z| reaches the look's boundary. Futility: no efficacy and
        conditional power under a zero effect drops below 10%.
        """
        if not 1 <= look_number <= self.design.max_looks:
            raise InvalidArgumentError(f"Look number must be between 1 and {self.design.max_looks}")
        if control_sample_size <= 0 or treatment_sample_size <= 0:
            raise InvalidArgumentError("Sample sizes must be positive")
        if pooled_std_dev < 0:
            raise InvalidArgumentError("pooled_std_dev must not be negative")

        information_fraction = look_number / self.design.max_looks

        standard_error = pooled_std_dev * sqrt(1 / control_sample_size + 1 / treatment_sample_size)
        if standard_error == 0:
            z_score = 0.0
        else:
            z_score = (treatment_mean - control_mean) / standard_error

        critical_boundary = self.boundaries[look_number - 1]
        p_value = _two_sided_p_value(z_score)

        stop_for_efficacy = abs(z_score) >= critical_boundary
        conditional_power = self.calculate_conditional_power(z_score, information_fraction, 0.0)
        stop_for_futility = not stop_for_efficacy and conditional_power < FUTILITY_CONDITIONAL_POWER

        alpha_spent = self._cumulative_spending(information_fraction, look_number)
        self.cumulative_alpha_spent = alpha_spent

        analysis = InterimAnalysis(
            look_number=look_number,
            information_fraction=information_fraction,
            z_score=z_score,
            p_value=p_value,
            critical_boundary=critical_boundary,
            stop_for_efficacy=stop_for_efficacy,
            stop_for_futility=stop_for_futility,
            alpha_spent=alpha_spent,
            alpha_remaining=self.design.alpha - alpha_spent
        )
        self.analyses.append(analysis)

        if stop_for_efficacy or stop_for_futility:
            logger.info(
                "Look %d/%d: stop for %s (z=%.3f, boundary=%.3f)",
                look_number, self.design.max_looks,
                "efficacy" if stop_for_efficacy else "futility", z_score, critical_boundary
            )
        return analysis

    def calculate_conditional_power(
        self,
        current_z: float,
        information_fraction: float,
        assumed_effect_size: float
    ) -> float:
        """Chance the final z clears the last boundary given the data so far"""
        remaining = 1 - information_fraction
        if remaining <= 0:
            return 1.0 if current_z > stats.norm.ppf(1 - self.design.alpha / 2) else 0.0

        final_z = current_z * sqrt(information_fraction) + assumed_effect_size * sqrt(remaining)
        return float(1 - stats.norm.cdf(self.boundaries[-1] - final_z))

    def get_result(self) -> SequentialTestResult:
        status = SequentialStatus.CONTINUE
        decision = None
        adjusted_p_value = None

        if self.analyses:
            last = self.analyses[-1]
            if last.stop_for_efficacy:
                status, decision = SequentialStatus.STOP_EFFICACY, SequentialDecision.REJECT_NULL
            elif last.stop_for_futility:
                status, decision = SequentialStatus.STOP_FUTILITY, SequentialDecision.FAIL_TO_REJECT
            elif last.look_number >= self.design.max_looks:
                status = SequentialStatus.COMPLETE
                decision = (
                    SequentialDecision.REJECT_NULL
                    if abs(last.z_score) >= last.critical_boundary
                    else SequentialDecision.FAIL_TO_REJECT
                )

            if status != SequentialStatus.CONTINUE:
                adjusted_p_value = self._adjusted_p_value(last.z_score, last.look_number)

        return SequentialTestResult(
            design=self.design,
            status=status,
            analyses=list(self.analyses),
            boundaries=list(self.boundaries),
            information_schedule=list(self.information_schedule),
            decision=decision,
            adjusted_p_value=adjusted_p_value
        )

    def _adjusted_p_value(self, observed_z: float, stopping_look: int) -> float:
        t = stopping_look / self.design.max_looks
        raw_p = _two_sided_p_value(observed_z)
        if self.design.spending_function == SpendingFunction.OBRIEN_FLEMING:
            return obrien_fleming_spending(t, raw_p)
        if self.design.spending_function == SpendingFunction.POCOCK:
            return pocock_spending(t, raw_p)
        return raw_p

    def recommended_sample_size(
        self,
        minimum_detectable_effect: float,
        baseline_rate: float,
        is_conversion: bool = True
    ) -> List[int]:
        """Cumulative sample size to reach at each look.

        For conversions the effect is an absolute rate difference; for
        continuous metrics it is a standardized effect size.
        """
        if minimum_detectable_effect == 0:
            raise InvalidArgumentError("minimum_detectable_effect must be non-zero")

        design = self.design
        z_alpha = stats.norm.ppf(1 - design.alpha / 2) if design.two_sided else stats.norm.ppf(1 - design.alpha)
        z_beta = stats.norm.ppf(design.power)

        if is_conversion:
            p1 = baseline_rate
            p2 = baseline_rate + minimum_detectable_effect
            if not 0 < p1 < 1 or not 0 < p2 < 1:
                raise InvalidArgumentError("Baseline and expected rates must be between 0 and 1")
            pooled = (p1 + p2) / 2
            base_sample_size = 2 * (
                (z_alpha * sqrt(2 * pooled * (1 - pooled)) + z_beta * sqrt(p1 * (1 - p1) + p2 * (1 - p2)))
                / (p2 - p1)
            ) ** 2
        else:
            base_sample_size = 2 * ((z_alpha + z_beta) / minimum_detectable_effect) ** 2

        max_sample_size = ceil(base_sample_size * INFLATION_FACTORS[design.spending_function])
        return [ceil(max_sample_size * t) for t in self.information_schedule]

    def reset(self) -> None:
        self.analyses = []
        self.cumulative_alpha_spent = 0.0
        self._calculate_boundaries()


def should_stop_early(
    control_sample_size: int,
    treatment_sample_size: int,
    control_rate: float,
    treatment_rate: float,
    current_look: int,
    max_looks: int = 5,
    alpha: float = 0.05
) -> EarlyStopDecision:
    """One-off O'Brien-Fleming check of two conversion rates at a given look"""
    for name, rate in (("control_rate", control_rate), ("treatment_rate", treatment_rate)):
        if not 0 <= rate <= 1:
            raise InvalidArgumentError(f"{name} must be between 0 and 1, got {rate}")

    engine = SequentialTestEngine(SequentialDesign(max_looks=max_looks, alpha=alpha))
    total = control_sample_size + treatment_sample_size
    pooled_rate = (
        (control_sample_size * control_rate + treatment_sample_size * treatment_rate) / total
        if total > 0 else 0.0
    )

    analysis = engine.perform_interim_analysis(
        current_look,
        control_sample_size,
        treatment_sample_size,
        control_rate,
        treatment_rate,
        sqrt(pooled_rate * (1 - pooled_rate))
    )

    reason = None
    if analysis.stop_for_efficacy:
        reason = "efficacy"
    elif analysis.stop_for_futility:
        reason = "futility"
    return EarlyStopDecision(should_stop=reason is not None, reason=reason, p_value=analysis.p_value)


def obrien_fleming_boundaries(max_looks: int = 5, alpha: float = 0.05) -> List[float]:
    engine = SequentialTestEngine(SequentialDesign(max_looks=max_looks, alpha=alpha))
    return engine.get_result().boundaries


def calculate_sequential_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    max_looks: int = 5,
    power: float = 0.8,
    alpha: float = 0.05
) -> SequentialSampleSize:
    engine = SequentialTestEngine(SequentialDesign(max_looks=max_looks, alpha=alpha, power=power))
    per_look = engine.recommended_sample_size(minimum_detectable_effect, baseline_rate)
    return SequentialSampleSize(per_look=per_look, total=per_look[-1])
