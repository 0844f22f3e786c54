from datetime import datetime, timezone

import numpy as np
import pytest

from experiment_design.experiment_models import (
    Experiment,
    ExperimentStatus,
    Variant,
    VariantResult,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def rng():
    return np.random.default_rng(20240601)


@pytest.fixture
def make_result():
    def _make(
        variant_id,
        sample_size,
        conversion_rate=0.1,
        improvement=0.0,
        significant=False,
        p_value=None,
        ci=None,
        avg_revenue=0.0,
    ):
        conversions = int(round(sample_size * conversion_rate))
        if ci is None:
            ci = (conversion_rate * 0.9, conversion_rate * 1.1)
        if p_value is None:
            p_value = 0.01 if significant else 0.5
        return VariantResult(
            variant_id=variant_id,
            sample_size=sample_size,
            conversions=conversions,
            conversion_rate=conversion_rate,
            revenue=avg_revenue * conversions,
            avg_revenue=avg_revenue,
            confidence_interval=ci,
            improvement=improvement,
            p_value=p_value,
            is_significant=significant,
        )

    return _make


@pytest.fixture
def make_experiment():
    def _make(
        results=None,
        required_sample_size=1000,
        variants=None,
        status=ExperimentStatus.RUNNING,
        experiment_id="exp_1",
        **overrides,
    ):
        if variants is None:
            variants = [
                Variant("control", "Control", "Original", 50, is_control=True),
                Variant("treatment", "Treatment", "New", 50),
            ]
        return Experiment(
            experiment_id=experiment_id,
            name=overrides.pop("name", "Checkout button colour"),
            variants=variants,
            status=status,
            required_sample_size=required_sample_size,
            results=results,
            **overrides,
        )

    return _make


@pytest.fixture
def ab_experiment(make_experiment, make_result):
    """Running 50/50 test with a control and one treatment at the given sizes"""
    def _make(
        control_n=500,
        treatment_n=500,
        treatment_improvement=0.0,
        treatment_significant=False,
        control_significant=False,
        required_sample_size=1000,
        **overrides,
    ):
        results = [
            make_result("control", control_n, significant=control_significant),
            make_result(
                "treatment",
                treatment_n,
                conversion_rate=0.1 * (1 + treatment_improvement),
                improvement=treatment_improvement,
                significant=treatment_significant,
            ),
        ]
        return make_experiment(results=results, required_sample_size=required_sample_size, **overrides)

    return _make
