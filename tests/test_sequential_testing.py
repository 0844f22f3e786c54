import math

import pytest
import scipy.stats as stats

from ab_testing.sequential_testing import (
    SequentialDecision,
    SequentialDesign,
    SequentialStatus,
    SequentialTestEngine,
    SpendingFunction,
    calculate_sequential_sample_size,
    haybittle_peto_spending,
    lan_demets_spending,
    obrien_fleming_boundaries,
    obrien_fleming_spending,
    pocock_spending,
    should_stop_early,
)
from engine_errors import InvalidArgumentError


def _engine(**design):
    return SequentialTestEngine(SequentialDesign(**design))


class TestSpendingFunctions:
    @pytest.mark.parametrize(
        "spend",
        [obrien_fleming_spending, pocock_spending, lambda t, a: lan_demets_spending(t, a, 2.0)],
    )
    def test_endpoints(self, spend):
        assert spend(0.0, 0.05) == 0.0
        assert spend(1.0, 0.05) == 0.05

    @pytest.mark.parametrize("spend", [obrien_fleming_spending, pocock_spending])
    def test_increasing_and_bounded(self, spend):
        spent = [spend(t / 10, 0.05) for t in range(11)]
        assert spent == sorted(spent)
        assert max(spent) <= 0.05

    def test_obrien_fleming_formula(self):
        expected = 2 * (1 - stats.norm.cdf(stats.norm.ppf(0.975) / math.sqrt(0.5)))
        assert obrien_fleming_spending(0.5, 0.05) == pytest.approx(expected)

    def test_obrien_fleming_spends_less_early_than_pocock(self):
        assert obrien_fleming_spending(0.2, 0.05) < pocock_spending(0.2, 0.05)

    def test_pocock_formula(self):
        assert pocock_spending(0.5, 0.05) == pytest.approx(0.05 * math.log(1 + (math.e - 1) * 0.5))

    def test_haybittle_peto(self):
        assert haybittle_peto_spending(0.4, 0.05, is_interim=True) == pytest.approx(0.0004)
        assert haybittle_peto_spending(0.4, 0.05, is_interim=False) == 0.05

    def test_lan_demets_family(self):
        assert lan_demets_spending(0.3, 0.05) == obrien_fleming_spending(0.3, 0.05)
        assert lan_demets_spending(0.3, 0.05, 0.5) == pocock_spending(0.3, 0.05)
        assert lan_demets_spending(0.3, 0.05, 2.0) == pytest.approx(0.05 * 0.09)


class TestBoundaries:
    def test_obrien_fleming_shape(self):
        boundaries = obrien_fleming_boundaries()

        assert len(boundaries) == 5
        assert boundaries[0] == pytest.approx(stats.norm.ppf(0.975) / math.sqrt(0.2), rel=1e-3)
        assert boundaries == sorted(boundaries, reverse=True)
        assert boundaries[-1] > stats.norm.ppf(0.975)

    def test_pocock_starts_lower(self):
        pocock = _engine(spending_function=SpendingFunction.POCOCK).boundaries
        assert pocock[0] < obrien_fleming_boundaries()[0]

    def test_haybittle_peto(self):
        boundaries = _engine(spending_function=SpendingFunction.HAYBITTLE_PETO).boundaries
        assert boundaries[:4] == pytest.approx([stats.norm.ppf(1 - 0.0005)] * 4)
        assert boundaries[-1] == pytest.approx(stats.norm.ppf(1 - 0.046 / 2))

    def test_one_sided_boundaries_are_lower(self):
        one_sided = _engine(two_sided=False).boundaries
        assert all(a < b for a, b in zip(one_sided, obrien_fleming_boundaries()))

    def test_information_schedule(self):
        assert _engine(max_looks=4).information_schedule == [0.25, 0.5, 0.75, 1.0]

    @pytest.mark.parametrize("design", [{"max_looks": 0}, {"alpha": 0.0}, {"power": 1.0}])
    def test_invalid_design(self, design):
        with pytest.raises(InvalidArgumentError):
            _engine(**design)


class TestInterimAnalysis:
    # With unit standard deviation and 200 per arm the standard error is 0.1

    def test_early_efficacy(self):
        engine = _engine()
        analysis = engine.perform_interim_analysis(1, 200, 200, 0.0, 0.5, 1.0)

        assert analysis.z_score == pytest.approx(5.0)
        assert analysis.stop_for_efficacy
        result = engine.get_result()
        assert result.status == SequentialStatus.STOP_EFFICACY
        assert result.decision == SequentialDecision.REJECT_NULL
        assert result.adjusted_p_value is not None

    def test_strong_but_early_signal_continues(self):
        engine = _engine()
        analysis = engine.perform_interim_analysis(1, 200, 200, 0.0, 0.34, 1.0)

        assert not analysis.stop_for_efficacy
        assert not analysis.stop_for_futility
        result = engine.get_result()
        assert result.status == SequentialStatus.CONTINUE
        assert result.decision is None
        assert result.adjusted_p_value is None

    def test_no_effect_stops_for_futility(self):
        engine = _engine()
        analysis = engine.perform_interim_analysis(3, 200, 200, 0.1, 0.1, 1.0)

        assert analysis.stop_for_futility
        assert engine.get_result().status == SequentialStatus.STOP_FUTILITY
        assert engine.get_result().decision == SequentialDecision.FAIL_TO_REJECT

    def test_final_look_between_boundaries_completes(self):
        engine = _engine()
        # z = 2.1: above 1.96 but below the final O'Brien-Fleming boundary
        engine.perform_interim_analysis(5, 200, 200, 0.0, 0.21, 1.0)

        result = engine.get_result()
        assert result.status == SequentialStatus.COMPLETE
        assert result.decision == SequentialDecision.FAIL_TO_REJECT
        assert result.adjusted_p_value == pytest.approx(2 * stats.norm.sf(2.1), rel=1e-6)

    def test_negative_effect_is_two_sided(self):
        analysis = _engine().perform_interim_analysis(1, 200, 200, 0.5, 0.0, 1.0)
        assert analysis.stop_for_efficacy

    def test_alpha_accounting(self):
        engine = _engine()
        engine.perform_interim_analysis(1, 200, 200, 0.0, 0.34, 1.0)
        analysis = engine.perform_interim_analysis(2, 400, 400, 0.0, 0.2, 1.0)

        assert analysis.alpha_spent == pytest.approx(obrien_fleming_spending(0.4, 0.05))
        assert analysis.alpha_remaining == pytest.approx(0.05 - analysis.alpha_spent)
        assert engine.cumulative_alpha_spent == analysis.alpha_spent
        assert len(engine.get_result().analyses) == 2

    def test_zero_standard_deviation(self):
        analysis = _engine().perform_interim_analysis(1, 200, 200, 0.1, 0.2, 0.0)
        assert analysis.z_score == 0.0

    @pytest.mark.parametrize("look", [0, 6])
    def test_look_out_of_range(self, look):
        with pytest.raises(InvalidArgumentError, match="Look number"):
            _engine().perform_interim_analysis(look, 200, 200, 0.0, 0.1, 1.0)

    def test_sample_sizes_must_be_positive(self):
        with pytest.raises(InvalidArgumentError):
            _engine().perform_interim_analysis(1, 0, 200, 0.0, 0.1, 1.0)

    def test_reset(self):
        engine = _engine()
        engine.perform_interim_analysis(1, 200, 200, 0.0, 0.5, 1.0)
        engine.reset()

        assert engine.get_result().analyses == []
        assert engine.get_result().status == SequentialStatus.CONTINUE
        assert engine.cumulative_alpha_spent == 0.0


class TestConditionalPower:
    def test_grows_with_current_z(self):
        engine = _engine()
        assert engine.calculate_conditional_power(3.0, 0.4, 0.0) > engine.calculate_conditional_power(1.0, 0.4, 0.0)

    def test_final_look_is_all_or_nothing(self):
        engine = _engine()
        assert engine.calculate_conditional_power(2.0, 1.0, 0.0) == 1.0
        assert engine.calculate_conditional_power(1.9, 1.0, 0.0) == 0.0


class TestSampleSize:
    def test_matches_inflated_fixed_design(self):
        p1, p2 = 0.10, 0.12
        pooled = (p1 + p2) / 2
        fixed = 2 * (
            (stats.norm.ppf(0.975) * math.sqrt(2 * pooled * (1 - pooled))
             + stats.norm.ppf(0.8) * math.sqrt(p1 * (1 - p1) + p2 * (1 - p2))) / (p2 - p1)
        ) ** 2

        plan = calculate_sequential_sample_size(0.10, 0.02)

        assert plan.total == math.ceil(fixed * 1.015)
        assert plan.per_look[-1] == plan.total
        assert len(plan.per_look) == 5
        assert plan.per_look == sorted(plan.per_look)

    def test_pocock_needs_more(self):
        pocock = _engine(spending_function=SpendingFunction.POCOCK).recommended_sample_size(0.02, 0.10)
        assert pocock[-1] > calculate_sequential_sample_size(0.10, 0.02).total

    def test_continuous_metric(self):
        per_look = _engine(max_looks=1).recommended_sample_size(0.5, 0.0, is_conversion=False)
        expected = 2 * ((stats.norm.ppf(0.975) + stats.norm.ppf(0.8)) / 0.5) ** 2
        assert per_look == [math.ceil(math.ceil(expected * 1.015) * 1.0)]

    def test_rates_out_of_range(self):
        with pytest.raises(InvalidArgumentError):
            calculate_sequential_sample_size(0.95, 0.1)


class TestShouldStopEarly:
    def test_clear_winner_at_final_look(self):
        decision = should_stop_early(1000, 1000, 0.10, 0.15, current_look=5)
        assert decision.should_stop
        assert decision.reason == "efficacy"
        assert decision.p_value < 0.001

    def test_promising_early_look_continues(self):
        decision = should_stop_early(1000, 1000, 0.10, 0.15, current_look=1)
        assert not decision.should_stop
        assert decision.reason is None

    def test_flat_result_is_futile(self):
        decision = should_stop_early(1000, 1000, 0.10, 0.101, current_look=1)
        assert decision.should_stop
        assert decision.reason == "futility"

    def test_rates_validated(self):
        with pytest.raises(InvalidArgumentError):
            should_stop_early(1000, 1000, 1.2, 0.1, current_look=1)
