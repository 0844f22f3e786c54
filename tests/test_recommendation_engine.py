import pytest

from ab_testing.recommendation_engine import (
    InsightType,
    RecommendedAction,
    generate_insights,
    generate_recommendation,
)
from ab_testing.risk_detector import ExperimentRisk, RiskLevel, RiskType
from engine_errors import InvalidArgumentError


def _risk(level, risk_type=RiskType.PEEKING):
    return ExperimentRisk(type=risk_type, level=level, message=f"{level.value} problem")


class TestGenerateRecommendation:
    def test_no_results(self, make_experiment):
        recommendation = generate_recommendation(make_experiment(), [])
        assert recommendation.action == RecommendedAction.CONTINUE
        assert recommendation.confidence == 0.9
        assert recommendation.reason == "Insufficient data"

    def test_single_result_is_insufficient(self, make_experiment, make_result):
        experiment = make_experiment(results=[make_result("control", 500)])
        assert generate_recommendation(experiment, []).reason == "Insufficient data"

    def test_critical_risk_overrides_winner(self, ab_experiment):
        experiment = ab_experiment(500, 500, treatment_improvement=0.2, treatment_significant=True)
        critical = _risk(RiskLevel.CRITICAL, RiskType.SAMPLE_RATIO_MISMATCH)

        recommendation = generate_recommendation(experiment, [critical])

        assert recommendation.action == RecommendedAction.INVESTIGATE
        assert recommendation.confidence == 0.9
        assert recommendation.details == [critical.message]

    def test_winner_at_halfway(self, ab_experiment):
        experiment = ab_experiment(250, 250, treatment_improvement=0.1, treatment_significant=True)

        recommendation = generate_recommendation(experiment, [])

        assert recommendation.action == RecommendedAction.STOP_WINNER
        assert recommendation.confidence == pytest.approx(0.95)
        assert recommendation.details[0] == "Treatment shows 10.0% improvement"
        assert recommendation.details[1] == "P-value: 0.0100"

    def test_each_risk_lowers_winner_confidence(self, ab_experiment):
        experiment = ab_experiment(250, 250, treatment_improvement=0.1, treatment_significant=True)
        recommendation = generate_recommendation(experiment, [_risk(RiskLevel.MEDIUM)])
        assert recommendation.confidence == pytest.approx(0.85)

    def test_confidence_never_negative(self, ab_experiment):
        experiment = ab_experiment(250, 250, treatment_improvement=0.1, treatment_significant=True)
        recommendation = generate_recommendation(experiment, [_risk(RiskLevel.LOW)] * 12)
        assert recommendation.action == RecommendedAction.STOP_WINNER
        assert recommendation.confidence == 0.0

    def test_winner_before_halfway_keeps_running(self, ab_experiment):
        experiment = ab_experiment(240, 250, treatment_improvement=0.1, treatment_significant=True)
        assert generate_recommendation(experiment, []).action == RecommendedAction.CONTINUE

    def test_high_risk_blocks_winner(self, ab_experiment):
        experiment = ab_experiment(250, 250, treatment_improvement=0.1, treatment_significant=True)

        recommendation = generate_recommendation(experiment, [_risk(RiskLevel.HIGH)])

        assert recommendation.action == RecommendedAction.CONTINUE
        assert recommendation.confidence == pytest.approx(0.8)

    def test_small_significant_lift_is_not_a_winner(self, ab_experiment):
        experiment = ab_experiment(500, 500, treatment_improvement=0.04, treatment_significant=True)
        assert generate_recommendation(experiment, []).action == RecommendedAction.EXTEND

    def test_loser_stopped_after_thirty_percent(self, ab_experiment):
        experiment = ab_experiment(150, 150, treatment_improvement=-0.15, treatment_significant=True)

        recommendation = generate_recommendation(experiment, [])

        assert recommendation.action == RecommendedAction.STOP_NO_EFFECT
        assert recommendation.confidence == 0.85
        assert recommendation.details[0] == "Treatment shows 15.0% decrease"

    def test_loser_before_thirty_percent_keeps_running(self, ab_experiment):
        experiment = ab_experiment(145, 145, treatment_improvement=-0.15, treatment_significant=True)
        assert generate_recommendation(experiment, []).action == RecommendedAction.CONTINUE

    def test_full_sample_with_hint_of_effect(self, ab_experiment):
        recommendation = generate_recommendation(ab_experiment(500, 500, treatment_improvement=0.03), [])
        assert recommendation.action == RecommendedAction.EXTEND
        assert recommendation.confidence == 0.7

    def test_full_sample_without_effect(self, ab_experiment):
        recommendation = generate_recommendation(ab_experiment(500, 500, treatment_improvement=0.01), [])
        assert recommendation.action == RecommendedAction.STOP_NO_EFFECT
        assert recommendation.confidence == 0.8

    def test_running_normally_estimates_remaining_days(self, ab_experiment):
        recommendation = generate_recommendation(ab_experiment(400, 400), [])

        assert recommendation.action == RecommendedAction.CONTINUE
        assert recommendation.confidence == pytest.approx(0.9)
        assert recommendation.details == ["80% of required samples collected", "Estimated 1 days remaining"]


class TestGenerateInsights:
    def test_needs_two_results(self, make_experiment, make_result):
        assert generate_insights(make_experiment()) == []
        assert generate_insights(make_experiment(results=[make_result("control", 100)])) == []

    def test_clear_winner(self, ab_experiment):
        insights = generate_insights(ab_experiment(100, 100, treatment_improvement=0.12, treatment_significant=True))
        winner = insights[0]
        assert winner.type == InsightType.POSITIVE
        assert winner.title == "Clear Winner"
        assert "Treatment" in winner.message
        assert winner.impact == pytest.approx(0.12)

    def test_significant_decline(self, ab_experiment):
        insights = generate_insights(ab_experiment(100, 100, treatment_improvement=-0.2, treatment_significant=True))
        assert [i.title for i in insights] == ["Significant Decline"]
        assert insights[0].type == InsightType.NEGATIVE

    @pytest.mark.parametrize(
        "per_variant, title",
        [(500, "Target Sample Reached"), (300, "Halfway Complete")],
    )
    def test_progress_milestones(self, ab_experiment, per_variant, title):
        insights = generate_insights(ab_experiment(per_variant, per_variant))
        assert [i.title for i in insights] == [title]
        assert insights[0].type == InsightType.NEUTRAL

    def test_early_progress_has_no_insight(self, ab_experiment):
        assert generate_insights(ab_experiment(100, 100)) == []

    def test_revenue_opportunity(self, make_experiment, make_result):
        experiment = make_experiment(results=[
            make_result("control", 100, avg_revenue=10.0),
            make_result("treatment", 100, avg_revenue=12.5),
        ])
        revenue = [i for i in generate_insights(experiment) if i.metric == "revenue"]
        assert len(revenue) == 1
        assert revenue[0].impact == pytest.approx(250.0)
        assert "$250" in revenue[0].message

    def test_small_revenue_difference_ignored(self, make_experiment, make_result):
        experiment = make_experiment(results=[
            make_result("control", 100, avg_revenue=10.0),
            make_result("treatment", 100, avg_revenue=10.5),
        ])
        assert all(i.metric != "revenue" for i in generate_insights(experiment))

    def test_invalid_counts_rejected(self, ab_experiment):
        with pytest.raises(InvalidArgumentError):
            generate_recommendation(ab_experiment(control_n=-5), [])
        with pytest.raises(InvalidArgumentError):
            generate_insights(ab_experiment(required_sample_size=-1))
