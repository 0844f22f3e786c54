import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from ab_testing.experiment_intelligence import ExperimentIntelligence, analyze_experiment
from ab_testing.sequential_testing import EarlyStopDecision, should_stop_early
from engine_errors import ExperimentNotFoundError, InvalidArgumentError
from experiment_design.experiment_models import (
    Experiment,
    ExperimentStatus,
    VariantResult,
    archive_experiment,
    complete_experiment,
    create_experiment,
    pause_experiment,
    start_experiment,
    validate_experiment,
    with_results,
)
from experiment_design.result_simulator import generate_mock_results, sample_experiments
from statistical_analysis.aggregate_insights import AggregateInsights, generate_aggregate_insights
from statistical_engine import StatisticalEngine

logger = logging.getLogger(__name__)


class ExperimentFramework:
    """In-memory registry of experiments that drives the analysis engine.

    Stored experiments are replaced, never mutated: every lifecycle call
    stores and returns a new snapshot.
    """

    def __init__(self, engine: Optional[StatisticalEngine] = None):
        self.statistical_engine = engine or StatisticalEngine()
        self.experiments: Dict[str, Experiment] = {}

    def create_experiment(self, name: str, description: str, **options: Any) -> Experiment:
        """Create, validate and register a draft experiment"""
        experiment = create_experiment(name, description, **options)
        self.experiments[experiment.experiment_id] = experiment
        logger.info("Created experiment %s (%s)", experiment.experiment_id, name)
        return experiment

    def register_experiment(self, experiment: Experiment) -> str:
        validate_experiment(experiment)
        self.experiments[experiment.experiment_id] = experiment
        return experiment.experiment_id

    def get_experiment(self, experiment_id: str) -> Experiment:
        if experiment_id not in self.experiments:
            raise ExperimentNotFoundError(f"Experiment {experiment_id} not found")
        return self.experiments[experiment_id]

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        experiments = list(self.experiments.values())
        if status is None:
            return experiments
        return [e for e in experiments if e.status == status]

    def delete_experiment(self, experiment_id: str) -> bool:
        if experiment_id not in self.experiments:
            return False
        del self.experiments[experiment_id]
        return True

    def _store(self, experiment: Experiment) -> Experiment:
        self.experiments[experiment.experiment_id] = experiment
        return experiment

    def start_experiment(self, experiment_id: str, now: Optional[datetime] = None) -> Experiment:
        return self._store(start_experiment(self.get_experiment(experiment_id), now))

    def pause_experiment(self, experiment_id: str, now: Optional[datetime] = None) -> Experiment:
        return self._store(pause_experiment(self.get_experiment(experiment_id), now))

    def complete_experiment(
        self,
        experiment_id: str,
        winner: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Experiment:
        return self._store(complete_experiment(self.get_experiment(experiment_id), winner, notes, now))

    def archive_experiment(self, experiment_id: str, now: Optional[datetime] = None) -> Experiment:
        return self._store(archive_experiment(self.get_experiment(experiment_id), now))

    def record_results(self, experiment_id: str, results: List[VariantResult]) -> Experiment:
        """Replace the results snapshot of an experiment"""
        return self._store(with_results(self.get_experiment(experiment_id), results))

    def simulate_results(
        self,
        experiment_id: str,
        rng: Optional[np.random.Generator] = None
    ) -> Experiment:
        experiment = self.get_experiment(experiment_id)
        results = generate_mock_results(experiment, rng=rng, engine=self.statistical_engine)
        return self._store(with_results(experiment, results))

    def plan_experiment(
        self,
        experiment_id: str,
        daily_traffic: float
    ) -> Dict[str, int]:
        """Recompute the required sample size and the expected duration in days"""
        experiment = self.get_experiment(experiment_id)
        sample_size = self.statistical_engine.calculate_sample_size(
            experiment.baseline_conversion_rate,
            experiment.minimum_detectable_effect,
            experiment.statistical_power,
            experiment.significance_level
        )
        duration = self.statistical_engine.estimate_duration(
            sample_size.total, daily_traffic, experiment.traffic_allocation
        )
        self._store(replace(
            experiment,
            required_sample_size=sample_size.total,
            estimated_duration=duration
        ))
        return {
            'per_variant': sample_size.per_variant,
            'total': sample_size.total,
            'duration_days': duration
        }

    def analyze_experiment(
        self,
        experiment_id: str,
        now: Optional[datetime] = None
    ) -> ExperimentIntelligence:
        return analyze_experiment(self.get_experiment(experiment_id), now)

    def check_early_stopping(
        self,
        experiment_id: str,
        current_look: int,
        max_looks: int = 5
    ) -> Dict[str, EarlyStopDecision]:
        """O'Brien-Fleming stopping check of every treatment against the control"""
        experiment = self.get_experiment(experiment_id)
        control = experiment.control_result
        if control is None or control.sample_size == 0:
            raise InvalidArgumentError(f"Experiment {experiment_id} has no control results")

        decisions = {}
        for treatment in experiment.treatment_results:
            if treatment.sample_size == 0:
                continue
            decisions[treatment.variant_id] = should_stop_early(
                control.sample_size,
                treatment.sample_size,
                control.conversion_rate,
                treatment.conversion_rate,
                current_look,
                max_looks,
                experiment.significance_level
            )
        return decisions

    def get_portfolio_insights(self, now: Optional[datetime] = None) -> AggregateInsights:
        return generate_aggregate_insights(self.list_experiments(), now)

    def load_sample_experiments(
        self,
        now: Optional[datetime] = None,
        rng: Optional[np.random.Generator] = None
    ) -> int:
        """Seed the demo portfolio into an empty registry; returns how many were added"""
        if self.experiments:
            return 0
        for experiment in sample_experiments(now, rng):
            self.experiments[experiment.experiment_id] = experiment
        return len(self.experiments)
