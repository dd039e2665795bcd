"""
Shared fixtures: a five-channel marketing mix problem and small solver budgets.
"""

import pytest

from qoe.config import ClassicalConfig, MonitoringConfig, Settings
from qoe.problems.evaluation import ProblemEvaluator
from qoe.problems.problem import (
    Constraint,
    ConstraintKind,
    Objective,
    OptimizationProblem,
    ProblemType,
    Variable,
    VariableKind,
)


CHANNELS = ("email", "social", "search", "display", "events")

REACH = {"email": 0.4, "social": 0.9, "search": 0.7, "display": 0.8, "events": 0.3}
ENGAGEMENT = {"email": 0.6, "social": 0.5, "search": 0.4, "display": 0.2, "events": 0.9}
COST = {"email": 0.1, "social": 0.4, "search": 0.6, "display": 0.5, "events": 0.8}


class ChannelMixEvaluator(ProblemEvaluator):
    """Reach, engagement and cost efficiency of a channel weight vector."""

    def __init__(self):
        self.calls = 0

    def objective_values(self, assignment):
        self.calls += 1
        weights = {c: assignment[f"weight_{c}"] for c in CHANNELS}
        return {
            "reach": sum(w * REACH[c] for c, w in weights.items()),
            "engagement": sum(w * ENGAGEMENT[c] for c, w in weights.items()),
            "cost_efficiency": 1.0 - sum(w * COST[c] for c, w in weights.items()),
        }

    def constraint_values(self, assignment):
        return {"paid_share": assignment["weight_search"] + assignment["weight_display"]}


def channel_objectives():
    return [
        Objective(name="reach", weight=0.5),
        Objective(name="engagement", weight=0.3),
        Objective(name="cost_efficiency", weight=0.2),
    ]


def channel_variables():
    return [
        Variable(name=f"weight_{c}", kind=VariableKind.CONTINUOUS, lower=0.0, upper=1.0, weight_group="mix")
        for c in CHANNELS
    ]


@pytest.fixture
def channel_evaluator():
    return ChannelMixEvaluator()


@pytest.fixture
def make_channel_problem(channel_evaluator):
    """Factory for channel-mix problems with a given id."""
    def _make(problem_id="channel-mix", with_evaluator=True, problem_type=ProblemType.CHANNEL_OPTIMIZATION):
        return OptimizationProblem(
            id=problem_id,
            type=problem_type,
            name="Q3 channel mix",
            objectives=channel_objectives(),
            variables=channel_variables(),
            constraints=[
                Constraint(name="paid_share", kind=ConstraintKind.INEQUALITY, bound=0.6, penalty=5.0, tolerance=1e-3),
            ],
            evaluator=channel_evaluator if with_evaluator else None,
        )
    return _make


@pytest.fixture
def channel_problem(make_channel_problem):
    return make_channel_problem()


@pytest.fixture
def fast_settings():
    """Small budgets so every engine test solves in well under a second."""
    return Settings(
        classical=ClassicalConfig(
            population_size=10,
            particle_count=10,
            max_iterations=15,
            neighborhood_size=5,
            timeout_seconds=10.0,
        ),
        monitoring=MonitoringConfig(enabled=False),
    )
