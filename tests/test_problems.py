"""
Unit tests for the problem model and fitness evaluation.
"""

import math
from dataclasses import FrozenInstanceError

import pytest

from qoe.problems.evaluation import CallableEvaluator, EvaluationError, FitnessModel
from qoe.problems.problem import (
    Constraint,
    ConstraintKind,
    Direction,
    Objective,
    OptimizationProblem,
    ProblemType,
    ProblemValidationError,
    QuantumProperties,
    Variable,
    VariableKind,
)


def _problem(**overrides):
    fields = dict(
        id="p1",
        type=ProblemType.RESOURCE_ALLOCATION,
        objectives=[Objective(name="profit", weight=1.0)],
        variables=[Variable(name="x", kind=VariableKind.CONTINUOUS, lower=0.0, upper=10.0)],
    )
    fields.update(overrides)
    return OptimizationProblem(**fields)


class TestVariable:
    """Test variable domain validation."""

    def test_binary_bounds_are_fixed(self):
        """Binary variables always span 0..1."""
        v = Variable(name="flag", kind=VariableKind.BINARY)
        assert (v.lower, v.upper) == (0.0, 1.0)
        assert v.decode(1.0) == 1

    def test_categorical_encoding(self):
        v = Variable(name="day", kind="categorical", allowed_values=["mon", "wed", "fri"])
        assert v.kind == VariableKind.CATEGORICAL
        assert v.encoded_bounds == (0.0, 2.0)
        assert v.decode(1.0) == "wed"

    def test_invalid_domains(self):
        """Test variable construction failures."""
        with pytest.raises(ProblemValidationError, match="requires lower and upper"):
            Variable(name="x", kind=VariableKind.CONTINUOUS)

        with pytest.raises(ProblemValidationError, match="exceeds upper"):
            Variable(name="x", kind=VariableKind.CONTINUOUS, lower=5.0, upper=1.0)

        with pytest.raises(ProblemValidationError, match="must be integers"):
            Variable(name="n", kind=VariableKind.DISCRETE, lower=0.5, upper=4.0)

        with pytest.raises(ProblemValidationError, match="at least one allowed value"):
            Variable(name="c", kind=VariableKind.CATEGORICAL)

        with pytest.raises(ProblemValidationError, match="must be continuous"):
            Variable(name="n", kind=VariableKind.DISCRETE, lower=0, upper=1, weight_group="g")


class TestConstraint:
    """Test constraint violation amounts."""

    def test_inequality_violation(self):
        c = Constraint(name="budget", kind=ConstraintKind.INEQUALITY, bound=100.0, penalty=1.0)
        assert c.violation(90.0) == 0.0
        assert c.violation(130.0) == pytest.approx(30.0)
        assert c.is_satisfied(100.0)

    def test_equality_violation_is_deviation_from_bound(self):
        c = Constraint(name="total", kind=ConstraintKind.EQUALITY, bound=1.0, penalty=1.0, tolerance=0.01)
        assert c.violation(1.005) == pytest.approx(0.005)
        assert c.violation(0.5) == pytest.approx(0.5)
        assert c.is_satisfied(1.005)

    def test_equality_tolerance_applies_once(self):
        c = Constraint(name="total", kind=ConstraintKind.EQUALITY, bound=1.0, penalty=1.0, tolerance=0.01)
        assert c.violation(1.019) == pytest.approx(0.019)
        assert not c.is_satisfied(1.019)
        assert not c.is_satisfied(0.981)

    def test_penalty_must_be_positive(self):
        with pytest.raises(ProblemValidationError, match="strictly positive"):
            Constraint(name="c", kind=ConstraintKind.INEQUALITY, bound=1.0, penalty=0.0)


class TestOptimizationProblem:
    """Test problem-level invariants."""

    def test_valid_problem(self, channel_problem):
        """Test successful construction and derived views."""
        assert channel_problem.problem_size == 5
        assert channel_problem.weight_groups == {"mix": [0, 1, 2, 3, 4]}
        assert channel_problem.structural_signature() == {
            "type": "channel_optimization",
            "variable_count": 5,
            "objective_count": 3,
            "constraint_count": 1,
        }
        assert isinstance(channel_problem.objectives, tuple)

    def test_type_given_as_string(self):
        problem = _problem(type="timing_optimization")
        assert problem.type == ProblemType.TIMING_OPTIMIZATION

    def test_unknown_type(self):
        with pytest.raises(ProblemValidationError, match="Unknown problem type"):
            _problem(type="portfolio")

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ProblemValidationError, match="sum to 1.0"):
            _problem(objectives=[Objective(name="a", weight=0.5), Objective(name="b", weight=0.3)])

    def test_weight_sum_tolerance(self):
        """Weights within 1e-2 of 1.0 are accepted."""
        problem = _problem(objectives=[Objective(name="a", weight=0.505), Objective(name="b", weight=0.5)])
        assert len(problem.objectives) == 2

    def test_empty_objectives_or_variables(self):
        with pytest.raises(ProblemValidationError, match="at least one objective"):
            _problem(objectives=[])
        with pytest.raises(ProblemValidationError, match="at least one variable"):
            _problem(variables=[])

    def test_duplicate_names(self):
        with pytest.raises(ProblemValidationError, match="Duplicate variable name 'x'"):
            _problem(variables=[
                Variable(name="x", kind=VariableKind.BINARY),
                Variable(name="x", kind=VariableKind.BINARY),
            ])

    def test_infeasible_weight_group(self):
        """A group whose upper bounds sum below 1 can never be normalized."""
        variables = [
            Variable(name=f"w{i}", kind=VariableKind.CONTINUOUS, lower=0.0, upper=0.2, weight_group="g")
            for i in range(3)
        ]
        with pytest.raises(ProblemValidationError, match="cannot sum to 1.0"):
            _problem(variables=variables)

    def test_entanglement_pairs_must_reference_variables(self):
        with pytest.raises(ProblemValidationError, match="unknown variable"):
            _problem(quantum_properties=QuantumProperties(entanglement_pairs=(("x", "y"),)))

    def test_problem_is_immutable(self, channel_problem):
        with pytest.raises(FrozenInstanceError):
            channel_problem.id = "other"


class TestFitnessModel:
    """Test scalarization of evaluator output."""

    def test_weighted_sum(self):
        problem = _problem(objectives=[
            Objective(name="profit", weight=0.6, target=2.0),
            Objective(name="risk", weight=0.4, direction=Direction.MINIMIZE),
        ])
        model = FitnessModel(problem, CallableEvaluator(lambda a: {"profit": 1.0, "risk": 0.5}))

        result = model.evaluate({"x": 1.0})

        assert result.fitness == pytest.approx(0.6 * 1.0 / 2.0 - 0.4 * 0.5)
        assert result.feasible is True
        assert model.evaluations == 1

    def test_constraint_penalty(self):
        problem = _problem(constraints=[
            Constraint(name="budget", kind=ConstraintKind.INEQUALITY, bound=5.0, penalty=2.0),
        ])
        model = FitnessModel(problem, CallableEvaluator(
            lambda a: {"profit": 1.0},
            lambda a: {"budget": a["x"]},
        ))

        inside = model.evaluate({"x": 4.0})
        outside = model.evaluate({"x": 6.0})

        assert inside.fitness == pytest.approx(1.0)
        assert outside.fitness == pytest.approx(1.0 - 2.0)
        assert outside.feasible is False
        assert outside.violations == {"budget": pytest.approx(1.0)}

    def test_equality_feasibility_boundary(self):
        problem = _problem(constraints=[
            Constraint(name="total", kind=ConstraintKind.EQUALITY, bound=1.0, penalty=1.0, tolerance=0.01),
        ])
        model = FitnessModel(problem, CallableEvaluator(
            lambda a: {"profit": 0.0},
            lambda a: {"total": a["x"]},
        ))

        within = model.evaluate({"x": 1.009})
        beyond = model.evaluate({"x": 1.019})

        assert within.feasible is True
        assert beyond.feasible is False
        assert beyond.violations == {"total": pytest.approx(0.019)}
        assert beyond.fitness == pytest.approx(-0.019)

    def test_missing_or_invalid_values(self):
        """Test evaluator output failures."""
        problem = _problem()

        with pytest.raises(EvaluationError, match="did not return a value"):
            FitnessModel(problem, CallableEvaluator(lambda a: {})).evaluate({"x": 1.0})

        with pytest.raises(EvaluationError, match="Non-finite"):
            FitnessModel(problem, CallableEvaluator(lambda a: {"profit": math.nan})).evaluate({"x": 1.0})

        with pytest.raises(EvaluationError, match="Non-numeric"):
            FitnessModel(problem, CallableEvaluator(lambda a: {"profit": "high"})).evaluate({"x": 1.0})

    def test_evaluator_exception_is_wrapped(self):
        def broken(assignment):
            raise RuntimeError("model server down")

        with pytest.raises(EvaluationError, match="model server down"):
            FitnessModel(_problem(), CallableEvaluator(broken)).evaluate({"x": 1.0})
