"""
Fitness evaluation for optimization problems.

The engine has no built-in business formula. Callers plug one in per problem
(or per problem type) by implementing ``ProblemEvaluator``, which maps a
decoded variable assignment to raw objective and constraint values.
``FitnessModel`` then turns those raw values into the single scalar the
solvers maximize:

    fitness = sum_i w_i * s_i * v_i / scale_i - sum_j penalty_j * violation_j

where ``s_i`` is +1 for maximized objectives and -1 for minimized ones, and
``scale_i`` is ``|target_i|`` (1 when the target is zero) so objectives of
different magnitudes contribute comparably.

Example Usage
-------------
```python
from qoe.problems.evaluation import CallableEvaluator, FitnessModel

evaluator = CallableEvaluator(
    objectives=lambda a: {"reach": a["w_email"] * 0.4 + a["w_phone"] * 0.9},
    constraints=lambda a: {"phone_share": a["w_phone"]},
)
model = FitnessModel(problem, evaluator)
result = model.evaluate({"w_email": 0.7, "w_phone": 0.3})
print(result.fitness, result.feasible)
```
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from qoe.problems.problem import OptimizationProblem


logger = logging.getLogger(__name__)

Assignment = Dict[str, Any]


class EvaluationError(Exception):
    """Raised when an evaluator fails or returns incomplete values."""
    pass


# ============================================================================
# Evaluator Contract
# ============================================================================

class ProblemEvaluator(ABC):
    """
    Caller-supplied objective function for one problem (type).

    Implementations must be safe to call from a worker thread and should be
    free of side effects; solvers call them many thousands of times.
    """

    @abstractmethod
    def objective_values(self, assignment: Assignment) -> Mapping[str, float]:
        """Return a value for every objective name of the problem."""
        pass

    def constraint_values(self, assignment: Assignment) -> Mapping[str, float]:
        """Return a value for every constraint name. Defaults to no constraints."""
        return {}


class CallableEvaluator(ProblemEvaluator):
    """Adapter that builds an evaluator from plain functions."""

    def __init__(
        self,
        objectives: Callable[[Assignment], Mapping[str, float]],
        constraints: Optional[Callable[[Assignment], Mapping[str, float]]] = None,
    ):
        self._objectives = objectives
        self._constraints = constraints

    def objective_values(self, assignment: Assignment) -> Mapping[str, float]:
        return self._objectives(assignment)

    def constraint_values(self, assignment: Assignment) -> Mapping[str, float]:
        if self._constraints is None:
            return {}
        return self._constraints(assignment)


# ============================================================================
# Scalarization
# ============================================================================

@dataclass
class Evaluation:
    """Outcome of evaluating one candidate assignment."""
    fitness: float
    objective_values: Dict[str, float]
    constraint_values: Dict[str, float] = field(default_factory=dict)
    violations: Dict[str, float] = field(default_factory=dict)
    feasible: bool = True


class FitnessModel:
    """
    Scalarizes evaluator output into a fitness score (higher is better).

    Attributes:
        problem: Problem whose objectives and constraints define the score
        evaluator: Caller-supplied evaluator
        evaluations: Number of ``evaluate`` calls made so far
    """

    def __init__(self, problem: OptimizationProblem, evaluator: ProblemEvaluator):
        self.problem = problem
        self.evaluator = evaluator
        self.evaluations = 0

    def evaluate(self, assignment: Assignment) -> Evaluation:
        """
        Evaluate one decoded assignment.

        Raises:
            EvaluationError: If the evaluator raises, omits a key, or returns
                a non-finite value
        """
        self.evaluations += 1

        try:
            raw_objectives = self.evaluator.objective_values(assignment)
            raw_constraints = self.evaluator.constraint_values(assignment) if self.problem.constraints else {}
        except EvaluationError:
            raise
        except Exception as e:
            raise EvaluationError(
                f"Evaluator failed for problem '{self.problem.id}': {e}"
            ) from e

        objective_values = _collect(raw_objectives, [o.name for o in self.problem.objectives], "objective")
        constraint_values = _collect(raw_constraints, [c.name for c in self.problem.constraints], "constraint")

        score = 0.0
        for objective in self.problem.objectives:
            scale = abs(objective.target) or 1.0
            score += objective.weight * objective.sign * objective_values[objective.name] / scale

        violations = {}
        feasible = True
        for constraint in self.problem.constraints:
            violation = constraint.violation(constraint_values[constraint.name])
            violations[constraint.name] = violation
            score -= constraint.penalty * violation
            if violation > constraint.tolerance:
                feasible = False

        return Evaluation(
            fitness=score,
            objective_values=objective_values,
            constraint_values=constraint_values,
            violations=violations,
            feasible=feasible,
        )

    def __call__(self, assignment: Assignment) -> float:
        return self.evaluate(assignment).fitness


def _collect(raw: Mapping[str, float], names, label: str) -> Dict[str, float]:
    values = {}
    for name in names:
        if name not in raw:
            raise EvaluationError(f"Evaluator did not return a value for {label} '{name}'")
        try:
            value = float(raw[name])
        except (TypeError, ValueError) as e:
            raise EvaluationError(f"Non-numeric value for {label} '{name}': {raw[name]!r}") from e
        if not math.isfinite(value):
            raise EvaluationError(f"Non-finite value for {label} '{name}': {value}")
        values[name] = value
    return values
