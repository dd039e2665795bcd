"""
Optimization problem data model for the Quantum-Inspired Optimization Engine.

This module defines the shared vocabulary every other component speaks:
objectives, constraints, decision variables and the problem that bundles them.
Problems are immutable value objects validated at construction time, so a
problem that reaches a solver is always well-formed.

Problem Anatomy
---------------
- **Objectives** are scalar goals with a weight, a target and a direction
  (minimize or maximize). Weights must sum to 1.0 (+-1e-2).
- **Constraints** compare a caller-computed value against a numeric bound,
  either as an inequality (value <= bound) or an equality (value == bound
  within tolerance). Every constraint carries a strictly positive penalty.
- **Variables** are the decision variables. Their domain depends on their
  kind:

  ===========  ==========================================
  continuous   real value in [lower, upper]
  discrete     integer value in [lower, upper]
  binary       0 or 1
  categorical  one of ``allowed_values``
  ===========  ==========================================

  Continuous variables that share a ``weight_group`` form a weight vector
  (e.g. a channel mix) whose components must sum to 1.0.

Example Usage
-------------
```python
from qoe.problems.problem import (
    OptimizationProblem, Objective, Constraint, Variable,
    ProblemType, Direction, ConstraintKind, VariableKind,
)

problem = OptimizationProblem(
    id="campaign-42",
    name="Q3 channel mix",
    type=ProblemType.CHANNEL_OPTIMIZATION,
    objectives=(
        Objective("conversion_rate", weight=0.6, target=0.05),
        Objective("cost_per_lead", weight=0.4, target=40.0,
                  direction=Direction.MINIMIZE),
    ),
    constraints=(
        Constraint("budget", kind=ConstraintKind.INEQUALITY, bound=10000.0,
                   penalty=5.0),
    ),
    variables=tuple(
        Variable(f"w_{c}", kind=VariableKind.CONTINUOUS, lower=0.0,
                 upper=1.0, weight_group="channels")
        for c in ("email", "linkedin", "phone")
    ),
)
```

The solution produced for a problem refers back to it by ``problem.id`` only;
problems never hold references to solutions.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


WEIGHT_SUM_TOLERANCE = 1e-2


# ============================================================================
# Exceptions
# ============================================================================

class ProblemValidationError(ValueError):
    """Raised when a problem definition violates a data-model invariant."""
    pass


# ============================================================================
# Enumerations
# ============================================================================

class ProblemType(str, Enum):
    """Problem families the engine accepts."""
    CAMPAIGN_STRATEGY = "campaign_strategy"
    RESOURCE_ALLOCATION = "resource_allocation"
    PROSPECT_PRIORITIZATION = "prospect_prioritization"
    CHANNEL_OPTIMIZATION = "channel_optimization"
    TIMING_OPTIMIZATION = "timing_optimization"


class Direction(str, Enum):
    """Whether an objective should be driven up or down."""
    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


class ConstraintKind(str, Enum):
    """Inequality constraints require value <= bound; equality value == bound."""
    INEQUALITY = "inequality"
    EQUALITY = "equality"


class VariableKind(str, Enum):
    """Domain kind of a decision variable."""
    CONTINUOUS = "continuous"
    DISCRETE = "discrete"
    BINARY = "binary"
    CATEGORICAL = "categorical"


# ============================================================================
# Building Blocks
# ============================================================================

@dataclass(frozen=True)
class Objective:
    """
    A weighted optimization goal.

    Attributes:
        name: Unique objective name; evaluators report values under this key
        weight: Relative importance; weights of a problem sum to 1.0
        target: Value considered fully satisfactory
        direction: MAXIMIZE (default) or MINIMIZE
    """
    name: str
    weight: float
    target: float = 1.0
    direction: Direction = Direction.MAXIMIZE

    def __post_init__(self):
        if not self.name:
            raise ProblemValidationError("Objective name must be a non-empty string")
        if not math.isfinite(self.weight) or self.weight < 0:
            raise ProblemValidationError(
                f"Objective '{self.name}' weight must be a finite non-negative number, "
                f"got {self.weight}"
            )
        if not math.isfinite(self.target):
            raise ProblemValidationError(f"Objective '{self.name}' target must be finite")
        object.__setattr__(self, "direction", Direction(self.direction))

    @property
    def sign(self) -> float:
        """+1 for maximize, -1 for minimize."""
        return 1.0 if self.direction == Direction.MAXIMIZE else -1.0


@dataclass(frozen=True)
class Constraint:
    """
    A penalized constraint on a caller-computed quantity.

    Attributes:
        name: Unique constraint name; evaluators report values under this key
        kind: INEQUALITY (value <= bound) or EQUALITY (value == bound)
        bound: Numeric bound
        penalty: Fitness penalty per unit of violation (must be > 0)
        tolerance: Violation considered negligible (feasibility band)
    """
    name: str
    kind: ConstraintKind
    bound: float
    penalty: float
    tolerance: float = 1e-6

    def __post_init__(self):
        if not self.name:
            raise ProblemValidationError("Constraint name must be a non-empty string")
        object.__setattr__(self, "kind", ConstraintKind(self.kind))
        if not math.isfinite(self.bound):
            raise ProblemValidationError(f"Constraint '{self.name}' bound must be finite")
        if not (self.penalty > 0) or not math.isfinite(self.penalty):
            raise ProblemValidationError(
                f"Constraint '{self.name}' penalty must be strictly positive, got {self.penalty}"
            )
        if not (self.tolerance >= 0) or not math.isfinite(self.tolerance):
            raise ProblemValidationError(
                f"Constraint '{self.name}' tolerance must be non-negative, got {self.tolerance}"
            )

    def violation(self, value: float) -> float:
        """
        Amount by which ``value`` violates this constraint.

        Inequality constraints are violated by anything above the bound;
        equality constraints by any deviation from it. The tolerance is not
        subtracted here: it is the feasibility band applied to this amount.
        """
        if self.kind == ConstraintKind.INEQUALITY:
            return max(0.0, value - self.bound)
        return abs(value - self.bound)

    def is_satisfied(self, value: float) -> bool:
        return self.violation(value) <= self.tolerance


@dataclass(frozen=True)
class Variable:
    """
    A decision variable and its domain.

    Attributes:
        name: Unique variable name, used as the key of solution assignments
        kind: Domain kind
        lower: Lower bound (continuous/discrete only)
        upper: Upper bound (continuous/discrete only)
        allowed_values: Admissible values (categorical only)
        weight_group: Weight-vector membership (continuous only)
    """
    name: str
    kind: VariableKind
    lower: Optional[float] = None
    upper: Optional[float] = None
    allowed_values: Tuple[Union[str, float, int], ...] = ()
    weight_group: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ProblemValidationError("Variable name must be a non-empty string")
        object.__setattr__(self, "kind", VariableKind(self.kind))
        object.__setattr__(self, "allowed_values", tuple(self.allowed_values))

        if self.kind in (VariableKind.CONTINUOUS, VariableKind.DISCRETE):
            self._validate_bounds()
            if self.allowed_values:
                raise ProblemValidationError(
                    f"Variable '{self.name}' ({self.kind.value}) must not define allowed_values"
                )
        elif self.kind == VariableKind.BINARY:
            if self.allowed_values:
                raise ProblemValidationError(
                    f"Binary variable '{self.name}' must not define allowed_values"
                )
            for bound in (self.lower, self.upper):
                if bound is not None and bound not in (0, 1):
                    raise ProblemValidationError(
                        f"Binary variable '{self.name}' bounds must be 0 and 1"
                    )
            object.__setattr__(self, "lower", 0.0)
            object.__setattr__(self, "upper", 1.0)
        else:
            if not self.allowed_values:
                raise ProblemValidationError(
                    f"Categorical variable '{self.name}' needs at least one allowed value"
                )
            if len(set(self.allowed_values)) != len(self.allowed_values):
                raise ProblemValidationError(
                    f"Categorical variable '{self.name}' has duplicate allowed values"
                )
            if self.lower is not None or self.upper is not None:
                raise ProblemValidationError(
                    f"Categorical variable '{self.name}' must not define bounds"
                )

        if self.weight_group is not None:
            if self.kind != VariableKind.CONTINUOUS:
                raise ProblemValidationError(
                    f"Variable '{self.name}' is in weight group '{self.weight_group}' "
                    f"but is {self.kind.value}; weight vectors must be continuous"
                )
            if self.lower < 0.0 or self.upper > 1.0:
                raise ProblemValidationError(
                    f"Weight variable '{self.name}' bounds must lie within [0, 1]"
                )

    def _validate_bounds(self) -> None:
        if self.lower is None or self.upper is None:
            raise ProblemValidationError(
                f"Variable '{self.name}' ({self.kind.value}) requires lower and upper bounds"
            )
        if not (math.isfinite(self.lower) and math.isfinite(self.upper)):
            raise ProblemValidationError(f"Variable '{self.name}' bounds must be finite")
        if self.lower > self.upper:
            raise ProblemValidationError(
                f"Variable '{self.name}' lower bound {self.lower} exceeds upper bound {self.upper}"
            )
        if self.kind == VariableKind.DISCRETE:
            if float(self.lower) != int(self.lower) or float(self.upper) != int(self.upper):
                raise ProblemValidationError(
                    f"Discrete variable '{self.name}' bounds must be integers"
                )

    # ------------------------------------------------------------------
    # Numeric encoding used by the solvers
    # ------------------------------------------------------------------

    @property
    def encoded_bounds(self) -> Tuple[float, float]:
        """Bounds of this variable in the solvers' numeric encoding."""
        if self.kind == VariableKind.CATEGORICAL:
            return 0.0, float(len(self.allowed_values) - 1)
        return float(self.lower), float(self.upper)

    @property
    def span(self) -> float:
        low, high = self.encoded_bounds
        return high - low

    def decode(self, encoded: float) -> Union[str, float, int]:
        """Convert an encoded (already repaired) value to the assignment value."""
        if self.kind == VariableKind.CONTINUOUS:
            return float(encoded)
        if self.kind == VariableKind.CATEGORICAL:
            return self.allowed_values[int(round(encoded))]
        return int(round(encoded))


@dataclass(frozen=True)
class QuantumProperties:
    """
    Problem hints that steer algorithm selection.

    Attributes:
        use_annealing: Problem has an annealing-friendly energy landscape
        use_approximation: Problem is amenable to approximation strategies
        entanglement_pairs: Pairs of strongly correlated variable names
    """
    use_annealing: bool = False
    use_approximation: bool = False
    entanglement_pairs: Tuple[Tuple[str, str], ...] = ()


# ============================================================================
# Optimization Problem
# ============================================================================

@dataclass(frozen=True)
class OptimizationProblem:
    """
    Immutable multi-objective, constrained optimization problem.

    Construction validates every invariant and raises
    ``ProblemValidationError`` on the first violation found. Sequences are
    stored as tuples so a submitted problem cannot change underneath a solver.

    Attributes:
        id: Caller-assigned identity (part of the cache fingerprint)
        type: Problem family
        objectives: Ordered objectives (weights sum to 1.0)
        variables: Decision variables
        constraints: Penalized constraints
        name: Human-readable label
        quantum_properties: Selection hints
        evaluator: Optional problem-specific fitness evaluator; when absent
            the engine's per-type registry supplies one
    """
    id: str
    type: ProblemType
    objectives: Tuple[Objective, ...]
    variables: Tuple[Variable, ...]
    constraints: Tuple[Constraint, ...] = ()
    name: str = ""
    quantum_properties: QuantumProperties = field(default_factory=QuantumProperties)
    evaluator: Optional[Any] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "objectives", tuple(self.objectives))
        object.__setattr__(self, "variables", tuple(self.variables))
        object.__setattr__(self, "constraints", tuple(self.constraints))
        if isinstance(self.type, str):
            try:
                object.__setattr__(self, "type", ProblemType(self.type))
            except ValueError as e:
                raise ProblemValidationError(f"Unknown problem type '{self.type}'") from e
        self.validate()

    def validate(self) -> None:
        """
        Check every problem-level invariant.

        Raises:
            ProblemValidationError: On the first violated invariant
        """
        if not self.id or not isinstance(self.id, str):
            raise ProblemValidationError("Problem id must be a non-empty string")
        if not isinstance(self.type, ProblemType):
            raise ProblemValidationError(f"Unknown problem type '{self.type}'")
        if not self.objectives:
            raise ProblemValidationError("Problem must define at least one objective")
        if not self.variables:
            raise ProblemValidationError("Problem must define at least one variable")

        _check_types(self.objectives, Objective, "objectives")
        _check_types(self.variables, Variable, "variables")
        _check_types(self.constraints, Constraint, "constraints")

        _check_unique([o.name for o in self.objectives], "objective")
        _check_unique([v.name for v in self.variables], "variable")
        _check_unique([c.name for c in self.constraints], "constraint")

        weight_sum = sum(o.weight for o in self.objectives)
        if abs(weight_sum - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ProblemValidationError(
                f"Objective weights must sum to 1.0 (+-{WEIGHT_SUM_TOLERANCE}), got {weight_sum:.4f}"
            )

        for group, indices in self.weight_groups.items():
            low = sum(self.variables[i].lower for i in indices)
            high = sum(self.variables[i].upper for i in indices)
            if low > 1.0 or high < 1.0:
                raise ProblemValidationError(
                    f"Weight group '{group}' cannot sum to 1.0 within its bounds "
                    f"(lower sum {low:.4f}, upper sum {high:.4f})"
                )

        names = {v.name for v in self.variables}
        for a, b in self.quantum_properties.entanglement_pairs:
            if a not in names or b not in names:
                raise ProblemValidationError(
                    f"Entanglement pair ({a}, {b}) references an unknown variable"
                )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def problem_size(self) -> int:
        """Number of decision variables."""
        return len(self.variables)

    @property
    def weight_groups(self) -> Dict[str, List[int]]:
        """Map weight-group name to the indices of its member variables."""
        groups: Dict[str, List[int]] = {}
        for index, variable in enumerate(self.variables):
            if variable.weight_group is not None:
                groups.setdefault(variable.weight_group, []).append(index)
        return groups

    def structural_signature(self) -> Dict[str, Any]:
        """Shape summary used for cache fingerprints and logging."""
        return {
            "type": self.type.value,
            "variable_count": len(self.variables),
            "objective_count": len(self.objectives),
            "constraint_count": len(self.constraints),
        }

    def get_metadata(self) -> Dict[str, Any]:
        """Summary of the problem for logging and API responses."""
        metadata = self.structural_signature()
        metadata.update({
            "id": self.id,
            "name": self.name,
            "weight_groups": {k: len(v) for k, v in self.weight_groups.items()},
            "variable_kinds": sorted({v.kind.value for v in self.variables}),
            "use_annealing": self.quantum_properties.use_annealing,
            "use_approximation": self.quantum_properties.use_approximation,
        })
        return metadata

    def __str__(self) -> str:
        return (f"{self.type.value} problem '{self.id}' "
                f"({len(self.variables)} vars, {len(self.objectives)} objectives, "
                f"{len(self.constraints)} constraints)")


def _check_types(items: Sequence[Any], expected: type, label: str) -> None:
    for item in items:
        if not isinstance(item, expected):
            raise ProblemValidationError(
                f"Problem {label} must be {expected.__name__} instances, got {type(item).__name__}"
            )


def _check_unique(names: List[str], label: str) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ProblemValidationError(f"Duplicate {label} name '{name}'")
        seen.add(name)
