"""
Numeric search space shared by the classical metaheuristics.

Every candidate is a float vector with one slot per decision variable:

===========  ===================================================
continuous   the value itself
discrete     the integer value
binary       0.0 or 1.0
categorical  index into ``allowed_values``
===========  ===================================================

All variation operators (random initialization, neighbor moves, mutation,
crossover, swarm and differential moves) produce raw vectors which are then
passed through ``SearchSpace.repair``. Repair clamps to bounds, rounds the
integer-valued slots, and renormalizes every weight group so it sums to 1.
After repair a vector always decodes to a valid assignment.
"""

import math
from collections import deque
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from qoe.problems.problem import OptimizationProblem, VariableKind


WEIGHT_SUM_EPSILON = 1e-12
KEY_DECIMALS = 9

Move = Tuple[int, float]


def acceptance_probability(delta: float, temperature: float) -> float:
    """
    Metropolis acceptance for a maximizing search.

    ``delta`` is candidate fitness minus current fitness. Non-worsening moves
    are accepted with probability exactly 1, worsening ones with
    ``exp(delta / temperature)``.
    """
    if delta >= 0:
        return 1.0
    if temperature <= 0:
        return 0.0
    return math.exp(delta / temperature)


class SearchSpace:
    """
    Encoding, repair and variation operators for one problem.

    Attributes:
        problem: Problem whose variables define the space
        lower: Encoded lower bounds
        upper: Encoded upper bounds
        span: ``upper - lower``
        integral: Mask of slots holding integer values
        groups: Index arrays of each weight group
    """

    def __init__(self, problem: OptimizationProblem, rng: np.random.Generator):
        self.problem = problem
        self.rng = rng

        bounds = [v.encoded_bounds for v in problem.variables]
        self.lower = np.array([b[0] for b in bounds], dtype=float)
        self.upper = np.array([b[1] for b in bounds], dtype=float)
        self.span = self.upper - self.lower
        self.kinds = [v.kind for v in problem.variables]
        self.integral = np.array([k != VariableKind.CONTINUOUS for k in self.kinds])
        self.groups = [np.array(idx) for idx in problem.weight_groups.values()]

    @property
    def dimension(self) -> int:
        return len(self.lower)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def decode(self, x: np.ndarray) -> Dict[str, object]:
        """Map a repaired vector to a ``{variable name: value}`` assignment."""
        return {
            variable.name: variable.decode(value)
            for variable, value in zip(self.problem.variables, x)
        }

    def key(self, x: np.ndarray) -> Hashable:
        """Hashable identity of a candidate, used to tell assignments apart."""
        return tuple(np.round(x, KEY_DECIMALS).tolist())

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(self, x: np.ndarray) -> np.ndarray:
        """Clamp, round integer slots and renormalize weight groups."""
        x = np.clip(np.asarray(x, dtype=float), self.lower, self.upper)
        x[self.integral] = np.round(x[self.integral])
        for indices in self.groups:
            x[indices] = self._normalize_group(x[indices], self.lower[indices], self.upper[indices])
        return x

    def _normalize_group(self, values: np.ndarray, low: np.ndarray, high: np.ndarray) -> np.ndarray:
        total = values.sum()
        if total > WEIGHT_SUM_EPSILON:
            scaled = values / total
        else:
            scaled = np.full(len(values), 1.0 / len(values))

        if np.all(scaled >= low) and np.all(scaled <= high):
            return self._fix_residual(scaled, low, high)
        return self._project_group(values, low, high)

    def _project_group(self, values: np.ndarray, low: np.ndarray, high: np.ndarray) -> np.ndarray:
        # Euclidean projection onto {low <= w <= high, sum(w) == 1} by bisection on the shift
        tau_low = float(np.min(values - high))
        tau_high = float(np.max(values - low))
        for _ in range(200):
            tau = (tau_low + tau_high) / 2.0
            if np.clip(values - tau, low, high).sum() > 1.0:
                tau_low = tau
            else:
                tau_high = tau
        projected = np.clip(values - (tau_low + tau_high) / 2.0, low, high)
        return self._fix_residual(projected, low, high)

    @staticmethod
    def _fix_residual(weights: np.ndarray, low: np.ndarray, high: np.ndarray) -> np.ndarray:
        residual = 1.0 - weights.sum()
        if residual == 0.0:
            return weights
        slack = (high - weights) if residual > 0 else (weights - low)
        index = int(np.argmax(slack))
        weights[index] = min(high[index], max(low[index], weights[index] + residual))
        return weights

    # ------------------------------------------------------------------
    # Variation operators
    # ------------------------------------------------------------------

    def random_candidate(self) -> np.ndarray:
        """Uniform random valid candidate; weight groups drawn from a flat Dirichlet."""
        x = self.lower + self.rng.random(self.dimension) * self.span
        for indices in self.groups:
            x[indices] = self.rng.dirichlet(np.ones(len(indices)))
        return self.repair(x)

    def _perturb(self, x: np.ndarray, index: int, step_size: float) -> None:
        kind = self.kinds[index]
        if kind == VariableKind.CONTINUOUS:
            x[index] += self.rng.normal(0.0, step_size * self.span[index] or step_size)
        elif kind == VariableKind.BINARY:
            x[index] = 1.0 - x[index]
        elif kind == VariableKind.CATEGORICAL:
            count = int(self.span[index]) + 1
            if count > 1:
                x[index] = (x[index] + self.rng.integers(1, count)) % count
        else:
            jump = max(1, int(round(step_size * self.span[index])))
            x[index] += self.rng.integers(-jump, jump + 1) or self.rng.choice((-1, 1))

    def neighbor(self, x: np.ndarray, step_size: float) -> Tuple[np.ndarray, Move]:
        """
        Perturb one random variable and repair.

        Returns:
            (neighbor vector, move) where the move is the pair
            (variable index, new encoded value)
        """
        candidate = x.copy()
        index = int(self.rng.integers(self.dimension))
        self._perturb(candidate, index, step_size)
        candidate = self.repair(candidate)
        return candidate, (index, round(float(candidate[index]), KEY_DECIMALS))

    def mutate(self, x: np.ndarray, rate: float, step_size: float) -> np.ndarray:
        """Perturb each gene independently with probability ``rate``, then repair."""
        mutant = x.copy()
        for index in np.flatnonzero(self.rng.random(self.dimension) < rate):
            self._perturb(mutant, int(index), step_size)
        return self.repair(mutant)

    def uniform_crossover(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Take each gene from either parent with equal probability, then repair."""
        mask = self.rng.random(self.dimension) < 0.5
        return self.repair(np.where(mask, a, b))

    def binomial_crossover(self, target: np.ndarray, mutant: np.ndarray, rate: float) -> np.ndarray:
        """Differential-evolution crossover; at least one gene always comes from the mutant."""
        mask = self.rng.random(self.dimension) < rate
        mask[int(self.rng.integers(self.dimension))] = True
        return self.repair(np.where(mask, mutant, target))

    def swarm_step(
        self,
        positions: np.ndarray,
        velocities: np.ndarray,
        personal_best: np.ndarray,
        global_best: np.ndarray,
        inertia: float,
        cognitive: float,
        social: float,
        v_max: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        One particle swarm move for every particle.

        v = w*v + c1*r1*(pbest - x) + c2*r2*(gbest - x), clamped to +-v_max,
        then x = repair(x + v). Returns the new positions and velocities.
        """
        r1 = self.rng.random(positions.shape)
        r2 = self.rng.random(positions.shape)
        velocities = (inertia * velocities
                      + cognitive * r1 * (personal_best - positions)
                      + social * r2 * (global_best - positions))
        velocities = np.clip(velocities, -v_max, v_max)
        positions = np.array([self.repair(x) for x in positions + velocities])
        return positions, velocities


class TabuList:
    """Fixed-size FIFO memory of recent moves."""

    def __init__(self, size: int):
        self._moves = deque(maxlen=size)

    def add(self, move: Move) -> None:
        self._moves.append(move)

    def __contains__(self, move: Move) -> bool:
        return move in self._moves

    def __len__(self) -> int:
        return len(self._moves)

    def __iter__(self):
        return iter(self._moves)

    def select(self, candidates: Sequence[Tuple[Move, float]], best_fitness: float) -> Optional[int]:
        """
        Pick the index of the best admissible candidate.

        A candidate is admissible when its move is not tabu, or when it beats
        ``best_fitness`` (aspiration). Returns None when nothing is admissible.
        """
        order: List[int] = sorted(range(len(candidates)), key=lambda i: candidates[i][1], reverse=True)
        for i in order:
            move, fitness = candidates[i]
            if move not in self or fitness > best_fitness:
                return i
        return None
