"""
Algorithm Selector for the Quantum-Inspired Optimization Engine

This module decides which algorithm strategy a problem should be solved with.
The decision is a cheap, deterministic heuristic over problem structure; it
runs before every non-cached solve and its output travels with the solve to
the backend (or the classical fallback).

Decision Inputs:
- Complexity score: variables x objectives + 10 x constraints, plus 50 when
  the problem asks for annealing
- Predicted advantage: structural bonuses over a 1.0 baseline, capped at 2.0
- Problem type: channel and timing problems favor approximation

Strategies:
- ANNEALING: large, tightly constrained landscapes with high predicted advantage
- APPROXIMATION: channel and timing selection
- EXPLORATION: everything else

Each strategy maps to a classical metaheuristic with a similar search
character so the classical path mirrors the backend's intent.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from qoe.config import BackendConfig, RealtimeConfig
from qoe.problems.problem import OptimizationProblem, ProblemType


# Configure module logger
logger = logging.getLogger(__name__)


MAX_PREDICTED_ADVANTAGE = 2.0


class AlgorithmStrategy(Enum):
    """
    Algorithm strategies the engine can route a problem to.

    - ANNEALING: energy-landscape search with a cooling schedule
    - APPROXIMATION: variational approximation of good assignments
    - EXPLORATION: broad population-based exploration of the space
    """
    ANNEALING = "annealing"
    APPROXIMATION = "approximation"
    EXPLORATION = "exploration"


# Classical counterpart and default iteration budget of each strategy
STRATEGY_PROFILES: Dict[AlgorithmStrategy, Dict[str, Any]] = {
    AlgorithmStrategy.ANNEALING: {"classical_algorithm": "simulated_annealing", "iterations": 1000},
    AlgorithmStrategy.APPROXIMATION: {"classical_algorithm": "particle_swarm", "iterations": 200},
    AlgorithmStrategy.EXPLORATION: {"classical_algorithm": "genetic_algorithm", "iterations": 500},
}

_TYPE_BONUS_TYPES = (ProblemType.CAMPAIGN_STRATEGY, ProblemType.RESOURCE_ALLOCATION)
_APPROXIMATION_TYPES = (ProblemType.CHANNEL_OPTIMIZATION, ProblemType.TIMING_OPTIMIZATION)


@dataclass
class AlgorithmConfig:
    """
    Selected strategy and its execution budget.

    Attributes:
        strategy: Selected algorithm strategy
        classical_algorithm: Classical metaheuristic mirroring the strategy
        iterations: Iteration budget for this solve
        complexity: Complexity score the decision was based on
        predicted_advantage: Predicted advantage the decision was based on
        realtime: True when real-time budgets apply
        reasoning: Human-readable decision trail
    """
    strategy: AlgorithmStrategy
    classical_algorithm: str
    iterations: int
    complexity: float
    predicted_advantage: float
    realtime: bool = False
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "classical_algorithm": self.classical_algorithm,
            "iterations": self.iterations,
            "complexity": self.complexity,
            "predicted_advantage": self.predicted_advantage,
            "realtime": self.realtime,
            "reasoning": list(self.reasoning),
        }


class AlgorithmSelector:
    """
    Heuristic strategy selection.

    Attributes:
        config: Thresholds for the annealing branch
        realtime_config: Iteration cap applied to real-time selections
    """

    def __init__(self, config: Optional[BackendConfig] = None,
                 realtime_config: Optional[RealtimeConfig] = None):
        self.config = config or BackendConfig()
        self.realtime_config = realtime_config or RealtimeConfig()

    @staticmethod
    def calculate_complexity(problem: OptimizationProblem) -> float:
        """
        Complexity score of a problem.

        variables x objectives + 10 x constraints, plus 50 when the problem
        requests annealing.
        """
        score = len(problem.variables) * len(problem.objectives) + 10 * len(problem.constraints)
        if problem.quantum_properties.use_annealing:
            score += 50
        return float(score)

    @staticmethod
    def predict_advantage(problem: OptimizationProblem) -> float:
        """
        Predicted advantage of the non-classical path, in [1.0, 2.0].

        Bonuses: +0.3 more than 10 variables, +0.2 more than 2 objectives,
        +0.4 annealing requested, +0.3 approximation requested, +0.2 any
        entanglement pairs, +0.3 campaign strategy or resource allocation.
        """
        props = problem.quantum_properties
        advantage = 1.0
        if len(problem.variables) > 10:
            advantage += 0.3
        if len(problem.objectives) > 2:
            advantage += 0.2
        if props.use_annealing:
            advantage += 0.4
        if props.use_approximation:
            advantage += 0.3
        if props.entanglement_pairs:
            advantage += 0.2
        if problem.type in _TYPE_BONUS_TYPES:
            advantage += 0.3
        return min(advantage, MAX_PREDICTED_ADVANTAGE)

    def select(self, problem: OptimizationProblem, realtime: bool = False) -> AlgorithmConfig:
        """
        Select the algorithm strategy for a problem.

        Args:
            problem: Validated problem
            realtime: Cap the iteration budget with the real-time limit

        Returns:
            AlgorithmConfig describing the decision
        """
        complexity = self.calculate_complexity(problem)
        advantage = self.predict_advantage(problem)
        reasoning = [f"complexity={complexity:.0f}", f"predicted_advantage={advantage:.2f}"]

        if complexity > self.config.complexity_threshold and advantage > self.config.min_quantum_advantage:
            strategy = AlgorithmStrategy.ANNEALING
            reasoning.append(
                f"complexity > {self.config.complexity_threshold:.0f} and "
                f"advantage > {self.config.min_quantum_advantage:.2f}: annealing"
            )
        elif problem.type in _APPROXIMATION_TYPES:
            strategy = AlgorithmStrategy.APPROXIMATION
            reasoning.append(f"{problem.type.value} problem: approximation")
        else:
            strategy = AlgorithmStrategy.EXPLORATION
            reasoning.append("default: exploration")

        profile = STRATEGY_PROFILES[strategy]
        iterations = profile["iterations"]
        if realtime:
            iterations = min(iterations, self.realtime_config.max_iterations)
            reasoning.append(f"realtime budget: {iterations} iterations")

        config = AlgorithmConfig(
            strategy=strategy,
            classical_algorithm=profile["classical_algorithm"],
            iterations=iterations,
            complexity=complexity,
            predicted_advantage=advantage,
            realtime=realtime,
            reasoning=reasoning,
        )

        logger.info(f"Selected {strategy.value} for '{problem.id}' ({'; '.join(reasoning)})")
        return config

    def explain_decision(self, config: AlgorithmConfig) -> str:
        """Multi-line explanation of a selection, for logs and API responses."""
        lines = [
            f"Strategy: {config.strategy.value}",
            f"Classical counterpart: {config.classical_algorithm} ({config.iterations} iterations)",
        ]
        lines.extend(f"  - {reason}" for reason in config.reasoning)
        return "\n".join(lines)
