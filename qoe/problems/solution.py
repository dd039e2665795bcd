"""
Solution records returned by the solvers and the engine.

``OptimizationSolution`` is what every classical algorithm produces.
``QuantumOptimizationSolution`` wraps it with backend metrics and engine
bookkeeping (strategy used, where the result came from, whether the
fallback path ran).

A solution refers to its problem by id only. The one field written after a
solver returns is ``analysis``, attached by the solution analyzer.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class AlternativeSolution:
    """A runner-up assignment, ranked below the best one."""
    variables: Dict[str, Any]
    fitness: float
    objective_values: Dict[str, float] = field(default_factory=dict)
    feasible: bool = True


@dataclass
class OptimizationSolution:
    """
    Best assignment found for a problem by one solver run.

    Attributes:
        problem_id: Id of the problem this solves
        algorithm: Name of the algorithm that produced it
        variables: Assignment of every decision variable by name
        objective_values: Raw evaluator value per objective
        fitness: Overall scalar score (higher is better)
        feasible: True when every constraint is within tolerance
        confidence: Stability-based confidence in [0, 1]
        alternatives: Up to N distinct runner-up assignments, best first
        constraint_violations: Violation amount per constraint name
        iterations: Iterations (generations, steps) executed
        evaluations: Fitness evaluations performed
        fitness_history: Best-so-far fitness per iteration
        converged: True when a convergence criterion stopped the run
        execution_time_ms: Wall-clock time of the run
        memory_mb: Process memory growth during the run
        metadata: Algorithm parameters and engine trace
        analysis: Attached by the analyzer after the run
    """
    problem_id: str
    algorithm: str
    variables: Dict[str, Any]
    objective_values: Dict[str, float]
    fitness: float
    feasible: bool
    confidence: float = 0.0
    alternatives: List[AlternativeSolution] = field(default_factory=list)
    constraint_violations: Dict[str, float] = field(default_factory=dict)
    iterations: int = 0
    evaluations: int = 0
    fitness_history: List[float] = field(default_factory=list)
    converged: bool = False
    execution_time_ms: float = 0.0
    memory_mb: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    analysis: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (analysis summarized when present)."""
        data = asdict(self)
        data["analysis"] = self.analysis.to_dict() if self.analysis is not None else None
        return data


@dataclass
class BackendMetrics:
    """Figures reported alongside a backend (or fallback) result."""
    predicted_advantage: float = 1.0
    error_rate: float = 0.0
    resource_utilization: float = 0.0


@dataclass
class QuantumOptimizationSolution:
    """
    Engine-level result wrapping a solution with backend metrics.

    Attributes:
        solution: The underlying solution
        metrics: Backend metrics (predicted advantage, error rate, utilization)
        strategy: Algorithm strategy selected for the problem
        source: 'backend' or 'classical'
        fallback_used: True when the backend failed and the classical path ran
        computation_time_ms: Time spent producing the result in the engine
        metadata: Engine bookkeeping such as the per-call state trace
        id: Unique result id
        timestamp: UTC creation time
    """
    solution: OptimizationSolution
    metrics: BackendMetrics = field(default_factory=BackendMetrics)
    strategy: str = "exploration"
    source: str = "classical"
    fallback_used: bool = False
    computation_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def fitness(self) -> float:
        return self.solution.fitness

    @property
    def problem_id(self) -> str:
        return self.solution.problem_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "strategy": self.strategy,
            "source": self.source,
            "fallback_used": self.fallback_used,
            "computation_time_ms": self.computation_time_ms,
            "metadata": dict(self.metadata),
            "metrics": asdict(self.metrics),
            "solution": self.solution.to_dict(),
        }
