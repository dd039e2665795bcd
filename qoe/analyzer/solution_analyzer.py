"""
Solution Analyzer for the Quantum-Inspired Optimization Engine.

This module scores finished solutions after the fact. The engine runs it on
every successful solve and attaches the resulting ``SolutionAnalysis`` to the
solution before caching it.

Analysis Dimensions
-------------------
1. **Quality**: weighted objective satisfaction, constraint violation
   severity, and feasibility / optimality / robustness sub-scores
2. **Performance**: time, memory, iterations, convergence rate, an
   efficiency score, and performance relative to recent runs of the same
   algorithm
3. **Convergence**: rate, stability, plateau, oscillation and convergence
   point of the fitness history
4. **Comparison**: ranking of the classical algorithms on this problem type,
   from the analyzer's own history
5. **Recommendations**: parameter tuning, algorithm switch, constraint
   relaxation, ordered by priority
6. **Insights**: notable facts about the run (predicted advantage, scale,
   strategy fit, targets met), the high-impact key findings, and technical
   recommendations on time, memory and convergence

The overall score is ``0.5 * quality + 0.3 * efficiency + 0.2 * stability``.

Example Usage
-------------
```python
from qoe.analyzer.solution_analyzer import SolutionAnalyzer

analyzer = SolutionAnalyzer()
analysis = analyzer.analyze(solution, problem)

print(f"Overall: {analysis.overall_score:.2f}")
print(f"Quality: {analysis.quality.overall_quality:.2f}")
for rec in analysis.recommendations:
    print(f"[{rec.priority}] {rec.action}: {rec.description}")
```
"""

from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional
import logging
import time

import numpy as np

from qoe.analyzer.convergence import ConvergenceAnalysis, analyze_convergence, convergence_rate
from qoe.config import AnalyzerConfig
from qoe.problems.problem import Direction, Objective, OptimizationProblem
from qoe.problems.solution import OptimizationSolution


# Configure module logger
logger = logging.getLogger(__name__)


SEVERITY_NONE = "none"
SEVERITY_MINOR = "minor"
SEVERITY_MODERATE = "moderate"
SEVERITY_SEVERE = "severe"

MIN_TOLERANCE_BAND = 1e-6

CANDIDATE_ALGORITHMS = (
    "genetic_algorithm",
    "simulated_annealing",
    "particle_swarm",
    "hill_climbing",
    "tabu_search",
    "differential_evolution",
)

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


# ============================================================================
# Analysis Records
# ============================================================================

@dataclass
class ObjectiveSatisfaction:
    name: str
    value: float
    target: float
    satisfaction: float
    weight: float


@dataclass
class ConstraintViolation:
    name: str
    violation: float
    severity: str


@dataclass
class QualityAnalysis:
    objective_satisfaction: List[ObjectiveSatisfaction]
    constraint_violations: List[ConstraintViolation]
    objective_score: float
    feasibility: float
    optimality: float
    robustness: float
    overall_quality: float


@dataclass
class ExecutionMetrics:
    """Resource figures of the run being analyzed."""
    algorithm: str
    execution_time_ms: float
    memory_mb: float
    iterations: int
    convergence_rate: float
    predicted_advantage: float = 1.0

    @classmethod
    def from_solution(cls, solution: OptimizationSolution, predicted_advantage: float = 1.0) -> "ExecutionMetrics":
        return cls(
            algorithm=solution.algorithm,
            execution_time_ms=solution.execution_time_ms,
            memory_mb=solution.memory_mb,
            iterations=solution.iterations,
            convergence_rate=convergence_rate(solution.fitness_history),
            predicted_advantage=predicted_advantage,
        )


@dataclass
class PerformanceAnalysis:
    algorithm: str
    execution_time_ms: float
    memory_mb: float
    iterations: int
    convergence_rate: float
    efficiency: float
    relative_performance: float
    history_size: int


@dataclass
class AlgorithmRanking:
    algorithm: str
    score: Optional[float]
    samples: int


@dataclass
class ComparativeAnalysis:
    current_algorithm: str
    rankings: List[AlgorithmRanking]
    best_alternative: Optional[str]
    improvement_potential: float


@dataclass
class Recommendation:
    type: str
    priority: str
    action: str
    description: str
    expected_improvement: float


@dataclass
class Insight:
    type: str
    category: str
    description: str
    confidence: float
    impact: str


@dataclass
class SolutionInsights:
    insights: List[Insight]
    key_findings: List[str]
    technical_recommendations: List[str]


@dataclass
class SolutionAnalysis:
    """Everything the analyzer derived for one solution."""
    problem_id: str
    overall_score: float
    quality: QualityAnalysis
    performance: PerformanceAnalysis
    convergence: ConvergenceAnalysis
    comparative: ComparativeAnalysis
    recommendations: List[Recommendation]
    insights: SolutionInsights
    processing_time_ms: float
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _RunRecord:
    problem_type: str
    efficiency: float
    overall_score: float
    execution_time_ms: float


# ============================================================================
# Analyzer
# ============================================================================

class SolutionAnalyzer:
    """
    Post-hoc analysis of optimization solutions.

    The analyzer keeps a rolling history of up to
    ``config.history_per_algorithm`` runs per algorithm. That history feeds
    relative performance and the comparative ranking; nothing else about it
    is persisted.

    Attributes:
        config: Thresholds and history size
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()
        self._history: Dict[str, Deque[_RunRecord]] = defaultdict(
            lambda: deque(maxlen=self.config.history_per_algorithm)
        )

    def analyze(
        self,
        solution: OptimizationSolution,
        problem: OptimizationProblem,
        execution_metrics: Optional[ExecutionMetrics] = None,
    ) -> SolutionAnalysis:
        """
        Analyze a solution and record the run in the history.

        Args:
            solution: Solution to analyze (not modified)
            problem: Problem the solution was produced for
            execution_metrics: Resource figures; derived from the solution when omitted

        Returns:
            SolutionAnalysis with quality, performance, convergence,
            comparison and recommendations
        """
        started = time.perf_counter()
        metrics = execution_metrics or ExecutionMetrics.from_solution(solution)

        quality = self.analyze_quality(solution, problem)
        performance = self.analyze_performance(metrics)
        convergence = analyze_convergence(solution.fitness_history, self.config.plateau_epsilon)
        comparative = self.compare_algorithms(metrics.algorithm, problem)

        overall = self.calculate_overall_score(quality, performance, convergence)
        recommendations = self.generate_recommendations(quality, performance, comparative)
        insights = self.generate_insights(problem, quality, metrics)

        self._history[metrics.algorithm].append(_RunRecord(
            problem_type=problem.type.value,
            efficiency=performance.efficiency,
            overall_score=overall,
            execution_time_ms=metrics.execution_time_ms,
        ))

        analysis = SolutionAnalysis(
            problem_id=problem.id,
            overall_score=overall,
            quality=quality,
            performance=performance,
            convergence=convergence,
            comparative=comparative,
            recommendations=recommendations,
            insights=insights,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )

        logger.debug(f"Analyzed solution for '{problem.id}': overall={overall:.3f}, "
                     f"quality={quality.overall_quality:.3f}, efficiency={performance.efficiency:.3f}")
        return analysis

    # ========================================================================
    # Quality
    # ========================================================================

    @staticmethod
    def objective_satisfaction(objective: Objective, value: float) -> float:
        """
        Degree to which ``value`` meets the objective's target, in [0, 1].

        Maximize: achieved / target. Minimize: target / achieved. Reaching or
        beating the target always scores 1.
        """
        target = objective.target
        if objective.direction == Direction.MAXIMIZE:
            if value >= target:
                return 1.0
            return float(np.clip(value / target, 0.0, 1.0)) if target > 0 else 0.0
        if value <= target:
            return 1.0
        return float(np.clip(target / value, 0.0, 1.0)) if target > 0 else 0.0

    def classify_violation(self, violation: float, tolerance: float) -> str:
        """Severity of a violation, in multiples of the constraint's tolerance band."""
        if violation <= tolerance:
            return SEVERITY_NONE
        band = max(tolerance, MIN_TOLERANCE_BAND) * self.config.severity_band_multiplier
        if violation < band:
            return SEVERITY_MINOR
        if violation < 2 * band:
            return SEVERITY_MODERATE
        return SEVERITY_SEVERE

    def analyze_quality(self, solution: OptimizationSolution, problem: OptimizationProblem) -> QualityAnalysis:
        satisfactions = []
        for objective in problem.objectives:
            value = solution.objective_values.get(objective.name, 0.0)
            satisfactions.append(ObjectiveSatisfaction(
                name=objective.name,
                value=value,
                target=objective.target,
                satisfaction=self.objective_satisfaction(objective, value),
                weight=objective.weight,
            ))

        violations = []
        for constraint in problem.constraints:
            amount = solution.constraint_violations.get(constraint.name, 0.0)
            violations.append(ConstraintViolation(
                name=constraint.name,
                violation=amount,
                severity=self.classify_violation(amount, constraint.tolerance),
            ))

        objective_score = sum(s.satisfaction * s.weight for s in satisfactions)

        # Share of constraints within tolerance
        violated = [v for v in violations if v.severity != SEVERITY_NONE]
        feasibility = 1.0 - len(violated) / len(violations) if violations else 1.0

        # Share of objectives that reach their target
        optimality = sum(1 for s in satisfactions if s.satisfaction >= 1.0) / len(satisfactions)

        # Runner-ups that stay feasible, blended with the solution's confidence
        if solution.alternatives:
            feasible_share = sum(1 for a in solution.alternatives if a.feasible) / len(solution.alternatives)
        else:
            feasible_share = 1.0
        robustness = (feasible_share + solution.confidence) / 2.0

        penalty = sum(0.3 if v.severity == SEVERITY_SEVERE else 0.1 for v in violated)
        overall = max(0.0, (objective_score + feasibility + optimality + robustness) / 4.0 - penalty)

        return QualityAnalysis(
            objective_satisfaction=satisfactions,
            constraint_violations=violations,
            objective_score=objective_score,
            feasibility=feasibility,
            optimality=optimality,
            robustness=robustness,
            overall_quality=overall,
        )

    # ========================================================================
    # Performance
    # ========================================================================

    @staticmethod
    def calculate_efficiency(metrics: ExecutionMetrics) -> float:
        """Mean of time, memory and convergence efficiency, each in [0, 1]."""
        time_efficiency = 1.0 / (1.0 + metrics.execution_time_ms / 1000.0)
        memory_efficiency = 1.0 / (1.0 + metrics.memory_mb / 1024.0)
        return (time_efficiency + memory_efficiency + metrics.convergence_rate) / 3.0

    def analyze_performance(self, metrics: ExecutionMetrics) -> PerformanceAnalysis:
        efficiency = self.calculate_efficiency(metrics)
        history = self._history.get(metrics.algorithm, ())

        if history:
            avg_time = float(np.mean([r.execution_time_ms for r in history]))
            avg_efficiency = float(np.mean([r.efficiency for r in history]))
            time_gain = max(0.0, (avg_time - metrics.execution_time_ms) / avg_time) if avg_time > 0 else 0.0
            efficiency_gain = (efficiency - avg_efficiency) / avg_efficiency if avg_efficiency > 0 else 0.0
            relative = float(np.clip((time_gain + efficiency_gain) / 2.0, -1.0, 1.0))
        else:
            relative = 0.5

        return PerformanceAnalysis(
            algorithm=metrics.algorithm,
            execution_time_ms=metrics.execution_time_ms,
            memory_mb=metrics.memory_mb,
            iterations=metrics.iterations,
            convergence_rate=metrics.convergence_rate,
            efficiency=efficiency,
            relative_performance=relative,
            history_size=len(history),
        )

    # ========================================================================
    # Comparison & Recommendations
    # ========================================================================

    def compare_algorithms(self, current_algorithm: str, problem: OptimizationProblem) -> ComparativeAnalysis:
        """
        Rank algorithms by their mean overall score on this problem type.

        Algorithms without history for the type are listed last with no score.
        """
        candidates = list(CANDIDATE_ALGORITHMS)
        for name in list(self._history) + [current_algorithm]:
            if name not in candidates:
                candidates.append(name)

        rankings = []
        for name in candidates:
            scores = [r.overall_score for r in self._history.get(name, ()) if r.problem_type == problem.type.value]
            rankings.append(AlgorithmRanking(
                algorithm=name,
                score=float(np.mean(scores)) if scores else None,
                samples=len(scores),
            ))

        rankings.sort(key=lambda r: (r.score is None, -(r.score or 0.0)))

        scored = [r for r in rankings if r.score is not None]
        best = scored[0] if scored else None
        current = next((r for r in scored if r.algorithm == current_algorithm), None)

        improvement = 0.0
        if best is not None and current is not None and current.score > 0:
            improvement = max(0.0, (best.score - current.score) / current.score)

        best_alternative = None
        if best is not None and best.algorithm != current_algorithm:
            best_alternative = best.algorithm

        return ComparativeAnalysis(
            current_algorithm=current_algorithm,
            rankings=rankings,
            best_alternative=best_alternative,
            improvement_potential=improvement,
        )

    def generate_recommendations(
        self,
        quality: QualityAnalysis,
        performance: PerformanceAnalysis,
        comparative: ComparativeAnalysis,
    ) -> List[Recommendation]:
        recommendations = []

        if quality.overall_quality < self.config.quality_threshold:
            recommendations.append(Recommendation(
                type="quality",
                priority="high",
                action="parameter_tuning",
                description="Adjust algorithm parameters (population, iterations, rates) for better quality",
                expected_improvement=0.15,
            ))

        if performance.efficiency < self.config.efficiency_threshold:
            target = comparative.best_alternative or "a different algorithm"
            recommendations.append(Recommendation(
                type="performance",
                priority="medium",
                action="algorithm_switch",
                description=f"Consider switching from {performance.algorithm} to {target}",
                expected_improvement=0.2,
            ))

        violated = [v.name for v in quality.constraint_violations if v.severity != SEVERITY_NONE]
        if violated:
            recommendations.append(Recommendation(
                type="feasibility",
                priority="high",
                action="constraint_relaxation",
                description=f"Relax or revisit violated constraints: {', '.join(violated)}",
                expected_improvement=0.3,
            ))

        recommendations.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
        return recommendations

    # ========================================================================
    # Insights
    # ========================================================================

    def generate_insights(
        self,
        problem: OptimizationProblem,
        quality: QualityAnalysis,
        metrics: ExecutionMetrics,
    ) -> SolutionInsights:
        """
        Summarize what stands out about a run.

        Insights:
            - performance/quantum_advantage: predicted advantage above
              ``1 + advantage_insight_margin``
            - complexity/scale: more than ``large_problem_variables`` variables
            - strategy/algorithm_selection: simulated annealing that converged
              quickly (rate above 0.9)
            - quality/targets_met: feasible and every objective at its target

        Key findings are the descriptions of the high-impact insights.
        Technical recommendations flag slow runs, heavy memory use and weak
        convergence against the configured thresholds.
        """
        cfg = self.config
        insights = []

        advantage = metrics.predicted_advantage - 1.0
        if advantage > cfg.advantage_insight_margin:
            insights.append(Insight(
                type="performance",
                category="quantum_advantage",
                description=f"Predicted advantage of {advantage * 100:.1f}% over classical methods",
                confidence=0.9,
                impact="high",
            ))

        if problem.problem_size > cfg.large_problem_variables:
            insights.append(Insight(
                type="complexity",
                category="scale",
                description=f"Large-scale problem with {problem.problem_size} variables",
                confidence=0.8,
                impact="medium",
            ))

        if metrics.algorithm == "simulated_annealing" and metrics.convergence_rate > 0.9:
            insights.append(Insight(
                type="strategy",
                category="algorithm_selection",
                description="Annealing-style search converged quickly on this problem",
                confidence=0.95,
                impact="high",
            ))

        if quality.feasibility >= 1.0 and quality.optimality >= 1.0:
            insights.append(Insight(
                type="quality",
                category="targets_met",
                description="All objectives reached their targets with no constraint violations",
                confidence=0.85,
                impact="high",
            ))

        technical = []
        if metrics.execution_time_ms > cfg.slow_execution_ms:
            technical.append("Consider parameter tuning to reduce execution time")
        if metrics.memory_mb > cfg.high_memory_mb:
            technical.append("Optimize memory usage for better scalability")
        if metrics.convergence_rate < cfg.min_convergence_rate:
            technical.append("Adjust convergence criteria for better solution quality")

        return SolutionInsights(
            insights=insights,
            key_findings=[i.description for i in insights if i.impact == "high"],
            technical_recommendations=technical,
        )

    @staticmethod
    def calculate_overall_score(
        quality: QualityAnalysis,
        performance: PerformanceAnalysis,
        convergence: ConvergenceAnalysis,
    ) -> float:
        return (0.5 * quality.overall_quality
                + 0.3 * performance.efficiency
                + 0.2 * convergence.stability_score)

    def get_history(self, algorithm: str) -> List[Dict[str, Any]]:
        """Recorded runs of one algorithm, oldest first."""
        return [asdict(r) for r in self._history.get(algorithm, ())]
