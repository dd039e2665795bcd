"""
Classical metaheuristic library for the Quantum-Inspired Optimization Engine.

This module implements six population and local-search metaheuristics over
the shared numeric ``SearchSpace``. They are the engine's fallback path and
the classical side of every benchmark, so they must always return a usable
answer: a run stops at its iteration cap, at its convergence criterion, at
its cooperative deadline, or when the engine sets the cancellation event,
and in every case returns the best solution found so far.

Supported Algorithms:
---------------------
1. **genetic_algorithm**: tournament selection, uniform crossover, per-gene
   mutation, elitist truncation of parents + offspring. Stops early when the
   variance of the last 10 best fitness values drops below
   ``convergence_threshold``.
2. **simulated_annealing**: single current solution, geometric cooling,
   Metropolis acceptance. Stops at ``min_temperature``.
3. **particle_swarm**: inertia + cognitive + social velocity update with
   velocities clamped to a fraction of each variable's span.
4. **hill_climbing**: steepest ascent over a sampled neighborhood, no
   restarts. Stops at the first step without an improving neighbor.
5. **tabu_search**: best non-tabu neighbor with a FIFO move memory and
   aspiration for moves that beat the global best.
6. **differential_evolution**: DE/rand/1/bin; exactly one trial evaluation
   per population member per generation.

Example Usage:
--------------
```python
from qoe.solvers.classical_optimizer import ClassicalOptimizer

optimizer = ClassicalOptimizer(seed=7)
solution = optimizer.optimize(problem, algorithm="particle_swarm",
                              params={"max_iterations": 200})

print(f"Fitness: {solution.fitness:.4f}  feasible={solution.feasible}")
print(f"Assignment: {solution.variables}")
print(f"Runner-ups: {len(solution.alternatives)}")
```

Performance Characteristics:
----------------------------
Algorithm              | Evaluations per iteration | Memory
-----------------------|---------------------------|--------
Genetic algorithm      | N (offspring)             | O(N x d)
Simulated annealing    | 1                         | O(d)
Particle swarm         | P (particles)             | O(P x d)
Hill climbing          | K (neighbors)             | O(K x d)
Tabu search            | K (neighbors)             | O(K x d + tabu)
Differential evolution | N (trials)                | O(N x d)

Where: N = population size, P = particle count, K = neighborhood size,
d = number of decision variables.
"""

import logging
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import ValidationError

from qoe.analyzer.convergence import convergence_rate, stability_score
from qoe.config import ClassicalConfig, RealtimeConfig
from qoe.problems.evaluation import Evaluation, FitnessModel, ProblemEvaluator
from qoe.problems.problem import OptimizationProblem, ProblemValidationError
from qoe.problems.solution import AlternativeSolution, OptimizationSolution
from qoe.solvers.search_space import SearchSpace, TabuList, acceptance_probability
from qoe.solvers.solver_base import SolverBase, SolverConfigurationError


# Configure module logger
logger = logging.getLogger(__name__)


ALGORITHMS = (
    "genetic_algorithm",
    "simulated_annealing",
    "particle_swarm",
    "hill_climbing",
    "tabu_search",
    "differential_evolution",
)

CONVERGENCE_WINDOW = 10
MAX_RETAINED_METRICS = 1000


@dataclass
class RunMetrics:
    """Resource and outcome figures of one algorithm run."""
    problem_id: str
    algorithm: str
    fitness: float
    iterations: int
    evaluations: int
    execution_time_ms: float
    memory_mb: float
    convergence_rate: float
    converged: bool
    timestamp: float = field(default_factory=time.time)


class _SearchRun:
    """
    Mutable state of a single run: fitness model, best-so-far tracking,
    history, archive of distinct candidates and stop conditions.
    """

    def __init__(
        self,
        problem: OptimizationProblem,
        model: FitnessModel,
        space: SearchSpace,
        config: ClassicalConfig,
        cancel_event: Optional[threading.Event],
    ):
        self.problem = problem
        self.model = model
        self.space = space
        self.config = config
        self.cancel_event = cancel_event
        self.deadline = time.perf_counter() + config.timeout_seconds

        self.best_x: Optional[np.ndarray] = None
        self.best: Optional[Evaluation] = None
        self.history: List[float] = []
        self.iterations = 0
        self.initial_best_fitness: Optional[float] = None
        self.cancelled = False
        self.timed_out = False

        self._archive: Dict[Any, Tuple[float, np.ndarray, Evaluation]] = {}
        self._archive_limit = 4 * max(config.alternatives_count, 1) + 50

    @property
    def best_fitness(self) -> float:
        return self.best.fitness if self.best is not None else float("-inf")

    def evaluate(self, x: np.ndarray) -> float:
        result = self.model.evaluate(self.space.decode(x))
        if self.best is None or result.fitness > self.best.fitness:
            self.best = result
            self.best_x = x.copy()
        self._remember(x, result)
        return result.fitness

    def _remember(self, x: np.ndarray, result: Evaluation) -> None:
        key = self.space.key(x)
        if key in self._archive:
            return
        self._archive[key] = (result.fitness, x.copy(), result)
        if len(self._archive) > self._archive_limit:
            keep = sorted(self._archive.items(), key=lambda kv: kv[1][0], reverse=True)
            self._archive = dict(keep[:self._archive_limit // 2])

    def mark_initialized(self) -> None:
        """Record the best fitness of the starting point(s), before any iteration."""
        self.initial_best_fitness = self.best_fitness

    def end_iteration(self) -> None:
        self.iterations += 1
        self.history.append(self.best_fitness)

    def should_stop(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.cancelled = True
            return True
        if time.perf_counter() >= self.deadline:
            self.timed_out = True
            return True
        return False

    def has_converged(self) -> bool:
        if len(self.history) < CONVERGENCE_WINDOW:
            return False
        return float(np.var(self.history[-CONVERGENCE_WINDOW:])) < self.config.convergence_threshold

    def alternatives(self, count: int) -> List[AlternativeSolution]:
        best_key = self.space.key(self.best_x)
        ranked = sorted(
            (entry for key, entry in self._archive.items() if key != best_key),
            key=lambda entry: entry[0],
            reverse=True,
        )
        return [
            AlternativeSolution(
                variables=self.space.decode(x),
                fitness=fitness,
                objective_values=dict(result.objective_values),
                feasible=result.feasible,
            )
            for fitness, x, result in ranked[:count]
        ]


class ClassicalOptimizer(SolverBase):
    """
    Classical metaheuristic solver.

    Parameters come from ``ClassicalConfig``; per-call ``params`` override
    single values, and the real-time profile swaps in the reduced budgets of
    ``RealtimeConfig``.

    Attributes:
        config (ClassicalConfig): Default algorithm parameters
        realtime_config (RealtimeConfig): Reduced budgets for real-time solves
        seed (Optional[int]): Base seed; None draws fresh entropy per run
        call_counts (Counter): Runs started per algorithm

    Thread Safety:
        ``optimize`` may be called from several worker threads at once; each
        run keeps its state in a private ``_SearchRun`` and shared counters
        are guarded by a lock.
    """

    def __init__(
        self,
        config: Optional[ClassicalConfig] = None,
        realtime_config: Optional[RealtimeConfig] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(solver_type="classical", solver_name="classical_metaheuristics")

        self.config = config or ClassicalConfig()
        self.realtime_config = realtime_config or RealtimeConfig()
        self.seed = seed

        self.call_counts: Counter = Counter()
        self._metrics: "OrderedDict[Tuple[str, str], RunMetrics]" = OrderedDict()
        self._lock = threading.Lock()

        logger.info(f"ClassicalOptimizer initialized with default_algorithm='{self.config.default_algorithm}'")

    # ========================================================================
    # Public API
    # ========================================================================

    def optimize(
        self,
        problem: OptimizationProblem,
        algorithm: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        evaluator: Optional[ProblemEvaluator] = None,
        cancel_event: Optional[threading.Event] = None,
        realtime: bool = False,
    ) -> OptimizationSolution:
        """
        Run one classical algorithm on the problem.

        Args:
            problem: Validated problem to solve
            algorithm: One of ``ALGORITHMS``; defaults to the configured default
            params: Per-call overrides of ``ClassicalConfig`` fields, plus
                an optional ``seed``
            evaluator: Objective function; defaults to ``problem.evaluator``
            cancel_event: Checked once per iteration; when set the run stops
                and returns its best-so-far solution
            realtime: Apply the reduced real-time budgets

        Returns:
            Best solution found, with history, alternatives and resource usage

        Raises:
            SolverConfigurationError: Unknown algorithm or invalid parameters
            ProblemValidationError: No evaluator available for the problem
            EvaluationError: The evaluator failed
        """
        algorithm = algorithm or self.config.default_algorithm
        if algorithm not in ALGORITHMS:
            raise SolverConfigurationError(
                f"Unsupported classical algorithm '{algorithm}'. Must be one of: {list(ALGORITHMS)}"
            )

        evaluator = evaluator or problem.evaluator
        if evaluator is None:
            raise ProblemValidationError(f"No evaluator available for problem '{problem.id}'")

        params = dict(params or {})
        seed = params.pop("seed", self.seed)
        config = self._resolve_config(params, realtime)

        run = _SearchRun(
            problem=problem,
            model=FitnessModel(problem, evaluator),
            space=SearchSpace(problem, np.random.default_rng(seed)),
            config=config,
            cancel_event=cancel_event,
        )

        with self._lock:
            self.call_counts[algorithm] += 1

        logger.info(f"Running {algorithm} on {problem} (realtime={realtime})")

        snapshot = self.measure_start()
        runner = getattr(self, f"_run_{algorithm}")
        converged = runner(run)
        elapsed_ms, memory_mb = self.measure_end(snapshot)

        solution = self._build_solution(run, algorithm, converged, elapsed_ms, memory_mb, realtime, seed)
        self._record_metrics(solution)

        if run.cancelled:
            logger.warning(f"{algorithm} on '{problem.id}' cancelled after {run.iterations} iterations")
        elif run.timed_out:
            logger.warning(f"{algorithm} on '{problem.id}' hit its deadline after {run.iterations} iterations")

        logger.info(f"{algorithm} complete: fitness={solution.fitness:.4f}, "
                    f"iterations={solution.iterations}, time={elapsed_ms:.1f}ms")
        return solution

    def get_solver_info(self) -> Dict[str, Any]:
        """Return information about the library's algorithms and parameters."""
        parameters = {}
        for name, info in ClassicalConfig.model_fields.items():
            parameters[name] = {
                "type": getattr(info.annotation, "__name__", str(info.annotation)),
                "default": getattr(self.config, name),
                "description": info.description,
            }

        return {
            "solver_type": self.solver_type,
            "solver_name": self.solver_name,
            "version": "1.0.0",
            "supported_problems": [
                "campaign_strategy",
                "resource_allocation",
                "prospect_prioritization",
                "channel_optimization",
                "timing_optimization",
            ],
            "algorithms": list(ALGORITHMS),
            "capabilities": {
                "exact": False,
                "approximate": True,
                "anytime": True,
                "parallel": False,
            },
            "parameters": parameters,
            "resource_requirements": {
                "memory_mb": 100,
                "cpu_cores": 1,
                "gpu_required": False,
            },
        }

    def get_metrics(self, problem_id: Optional[str] = None) -> List[RunMetrics]:
        """Latest run metrics per (problem id, algorithm), optionally for one problem."""
        with self._lock:
            metrics = list(self._metrics.values())
        if problem_id is not None:
            metrics = [m for m in metrics if m.problem_id == problem_id]
        return metrics

    def clear_metrics(self) -> None:
        with self._lock:
            self._metrics.clear()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _resolve_config(self, params: Dict[str, Any], realtime: bool) -> ClassicalConfig:
        unknown = set(params) - set(ClassicalConfig.model_fields)
        if unknown:
            raise SolverConfigurationError(f"Unknown algorithm parameters: {sorted(unknown)}")

        merged = self.config.model_dump()
        if realtime:
            rt = self.realtime_config
            merged.update({
                "max_iterations": min(merged["max_iterations"], rt.max_iterations),
                "population_size": min(merged["population_size"], rt.population_size),
                "particle_count": min(merged["particle_count"], rt.population_size),
                "neighborhood_size": min(merged["neighborhood_size"], rt.neighborhood_size),
                "timeout_seconds": min(merged["timeout_seconds"], rt.timeout_seconds),
            })
        merged.update(params)

        try:
            return ClassicalConfig(**merged)
        except ValidationError as e:
            raise SolverConfigurationError(f"Invalid algorithm parameters: {e}") from e

    def _build_solution(
        self,
        run: _SearchRun,
        algorithm: str,
        converged: bool,
        elapsed_ms: float,
        memory_mb: float,
        realtime: bool,
        seed: Optional[int],
    ) -> OptimizationSolution:
        best = run.best
        confidence = stability_score(run.history)
        if not best.feasible:
            confidence *= 0.5

        return OptimizationSolution(
            problem_id=run.problem.id,
            algorithm=algorithm,
            variables=run.space.decode(run.best_x),
            objective_values=dict(best.objective_values),
            fitness=best.fitness,
            feasible=best.feasible,
            confidence=confidence,
            alternatives=run.alternatives(run.config.alternatives_count),
            constraint_violations=dict(best.violations),
            iterations=run.iterations,
            evaluations=run.model.evaluations,
            fitness_history=list(run.history),
            converged=converged,
            execution_time_ms=elapsed_ms,
            memory_mb=memory_mb,
            metadata={
                "realtime": realtime,
                "seed": seed,
                "cancelled": run.cancelled,
                "timed_out": run.timed_out,
                "initial_best_fitness": run.initial_best_fitness,
                "parameters": run.config.model_dump(),
            },
        )

    def _record_metrics(self, solution: OptimizationSolution) -> None:
        metrics = RunMetrics(
            problem_id=solution.problem_id,
            algorithm=solution.algorithm,
            fitness=solution.fitness,
            iterations=solution.iterations,
            evaluations=solution.evaluations,
            execution_time_ms=solution.execution_time_ms,
            memory_mb=solution.memory_mb,
            convergence_rate=convergence_rate(solution.fitness_history),
            converged=solution.converged,
        )
        key = (solution.problem_id, solution.algorithm)
        with self._lock:
            self._metrics.pop(key, None)
            self._metrics[key] = metrics
            while len(self._metrics) > MAX_RETAINED_METRICS:
                self._metrics.popitem(last=False)

    # ========================================================================
    # Genetic Algorithm
    # ========================================================================

    def _run_genetic_algorithm(self, run: _SearchRun) -> bool:
        """
        Generational GA with elitist truncation.

        Each generation breeds N offspring from tournament-selected parents,
        then keeps the N fittest of parents + offspring, so the best
        individual is never lost.
        """
        cfg, space = run.config, run.space
        size = cfg.population_size

        population = [space.random_candidate() for _ in range(size)]
        fitness = np.array([run.evaluate(x) for x in population])
        run.mark_initialized()

        for generation in range(cfg.max_iterations):
            if run.should_stop():
                break

            offspring = []
            while len(offspring) < size:
                first = population[self._tournament(fitness, cfg.tournament_size, space.rng)]
                second = population[self._tournament(fitness, cfg.tournament_size, space.rng)]
                if space.rng.random() < cfg.crossover_rate:
                    child = space.uniform_crossover(first, second)
                else:
                    child = first.copy()
                offspring.append(space.mutate(child, cfg.mutation_rate, cfg.step_size))

            offspring_fitness = np.array([run.evaluate(x) for x in offspring])

            combined = population + offspring
            combined_fitness = np.concatenate([fitness, offspring_fitness])
            survivors = np.argsort(-combined_fitness, kind="stable")[:size]
            population = [combined[i] for i in survivors]
            fitness = combined_fitness[survivors]

            run.end_iteration()
            logger.debug(f"GA generation {generation}: best={run.best_fitness:.6f}")

            if run.has_converged():
                logger.debug(f"GA converged at generation {generation}")
                return True

        return False

    @staticmethod
    def _tournament(fitness: np.ndarray, tournament_size: int, rng: np.random.Generator) -> int:
        contestants = rng.choice(len(fitness), size=min(tournament_size, len(fitness)), replace=False)
        return int(contestants[np.argmax(fitness[contestants])])

    # ========================================================================
    # Simulated Annealing
    # ========================================================================

    def _run_simulated_annealing(self, run: _SearchRun) -> bool:
        """
        Simulated annealing on a single current solution.

        Improving (or equal) neighbors are always accepted; worsening ones
        with probability exp(delta / T). T is multiplied by the cooling rate
        after every iteration and the run ends once it falls below
        ``min_temperature``.
        """
        cfg, space = run.config, run.space

        current = space.random_candidate()
        current_fitness = run.evaluate(current)
        run.mark_initialized()
        temperature = cfg.initial_temperature

        for iteration in range(cfg.max_iterations):
            if temperature < cfg.min_temperature:
                logger.debug(f"Temperature frozen at iteration {iteration}")
                return True
            if run.should_stop():
                break

            candidate, _ = space.neighbor(current, cfg.step_size)
            candidate_fitness = run.evaluate(candidate)
            delta = candidate_fitness - current_fitness

            if space.rng.random() < acceptance_probability(delta, temperature):
                current, current_fitness = candidate, candidate_fitness

            temperature *= cfg.cooling_rate
            run.end_iteration()

        return temperature < cfg.min_temperature

    # ========================================================================
    # Particle Swarm Optimization
    # ========================================================================

    def _run_particle_swarm(self, run: _SearchRun) -> bool:
        """
        Global-best PSO.

        v = w*v + c1*r1*(pbest - x) + c2*r2*(gbest - x), clamped to
        +-velocity_clamp * span, then x = repair(x + v).
        """
        cfg, space = run.config, run.space
        count = cfg.particle_count
        v_max = cfg.velocity_clamp * space.span

        positions = np.array([space.random_candidate() for _ in range(count)])
        velocities = space.rng.uniform(-1.0, 1.0, positions.shape) * v_max
        personal_best = positions.copy()
        personal_fitness = np.array([run.evaluate(x) for x in positions])
        run.mark_initialized()

        for iteration in range(cfg.max_iterations):
            if run.should_stop():
                break

            global_best = personal_best[int(np.argmax(personal_fitness))]
            positions, velocities = space.swarm_step(
                positions, velocities, personal_best, global_best,
                cfg.inertia_weight, cfg.cognitive_weight, cfg.social_weight, v_max,
            )
            fitness = np.array([run.evaluate(x) for x in positions])

            improved = fitness > personal_fitness
            personal_best[improved] = positions[improved]
            personal_fitness[improved] = fitness[improved]

            run.end_iteration()
            logger.debug(f"PSO iteration {iteration}: best={run.best_fitness:.6f}")

            if run.has_converged():
                return True

        return False

    # ========================================================================
    # Hill Climbing
    # ========================================================================

    def _run_hill_climbing(self, run: _SearchRun) -> bool:
        """Steepest ascent; stops at the first step without an improving neighbor."""
        cfg, space = run.config, run.space

        current = space.random_candidate()
        current_fitness = run.evaluate(current)
        run.mark_initialized()

        for iteration in range(cfg.max_iterations):
            if run.should_stop():
                break

            neighbors = [space.neighbor(current, cfg.step_size)[0] for _ in range(cfg.neighborhood_size)]
            fitness = [run.evaluate(x) for x in neighbors]
            best = int(np.argmax(fitness))

            if fitness[best] <= current_fitness:
                run.end_iteration()
                logger.debug(f"Hill climbing reached a local optimum at iteration {iteration}")
                return True

            current, current_fitness = neighbors[best], fitness[best]
            run.end_iteration()

        return False

    # ========================================================================
    # Tabu Search
    # ========================================================================

    def _run_tabu_search(self, run: _SearchRun) -> bool:
        """
        Tabu search over single-variable moves.

        Moves to the best admissible neighbor each iteration, even when it is
        worse than the current solution. A move is tabu while it sits in the
        FIFO memory, unless it yields a new global best.
        """
        cfg, space = run.config, run.space
        tabu = TabuList(cfg.tabu_list_size)

        current = space.random_candidate()
        run.evaluate(current)
        run.mark_initialized()

        for iteration in range(cfg.max_iterations):
            if run.should_stop():
                break

            best_before = run.best_fitness
            neighbors = [space.neighbor(current, cfg.step_size) for _ in range(cfg.neighborhood_size)]
            candidates = [(move, run.evaluate(x)) for x, move in neighbors]

            chosen = tabu.select(candidates, best_before)
            if chosen is not None:
                current = neighbors[chosen][0]
                tabu.add(candidates[chosen][0])
            else:
                logger.debug(f"Tabu search iteration {iteration}: every neighbor is tabu")

            run.end_iteration()
            if run.has_converged():
                return True

        return False

    # ========================================================================
    # Differential Evolution
    # ========================================================================

    def _run_differential_evolution(self, run: _SearchRun) -> bool:
        """
        DE/rand/1/bin.

        For every target i a mutant a + F*(b - c) is built from three distinct
        other members, crossed over binomially with the target, and the trial
        replaces the target only if strictly better. One evaluation per target.
        """
        cfg, space = run.config, run.space
        size = cfg.population_size

        population = np.array([space.random_candidate() for _ in range(size)])
        fitness = np.array([run.evaluate(x) for x in population])
        run.mark_initialized()

        for generation in range(cfg.max_iterations):
            if run.should_stop():
                break

            next_population = population.copy()
            next_fitness = fitness.copy()
            for i in range(size):
                others = [j for j in range(size) if j != i]
                a, b, c = space.rng.choice(others, size=3, replace=False)
                mutant = population[a] + cfg.de_scaling_factor * (population[b] - population[c])
                trial = space.binomial_crossover(population[i], mutant, cfg.de_crossover_rate)
                trial_fitness = run.evaluate(trial)
                if trial_fitness > fitness[i]:
                    next_population[i] = trial
                    next_fitness[i] = trial_fitness

            population, fitness = next_population, next_fitness
            run.end_iteration()
            logger.debug(f"DE generation {generation}: best={run.best_fitness:.6f}")

            if run.has_converged():
                return True

        return False
