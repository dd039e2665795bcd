"""
Optimization Engine for the Quantum-Inspired Optimization Engine.

This module coordinates a solve from submission to result delivery,
integrating selection, caching, the pluggable backend, the classical
fallback, analysis and monitoring into one explicitly constructed engine.

Key Responsibilities:
--------------------
1. **Validation**: Reject malformed problems and problems without an
   evaluator before any computation
2. **Algorithm Selection**: Pick a strategy with the AlgorithmSelector
3. **Caching**: Serve repeated problems from a TTL + FIFO solution cache
4. **Execution**: Run the backend (when attached and enabled) or the
   classical library in a worker thread under a timeout
5. **Fallback**: Re-run failed backend solves with the classical library
6. **Analysis**: Attach a SolutionAnalysis to every fresh solution
. **Analytics**: Keep a bounded log of runs for time-windowed analytics

Execution Modes:
---------------
- **submit**: regular solve, cached
- **submit_realtime**: reduced budgets, same selection and fallback, no cache
- **benchmark**: engine path vs plain classical path, side by side
- **warm_cache**: precompute and cache solutions for known problems

Per-call state machine:
----------------------
    CREATED -> RETURNED                                  (cache hit)
    CREATED -> ALGORITHM_SELECTED -> EXECUTING -> SUCCEEDED
            -> ANALYZED -> CACHED -> RETURNED
    EXECUTING -> FAILED -> FALLBACK_EXECUTING -> SUCCEEDED -> ...
    EXECUTING -> FAILED -> FAILED_TERMINAL               (no fallback)

The trace is logged and stored under ``metadata['state_trace']`` of the
returned QuantumOptimizationSolution.

Example Usage:
-------------
```python
from qoe.api.engine import OptimizationEngine
from qoe.config import Settings

engine = OptimizationEngine(settings=Settings())
engine.register_evaluator(ProblemType.CHANNEL_OPTIMIZATION, ChannelEvaluator())

async with engine:
    result = await engine.submit(problem)
    print(result.strategy, result.source, result.fitness)

    fast = await engine.submit_realtime(problem)
    report = await engine.benchmark(problem)
    print(f"quality ratio={report.quality_ratio:.2f} speedup={report.speedup:.2f}")
```
"""

import asyncio
import copy
import json
import logging
import threading
import time
from collections import OrderedDict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from qoe.analyzer.analytics import EngineAnalytics, RunRecord, generate_analytics
from qoe.analyzer.solution_analyzer import ExecutionMetrics, SolutionAnalyzer
from qoe.config import Settings
from qoe.monitoring.notifications import (
    FallbackTriggered,
    NotificationChannel,
    OptimizationCompleted,
    OptimizationFailed,
    OptimizationStarted,
    QuantumAdvantageDetected,
)
from qoe.monitoring.performance_monitor import PerformanceMonitor
from qoe.problems.evaluation import ProblemEvaluator
from qoe.problems.problem import OptimizationProblem, ProblemType, ProblemValidationError
from qoe.problems.solution import BackendMetrics, OptimizationSolution, QuantumOptimizationSolution
from qoe.router.algorithm_selector import AlgorithmConfig, AlgorithmSelector
from qoe.solvers.backend import BackendError, OptimizationBackend
from qoe.solvers.classical_optimizer import ClassicalOptimizer


# Configure module logger
logger = logging.getLogger(__name__)


# Hard limit on a classical run, on top of its own cooperative deadline
CLASSICAL_GRACE_FACTOR = 1.5
CLASSICAL_GRACE_SECONDS = 1.0


class OrchestratorException(Exception):
    """Base exception for engine errors."""
    pass


class ExecutionTimeout(OrchestratorException):
    """Raised when an execution exceeds its timeout and no fallback applies."""
    pass


class CallState(str, Enum):
    CREATED = "created"
    ALGORITHM_SELECTED = "algorithm_selected"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    ANALYZED = "analyzed"
    CACHED = "cached"
    RETURNED = "returned"
    FAILED = "failed"
    FALLBACK_EXECUTING = "fallback_executing"
    FAILED_TERMINAL = "failed_terminal"


# ============================================================================
# Solution Cache
# ============================================================================

class SolutionCache:
    """
    Solution cache keyed by problem fingerprint.

    Entries expire ``ttl_seconds`` after insertion and are dropped when read
    after expiry. When full, the oldest inserted entry is evicted (FIFO, not
    LRU: reads do not refresh an entry's position).

    Entries are deep copies: ``put`` stores a snapshot and ``get`` returns a
    fresh copy, so callers never share state with the cache.

    Args:
        max_size: Maximum number of entries
        ttl_seconds: Entry lifetime
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, max_size: int, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def fingerprint(problem: OptimizationProblem) -> str:
        """Problem id plus its structural signature."""
        return problem.id + json.dumps(problem.structural_signature(), sort_keys=True)

    def get(self, problem: OptimizationProblem) -> Optional[QuantumOptimizationSolution]:
        key = self.fingerprint(problem)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        solution, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            logger.debug(f"Cache entry for '{problem.id}' expired")
            return None

        self.hits += 1
        return copy.deepcopy(solution)

    def put(self, problem: OptimizationProblem, solution: QuantumOptimizationSolution) -> None:
        key = self.fingerprint(problem)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Cache full, evicted {evicted}")
        self._entries[key] = (copy.deepcopy(solution), self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, problem: OptimizationProblem) -> bool:
        return self.fingerprint(problem) in self._entries


@dataclass
class BenchmarkResult:
    """Side-by-side comparison of the engine path and the classical path."""
    problem_id: str
    engine_result: QuantumOptimizationSolution
    classical_solution: OptimizationSolution
    quality_ratio: float
    speedup: float
    engine_time_ms: float
    classical_time_ms: float
    advantage_detected: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "quality_ratio": self.quality_ratio,
            "speedup": self.speedup,
            "engine_time_ms": self.engine_time_ms,
            "classical_time_ms": self.classical_time_ms,
            "advantage_detected": self.advantage_detected,
            "engine_source": self.engine_result.source,
            "engine_fitness": self.engine_result.fitness,
            "classical_fitness": self.classical_solution.fitness,
            "classical_algorithm": self.classical_solution.algorithm,
        }


def quality_ratio(candidate: float, baseline: float) -> float:
    """
    Sign-safe ratio of two fitness values (higher fitness is better).

    Greater than 1 exactly when ``candidate`` beats ``baseline``.
    """
    if candidate > 0 and baseline > 0:
        return candidate / baseline
    if candidate < 0 and baseline < 0:
        return baseline / candidate
    shift = min(candidate, baseline)
    return (candidate - shift + 1.0) / (baseline - shift + 1.0)


@dataclass
class _CallContext:
    problem: OptimizationProblem
    realtime: bool
    strategy: Optional[str] = None
    algorithm: Optional[str] = None
    trace: List[CallState] = field(default_factory=lambda: [CallState.CREATED])

    def advance(self, state: CallState) -> None:
        self.trace.append(state)
        logger.debug(f"[{self.problem.id}] -> {state.value}")

    @property
    def trace_values(self) -> List[str]:
        return [s.value for s in self.trace]


# ============================================================================
# Engine
# ============================================================================

class OptimizationEngine:
    """
    Coordinate solves from submission to result delivery.

    Attributes:
        settings (Settings): Engine configuration
        classical (ClassicalOptimizer): Classical metaheuristic library
        backend (Optional[OptimizationBackend]): External backend, if any
        selector (AlgorithmSelector): Strategy selection
        analyzer (SolutionAnalyzer): Post-hoc solution analysis
        channel (NotificationChannel): Engine notifications
        monitor (PerformanceMonitor): Rolling statistics and periodic alerts
        cache (SolutionCache): Solution cache

    Thread Safety:
        Call from a single event loop. CPU-bound work runs in worker threads,
        but cache, statistics and notifications are only touched on the loop.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        classical_optimizer: Optional[ClassicalOptimizer] = None,
        backend: Optional[OptimizationBackend] = None,
        analyzer: Optional[SolutionAnalyzer] = None,
        channel: Optional[NotificationChannel] = None,
        selector: Optional[AlgorithmSelector] = None,
        cache: Optional[SolutionCache] = None,
        evaluators: Optional[Dict[ProblemType, ProblemEvaluator]] = None,
    ):
        logger.info("Initializing OptimizationEngine")

        self.settings = settings or Settings()
        self.classical = classical_optimizer or ClassicalOptimizer(
            config=self.settings.classical, realtime_config=self.settings.realtime
        )
        self.backend = backend
        self.selector = selector or AlgorithmSelector(self.settings.backend, self.settings.realtime)
        self.analyzer = analyzer or SolutionAnalyzer(self.settings.analyzer)
        if channel is None:
            channel = NotificationChannel(queue_size=self.settings.monitoring.notification_queue_size)
        self.channel = channel
        self.monitor = PerformanceMonitor(self.settings.monitoring, self.channel)
        if cache is None:
            cache = SolutionCache(self.settings.cache.max_size, self.settings.cache.ttl_seconds)
        self.cache = cache
        self._evaluators: Dict[ProblemType, ProblemEvaluator] = dict(evaluators or {})
        self._runs: deque = deque(maxlen=self.settings.monitoring.history_size)
        self._executor: Optional[ThreadPoolExecutor] = None

        logger.info(f"OptimizationEngine ready (backend={backend!r}, "
                    f"cache={'enabled' if self.settings.cache.enabled else 'disabled'}, "
                    f"fallback={'enabled' if self.settings.fallback.enabled else 'disabled'})")

    # ========================================================================
    # Evaluators
    # ========================================================================

    def register_evaluator(self, problem_type: ProblemType, evaluator: ProblemEvaluator) -> None:
        """Use ``evaluator`` for problems of this type that carry none of their own."""
        self._evaluators[ProblemType(problem_type)] = evaluator
        logger.info(f"Registered evaluator for {ProblemType(problem_type).value}: {evaluator!r}")

    def _prepare(self, problem: OptimizationProblem) -> OptimizationProblem:
        """Validate and attach an evaluator; rejections are reported as failures."""
        try:
            return self._attach_evaluator(problem)
        except ProblemValidationError as e:
            problem_id = str(getattr(problem, "id", None) or "unknown")
            problem_type = getattr(problem, "type", None)
            self.monitor.record_failure()
            self._runs.append(RunRecord(
                problem_id=problem_id,
                problem_type=problem_type.value if isinstance(problem_type, ProblemType) else "unknown",
                strategy=None,
                algorithm=None,
                source=None,
                success=False,
            ))
            self.channel.emit(OptimizationFailed(problem_id=problem_id, error=str(e), stage="validation"))
            logger.warning(f"Rejected problem '{problem_id}': {e}")
            raise

    def _attach_evaluator(self, problem: OptimizationProblem) -> OptimizationProblem:
        if not isinstance(problem, OptimizationProblem):
            raise ProblemValidationError(f"Expected OptimizationProblem, got {type(problem).__name__}")
        problem.validate()
        if problem.evaluator is not None:
            return problem
        evaluator = self._evaluators.get(problem.type)
        if evaluator is None:
            raise ProblemValidationError(
                f"No evaluator for problem '{problem.id}' of type {problem.type.value}"
            )
        return replace(problem, evaluator=evaluator)

    # ========================================================================
    # Public API
    # ========================================================================

    async def submit(self, problem: OptimizationProblem) -> QuantumOptimizationSolution:
        """
        Solve a problem through the full pipeline.

        Raises:
            ProblemValidationError: Malformed problem or no evaluator available
            ExecutionTimeout: Timed out with fallback disabled
            Exception: The backend's own error with fallback disabled, or a
                classical failure (e.g. EvaluationError)
        """
        return await self._solve(problem, realtime=False, use_cache=self.settings.cache.enabled)

    async def submit_realtime(self, problem: OptimizationProblem) -> QuantumOptimizationSolution:
        """Solve with real-time budgets; never reads or writes the cache."""
        return await self._solve(problem, realtime=True, use_cache=False)

    async def benchmark(self, problem: OptimizationProblem) -> BenchmarkResult:
        """
        Solve once through the engine path and once with the default classical
        algorithm, and compare fitness and time.

        Emits ``quantum_advantage_detected`` when the backend produced the
        engine result and its quality ratio or speedup exceeds
        ``backend.advantage_alert_ratio``.
        """
        problem = self._prepare(problem)
        logger.info(f"Benchmarking '{problem.id}'")

        ctx = _CallContext(problem=problem, realtime=False)
        config = self.selector.select(problem)
        ctx.strategy = config.strategy.value
        ctx.advance(CallState.ALGORITHM_SELECTED)

        engine_started = time.perf_counter()
        engine_result = await self._execute(ctx, config)
        engine_time_ms = (time.perf_counter() - engine_started) * 1000.0

        classical_started = time.perf_counter()
        classical_result = await self._run_classical(
            ctx, config, self.settings.classical.default_algorithm, fallback_used=False
        )
        classical_time_ms = (time.perf_counter() - classical_started) * 1000.0

        ratio = quality_ratio(engine_result.fitness, classical_result.fitness)
        speedup = classical_time_ms / max(engine_time_ms, 1e-6)
        threshold = self.settings.backend.advantage_alert_ratio
        detected = engine_result.source == "backend" and (ratio > threshold or speedup > threshold)

        if detected:
            logger.info(f"Advantage detected on '{problem.id}': ratio={ratio:.3f}, speedup={speedup:.3f}")
            self.channel.emit(QuantumAdvantageDetected(problem_id=problem.id, quality_ratio=ratio, speedup=speedup))

        return BenchmarkResult(
            problem_id=problem.id,
            engine_result=engine_result,
            classical_solution=classical_result.solution,
            quality_ratio=ratio,
            speedup=speedup,
            engine_time_ms=engine_time_ms,
            classical_time_ms=classical_time_ms,
            advantage_detected=detected,
        )

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Solution cache cleared")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Engine statistics.

        Returns:
            {
                'solves': int, 'failures': int, 'fallbacks': int,
                'cache_hits': int, 'cache_misses': int, 'cache_hit_rate': float | None,
                'cache_size': int, 'average_computation_time_ms': float | None,
                'algorithm_calls': Dict[str, int], 'monitor_running': bool
            }
        """
        monitor = self.monitor.get_statistics()
        return {
            "solves": monitor["total_solves"],
            "failures": monitor["total_failures"],
            "fallbacks": monitor["total_fallbacks"],
            "cache_hits": monitor["cache_hits"],
            "cache_misses": monitor["cache_misses"],
            "cache_hit_rate": monitor["cache_hit_rate"],
            "cache_size": len(self.cache),
            "average_computation_time_ms": monitor["average_computation_time_ms"],
            "algorithm_calls": dict(self.classical.call_counts),
            "monitor_running": monitor["running"],
        }

    def get_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> EngineAnalytics:
        """
        Analytics over the recorded runs whose timestamp lies in ``[start, end)``.

        The run log keeps the last ``monitoring.history_size`` calls (fresh
        solves, cache hits and failures alike).

        Raises:
            ValueError: ``start`` is after ``end``
        """
        return generate_analytics(list(self._runs), start=start, end=end)

    async def warm_cache(self, problems: List[OptimizationProblem]) -> Dict[str, Any]:
        """
        Solve caller-supplied problems ahead of time and store the results.

        A problem that fails is logged and skipped; the rest are still solved.

        Returns:
            {'cached': List[str], 'failed': Dict[str, str]} keyed by problem id
        """
        report: Dict[str, Any] = {"cached": [], "failed": {}}
        if not self.settings.cache.enabled:
            logger.warning(f"Cache disabled, skipping warm-up of {len(problems)} problems")
            return report

        logger.info(f"Warming cache with {len(problems)} problems")
        for problem in problems:
            problem_id = str(getattr(problem, "id", None) or "unknown")
            try:
                await self._solve(problem, realtime=False, use_cache=True)
            except Exception as e:
                logger.warning(f"Could not precompute solution for '{problem_id}': {e}")
                report["failed"][problem_id] = f"{type(e).__name__}: {e}"
                continue
            report["cached"].append(problem_id)

        logger.info(f"Cache warm-up done: {len(report['cached'])} cached, {len(report['failed'])} failed")
        return report

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        if self.settings.monitoring.enabled:
            self.monitor.start()
        logger.info("OptimizationEngine started")

    async def shutdown(self) -> None:
        await self.monitor.stop()
        self.classical._cleanup()
        if self._executor is not None:
            # Running backend calls cannot be interrupted; queued ones are dropped
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("OptimizationEngine shut down")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _solve(self, problem: OptimizationProblem, realtime: bool, use_cache: bool) -> QuantumOptimizationSolution:
        problem = self._prepare(problem)
        ctx = _CallContext(problem=problem, realtime=realtime)
        self.channel.emit(OptimizationStarted(problem_id=problem.id, realtime=realtime))
        started = time.perf_counter()

        if use_cache:
            cached = self.cache.get(problem)
            self.monitor.record_cache_lookup(hit=cached is not None)
            if cached is not None:
                ctx.advance(CallState.RETURNED)
                elapsed_ms = (time.perf_counter() - started) * 1000.0
                logger.info(f"Cache hit for '{problem.id}'")
                self._record_run(ctx, cached, elapsed_ms, cached=True)
                self.channel.emit(OptimizationCompleted(
                    problem_id=problem.id,
                    source=cached.source,
                    fitness=cached.fitness,
                    computation_time_ms=elapsed_ms,
                    cached=True,
                ))
                return replace(cached, metadata={**cached.metadata, "state_trace": ctx.trace_values, "cache_hit": True})

        config = self.selector.select(problem, realtime=realtime)
        ctx.strategy = config.strategy.value
        ctx.advance(CallState.ALGORITHM_SELECTED)

        result = await self._execute(ctx, config)

        metrics = ExecutionMetrics.from_solution(result.solution, predicted_advantage=result.metrics.predicted_advantage)
        result.solution.analysis = self.analyzer.analyze(result.solution, problem, execution_metrics=metrics)
        ctx.advance(CallState.ANALYZED)

        result.computation_time_ms = (time.perf_counter() - started) * 1000.0
        if use_cache:
            ctx.advance(CallState.CACHED)
        ctx.advance(CallState.RETURNED)
        result.metadata.update({
            "state_trace": ctx.trace_values,
            "cache_hit": False,
            "problem": problem.get_metadata(),
        })
        if use_cache:
            self.cache.put(problem, result)

        self.monitor.record_solve(result.computation_time_ms)
        self._record_run(ctx, result, result.computation_time_ms)
        self.channel.emit(OptimizationCompleted(
            problem_id=problem.id,
            source=result.source,
            fitness=result.fitness,
            computation_time_ms=result.computation_time_ms,
        ))
        logger.info(f"Solved '{problem.id}' via {result.source} ({result.strategy}) "
                    f"fitness={result.fitness:.4f} in {result.computation_time_ms:.1f}ms "
                    f"[{' -> '.join(ctx.trace_values)}]")
        return result

    async def _execute(self, ctx: _CallContext, config: AlgorithmConfig) -> QuantumOptimizationSolution:
        """Run the backend with classical fallback, or the classical library directly."""
        if self.backend is None or not self.settings.backend.enabled:
            return await self._run_classical(ctx, config, config.classical_algorithm, fallback_used=False)

        ctx.advance(CallState.EXECUTING)
        try:
            result = await self._run_backend(ctx, config)
        except Exception as e:
            ctx.advance(CallState.FAILED)
            reason = f"{type(e).__name__}: {e}"
            logger.warning(f"Backend failed for '{ctx.problem.id}': {reason}")

            if not self.settings.fallback.enabled:
                self._fail(ctx, reason, stage="backend")
                raise

            fallback_algorithm = self.settings.fallback.algorithm
            self.monitor.record_fallback()
            self.channel.emit(FallbackTriggered(
                problem_id=ctx.problem.id, reason=reason, fallback_algorithm=fallback_algorithm
            ))
            ctx.advance(CallState.FALLBACK_EXECUTING)
            return await self._run_classical(ctx, config, fallback_algorithm, fallback_used=True, advance=False)

        ctx.advance(CallState.SUCCEEDED)
        return result

    def _timeout(self, realtime: bool) -> float:
        if realtime:
            return self.settings.realtime.timeout_seconds
        return self.settings.backend.timeout_seconds

    def _backend_executor(self) -> ThreadPoolExecutor:
        """Worker pool reserved for backend calls, separate from the classical threads."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.backend.max_workers, thread_name_prefix="qoe-backend"
            )
        return self._executor

    async def _run_backend(self, ctx: _CallContext, config: AlgorithmConfig) -> QuantumOptimizationSolution:
        timeout = self._timeout(ctx.realtime)
        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(self._backend_executor(), self.backend.execute, ctx.problem, config), timeout
            )
        except asyncio.TimeoutError as e:
            accepted = self.backend.cancel(ctx.problem.id)
            logger.warning(f"Backend timed out for '{ctx.problem.id}' after {timeout}s "
                           f"(cancel {'accepted' if accepted else 'not supported'})")
            raise ExecutionTimeout(f"Backend exceeded {timeout}s for '{ctx.problem.id}'") from e

        if not isinstance(result, QuantumOptimizationSolution):
            raise BackendError(f"Backend returned {type(result).__name__}, expected QuantumOptimizationSolution")
        ctx.algorithm = result.solution.algorithm
        result.source = "backend"
        result.strategy = config.strategy.value
        return result

    async def _run_classical(
        self,
        ctx: _CallContext,
        config: AlgorithmConfig,
        algorithm: str,
        fallback_used: bool,
        advance: bool = True,
    ) -> QuantumOptimizationSolution:
        ctx.algorithm = algorithm
        if advance:
            ctx.advance(CallState.EXECUTING)

        timeout = min(self.settings.classical.timeout_seconds, self._timeout(ctx.realtime))
        iterations = min(config.iterations, self.settings.classical.max_iterations)
        params = {"max_iterations": iterations, "timeout_seconds": timeout}
        cancel_event = threading.Event()

        try:
            solution = await asyncio.wait_for(
                asyncio.to_thread(
                    self.classical.optimize,
                    ctx.problem,
                    algorithm,
                    params,
                    None,
                    cancel_event,
                    ctx.realtime,
                ),
                timeout * CLASSICAL_GRACE_FACTOR + CLASSICAL_GRACE_SECONDS,
            )
        except asyncio.TimeoutError as e:
            cancel_event.set()
            ctx.advance(CallState.FAILED)
            reason = f"Classical {algorithm} exceeded its time limit for '{ctx.problem.id}'"
            self._fail(ctx, reason, stage="classical")
            raise ExecutionTimeout(reason) from e
        except Exception as e:
            ctx.advance(CallState.FAILED)
            self._fail(ctx, f"{type(e).__name__}: {e}", stage="classical")
            raise

        ctx.advance(CallState.SUCCEEDED)
        budget = solution.metadata.get("parameters", {}).get("max_iterations") or iterations
        return QuantumOptimizationSolution(
            solution=solution,
            metrics=BackendMetrics(
                predicted_advantage=config.predicted_advantage,
                error_rate=0.0,
                resource_utilization=min(1.0, solution.iterations / budget) if budget else 0.0,
            ),
            strategy=config.strategy.value,
            source="classical",
            fallback_used=fallback_used,
        )

    def _fail(self, ctx: _CallContext, reason: str, stage: str) -> None:
        ctx.advance(CallState.FAILED_TERMINAL)
        self.monitor.record_failure()
        self._runs.append(RunRecord(
            problem_id=ctx.problem.id,
            problem_type=ctx.problem.type.value,
            strategy=ctx.strategy,
            algorithm=ctx.algorithm,
            source=None,
            success=False,
            fallback_used=CallState.FALLBACK_EXECUTING in ctx.trace,
        ))
        self.channel.emit(OptimizationFailed(problem_id=ctx.problem.id, error=reason, stage=stage))
        logger.error(f"Optimization of '{ctx.problem.id}' failed at {stage}: {reason} "
                     f"[{' -> '.join(ctx.trace_values)}]")

    def _record_run(
        self,
        ctx: _CallContext,
        result: QuantumOptimizationSolution,
        computation_time_ms: float,
        cached: bool = False,
    ) -> None:
        self._runs.append(RunRecord(
            problem_id=ctx.problem.id,
            problem_type=ctx.problem.type.value,
            strategy=result.strategy,
            algorithm=result.solution.algorithm,
            source=result.source,
            success=True,
            fallback_used=result.fallback_used,
            cached=cached,
            computation_time_ms=computation_time_ms,
            fitness=result.fitness,
        ))

    def __repr__(self) -> str:
        return (f"OptimizationEngine(backend={self.backend!r}, "
                f"cache_size={len(self.cache)}, solves={self.monitor.total_solves})")
