"""
Unit tests for the optimization engine: cache, backend, fallback, real-time
mode, benchmark and lifecycle.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from qoe.api.engine import (
    ExecutionTimeout,
    OptimizationEngine,
    SolutionCache,
    quality_ratio,
)
from qoe.config import BackendConfig, FallbackConfig, MonitoringConfig
from qoe.monitoring.notifications import NotificationChannel, NotificationType
from qoe.problems.problem import ProblemType, ProblemValidationError
from qoe.problems.solution import BackendMetrics, OptimizationSolution, QuantumOptimizationSolution
from qoe.solvers.backend import BackendError, OptimizationBackend


class FailingBackend(OptimizationBackend):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def execute(self, problem, config):
        self.calls += 1
        raise BackendError("annealer offline")


class SlowBackend(OptimizationBackend):
    name = "slow"

    def execute(self, problem, config):
        time.sleep(0.5)
        raise AssertionError("should have timed out")


class HangingBackend(OptimizationBackend):
    """Blocks until released and records cancel requests."""
    name = "hanging"

    def __init__(self):
        self.release = threading.Event()
        self.cancelled = []
        self.threads = []

    def execute(self, problem, config):
        self.threads.append(threading.current_thread().name)
        self.release.wait(timeout=5.0)
        raise BackendError("released")

    def cancel(self, problem_id):
        self.cancelled.append(problem_id)
        return True


class StaticBackend(OptimizationBackend):
    """Returns an all-social mix with a fitness no classical run can reach."""
    name = "static"

    def __init__(self):
        self.configs = []

    def execute(self, problem, config):
        self.configs.append(config)
        variables = {v.name: 0.0 for v in problem.variables}
        variables["weight_social"] = 1.0
        solution = OptimizationSolution(
            problem_id=problem.id,
            algorithm="static_backend",
            variables=variables,
            objective_values={"reach": 0.9, "engagement": 0.5, "cost_efficiency": 0.6},
            fitness=10.0,
            feasible=True,
            confidence=1.0,
            fitness_history=[10.0] * 5,
        )
        return QuantumOptimizationSolution(solution=solution, metrics=BackendMetrics(predicted_advantage=1.5))


def _total_classical_runs(engine):
    return sum(engine.classical.call_counts.values())


class TestSolutionCache:
    """Test TTL expiry and FIFO eviction."""

    def test_ttl_expiry(self, make_channel_problem):
        now = [100.0]
        cache = SolutionCache(max_size=10, ttl_seconds=5.0, clock=lambda: now[0])
        problem = make_channel_problem()

        cache.put(problem, "solution")
        now[0] = 104.9
        assert cache.get(problem) == "solution"

        now[0] = 105.0
        assert cache.get(problem) is None
        assert len(cache) == 0

    def test_fifo_eviction_ignores_reads(self, make_channel_problem):
        cache = SolutionCache(max_size=2, ttl_seconds=60.0)
        first, second, third = (make_channel_problem(f"p{i}") for i in range(3))

        cache.put(first, "s1")
        cache.put(second, "s2")
        assert cache.get(first) == "s1"
        cache.put(third, "s3")

        assert first not in cache
        assert second in cache
        assert third in cache
        assert cache.evictions == 1

    def test_fingerprint_uses_id_and_structure(self, make_channel_problem):
        a = SolutionCache.fingerprint(make_channel_problem("p1"))
        b = SolutionCache.fingerprint(make_channel_problem("p2"))
        c = SolutionCache.fingerprint(make_channel_problem("p1", problem_type=ProblemType.TIMING_OPTIMIZATION))

        assert len({a, b, c}) == 3
        assert a == SolutionCache.fingerprint(make_channel_problem("p1"))


class TestQualityRatio:
    """Test the sign-safe fitness ratio."""

    def test_ratio_above_one_iff_candidate_better(self):
        assert quality_ratio(2.0, 1.0) == pytest.approx(2.0)
        assert quality_ratio(-1.0, -2.0) == pytest.approx(2.0)
        assert quality_ratio(0.5, -0.5) > 1.0
        assert quality_ratio(-0.5, 0.5) < 1.0
        assert quality_ratio(0.0, 0.0) == 1.0


class TestSubmit:
    """Test the regular pipeline without a backend."""

    @pytest.mark.asyncio
    async def test_solve_attaches_analysis_and_trace(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        result = await engine.submit(channel_problem)

        assert result.source == "classical"
        assert result.strategy == "approximation"
        assert result.fallback_used is False
        assert result.solution.algorithm == "particle_swarm"
        assert result.solution.analysis is not None
        assert sum(result.solution.variables.values()) == pytest.approx(1.0, abs=1e-9)
        assert result.metadata["state_trace"] == [
            "created", "algorithm_selected", "executing", "succeeded", "analyzed", "cached", "returned",
        ]
        assert result.computation_time_ms > 0.0

    @pytest.mark.asyncio
    async def test_repeated_submit_hits_cache(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        first = await engine.submit(channel_problem)
        second = await engine.submit(channel_problem)

        assert _total_classical_runs(engine) == 1
        assert second.id == first.id
        assert second.solution is not first.solution
        assert second.solution.variables == first.solution.variables
        assert second.metadata["state_trace"] == ["created", "returned"]
        assert second.metadata["cache_hit"] is True
        assert engine.get_statistics()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self, fast_settings, channel_problem):
        now = [0.0]
        cache = SolutionCache(max_size=10, ttl_seconds=5.0, clock=lambda: now[0])
        engine = OptimizationEngine(settings=fast_settings, cache=cache)

        await engine.submit(channel_problem)
        now[0] = 4.0
        await engine.submit(channel_problem)
        assert _total_classical_runs(engine) == 1

        now[0] = 6.0
        await engine.submit(channel_problem)
        assert _total_classical_runs(engine) == 2

    @pytest.mark.asyncio
    async def test_different_problem_ids_are_cached_separately(self, fast_settings, make_channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        await engine.submit(make_channel_problem("a"))
        await engine.submit(make_channel_problem("b"))

        assert _total_classical_runs(engine) == 2
        assert len(engine.cache) == 2

    @pytest.mark.asyncio
    async def test_disabled_cache(self, fast_settings, channel_problem):
        fast_settings.cache.enabled = False
        engine = OptimizationEngine(settings=fast_settings)

        await engine.submit(channel_problem)
        await engine.submit(channel_problem)

        assert _total_classical_runs(engine) == 2
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_notifications(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)
        received = []
        engine.channel.register(received.append)

        await engine.submit(channel_problem)

        assert [n.type for n in received] == [
            NotificationType.OPTIMIZATION_STARTED,
            NotificationType.OPTIMIZATION_COMPLETED,
        ]
        assert received[1].cached is False

    @pytest.mark.asyncio
    async def test_evaluator_registry(self, fast_settings, make_channel_problem, channel_evaluator):
        engine = OptimizationEngine(settings=fast_settings)
        problem = make_channel_problem(with_evaluator=False)

        with pytest.raises(ProblemValidationError, match="No evaluator"):
            await engine.submit(problem)

        engine.register_evaluator(ProblemType.CHANNEL_OPTIMIZATION, channel_evaluator)
        result = await engine.submit(problem)

        assert result.problem_id == "channel-mix"
        assert channel_evaluator.calls > 0

    @pytest.mark.asyncio
    async def test_invalid_submission(self, fast_settings):
        engine = OptimizationEngine(settings=fast_settings)
        with pytest.raises(ProblemValidationError):
            await engine.submit({"id": "not-a-problem"})

        failed = engine.channel.recent(NotificationType.OPTIMIZATION_FAILED)
        assert [(n.problem_id, n.stage) for n in failed] == [("unknown", "validation")]

    @pytest.mark.asyncio
    async def test_validation_failure_is_notified(self, fast_settings, make_channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        with pytest.raises(ProblemValidationError):
            await engine.submit(make_channel_problem(with_evaluator=False))

        failed = engine.channel.recent(NotificationType.OPTIMIZATION_FAILED)
        assert len(failed) == 1
        assert failed[0].problem_id == "channel-mix"
        assert failed[0].stage == "validation"
        assert "No evaluator" in failed[0].error
        assert engine.channel.count(NotificationType.OPTIMIZATION_STARTED) == 0
        assert engine.get_statistics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_injected_empty_collaborators_are_kept(self, fast_settings, channel_problem):
        cache = SolutionCache(max_size=10, ttl_seconds=60.0)
        channel = NotificationChannel(queue_size=10)
        engine = OptimizationEngine(settings=fast_settings, cache=cache, channel=channel)
        received = []
        channel.register(received.append)

        await engine.submit(channel_problem)

        assert engine.cache is cache
        assert engine.channel is channel
        assert len(cache) == 1
        assert [n.type for n in received] == [
            NotificationType.OPTIMIZATION_STARTED,
            NotificationType.OPTIMIZATION_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_cached_entry_is_isolated_from_callers(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        first = await engine.submit(channel_problem)
        original = dict(first.solution.variables)
        first.solution.variables["weight_email"] = 99.0
        first.metadata["cache_hit"] = "tampered"

        stored = engine.cache.get(channel_problem)
        second = await engine.submit(channel_problem)

        assert stored.metadata["cache_hit"] is False
        assert stored.metadata["state_trace"][-2:] == ["cached", "returned"]
        assert second.solution.variables == original
        assert second.metadata["cache_hit"] is True

    @pytest.mark.asyncio
    async def test_problem_summary_in_metadata(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        first = await engine.submit(channel_problem)
        second = await engine.submit(channel_problem)

        assert first.metadata["problem"] == channel_problem.get_metadata()
        assert first.metadata["problem"]["weight_groups"] == {"mix": 5}
        assert second.metadata["problem"]["id"] == "channel-mix"


class TestBackendAndFallback:
    """Test backend routing and the classical fallback."""

    @pytest.mark.asyncio
    async def test_backend_result_is_used(self, fast_settings, channel_problem):
        backend = StaticBackend()
        engine = OptimizationEngine(settings=fast_settings, backend=backend)

        result = await engine.submit(channel_problem)

        assert result.source == "backend"
        assert result.fitness == 10.0
        assert backend.configs[0].strategy.value == "approximation"
        assert _total_classical_runs(engine) == 0
        assert result.solution.analysis is not None

    @pytest.mark.asyncio
    async def test_failing_backend_triggers_one_fallback(self, fast_settings, channel_problem):
        backend = FailingBackend()
        engine = OptimizationEngine(settings=fast_settings, backend=backend)

        result = await engine.submit(channel_problem)

        assert backend.calls == 1
        assert result.source == "classical"
        assert result.fallback_used is True
        assert result.solution.algorithm == "genetic_algorithm"
        assert engine.channel.count(NotificationType.FALLBACK_TRIGGERED) == 1
        assert engine.channel.count(NotificationType.OPTIMIZATION_FAILED) == 0
        assert "annealer offline" in engine.channel.recent(NotificationType.FALLBACK_TRIGGERED)[0].reason
        assert result.metadata["state_trace"] == [
            "created", "algorithm_selected", "executing", "failed", "fallback_executing",
            "succeeded", "analyzed", "cached", "returned",
        ]
        assert engine.get_statistics()["fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_fallback_algorithm_is_configurable(self, fast_settings, channel_problem):
        fast_settings.fallback = FallbackConfig(algorithm="differential_evolution")
        engine = OptimizationEngine(settings=fast_settings, backend=FailingBackend())

        result = await engine.submit(channel_problem)

        assert result.solution.algorithm == "differential_evolution"

    @pytest.mark.asyncio
    async def test_fallback_disabled_propagates_error(self, fast_settings, channel_problem):
        fast_settings.fallback = FallbackConfig(enabled=False)
        engine = OptimizationEngine(settings=fast_settings, backend=FailingBackend())

        with pytest.raises(BackendError, match="annealer offline"):
            await engine.submit(channel_problem)

        assert engine.channel.count(NotificationType.FALLBACK_TRIGGERED) == 0
        assert engine.channel.count(NotificationType.OPTIMIZATION_FAILED) == 1
        assert len(engine.cache) == 0
        assert engine.get_statistics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_backend_timeout_falls_back(self, fast_settings, channel_problem):
        fast_settings.backend = BackendConfig(timeout_seconds=0.05)
        engine = OptimizationEngine(settings=fast_settings, backend=SlowBackend())

        result = await engine.submit(channel_problem)

        assert result.fallback_used is True
        reason = engine.channel.recent(NotificationType.FALLBACK_TRIGGERED)[0].reason
        assert "ExecutionTimeout" in reason

    @pytest.mark.asyncio
    async def test_backend_timeout_without_fallback(self, fast_settings, channel_problem):
        fast_settings.backend = BackendConfig(timeout_seconds=0.05)
        fast_settings.fallback = FallbackConfig(enabled=False)
        engine = OptimizationEngine(settings=fast_settings, backend=SlowBackend())

        with pytest.raises(ExecutionTimeout):
            await engine.submit(channel_problem)

    @pytest.mark.asyncio
    async def test_disabled_backend_is_skipped(self, fast_settings, channel_problem):
        fast_settings.backend = BackendConfig(enabled=False)
        backend = FailingBackend()
        engine = OptimizationEngine(settings=fast_settings, backend=backend)

        result = await engine.submit(channel_problem)

        assert backend.calls == 0
        assert result.fallback_used is False
        assert engine.channel.count(NotificationType.FALLBACK_TRIGGERED) == 0

    @pytest.mark.asyncio
    async def test_backend_timeout_requests_cancel(self, fast_settings, channel_problem):
        fast_settings.backend = BackendConfig(timeout_seconds=0.05)
        backend = HangingBackend()
        engine = OptimizationEngine(settings=fast_settings, backend=backend)

        try:
            result = await engine.submit(channel_problem)
        finally:
            backend.release.set()
            await engine.shutdown()

        assert result.fallback_used is True
        assert backend.cancelled == ["channel-mix"]
        assert backend.threads[0].startswith("qoe-backend")

    @pytest.mark.asyncio
    async def test_hung_backend_does_not_block_fallback(self, fast_settings, make_channel_problem):
        """A worker stuck in the backend leaves the classical fallback unaffected."""
        fast_settings.backend = BackendConfig(timeout_seconds=0.05, max_workers=1)
        backend = HangingBackend()
        engine = OptimizationEngine(settings=fast_settings, backend=backend)

        try:
            first = await engine.submit(make_channel_problem("a"))
            second = await engine.submit(make_channel_problem("b"))

            # The only backend worker is still blocked on the first call
            assert len(backend.threads) == 1
        finally:
            backend.release.set()
            await engine.shutdown()

        assert first.fallback_used is True
        assert second.fallback_used is True
        assert first.source == second.source == "classical"
        assert backend.cancelled == ["a", "b"]
        assert engine._executor is None


class TestRealtime:
    """Test real-time submissions."""

    @pytest.mark.asyncio
    async def test_realtime_bypasses_cache(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        first = await engine.submit_realtime(channel_problem)
        await engine.submit_realtime(channel_problem)

        assert _total_classical_runs(engine) == 2
        assert len(engine.cache) == 0
        assert first.solution.metadata["realtime"] is True
        assert "cached" not in first.metadata["state_trace"]
        assert engine.get_statistics()["cache_hits"] == 0

    @pytest.mark.asyncio
    async def test_realtime_uses_reduced_budgets(self, fast_settings, channel_problem):
        fast_settings.classical.max_iterations = 1000
        engine = OptimizationEngine(settings=fast_settings)

        result = await engine.submit_realtime(channel_problem)

        parameters = result.solution.metadata["parameters"]
        assert parameters["max_iterations"] <= fast_settings.realtime.max_iterations
        assert parameters["timeout_seconds"] <= fast_settings.realtime.timeout_seconds

    @pytest.mark.asyncio
    async def test_realtime_failure_still_falls_back(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings, backend=FailingBackend())

        result = await engine.submit_realtime(channel_problem)

        assert result.fallback_used is True
        assert engine.channel.count(NotificationType.FALLBACK_TRIGGERED) == 1


class TestBenchmark:
    """Test engine-vs-classical benchmarking."""

    @pytest.mark.asyncio
    async def test_benchmark_detects_advantage(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings, backend=StaticBackend())

        report = await engine.benchmark(channel_problem)

        assert report.engine_result.source == "backend"
        assert report.classical_solution.algorithm == fast_settings.classical.default_algorithm
        assert report.quality_ratio > 1.0
        assert report.advantage_detected is True
        assert engine.channel.count(NotificationType.QUANTUM_ADVANTAGE_DETECTED) == 1
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_benchmark_without_backend(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        report = await engine.benchmark(channel_problem)

        assert report.engine_result.source == "classical"
        assert report.advantage_detected is False
        assert report.speedup > 0.0
        assert engine.channel.count(NotificationType.QUANTUM_ADVANTAGE_DETECTED) == 0
        assert report.to_dict()["classical_algorithm"] == "genetic_algorithm"


class TestAnalytics:
    """Test the run log and time-windowed analytics."""

    @pytest.mark.asyncio
    async def test_runs_are_recorded(self, fast_settings, make_channel_problem):
        engine = OptimizationEngine(settings=fast_settings, backend=FailingBackend())

        await engine.submit(make_channel_problem("a"))
        await engine.submit(make_channel_problem("a"))
        with pytest.raises(ProblemValidationError):
            await engine.submit(make_channel_problem("b", with_evaluator=False))

        analytics = engine.get_analytics()
        system = analytics.system

        assert system.total_optimizations == 3
        assert system.success_rate == pytest.approx(2 / 3)
        assert system.error_rate == pytest.approx(1 / 3)
        assert system.cache_hit_rate == pytest.approx(1 / 3)
        assert system.fallback_rate == pytest.approx(1 / 3)
        assert system.backend_utilization == 0.0
        assert analytics.by_algorithm["genetic_algorithm"].usage_count == 2
        assert analytics.by_strategy["approximation"].success_rate == 1.0
        assert analytics.by_problem_type["channel_optimization"].usage_count == 3

    @pytest.mark.asyncio
    async def test_time_window(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)
        await engine.submit(channel_problem)
        now = datetime.now(timezone.utc)

        assert engine.get_analytics(start=now - timedelta(hours=1)).system.total_optimizations == 1
        assert engine.get_analytics(start=now + timedelta(hours=1)).system.total_optimizations == 0
        assert engine.get_analytics(end=now - timedelta(hours=1)).system.total_optimizations == 0

        with pytest.raises(ValueError, match="after end"):
            engine.get_analytics(start=now, end=now - timedelta(seconds=1))

    @pytest.mark.asyncio
    async def test_run_log_is_bounded(self, fast_settings, channel_problem):
        fast_settings.monitoring = MonitoringConfig(enabled=False, history_size=10)
        engine = OptimizationEngine(settings=fast_settings)

        for _ in range(12):
            await engine.submit(channel_problem)

        assert engine.get_analytics().system.total_optimizations == 10
        assert engine.get_analytics().system.cache_hit_rate == 1.0


class TestWarmCache:
    """Test precomputing solutions ahead of traffic."""

    @pytest.mark.asyncio
    async def test_warm_cache_skips_failures(self, fast_settings, make_channel_problem):
        engine = OptimizationEngine(settings=fast_settings)

        report = await engine.warm_cache([
            make_channel_problem("a"),
            make_channel_problem("b", with_evaluator=False),
            make_channel_problem("c"),
        ])

        assert report["cached"] == ["a", "c"]
        assert "No evaluator" in report["failed"]["b"]
        assert len(engine.cache) == 2

        result = await engine.submit(make_channel_problem("a"))
        assert result.metadata["cache_hit"] is True
        assert _total_classical_runs(engine) == 2

    @pytest.mark.asyncio
    async def test_warm_cache_with_cache_disabled(self, fast_settings, make_channel_problem):
        fast_settings.cache.enabled = False
        engine = OptimizationEngine(settings=fast_settings)

        report = await engine.warm_cache([make_channel_problem("a")])

        assert report == {"cached": [], "failed": {}}
        assert _total_classical_runs(engine) == 0


class TestLifecycle:
    """Test start/shutdown and statistics."""

    @pytest.mark.asyncio
    async def test_context_manager_runs_monitor(self, fast_settings, channel_problem):
        fast_settings.monitoring = MonitoringConfig(enabled=True, interval_seconds=60.0)

        async with OptimizationEngine(settings=fast_settings) as engine:
            assert engine.monitor.is_running
            await engine.submit(channel_problem)

        assert not engine.monitor.is_running

    @pytest.mark.asyncio
    async def test_statistics_and_clear_cache(self, fast_settings, channel_problem):
        engine = OptimizationEngine(settings=fast_settings)
        await engine.submit(channel_problem)
        await engine.submit(channel_problem)

        stats = engine.get_statistics()
        assert stats["solves"] == 1
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["cache_hit_rate"] == 0.5
        assert stats["algorithm_calls"] == {"particle_swarm": 1}

        engine.clear_cache()
        assert engine.get_statistics()["cache_size"] == 0
        assert "OptimizationEngine" in repr(engine)
