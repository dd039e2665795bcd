"""
Unit tests for the notification channel and the performance monitor.
"""

import asyncio

import pytest

from qoe.config import MonitoringConfig
from qoe.monitoring.notifications import (
    FallbackTriggered,
    NotificationChannel,
    NotificationType,
    OptimizationCompleted,
    OptimizationStarted,
)
from qoe.monitoring.performance_monitor import PerformanceMonitor


class TestNotificationChannel:
    """Test callback and queue delivery."""

    def test_callback_receives_notifications(self):
        channel = NotificationChannel()
        received = []
        channel.register(received.append)

        channel.emit(OptimizationStarted(problem_id="p1"))

        assert len(received) == 1
        assert received[0].type == NotificationType.OPTIMIZATION_STARTED
        assert channel.count(NotificationType.OPTIMIZATION_STARTED) == 1

    def test_callback_type_filter(self):
        channel = NotificationChannel()
        fallbacks = []
        channel.register(fallbacks.append, types={NotificationType.FALLBACK_TRIGGERED})

        channel.emit(OptimizationStarted(problem_id="p1"))
        channel.emit(FallbackTriggered(problem_id="p1", reason="offline", fallback_algorithm="genetic_algorithm"))

        assert [n.type for n in fallbacks] == [NotificationType.FALLBACK_TRIGGERED]

    def test_failing_callback_is_isolated(self):
        """A raising subscriber never reaches the emitter or other subscribers."""
        channel = NotificationChannel()
        received = []

        def broken(notification):
            raise RuntimeError("subscriber bug")

        channel.register(broken)
        channel.register(received.append)

        channel.emit(OptimizationStarted(problem_id="p1"))

        assert len(received) == 1

    def test_register_requires_callable(self):
        with pytest.raises(TypeError, match="must be callable"):
            NotificationChannel().register("not a callback")

    def test_unregister(self):
        channel = NotificationChannel()
        received = []
        channel.register(received.append)
        channel.unregister(received.append)

        channel.emit(OptimizationStarted(problem_id="p1"))

        assert received == []
        assert len(channel) == 0

    @pytest.mark.asyncio
    async def test_queue_subscriber(self):
        channel = NotificationChannel(queue_size=5)
        queue = channel.subscribe()

        channel.emit(OptimizationCompleted(problem_id="p1", source="classical", fitness=0.7, computation_time_ms=12.0))

        notification = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert notification.problem_id == "p1"
        assert notification.to_dict()["type"] == "optimization_completed"

    @pytest.mark.asyncio
    async def test_full_queue_drops_notifications(self):
        channel = NotificationChannel(queue_size=1)
        queue = channel.subscribe()

        channel.emit(OptimizationStarted(problem_id="p1"))
        channel.emit(OptimizationStarted(problem_id="p2"))

        assert queue.qsize() == 1
        assert (await queue.get()).problem_id == "p1"
        assert channel.count(NotificationType.OPTIMIZATION_STARTED) == 2

        channel.unsubscribe(queue)
        channel.emit(OptimizationStarted(problem_id="p3"))
        assert queue.empty()

    def test_recent_history(self):
        channel = NotificationChannel(history_size=2)
        for i in range(3):
            channel.emit(OptimizationStarted(problem_id=f"p{i}"))

        assert [n.problem_id for n in channel.recent()] == ["p1", "p2"]
        assert channel.recent(NotificationType.PERFORMANCE_ALERT) == []


class TestPerformanceMonitor:
    """Test rolling statistics and threshold alerts."""

    @pytest.fixture
    def channel(self):
        return NotificationChannel()

    @pytest.fixture
    def config(self):
        return MonitoringConfig(
            interval_seconds=0.01,
            min_cache_hit_rate=0.5,
            max_avg_computation_time_ms=100.0,
            min_samples=3,
        )

    def test_empty_statistics(self, config, channel):
        monitor = PerformanceMonitor(config, channel)

        assert monitor.cache_hit_rate is None
        assert monitor.average_computation_time_ms is None
        assert monitor.check_thresholds() == []

    def test_rolling_figures(self, config, channel):
        monitor = PerformanceMonitor(config, channel)
        for hit in (True, False, False, True):
            monitor.record_cache_lookup(hit)
        monitor.record_solve(10.0)
        monitor.record_solve(30.0)
        monitor.record_fallback()
        monitor.record_failure()

        stats = monitor.get_statistics()

        assert stats["cache_hit_rate"] == 0.5
        assert stats["average_computation_time_ms"] == 20.0
        assert stats["total_solves"] == 2
        assert stats["total_fallbacks"] == 1
        assert stats["total_failures"] == 1

    def test_alerts_need_minimum_samples(self, config, channel):
        monitor = PerformanceMonitor(config, channel)
        monitor.record_cache_lookup(False)
        monitor.record_solve(5000.0)

        assert monitor.check_thresholds() == []

    def test_threshold_breaches_emit_alerts(self, config, channel):
        monitor = PerformanceMonitor(config, channel)
        for _ in range(3):
            monitor.record_cache_lookup(False)
            monitor.record_solve(500.0)

        alerts = monitor.check_thresholds()

        severities = {a.metric: a.severity for a in alerts}
        assert severities == {"cache_hit_rate": "medium", "avg_computation_time": "high"}
        assert channel.count(NotificationType.PERFORMANCE_ALERT) == 2

    def test_healthy_figures_emit_nothing(self, config, channel):
        monitor = PerformanceMonitor(config, channel)
        for _ in range(3):
            monitor.record_cache_lookup(True)
            monitor.record_solve(10.0)

        assert monitor.check_thresholds() == []

    @pytest.mark.asyncio
    async def test_periodic_task(self, config, channel):
        """The monitor checks on its own timer, independently of solves."""
        monitor = PerformanceMonitor(config, channel)
        for _ in range(3):
            monitor.record_cache_lookup(False)

        async with monitor:
            assert monitor.is_running
            await asyncio.sleep(0.1)

        assert not monitor.is_running
        assert monitor.checks_run >= 1
        assert channel.count(NotificationType.PERFORMANCE_ALERT) >= 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, config, channel):
        monitor = PerformanceMonitor(config, channel)
        monitor.start()
        task = monitor._task
        monitor.start()

        assert monitor._task is task
        await monitor.stop()
        await monitor.stop()
