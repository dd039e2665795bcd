"""
Rolling performance statistics and periodic threshold checks.

The engine records every cache lookup and every completed solve here. A
background asyncio task, independent of any solve, wakes up every
``interval_seconds`` and compares the rolling figures with the configured
thresholds:

- cache hit rate below ``min_cache_hit_rate``          -> performance_alert (medium)
- average compute time above ``max_avg_computation_time_ms`` -> performance_alert (high)

A metric is only checked once at least ``min_samples`` observations exist,
so a freshly started engine does not raise alerts from a handful of calls.

Example:
    >>> monitor = PerformanceMonitor(MonitoringConfig(interval_seconds=30), channel)
    >>> async with monitor:
    ...     monitor.record_cache_lookup(hit=False)
    ...     monitor.record_solve(computation_time_ms=120.0)
"""

import asyncio
import logging
from collections import deque
from typing import Any, Dict, List, Optional

import numpy as np

from qoe.config import MonitoringConfig
from qoe.monitoring.notifications import NotificationChannel, PerformanceAlert

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """
    Rolling engine statistics plus the periodic alerting task.

    Attributes:
        config: Monitoring thresholds and window sizes
        channel: Where alerts are emitted
    """

    def __init__(self, config: MonitoringConfig, channel: NotificationChannel):
        self.config = config
        self.channel = channel

        self._lookups: deque = deque(maxlen=config.history_size)
        self._computation_times: deque = deque(maxlen=config.history_size)
        self._task: Optional[asyncio.Task] = None

        self.total_solves = 0
        self.total_failures = 0
        self.total_fallbacks = 0
        self.total_cache_hits = 0
        self.total_cache_misses = 0
        self.checks_run = 0

    # ========================================================================
    # Recording
    # ========================================================================

    def record_cache_lookup(self, hit: bool) -> None:
        self._lookups.append(hit)
        if hit:
            self.total_cache_hits += 1
        else:
            self.total_cache_misses += 1

    def record_solve(self, computation_time_ms: float) -> None:
        self._computation_times.append(computation_time_ms)
        self.total_solves += 1

    def record_failure(self) -> None:
        self.total_failures += 1

    def record_fallback(self) -> None:
        self.total_fallbacks += 1

    # ========================================================================
    # Rolling Figures
    # ========================================================================

    @property
    def cache_hit_rate(self) -> Optional[float]:
        """Hit rate over the rolling window, None before any lookup."""
        if not self._lookups:
            return None
        return sum(self._lookups) / len(self._lookups)

    @property
    def average_computation_time_ms(self) -> Optional[float]:
        """Mean compute time over the rolling window, None before any solve."""
        if not self._computation_times:
            return None
        return float(np.mean(self._computation_times))

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_solves": self.total_solves,
            "total_failures": self.total_failures,
            "total_fallbacks": self.total_fallbacks,
            "cache_hits": self.total_cache_hits,
            "cache_misses": self.total_cache_misses,
            "cache_hit_rate": self.cache_hit_rate,
            "average_computation_time_ms": self.average_computation_time_ms,
            "checks_run": self.checks_run,
            "running": self.is_running,
        }

    # ========================================================================
    # Threshold Checks
    # ========================================================================

    def check_thresholds(self) -> List[PerformanceAlert]:
        """Compare rolling figures with thresholds and emit an alert per breach."""
        self.checks_run += 1
        alerts = []

        hit_rate = self.cache_hit_rate
        if len(self._lookups) >= self.config.min_samples and hit_rate < self.config.min_cache_hit_rate:
            alerts.append(PerformanceAlert(
                metric="cache_hit_rate",
                value=hit_rate,
                threshold=self.config.min_cache_hit_rate,
                severity="medium",
                message=f"Cache hit rate {hit_rate:.2%} below {self.config.min_cache_hit_rate:.2%}",
            ))

        avg_time = self.average_computation_time_ms
        if (len(self._computation_times) >= self.config.min_samples
                and avg_time > self.config.max_avg_computation_time_ms):
            alerts.append(PerformanceAlert(
                metric="avg_computation_time",
                value=avg_time,
                threshold=self.config.max_avg_computation_time_ms,
                severity="high",
                message=(f"Average computation time {avg_time:.1f}ms above "
                         f"{self.config.max_avg_computation_time_ms:.1f}ms"),
            ))

        for alert in alerts:
            logger.warning(f"Performance alert: {alert.message}")
            self.channel.emit(alert)

        return alerts

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        logger.info(f"Performance monitor started (interval={self.config.interval_seconds}s)")
        while True:
            await asyncio.sleep(self.config.interval_seconds)
            try:
                self.check_thresholds()
            except Exception as e:
                logger.error(f"Performance check failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start the periodic task on the running loop (idempotent)."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Performance monitor stopped")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False
