"""
Time-windowed analytics over the engine's recorded runs.

Every call that reaches the pipeline (fresh solve, cache hit or failure)
leaves one ``RunRecord``. ``generate_analytics`` folds the records that fall
inside ``[start, end)`` into system-wide rates plus per-algorithm,
per-strategy and per-problem-type breakdowns.

Example:
    >>> report = generate_analytics(records, start=datetime(2026, 1, 1, tzinfo=timezone.utc))
    >>> report.system.success_rate
    0.95
    >>> report.by_algorithm["genetic_algorithm"].average_fitness
    0.71
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    """One engine call, as seen by analytics."""
    problem_id: str
    problem_type: str
    strategy: Optional[str]
    algorithm: Optional[str]
    source: Optional[str]
    success: bool
    fallback_used: bool = False
    cached: bool = False
    computation_time_ms: float = 0.0
    fitness: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SystemMetrics:
    total_optimizations: int
    success_rate: float
    average_computation_time_ms: float
    backend_utilization: float
    fallback_rate: float
    error_rate: float
    cache_hit_rate: float


@dataclass
class AlgorithmStats:
    usage_count: int
    success_rate: float
    average_computation_time_ms: float
    average_fitness: Optional[float]
    best_fitness: Optional[float]


@dataclass
class EngineAnalytics:
    system: SystemMetrics
    by_algorithm: Dict[str, AlgorithmStats]
    by_strategy: Dict[str, AlgorithmStats]
    by_problem_type: Dict[str, AlgorithmStats]
    period_start: Optional[datetime]
    period_end: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["period_start"] = self.period_start.isoformat() if self.period_start else None
        data["period_end"] = self.period_end.isoformat() if self.period_end else None
        return data


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


def _rate(count: int, total: int) -> float:
    return count / total if total else 0.0


def _stats(records: List[RunRecord]) -> AlgorithmStats:
    succeeded = [r for r in records if r.success]
    fitness = [r.fitness for r in succeeded if r.fitness is not None]
    return AlgorithmStats(
        usage_count=len(records),
        success_rate=_rate(len(succeeded), len(records)),
        average_computation_time_ms=float(np.mean([r.computation_time_ms for r in succeeded])) if succeeded else 0.0,
        average_fitness=float(np.mean(fitness)) if fitness else None,
        best_fitness=float(np.max(fitness)) if fitness else None,
    )


def _group(records: List[RunRecord], key: str) -> Dict[str, AlgorithmStats]:
    groups: Dict[str, List[RunRecord]] = defaultdict(list)
    for record in records:
        name = getattr(record, key)
        if name is not None:
            groups[name].append(record)
    return {name: _stats(members) for name, members in sorted(groups.items())}


def generate_analytics(
    records: Iterable[RunRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> EngineAnalytics:
    """
    Aggregate the records whose timestamp lies in ``[start, end)``.

    Either bound may be omitted. Naive datetimes are taken as UTC. Rates are
    shares of all windowed calls; the average computation time covers
    successful calls only. Cache hits do not count towards the fallback
    or backend rates. An empty window yields zero rates.

    Raises:
        ValueError: ``start`` is after ``end``
    """
    start, end = _as_utc(start), _as_utc(end)
    if start is not None and end is not None and start > end:
        raise ValueError(f"Analytics window start {start.isoformat()} is after end {end.isoformat()}")

    windowed = [
        r for r in records
        if (start is None or r.timestamp >= start) and (end is None or r.timestamp < end)
    ]
    total = len(windowed)
    succeeded = [r for r in windowed if r.success]
    fresh = [r for r in succeeded if not r.cached]

    system = SystemMetrics(
        total_optimizations=total,
        success_rate=_rate(len(succeeded), total),
        average_computation_time_ms=float(np.mean([r.computation_time_ms for r in succeeded])) if succeeded else 0.0,
        backend_utilization=_rate(sum(1 for r in fresh if r.source == "backend"), len(fresh)),
        fallback_rate=_rate(sum(1 for r in windowed if r.fallback_used and not r.cached), total),
        error_rate=_rate(total - len(succeeded), total),
        cache_hit_rate=_rate(sum(1 for r in windowed if r.cached), total),
    )

    logger.debug(f"Analytics over {total} runs ({start} .. {end})")
    return EngineAnalytics(
        system=system,
        by_algorithm=_group(windowed, "algorithm"),
        by_strategy=_group(windowed, "strategy"),
        by_problem_type=_group(windowed, "problem_type"),
        period_start=start,
        period_end=end,
    )
