"""
Convergence analysis of fitness histories.

A fitness history is the best-so-far fitness recorded once per solver
iteration. The functions here are pure and work on any sequence of floats,
so the solvers use ``stability_score`` for solution confidence and the
solution analyzer builds a ``ConvergenceAnalysis`` from the full set.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np


STABILITY_WINDOW = 10
PLATEAU_WINDOW = 10
OSCILLATION_WINDOW = 6
RECENT_IMPROVEMENT_WINDOW = 5


@dataclass
class ConvergenceAnalysis:
    """Convergence characteristics of one run."""
    converged: bool
    convergence_rate: float
    stability_score: float
    plateau_detected: bool
    oscillation_detected: bool
    convergence_point: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def stability_score(history: Sequence[float], window: int = STABILITY_WINDOW) -> float:
    """
    1 minus the coefficient of variation of the last ``window`` samples,
    clamped to [0, 1]. Empty histories score 0.
    """
    if len(history) == 0:
        return 0.0
    recent = np.asarray(history[-window:], dtype=float)
    std = float(recent.std())
    mean = abs(float(recent.mean()))
    if mean == 0.0:
        return 1.0 if std == 0.0 else 0.0
    return float(min(1.0, max(0.0, 1.0 - std / mean)))


def convergence_rate(history: Sequence[float]) -> float:
    """
    How much the improvement rate has decayed: 1 minus the ratio between the
    recent mean relative improvement and the overall mean, in [0, 1].
    """
    if len(history) < 2:
        return 0.0
    values = np.asarray(history, dtype=float)
    previous = np.abs(values[:-1])
    previous[previous == 0.0] = 1.0
    improvements = np.abs(np.diff(values)) / previous
    average = float(improvements.mean())
    if average == 0.0:
        return 1.0
    recent = float(improvements[-RECENT_IMPROVEMENT_WINDOW:].mean())
    return float(min(1.0, max(0.0, 1.0 - recent / average)))


def _mean_step(window: np.ndarray) -> float:
    return float(np.abs(np.diff(window)).mean())


def detect_plateau(history: Sequence[float], epsilon: float = 1e-3,
                   window: int = PLATEAU_WINDOW) -> bool:
    """True when the mean absolute step over the last ``window`` samples is below ``epsilon``."""
    if len(history) < window:
        return False
    return _mean_step(np.asarray(history[-window:], dtype=float)) < epsilon


def detect_oscillation(history: Sequence[float], window: int = OSCILLATION_WINDOW) -> bool:
    """True when the last ``window`` samples contain at least two strict local extrema."""
    if len(history) < window:
        return False
    recent = list(history[-window:])
    extrema = 0
    for i in range(1, len(recent) - 1):
        prev, curr, nxt = recent[i - 1], recent[i], recent[i + 1]
        if (curr > prev and curr > nxt) or (curr < prev and curr < nxt):
            extrema += 1
    return extrema >= 2


def find_convergence_point(history: Sequence[float], epsilon: float = 1e-3,
                           window: int = PLATEAU_WINDOW) -> Optional[int]:
    """First index whose trailing window has a mean step below ``epsilon``."""
    if len(history) < window:
        return None
    values = np.asarray(history, dtype=float)
    for end in range(window, len(values) + 1):
        if _mean_step(values[end - window:end]) < epsilon:
            return end - 1
    return None


def analyze_convergence(history: Sequence[float], epsilon: float = 1e-3) -> ConvergenceAnalysis:
    """Build the full convergence picture for one fitness history."""
    if len(history) < 2:
        return ConvergenceAnalysis(
            converged=False,
            convergence_rate=0.0,
            stability_score=stability_score(history),
            plateau_detected=False,
            oscillation_detected=False,
            convergence_point=None,
        )

    rate = convergence_rate(history)
    stability = stability_score(history)
    return ConvergenceAnalysis(
        converged=rate > 0.8 and stability > 0.7,
        convergence_rate=rate,
        stability_score=stability,
        plateau_detected=detect_plateau(history, epsilon),
        oscillation_detected=detect_oscillation(history),
        convergence_point=find_convergence_point(history, epsilon),
    )
