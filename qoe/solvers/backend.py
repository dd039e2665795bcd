"""
Pluggable optimization backend.

The engine can hand problems to an external (quantum or quantum-inspired)
backend before falling back to the classical library. The backend is opaque:
the engine only knows ``execute(problem, config)`` and, on timeout,
``cancel(problem_id)``. Whatever ``execute`` raises, and any timeout around
it, is treated as a backend failure by the engine.

Example Usage
-------------
```python
class RemoteAnnealer(OptimizationBackend):
    name = "remote_annealer"

    def execute(self, problem, config):
        payload = client.submit(problem, strategy=config.strategy.value)
        ...
        return QuantumOptimizationSolution(solution=..., source="backend")

engine = OptimizationEngine(settings, backend=RemoteAnnealer())
```
"""

from abc import ABC, abstractmethod

from qoe.problems.problem import OptimizationProblem
from qoe.problems.solution import QuantumOptimizationSolution
from qoe.router.algorithm_selector import AlgorithmConfig
from qoe.solvers.solver_base import SolverException


class BackendError(SolverException):
    """Base class for failures reported by an optimization backend."""
    pass


class OptimizationBackend(ABC):
    """
    Contract for external optimization backends.

    ``execute`` runs in a worker thread and may block. It receives the
    selected ``AlgorithmConfig`` and returns a complete
    ``QuantumOptimizationSolution``.
    """

    name: str = "backend"

    @abstractmethod
    def execute(self, problem: OptimizationProblem, config: AlgorithmConfig) -> QuantumOptimizationSolution:
        """
        Solve the problem with the given strategy.

        Raises:
            BackendError: Or any other exception; the engine handles both
        """
        pass

    def cancel(self, problem_id: str) -> bool:
        """
        Ask the backend to abandon the running execution for ``problem_id``.

        Called by the engine when ``execute`` exceeds its timeout. The worker
        thread cannot be interrupted, so a backend that blocks for long should
        watch for this and return early.

        Returns:
            True if cancellation was accepted, False otherwise
        """
        return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
