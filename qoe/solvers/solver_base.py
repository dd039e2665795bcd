"""
Abstract base class for all solvers of the Quantum-Inspired Optimization Engine.

Every solver (the classical metaheuristic library today, any future local
solver tomorrow) implements the same small interface so the engine can
treat them uniformly:

- ``optimize(problem, algorithm, params)`` returns an ``OptimizationSolution``
- ``get_solver_info()`` describes the algorithms and their parameters

The base class carries the cross-cutting concerns: the solver exception
hierarchy, wall-clock and memory measurement around a run, assignment
validation, and context manager support.

Example Usage
-------------
```python
from qoe.solvers.classical_optimizer import ClassicalOptimizer

with ClassicalOptimizer() as optimizer:
    solution = optimizer.optimize(problem, algorithm="tabu_search")

print(f"Fitness: {solution.fitness:.4f}")
print(f"Time: {solution.execution_time_ms:.1f} ms")
print(f"Memory: {solution.memory_mb:.2f} MB")
```

Resource Measurement
--------------------
Memory is measured as growth of the process resident set size (RSS) between
start and end of a run, using psutil. This is an approximation: the garbage
collector and other threads also move RSS. It is meant for comparing runs,
not for accounting.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import psutil

from qoe.problems.problem import OptimizationProblem, VariableKind
from qoe.problems.solution import OptimizationSolution


# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Custom Exceptions
# ============================================================================

class SolverException(Exception):
    """Base exception for all solver-related errors."""
    pass


class SolverConfigurationError(SolverException):
    """Raised when a solver is asked for an unknown algorithm or bad parameters."""
    pass


# ============================================================================
# Abstract Solver Base Class
# ============================================================================

class SolverBase(ABC):
    """
    Abstract base class for optimization solvers.

    Attributes:
        solver_type (str): Type of solver ('classical', 'backend', ...)
        solver_name (str): Specific solver name
        _process (psutil.Process): Process handle used for memory measurement

    Thread Safety:
        A solver instance may run one solve per thread; the engine runs each
        solve in a worker thread. Measurement state lives in local variables,
        not on the instance.
    """

    def __init__(self, solver_type: str, solver_name: str):
        """
        Initialize base solver.

        Args:
            solver_type: Type of solver
            solver_name: Specific solver name for identification

        Raises:
            SolverConfigurationError: If parameters are invalid
        """
        if not solver_type or not isinstance(solver_type, str):
            raise SolverConfigurationError("solver_type must be a non-empty string")

        if not solver_name or not isinstance(solver_name, str):
            raise SolverConfigurationError("solver_name must be a non-empty string")

        self.solver_type = solver_type.lower()
        self.solver_name = solver_name.lower()
        self._process: psutil.Process = psutil.Process(os.getpid())

        logger.info(f"Initialized {self.solver_type} solver: {self.solver_name}")

    # ========================================================================
    # Abstract Methods - Must be implemented by subclasses
    # ========================================================================

    @abstractmethod
    def optimize(
        self,
        problem: OptimizationProblem,
        algorithm: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> OptimizationSolution:
        """
        Solve the problem and return the best solution found.

        Implementations must never raise for a well-formed problem: they
        return the best-so-far solution when the budget or deadline runs out.

        Raises:
            SolverConfigurationError: If the algorithm name or parameters are invalid
        """
        pass

    @abstractmethod
    def get_solver_info(self) -> Dict[str, Any]:
        """
        Return information about solver capabilities and configuration.

        Required keys: 'solver_type', 'solver_name', 'version',
        'supported_problems', 'capabilities', 'parameters'.
        """
        pass

    # ========================================================================
    # Concrete Methods - Provided for all solvers
    # ========================================================================

    def measure_start(self) -> Tuple[float, float]:
        """
        Snapshot wall-clock time and process memory before a run.

        Returns:
            (perf_counter seconds, RSS in MB); RSS is 0.0 if unavailable
        """
        started = time.perf_counter()
        try:
            rss_mb = self._process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.warning(f"Failed to read process memory: {e}")
            rss_mb = 0.0
        return started, rss_mb

    def measure_end(self, snapshot: Tuple[float, float]) -> Tuple[float, float]:
        """
        Compute elapsed time and memory growth since ``measure_start``.

        Returns:
            (elapsed milliseconds, memory growth in MB, never negative)
        """
        started, rss_start = snapshot
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        try:
            rss_end = self._process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.warning(f"Failed to read process memory: {e}")
            return elapsed_ms, 0.0
        return elapsed_ms, max(0.0, rss_end - rss_start)

    def validate_result(self, problem: OptimizationProblem, solution: OptimizationSolution) -> bool:
        """
        Check that an assignment lies inside every variable's domain and that
        weight groups sum to 1.

        Returns:
            True if the assignment is valid, False otherwise (reason logged)
        """
        if solution is None:
            logger.error("Solution is None")
            return False

        assignment = solution.variables
        if len(assignment) != problem.problem_size:
            logger.error(f"Assignment has {len(assignment)} values, problem has {problem.problem_size} variables")
            return False

        for variable in problem.variables:
            if variable.name not in assignment:
                logger.error(f"Variable '{variable.name}' missing from assignment")
                return False
            value = assignment[variable.name]
            if variable.kind == VariableKind.CATEGORICAL:
                if value not in variable.allowed_values:
                    logger.error(f"Variable '{variable.name}' value {value!r} not allowed")
                    return False
            elif not (variable.lower - 1e-9 <= value <= variable.upper + 1e-9):
                logger.error(f"Variable '{variable.name}' value {value} outside [{variable.lower}, {variable.upper}]")
                return False

        for group, indices in problem.weight_groups.items():
            total = sum(assignment[problem.variables[i].name] for i in indices)
            if abs(total - 1.0) > 1e-6:
                logger.error(f"Weight group '{group}' sums to {total}, expected 1.0")
                return False

        return True

    # ========================================================================
    # Context Manager Support
    # ========================================================================

    def __enter__(self):
        logger.debug(f"Entering context for {self.solver_name} solver")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logger.debug(f"Exiting context for {self.solver_name} solver")
        self._cleanup()
        if exc_type is not None:
            logger.error(f"Exception in solver context: {exc_type.__name__}: {exc_val}")
        return False

    def _cleanup(self) -> None:
        """Release solver resources. Subclasses override as needed."""
        logger.debug(f"Cleanup called for {self.solver_name}")

    # ========================================================================
    # String Representations
    # ========================================================================

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}("
                f"solver_type='{self.solver_type}', "
                f"solver_name='{self.solver_name}')")

    def __str__(self) -> str:
        return f"{self.solver_type.title()} Solver: {self.solver_name}"
