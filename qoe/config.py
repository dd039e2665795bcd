"""
Configuration Management for the Quantum-Inspired Optimization Engine.

This module provides a type-safe, validated configuration system using Pydantic.
Configuration values are loaded from environment variables or a .env file with
defaults suitable for development and tests.

Every section reads its own environment prefix so a deployment can override a
single knob without touching the others:

    QOE_CLASSICAL_POPULATION_SIZE=200
    QOE_CACHE_TTL_SECONDS=600
    QOE_FALLBACK_ENABLED=false
    QOE_MONITORING_INTERVAL_SECONDS=30

Usage:
    >>> from qoe.config import Settings
    >>> settings = Settings()
    >>> print(settings.classical.population_size)
    >>> print(settings.cache.ttl_seconds)
    >>> engine = OptimizationEngine(settings=settings)
"""

import logging
from typing import Literal

from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


ClassicalAlgorithmName = Literal[
    "genetic_algorithm",
    "simulated_annealing",
    "particle_swarm",
    "hill_climbing",
    "tabu_search",
    "differential_evolution",
]


def _section_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# =============================================================================
# Classical Metaheuristic Configuration
# =============================================================================

class ClassicalConfig(BaseSettings):
    """
    Default parameters for the classical metaheuristic library.

    Per-call parameters passed to ``ClassicalOptimizer.optimize`` override
    these values; anything not overridden comes from here.

    Environment Variables:
        QOE_CLASSICAL_DEFAULT_ALGORITHM: Algorithm used when none is requested
        QOE_CLASSICAL_POPULATION_SIZE: GA/DE population size (default: 100)
        QOE_CLASSICAL_MAX_ITERATIONS: Generation/iteration cap (default: 1000)
        QOE_CLASSICAL_TIMEOUT_SECONDS: Cooperative deadline per run (default: 30)

    Example:
        >>> classical = ClassicalConfig()
        >>> classical.mutation_rate
        0.1
    """

    default_algorithm: ClassicalAlgorithmName = Field(
        default="genetic_algorithm",
        description="Algorithm used when the caller does not name one"
    )

    # Genetic algorithm / differential evolution
    population_size: int = Field(
        default=100,
        ge=4,
        le=10000,
        description="Population size for genetic algorithm and differential evolution"
    )

    max_iterations: int = Field(
        default=1000,
        ge=1,
        description="Maximum generations/iterations for every algorithm"
    )

    convergence_threshold: float = Field(
        default=1e-6,
        ge=0.0,
        description="GA early stop: variance of the last 10 best fitness values"
    )

    mutation_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Per-gene mutation probability"
    )

    crossover_rate: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Probability that a parent pair is recombined"
    )

    tournament_size: int = Field(
        default=5,
        ge=2,
        description="Number of contestants per tournament"
    )

    # Simulated annealing
    initial_temperature: float = Field(
        default=1000.0,
        gt=0.0,
        description="Starting temperature for simulated annealing"
    )

    min_temperature: float = Field(
        default=1.0,
        gt=0.0,
        description="Simulated annealing stops once the temperature drops below this"
    )

    cooling_rate: float = Field(
        default=0.95,
        gt=0.0,
        lt=1.0,
        description="Multiplicative cooling factor applied each iteration"
    )

    # Particle swarm
    particle_count: int = Field(
        default=50,
        ge=2,
        description="Number of particles in the swarm"
    )

    inertia_weight: float = Field(
        default=0.7,
        ge=0.0,
        description="Velocity inertia term"
    )

    cognitive_weight: float = Field(
        default=1.4,
        ge=0.0,
        description="Pull toward the particle's personal best"
    )

    social_weight: float = Field(
        default=1.4,
        ge=0.0,
        description="Pull toward the swarm's global best"
    )

    velocity_clamp: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Maximum velocity as a fraction of each variable's span"
    )

    # Local search
    neighborhood_size: int = Field(
        default=10,
        ge=1,
        description="Neighbors generated per hill climbing / tabu search step"
    )

    step_size: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Perturbation magnitude as a fraction of each variable's span"
    )

    tabu_list_size: int = Field(
        default=20,
        ge=1,
        description="Capacity of the FIFO tabu memory"
    )

    # Differential evolution
    de_scaling_factor: float = Field(
        default=0.8,
        gt=0.0,
        le=2.0,
        description="Differential weight F in a + F*(b - c)"
    )

    de_crossover_rate: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Binomial crossover rate CR"
    )

    # Budget
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Cooperative deadline for a single algorithm run"
    )

    alternatives_count: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Number of runner-up assignments attached to each solution"
    )

    @field_validator("min_temperature")
    @classmethod
    def validate_min_below_initial(cls, v: float, info) -> float:
        """Ensure the annealing schedule actually cools."""
        if "initial_temperature" in info.data:
            initial = info.data["initial_temperature"]
            if v >= initial:
                raise ValueError(
                    f"min_temperature ({v}) must be < initial_temperature ({initial})"
                )
        return v

    model_config = _section_config("QOE_CLASSICAL_")


# =============================================================================
# Real-time Budget Configuration
# =============================================================================

class RealtimeConfig(BaseSettings):
    """
    Reduced budgets for latency-sensitive callers.

    Real-time solves go through the same selection and fallback machinery as
    regular solves but with shallower searches and a shorter timeout.
    """

    max_iterations: int = Field(
        default=50,
        ge=1,
        description="Iteration cap for real-time solves"
    )

    population_size: int = Field(
        default=20,
        ge=4,
        description="Population/swarm size for real-time solves"
    )

    neighborhood_size: int = Field(
        default=5,
        ge=1,
        description="Neighbors per step for real-time local search"
    )

    timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Timeout for a real-time solve"
    )

    model_config = _section_config("QOE_REALTIME_")


# =============================================================================
# Solution Cache Configuration
# =============================================================================

class CacheConfig(BaseSettings):
    """
    Solution cache settings.

    Environment Variables:
        QOE_CACHE_ENABLED: Enable caching (default: true)
        QOE_CACHE_MAX_SIZE: Entries kept before FIFO eviction (default: 1000)
        QOE_CACHE_TTL_SECONDS: Entry lifetime (default: 3600)
    """

    enabled: bool = Field(
        default=True,
        description="Enable the solution cache"
    )

    max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum cached solutions; the oldest insert is evicted first"
    )

    ttl_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Seconds a cached solution stays valid"
    )

    model_config = _section_config("QOE_CACHE_")


# =============================================================================
# Backend / Fallback Configuration
# =============================================================================

class BackendConfig(BaseSettings):
    """
    Pluggable (quantum-inspired) backend settings.

    The backend is an external collaborator; when it is disabled or absent
    every solve goes straight to the classical library.
    """

    enabled: bool = Field(
        default=True,
        description="Route solves through the backend when one is attached"
    )

    timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Timeout for one backend or classical execution"
    )

    min_quantum_advantage: float = Field(
        default=1.2,
        ge=1.0,
        description="Predicted advantage above which the annealing strategy is considered"
    )

    complexity_threshold: float = Field(
        default=100.0,
        ge=0.0,
        description="Complexity score above which the annealing strategy is considered"
    )

    advantage_alert_ratio: float = Field(
        default=1.1,
        ge=1.0,
        description="Benchmark ratio that triggers a quantum_advantage_detected notification"
    )

    max_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads reserved for backend executions"
    )

    model_config = _section_config("QOE_BACKEND_")


class FallbackConfig(BaseSettings):
    """
    Classical fallback settings.

    Environment Variables:
        QOE_FALLBACK_ENABLED: Re-run failed backend solves classically (default: true)
        QOE_FALLBACK_ALGORITHM: Classical algorithm used for fallback
    """

    enabled: bool = Field(
        default=True,
        description="Re-execute via the classical library when the backend fails"
    )

    algorithm: ClassicalAlgorithmName = Field(
        default="genetic_algorithm",
        description="Classical algorithm used by the fallback path"
    )

    model_config = _section_config("QOE_FALLBACK_")


# =============================================================================
# Monitoring Configuration
# =============================================================================

class MonitoringConfig(BaseSettings):
    """
    Performance monitor settings.

    The monitor runs on its own timer and compares rolling statistics against
    the thresholds below, emitting ``performance_alert`` notifications.
    """

    enabled: bool = Field(
        default=True,
        description="Start the periodic performance monitor with the engine"
    )

    interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds between threshold checks"
    )

    min_cache_hit_rate: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Alert when the rolling cache hit rate falls below this"
    )

    max_avg_computation_time_ms: float = Field(
        default=5000.0,
        gt=0.0,
        description="Alert when average compute time exceeds this"
    )

    min_samples: int = Field(
        default=5,
        ge=1,
        description="Lookups/solves required before a metric is checked"
    )

    history_size: int = Field(
        default=500,
        ge=10,
        description="Rolling window of recorded solves and cache lookups"
    )

    notification_queue_size: int = Field(
        default=100,
        ge=1,
        description="Capacity of each queue subscriber of the notification channel"
    )

    model_config = _section_config("QOE_MONITORING_")


# =============================================================================
# Analyzer Configuration
# =============================================================================

class AnalyzerConfig(BaseSettings):
    """Thresholds used by the solution analyzer."""

    history_per_algorithm: int = Field(
        default=100,
        ge=1,
        description="Prior runs kept per algorithm for relative performance"
    )

    quality_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Recommend parameter tuning below this quality"
    )

    efficiency_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Recommend an algorithm switch below this efficiency"
    )

    plateau_epsilon: float = Field(
        default=1e-3,
        gt=0.0,
        description="Mean improvement under which a plateau is reported"
    )

    severity_band_multiplier: float = Field(
        default=10.0,
        gt=0.0,
        description="Width of one violation-severity band in constraint tolerances"
    )

    # Insights
    slow_execution_ms: float = Field(
        default=5000.0,
        gt=0.0,
        description="Suggest parameter tuning above this execution time"
    )

    high_memory_mb: float = Field(
        default=1024.0,
        gt=0.0,
        description="Suggest memory optimization above this footprint"
    )

    min_convergence_rate: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Suggest adjusting convergence criteria below this rate"
    )

    advantage_insight_margin: float = Field(
        default=0.2,
        ge=0.0,
        description="Predicted advantage above 1 + margin is reported as an insight"
    )

    large_problem_variables: int = Field(
        default=100,
        ge=1,
        description="Variable count above which a problem is reported as high-dimensional"
    )

    model_config = _section_config("QOE_ANALYZER_")


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig(BaseSettings):
    """Logging level and format applied by ``configure_logging``."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root logging level"
    )

    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="logging.Formatter format string"
    )

    model_config = _section_config("QOE_LOG_")


# =============================================================================
# Global Settings Container
# =============================================================================

class Settings(BaseSettings):
    """
    Aggregates all configuration sections.

    Settings are constructed explicitly and handed to the engine; there is no
    module-level instance.

    Usage:
        >>> settings = Settings()
        >>> settings.cache.max_size
        1000
        >>> settings = Settings(cache=CacheConfig(ttl_seconds=5))
    """

    classical: ClassicalConfig = Field(default_factory=ClassicalConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )

    @computed_field
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    model_config = _section_config("QOE_")


def configure_logging(config: LoggingConfig) -> None:
    """
    Apply the logging configuration to the root logger.

    Args:
        config: Logging section of the settings
    """
    logging.basicConfig(
        level=getattr(logging, config.level),
        format=config.format
    )
