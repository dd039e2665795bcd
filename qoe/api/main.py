"""
FastAPI REST API for the Quantum-Inspired Optimization Engine.

This module exposes an ``OptimizationEngine`` over HTTP. Problems arrive as
JSON, are validated by pydantic request models, converted to immutable
``OptimizationProblem`` instances and solved with the evaluator the engine
has registered for their problem type.

The API exposes:
- Regular and real-time optimization
- Engine-vs-classical benchmarking
- Engine statistics, time-windowed analytics and health

All endpoints are documented via OpenAPI/Swagger at /docs.

Example Usage:
    # Build the app around a configured engine
    engine = OptimizationEngine(settings=Settings())
    engine.register_evaluator(ProblemType.CHANNEL_OPTIMIZATION, ChannelEvaluator())
    app = create_app(engine)

    # Or serve a bare engine (register evaluators on app.state.engine)
    uvicorn qoe.api.main:create_app --factory --port 8000

    curl -X POST "http://localhost:8000/api/v1/optimize" \
      -H "Content-Type: application/json" \
      -d '{"id": "p1", "type": "channel_optimization", "objectives": [...], "variables": [...]}'
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from qoe.api.engine import ExecutionTimeout, OptimizationEngine
from qoe.config import configure_logging
from qoe.problems.problem import (
    Constraint,
    ConstraintKind,
    Direction,
    Objective,
    OptimizationProblem,
    ProblemType,
    ProblemValidationError,
    QuantumProperties,
    Variable,
    VariableKind,
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# Utility Functions
# =============================================================================

def convert_numpy_types(obj):
    """
    Recursively convert numpy types to Python native types for JSON serialization.

    Args:
        obj: Object that may contain numpy types

    Returns:
        Object with numpy types converted to Python native types
    """
    if isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {key: convert_numpy_types(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(item) for item in obj]
    else:
        return obj


# =============================================================================
# Pydantic Models (Request/Response Schemas)
# =============================================================================

class ObjectiveModel(BaseModel):
    """Request model for one weighted objective."""
    name: str = Field(..., min_length=1, description="Key under which the evaluator reports the value")
    weight: float = Field(..., ge=0.0, description="Relative importance; weights sum to 1.0")
    target: float = Field(1.0, description="Value considered fully satisfactory")
    direction: Direction = Field(Direction.MAXIMIZE, description="maximize or minimize")


class ConstraintModel(BaseModel):
    """Request model for one penalized constraint."""
    name: str = Field(..., min_length=1)
    kind: ConstraintKind = Field(..., description="inequality (value <= bound) or equality")
    bound: float
    penalty: float = Field(..., gt=0.0, description="Fitness penalty per unit of violation")
    tolerance: float = Field(1e-6, ge=0.0)


class VariableModel(BaseModel):
    """Request model for one decision variable."""
    name: str = Field(..., min_length=1)
    kind: VariableKind
    lower: Optional[float] = None
    upper: Optional[float] = None
    allowed_values: List[Union[str, float, int]] = Field(default_factory=list)
    weight_group: Optional[str] = Field(None, description="Weight vector this variable belongs to")


class QuantumPropertiesModel(BaseModel):
    use_annealing: bool = False
    use_approximation: bool = False
    entanglement_pairs: List[Tuple[str, str]] = Field(default_factory=list)


class ProblemRequest(BaseModel):
    """Request model for an optimization problem."""
    id: str = Field(..., min_length=1, description="Problem id (part of the cache key)", examples=["campaign-q3"])
    type: ProblemType = Field(..., description="Problem family; selects the registered evaluator")
    name: str = Field("", description="Human-readable label")
    objectives: List[ObjectiveModel] = Field(..., min_length=1)
    variables: List[VariableModel] = Field(..., min_length=1)
    constraints: List[ConstraintModel] = Field(default_factory=list)
    quantum_properties: QuantumPropertiesModel = Field(default_factory=QuantumPropertiesModel)

    def to_problem(self) -> OptimizationProblem:
        """
        Build the immutable problem.

        Raises:
            ProblemValidationError: Cross-field invariants (weight sum,
                unique names, weight-group feasibility) do not hold
        """
        return OptimizationProblem(
            id=self.id,
            type=self.type,
            name=self.name,
            objectives=[Objective(**o.model_dump()) for o in self.objectives],
            variables=[Variable(**v.model_dump()) for v in self.variables],
            constraints=[Constraint(**c.model_dump()) for c in self.constraints],
            quantum_properties=QuantumProperties(
                use_annealing=self.quantum_properties.use_annealing,
                use_approximation=self.quantum_properties.use_approximation,
                entanglement_pairs=tuple(tuple(p) for p in self.quantum_properties.entanglement_pairs),
            ),
        )


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    version: str
    environment: str
    timestamp: str
    components: Dict[str, str]


# =============================================================================
# Application Factory
# =============================================================================

def create_app(engine: Optional[OptimizationEngine] = None) -> FastAPI:
    """
    Build the FastAPI application around an engine.

    The engine is started and shut down with the application lifespan and is
    available to handlers as ``app.state.engine``.

    Args:
        engine: Configured engine; a default one is created when omitted

    Returns:
        FastAPI application
    """
    engine = engine or OptimizationEngine()
    configure_logging(engine.settings.logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Quantum-Inspired Optimization Engine API")
        await engine.start()
        yield
        logger.info("Shutting down Quantum-Inspired Optimization Engine API")
        await engine.shutdown()

    app = FastAPI(
        title="Quantum-Inspired Optimization Engine",
        version=API_VERSION,
        description="""
        **Quantum-Inspired Optimization Engine REST API**

        - **Optimization**: Submit multi-objective, constrained problems
        - **Real-time**: Reduced budgets for latency-sensitive callers
        - **Benchmarking**: Engine path vs classical baseline
        - **Statistics**: Cache, fallback and timing figures
        """,
        lifespan=lifespan,
    )
    app.state.engine = engine

    # =========================================================================
    # Middleware & Error Handlers
    # =========================================================================

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests with timing information."""
        start_time = time.time()
        logger.info(f"Request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        logger.info(f"Response: {response.status_code} - {process_time:.2f}ms")
        response.headers["X-Process-Time"] = f"{process_time:.2f}ms"
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with detailed error messages."""
        logger.warning(f"Validation error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": jsonable_encoder(exc.errors()),
            }
        )

    @app.exception_handler(ProblemValidationError)
    async def problem_validation_handler(request: Request, exc: ProblemValidationError):
        logger.warning(f"Problem validation error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": "Validation Error", "detail": str(exc)}
        )

    @app.exception_handler(ExecutionTimeout)
    async def timeout_handler(request: Request, exc: ExecutionTimeout):
        logger.error(f"Execution timeout: {exc}")
        return JSONResponse(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            content={"error": "Execution Timeout", "detail": str(exc)}
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions."""
        logger.error(f"HTTP exception: {exc.status_code} - {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code
            }
        )

    # =========================================================================
    # Health & Statistics
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Report engine and component status."""
        return HealthResponse(
            status="healthy",
            version=API_VERSION,
            environment=engine.settings.environment,
            timestamp=datetime.now(timezone.utc).isoformat(),
            components={
                "engine": "operational",
                "monitor": "running" if engine.monitor.is_running else "stopped",
                "backend": "attached" if engine.backend is not None else "none",
                "cache": "enabled" if engine.settings.cache.enabled else "disabled",
            },
        )

    @app.get("/api/v1/statistics", tags=["System"])
    async def get_statistics():
        """Engine statistics: solves, failures, fallbacks, cache and timing."""
        return convert_numpy_types(engine.get_statistics())

    @app.get("/api/v1/analytics", tags=["System"])
    async def get_analytics(start: Optional[datetime] = None, end: Optional[datetime] = None):
        """Analytics over recorded runs in [start, end); both bounds are optional ISO-8601 datetimes."""
        try:
            report = engine.get_analytics(start=start, end=end)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
        return convert_numpy_types(report.to_dict())

    # =========================================================================
    # Optimization Endpoints
    # =========================================================================

    @app.post("/api/v1/optimize", tags=["Optimization"])
    async def optimize(request: ProblemRequest) -> Dict[str, Any]:
        """Solve a problem through selection, cache, backend and fallback."""
        problem = request.to_problem()
        logger.info(f"Optimization request for '{problem.id}' ({problem.type.value})")
        result = await engine.submit(problem)
        return convert_numpy_types(result.to_dict())

    @app.post("/api/v1/optimize/realtime", tags=["Optimization"])
    async def optimize_realtime(request: ProblemRequest) -> Dict[str, Any]:
        """Solve with real-time budgets; bypasses the cache."""
        problem = request.to_problem()
        logger.info(f"Real-time optimization request for '{problem.id}'")
        result = await engine.submit_realtime(problem)
        return convert_numpy_types(result.to_dict())

    @app.post("/api/v1/benchmark", tags=["Optimization"])
    async def benchmark(request: ProblemRequest) -> Dict[str, Any]:
        """Compare the engine path with the default classical algorithm."""
        problem = request.to_problem()
        logger.info(f"Benchmark request for '{problem.id}'")
        report = await engine.benchmark(problem)
        return convert_numpy_types(report.to_dict())

    return app
