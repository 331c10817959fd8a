"""
REST API Module: HTTP Endpoints for the Classification Engine
Provides REST API for classifying alerts, managing rules and the hierarchy,
and reading rule analytics.
"""
import logging
import traceback
from typing import Dict, Any, List, Optional
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, status, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from classification import ClassificationEngine
from classification.models import RuleDraft, RuleUpdate
from config import load_config
from main import VigilSystem
from metrics import MetricsCollector
from exceptions import VigilError, ValidationError, NotFoundError, StoreError


logger = logging.getLogger("VigilAPI")


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------

class ClassifyRequest(BaseModel):
    """Request model for classifying one alert."""
    text: str = Field(..., description="Alert content to classify")
    source_type: Optional[str] = Field(default=None, description="Alert source used to filter rules")


class BatchClassifyRequest(BaseModel):
    """Request model for classifying several alerts."""
    texts: List[str] = Field(..., min_length=1, max_length=500)
    source_type: Optional[str] = None


class RuleTestRequest(BaseModel):
    """Request model for a tester run."""
    text: str
    rule_ids: Optional[List[str]] = Field(default=None, description="Rules to test; all active rules when omitted")
    record: Optional[bool] = Field(default=None, description="Record results in performance counters")


class SampleTestRequest(BaseModel):
    """Request model for a sample-set tester run."""
    texts: Optional[List[str]] = Field(default=None, description="Sample texts; built-in samples when omitted")
    record: Optional[bool] = None


class ProcessingOrderRequest(BaseModel):
    """Request model for replacing the processing order."""
    rule_types: List[str]


class PriorityRequest(BaseModel):
    """Request model for an explicit priority override."""
    priority: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    components: Dict[str, str]


class MetricsResponse(BaseModel):
    """Metrics summary response."""
    counters: Dict[str, int]
    gauges: Dict[str, float]
    timers: Dict[str, Dict[str, float]]


# -------------------------------------------------------------------------
# Dependencies & State
# -------------------------------------------------------------------------

_system: Optional[VigilSystem] = None


def get_engine() -> ClassificationEngine:
    """Dependency to get the running engine."""
    if _system is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="System not initialized")
    return _system.engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown.
    """
    global _system

    # Startup
    logger.info("Starting Vigil API...")
    try:
        _system = VigilSystem(load_config())
        logger.info("Vigil API started successfully")
    except VigilError as e:
        logger.critical(f"Failed to start Vigil System: {e.to_dict()}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down Vigil API...")
    system, _system = _system, None
    if system is not None:
        system.shutdown()
    logger.info("Vigil API shutdown complete")


# -------------------------------------------------------------------------
# FastAPI Application
# -------------------------------------------------------------------------

app = FastAPI(
    title="Vigil API",
    description="REST API for the Vigil alert classification rule engine",
    version="1.0.0",
    lifespan=lifespan
)

# Load config for middleware setup
_initial_config = load_config()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=_initial_config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------------
# Health Check Endpoints
# -------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Liveness probe - checks if the API is running.

    Returns:
        HealthResponse: Health status
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        version=_initial_config.system.version,
        components={
            "api": "up",
            "engine": "up" if _system else "down"
        }
    )


@app.get("/health/ready", response_model=HealthResponse, tags=["Health"])
def readiness_check(engine: ClassificationEngine = Depends(get_engine)):
    """
    Readiness probe - checks that the rule store can be read.

    Raises:
        HTTPException: If the store is unavailable
    """
    try:
        engine.store.load_processing_order()
    except StoreError as e:
        logger.error(f"Rule store check failed: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Rule store not ready: {e.message}"
        )

    return HealthResponse(
        status="ready",
        timestamp=datetime.now().isoformat(),
        version=_initial_config.system.version,
        components={
            "api": "ready",
            "engine": "ready",
            "rule_store": "ready"
        }
    )


# -------------------------------------------------------------------------
# Classification Endpoints
# -------------------------------------------------------------------------

def _result_to_dict(result) -> Dict[str, Any]:
    data = result.model_dump()
    data["labels"] = result.labels()
    return data


@app.post("/api/v1/classify", tags=["Classification"])
def classify(request: ClassifyRequest, engine: ClassificationEngine = Depends(get_engine)):
    """
    Classify alert text along every configured dimension.

    Returns:
        Dict: Outcome per dimension (null when unclassified) and flat labels
    """
    return _result_to_dict(engine.classify(request.text, source_type=request.source_type))


@app.post("/api/v1/classify/batch", tags=["Classification"])
def classify_batch(request: BatchClassifyRequest, engine: ClassificationEngine = Depends(get_engine)):
    """Classify several alerts against one rule snapshot."""
    results = engine.classify_batch(request.texts, source_type=request.source_type)
    return {"count": len(results), "results": [_result_to_dict(r) for r in results]}


# -------------------------------------------------------------------------
# Rule Management Endpoints
# -------------------------------------------------------------------------

@app.get("/api/v1/rules", tags=["Rules"])
def list_rules(
    rule_type: Optional[str] = Query(default=None, description="Restrict to one dimension"),
    active_only: bool = Query(default=False),
    engine: ClassificationEngine = Depends(get_engine)
):
    """List rules in evaluation order."""
    rules = engine.list_rules(rule_type=rule_type, active_only=active_only)
    return {"count": len(rules), "rules": [r.to_dict() for r in rules]}


@app.post("/api/v1/rules", tags=["Rules"], status_code=status.HTTP_201_CREATED)
def create_rule(draft: RuleDraft, engine: ClassificationEngine = Depends(get_engine)):
    """
    Create a rule. The pattern is compiled before anything is stored.

    Raises:
        ValidationError: 422 with field-level errors
    """
    return engine.create_rule(draft).to_dict()


@app.get("/api/v1/rules/export", response_class=PlainTextResponse, tags=["Rules"])
def export_rules(
    rule_type: Optional[str] = Query(default=None),
    active_only: bool = Query(default=False),
    engine: ClassificationEngine = Depends(get_engine)
):
    """Export rules and the processing order as YAML."""
    return engine.export_rules(rule_type=rule_type, active_only=active_only)


@app.post("/api/v1/rules/test", tags=["Rules"])
def test_rules(request: RuleTestRequest, engine: ClassificationEngine = Depends(get_engine)):
    """
    Run every active rule (or the given rules) against text.

    Returns:
        Dict: Per-rule match detail partitioned into matched and unmatched
    """
    report = engine.test_rules(request.text, rules=request.rule_ids, record=request.record)
    return {
        "input_text": report.input_text,
        "evaluated_at": report.evaluated_at.isoformat(),
        "matched": [r.model_dump(mode="json") for r in report.matched],
        "unmatched": [r.model_dump(mode="json") for r in report.unmatched]
    }


@app.post("/api/v1/rules/test/samples", tags=["Rules"])
def test_samples(request: SampleTestRequest, engine: ClassificationEngine = Depends(get_engine)):
    """Run the tester across sample alerts and list rules that never matched."""
    summary = engine.test_samples(texts=request.texts, record=request.record)
    return {
        "sample_count": summary.sample_count,
        "match_counts": summary.match_counts,
        "never_matched": [r.to_dict() for r in summary.never_matched]
    }


@app.get("/api/v1/rules/{rule_id}", tags=["Rules"])
def get_rule(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    """Get a rule by ID."""
    return engine.get_rule(rule_id).to_dict()


@app.patch("/api/v1/rules/{rule_id}", tags=["Rules"])
def update_rule(rule_id: str, update: RuleUpdate, engine: ClassificationEngine = Depends(get_engine)):
    """Partially update a rule; rule_type cannot change."""
    return engine.update_rule(rule_id, update).to_dict()


@app.post("/api/v1/rules/{rule_id}/activate", tags=["Rules"])
def activate_rule(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    return engine.activate_rule(rule_id).to_dict()


@app.post("/api/v1/rules/{rule_id}/deactivate", tags=["Rules"])
def deactivate_rule(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    return engine.deactivate_rule(rule_id).to_dict()


@app.get("/api/v1/rules/{rule_id}/performance", tags=["Analytics"])
def get_rule_performance(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    return engine.get_rule_performance(rule_id).to_dict()


@app.post("/api/v1/rules/{rule_id}/performance/reset", tags=["Analytics"])
def reset_rule_performance(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    return engine.reset_performance(rule_id).to_dict()


# -------------------------------------------------------------------------
# Hierarchy Endpoints
# -------------------------------------------------------------------------

@app.get("/api/v1/hierarchy/order", tags=["Hierarchy"])
def get_processing_order(engine: ClassificationEngine = Depends(get_engine)):
    return {"processing_order": engine.get_processing_order()}


@app.put("/api/v1/hierarchy/order", tags=["Hierarchy"])
def set_processing_order(request: ProcessingOrderRequest, engine: ClassificationEngine = Depends(get_engine)):
    """
    Replace the processing order.

    Raises:
        InvalidProcessingOrderError: 422 on duplicate or unknown entries
    """
    return {"processing_order": engine.set_processing_order(request.rule_types)}


@app.post("/api/v1/rules/{rule_id}/promote", tags=["Hierarchy"])
def promote_rule(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    """Move a rule above its higher neighbor; a no-op at the top is reported, not an error."""
    return engine.promote(rule_id).model_dump()


@app.post("/api/v1/rules/{rule_id}/demote", tags=["Hierarchy"])
def demote_rule(rule_id: str, engine: ClassificationEngine = Depends(get_engine)):
    """Move a rule below its lower neighbor; a no-op at the bottom is reported, not an error."""
    return engine.demote(rule_id).model_dump()


@app.put("/api/v1/rules/{rule_id}/priority", tags=["Hierarchy"])
def set_rule_priority(rule_id: str, request: PriorityRequest, engine: ClassificationEngine = Depends(get_engine)):
    return engine.set_priority(rule_id, request.priority).model_dump()


# -------------------------------------------------------------------------
# Analytics Endpoints
# -------------------------------------------------------------------------

@app.get("/api/v1/analytics/top", tags=["Analytics"])
def top_performers(
    n: Optional[int] = Query(default=None, ge=0, le=100, description="Number of rules to return"),
    engine: ClassificationEngine = Depends(get_engine)
):
    return {"rules": [r.to_dict() for r in engine.get_top_performers(n)]}


@app.get("/api/v1/analytics/underperformers", tags=["Analytics"])
def underperformers(
    threshold: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    engine: ClassificationEngine = Depends(get_engine)
):
    return {"rules": [r.to_dict() for r in engine.get_underperformers(threshold)]}


@app.get("/api/v1/analytics/stale", tags=["Analytics"])
def stale_rules(
    window_days: Optional[int] = Query(default=None, ge=1),
    engine: ClassificationEngine = Depends(get_engine)
):
    return {"rules": [r.to_dict() for r in engine.get_stale_rules(window_days)]}


@app.get("/api/v1/analytics/summary", tags=["Analytics"])
def performance_summary(engine: ClassificationEngine = Depends(get_engine)):
    return engine.get_performance_summary()


@app.get("/api/v1/summary", tags=["Rules"])
def engine_summary(engine: ClassificationEngine = Depends(get_engine)):
    """Rule counts per dimension, processing order and cache state."""
    return engine.get_summary()


# -------------------------------------------------------------------------
# Metrics Endpoints
# -------------------------------------------------------------------------

@app.get("/api/v1/metrics", response_model=MetricsResponse, tags=["Metrics"])
async def get_metrics():
    """
    Get engine metrics summary.

    Returns:
        MetricsResponse: Metrics summary
    """
    summary = MetricsCollector().get_summary()
    return MetricsResponse(
        counters=summary.get("counters", {}),
        gauges=summary.get("gauges", {}),
        timers=summary.get("timers", {})
    )


@app.get("/metrics", response_class=PlainTextResponse, tags=["Metrics"])
async def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns:
        str: Metrics in Prometheus format
    """
    collector = MetricsCollector()
    return collector.export_prometheus()


# -------------------------------------------------------------------------
# Error Handlers
# -------------------------------------------------------------------------

def _status_for(exc: VigilError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, StoreError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(VigilError)
async def vigil_error_handler(request, exc: VigilError):
    """Handle VigilError exceptions."""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"VigilError: {exc.to_dict()}")
    else:
        logger.info(f"{exc.__class__.__name__}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.__class__.__name__,
            "message": exc.message,
            "component": exc.component,
            "trace_id": exc.trace_id,
            "errors": exc.context.get("errors", [])
        }
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request, exc: RequestValidationError):
    """Report request-body problems with the same field-level shape as rule validation."""
    errors = []
    for item in exc.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": item.get("msg", "invalid value")})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "component": "API",
            "trace_id": None,
            "errors": errors
        }
    )


@app.exception_handler(Exception)
async def general_error_handler(request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unexpected error: {exc}")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": str(exc)
        }
    )


if __name__ == "__main__":
    import uvicorn
    from vigil.logging_setup import setup_logging

    setup_logging(_initial_config.system.log_level)
    uvicorn.run(app, host=_initial_config.api.host, port=_initial_config.api.port)
