"""
Engagement Core Service
========================
Port: 8020

Thin HTTP layer over the resilience context:

┌──────────┐  ┌────────────────┐  ┌──────────────────────────────────────┐
│ FastAPI  │──► Admission      │──► Resilient generation                 │
│ routes   │  │ (429 + headers)│  │ retry → breaker → LLM | fallback     │
└──────────┘  └────────────────┘  └──────────────────────────────────────┘
      │                                        │
      ▼                                        ▼
┌──────────┐                          ┌──────────────────┐
│ Risk     │                          │ NudgeStore       │
│ engine   │                          │ (asyncpg, audit) │
└──────────┘                          └──────────────────┘
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import asyncpg
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .audit import NudgeStore
from .context import ResilienceContext
from .errors import InvalidInput
from .models import (
    AdmissionResult,
    BatchAssessRequest,
    BatchRiskItem,
    HealthResponse,
    LearnerProfile,
    LearnerSignals,
    NudgeResponse,
    RiskAssessment,
    RiskDistribution,
)
from .rate_limiter import rate_limit_headers, rate_limit_key

# ── Environment ──────────────────────────────────────────────────
backend_root = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=backend_root / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("engagement_core")


# ══════════════════════════════════════════════════════════════════
#  Dependencies
# ══════════════════════════════════════════════════════════════════

def get_context(request: Request) -> ResilienceContext:
    return request.app.state.context


def get_store(request: Request) -> Optional[NudgeStore]:
    return request.app.state.store


def enforce_admission(
    request: Request,
    response: Response,
    ctx: ResilienceContext = Depends(get_context),
) -> AdmissionResult:
    """Rate-limit the caller; limited → 429 with Retry-After."""
    key = rate_limit_key(
        api_key=request.headers.get("x-admin-api-key"),
        client_ip=request.client.host if request.client else None,
        forwarded_for=request.headers.get("x-forwarded-for"),
        real_ip=request.headers.get("x-real-ip"),
    )
    result = ctx.check_admission(key)
    headers = rate_limit_headers(result, ctx.admission.max_requests)

    if result.limited:
        raise HTTPException(
            status_code=429,
            detail={
                "error": "rate_limited",
                "message": "Too many requests. Please try again later.",
                "retry_after": result.retry_after_seconds,
            },
            headers=headers,
        )

    response.headers.update(headers)
    return result


# ══════════════════════════════════════════════════════════════════
#  ROUTES
# ══════════════════════════════════════════════════════════════════

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, ctx: ResilienceContext = Depends(get_context)):
    db_ok = request.app.state.pool is not None
    return HealthResponse(
        status="healthy" if ctx.breaker.is_available else "degraded",
        database="connected" if db_ok else "disconnected",
        test_mode=ctx.config.test_mode,
        circuit_breaker=ctx.breaker.to_dict(),
        metrics_summary=ctx.metrics.health_summary(),
    )


@router.post("/risk/assess", response_model=RiskAssessment)
async def assess_risk(signals: LearnerSignals, ctx: ResilienceContext = Depends(get_context)):
    return ctx.assess_risk(signals)


@router.post("/risk/batch", response_model=List[BatchRiskItem])
async def batch_assess(body: BatchAssessRequest, ctx: ResilienceContext = Depends(get_context)):
    return ctx.batch_assess(body.learners)


@router.post("/risk/distribution", response_model=RiskDistribution)
async def risk_distribution(body: BatchAssessRequest, ctx: ResilienceContext = Depends(get_context)):
    return ctx.risk_distribution(body.learners)


@router.post("/learners/{learner_id}/nudge", response_model=NudgeResponse)
async def generate_nudge(
    learner_id: int,
    learner: LearnerProfile,
    _admission: AdmissionResult = Depends(enforce_admission),
    ctx: ResilienceContext = Depends(get_context),
    store: Optional[NudgeStore] = Depends(get_store),
):
    """
    Generate a nudge for a learner. Never fails because of the external
    generator: a fallback message comes back with provenance=fallback.
    """
    profile = learner.model_copy(update={"id": learner_id})
    outcome = await ctx.generate_message(profile)

    nudge_id = None
    if store is not None:
        nudge_id = await store.record_outcome(learner_id, outcome)

    logger.info(
        f"Nudge for learner {learner_id}: provenance={outcome.provenance.value}, "
        f"attempts={outcome.attempts}, latency={outcome.latency_ms:.0f}ms"
    )
    return NudgeResponse(
        learner_id=learner_id,
        text=outcome.text,
        provenance=outcome.provenance,
        attempts=outcome.attempts,
        fallback_reason=outcome.fallback_reason,
        nudge_id=nudge_id,
    )


@router.get("/learners/{learner_id}/nudges")
async def nudge_history(
    learner_id: int,
    limit: int = Query(10, ge=1, le=100),
    store: Optional[NudgeStore] = Depends(get_store),
):
    if store is None:
        raise HTTPException(503, "Database not available")
    return {"learner_id": learner_id, "nudges": await store.recent(learner_id, limit)}


@router.get("/metrics")
async def get_metrics(ctx: ResilienceContext = Depends(get_context)):
    summary = ctx.metrics.summary()
    summary["admission"] = ctx.admission.to_dict()
    summary["circuit_breaker"] = ctx.breaker.to_dict()
    return summary


@router.get("/circuit-breaker")
async def get_circuit_breaker(ctx: ResilienceContext = Depends(get_context)):
    return ctx.breaker.to_dict()


@router.post("/circuit-breaker/reset")
async def reset_circuit_breaker(ctx: ResilienceContext = Depends(get_context)):
    """Manually reset the breaker (admin action)."""
    ctx.breaker.reset()
    return {"status": "ok", "new_state": ctx.breaker.state.value}


@router.post("/config/reload")
async def reload_config(ctx: ResilienceContext = Depends(get_context)):
    config = ctx.reload_config()
    return {"status": "ok", "weights": config.weights.to_dict()}


async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_input", "message": str(exc)},
    )


# ══════════════════════════════════════════════════════════════════
#  App factory
# ══════════════════════════════════════════════════════════════════

def create_app(
    context: Optional[ResilienceContext] = None,
    store: Optional[NudgeStore] = None,
) -> FastAPI:
    """
    Build the app. Injected context/store are used as-is; otherwise the
    lifespan builds them from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.pool = None
        app.state.context = context or ResilienceContext()
        app.state.store = store

        db_url = app.state.context.config.db_url
        if store is None and db_url:
            try:
                app.state.pool = await asyncpg.create_pool(
                    dsn=db_url,
                    min_size=1,
                    max_size=5,
                    command_timeout=30,
                    statement_cache_size=0,  # PgBouncer compatibility
                )
                app.state.store = NudgeStore(app.state.pool)
                logger.info("✅ Database pool created (1–5 connections)")
            except Exception as e:
                logger.error(f"❌ Database pool failed: {e}")
        elif store is None:
            logger.warning("⚠️  SUPABASE_DB_URL not set, nudges will not be persisted")

        logger.info("🚀 Engagement core ready")
        yield

        if app.state.pool:
            await app.state.pool.close()
        logger.info("Engagement core shut down cleanly")

    app = FastAPI(
        title="Engagement Core",
        version="1.0.0",
        description="Learner risk scoring and resilient nudge generation",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(InvalidInput, invalid_input_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "engagement_core.main:app",
        host="0.0.0.0",
        port=8020,
        log_level="info",
    )
