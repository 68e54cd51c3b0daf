"""
SealDeal - FastAPI Server
REST API for deals, analysis, benchmarks, analytics, chat and storage events
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from analytics import backfill_analytics, list_analytics
from analyzer import get_comparison_data
from auth import CurrentUser, ensure_has_role, get_current_user, verify_push_sender
from config import Settings, get_settings
from dependencies import ServiceContainer, build_services, get_services
from exceptions import (
    InvalidArgumentError, NotFoundError, SealDealError, ServiceUnavailableError,
)
from logging_config import setup_logging
from models import (
    Benchmark, BenchmarkInput, ChatRequest, ComparisonRequest, CreateDealRequest,
    Deal, DealStatus, RoleUpdate, StorageEvent, UserRole,
)

logger = logging.getLogger(__name__)

CHAT_ERROR = "Sorry, I encountered an error processing your request."

router = APIRouter()


# === Error handling ===

async def sealdeal_error_handler(request: Request, exc: SealDealError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"[Server] {exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
    )


# === REST Endpoints ===

@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@router.post("/deals")
async def create_deal(
    payload: CreateDealRequest,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """New deal in AwaitingUpload, owned by the caller"""
    if not payload.deal_name:
        raise InvalidArgumentError("A 'dealName' must be provided.", "dealName")

    deal_id = await services.store.create_deal(Deal(deal_name=payload.deal_name, owner_id=user.uid))
    return {"dealId": deal_id, "message": "Deal created successfully."}


@router.get("/deals", response_model=List[Deal])
async def list_deals(
    limit: int = 50,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.store.list_deals(user.uid, limit=limit)


@router.get("/deals/{deal_id}", response_model=Deal)
async def get_deal(
    deal_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    deal = await services.store.get_deal(deal_id)
    if deal is None:
        raise NotFoundError("Deal", deal_id)
    return deal


@router.get("/deals/{deal_id}/analysis")
async def list_deal_analyses(
    deal_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Analyses for a deal, most recent first"""
    analyses = await services.store.list_analyses(deal_id)
    return {"success": True, "data": [a.model_dump(mode="json", by_alias=True) for a in analyses]}


@router.post("/deals/{deal_id}/analysis")
async def start_comprehensive_analysis(
    deal_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.pipeline.run(deal_id, user.uid, failure_status=DealStatus.ERROR_ANALYSIS_FAILED)


@router.post("/comparison")
async def comparison(
    payload: ComparisonRequest,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await get_comparison_data(services.store, payload.deal_ids)


@router.post("/benchmarks")
async def add_benchmark_data(
    payload: BenchmarkInput,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await ensure_has_role(services.store, user.uid, UserRole.BENCHMARKING_ADMIN)

    if not payload.industry or not payload.stage or payload.arr is None:
        raise InvalidArgumentError("Industry, stage, and ARR are required.")

    benchmark = Benchmark(**payload.model_dump(), added_by=user.uid)
    benchmark_id = await services.store.add_benchmark(benchmark)
    logger.info(f"[Server] Benchmark {benchmark_id} added by {user.uid}")

    return {
        "success": True,
        "message": "Benchmark data added successfully.",
        "benchmarkId": benchmark_id,
        "ltv_cac_ratio": benchmark.ltv_cac_ratio,
    }


@router.post("/users/role")
async def set_user_role(
    payload: RoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await ensure_has_role(services.store, user.uid, UserRole.ADMIN)

    if not payload.target_uid or not payload.new_role:
        raise InvalidArgumentError("A 'targetUid' and 'newRole' must be provided.")
    try:
        role = UserRole(payload.new_role)
    except ValueError:
        raise InvalidArgumentError(f"Unknown role '{payload.new_role}'.", "newRole")

    await services.store.set_user_role(payload.target_uid, role, set_by=user.uid)
    logger.info(f"[Server] Admin {user.uid} set role '{role.value}' for user {payload.target_uid}")
    return {"success": True, "message": f"User role has been updated to {role.value}."}


@router.post("/analytics/backfill")
async def backfill(
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await ensure_has_role(services.store, user.uid, UserRole.ADMIN)
    return await backfill_analytics(services.store, services.exporter)


@router.get("/analytics")
async def analytics(
    limit: int = 10,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await list_analytics(services.store, limit=limit)


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    if not payload.session_id or not payload.message:
        return JSONResponse(status_code=400, content={"error": "sessionId and message are required"})

    try:
        return await services.chat_agent.respond(payload.session_id, payload.message)
    except ServiceUnavailableError as e:
        logger.error(f"[Chat] {e.message}")
        return JSONResponse(status_code=503, content={"error": e.message})
    except Exception as e:
        logger.error(f"[Chat] Chat Agent Error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": CHAT_ERROR})


@router.post("/chat/enhanced")
async def enhanced_chat(
    payload: ChatRequest,
    user: CurrentUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    if not payload.session_id or not payload.message:
        return JSONResponse(status_code=400, content={"error": "sessionId and message are required"})

    try:
        return await services.enhanced_chat_agent.process_message(payload.session_id, payload.message)
    except Exception as e:
        logger.error(f"[EnhancedChat] Enhanced chat agent error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": CHAT_ERROR, "details": str(e)})


@router.post("/events/object-finalized")
async def object_finalized(
    event: StorageEvent,
    sender: dict = Depends(verify_push_sender),
    services: ServiceContainer = Depends(get_services),
):
    """Cloud Storage finalize notification, pushed by Eventarc or Pub/Sub with an OIDC token"""
    result = await services.pipeline.process_uploaded_file(event.object_name)
    if result is None:
        return {"success": True, "ignored": True}
    return result


# === App factory ===

def create_app(services: Optional[ServiceContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services(settings)
        logger.info(f"[Server] {settings.PROJECT_NAME} API ready ({settings.ENVIRONMENT})")

        yield

        if owned:
            await app.state.services.aclose()

    app = FastAPI(title=f"{settings.PROJECT_NAME} API", version=settings.VERSION, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SealDealError, sealdeal_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
