# credit_engine/server.py
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from credit_engine.api import assignments, auth, credits, payments, submissions
from credit_engine.api.deps import Services
from credit_engine.core.config import Settings, get_settings
from credit_engine.core.database import (
    SessionFactory,
    create_engine_for,
    create_session_factory,
    init_models,
)
from credit_engine.core.log import configure_logging
from credit_engine.services.achievements import AchievementEngine
from credit_engine.services.credit_ledger import CreditLedger
from credit_engine.services.download_gate import DocumentRenderer, DownloadGate, PlainTextRenderer
from credit_engine.services.errors import InsufficientCredits, LedgerConflict
from credit_engine.services.gateway import MockGateway, PaymentGateway, ZenoPayGateway
from credit_engine.services.payment_reconciler import PaymentReconciler
from credit_engine.services.submission_rewards import SubmissionRewards

configure_logging()
logger = logging.getLogger("credit-engine")


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.payment_gateway == "mock":
        logger.warning("PAYMENT_GATEWAY=mock: payments are simulated in memory")
        return MockGateway(redirect_base=settings.frontend_url)
    return ZenoPayGateway(
        api_key=settings.zenopay_api_key,
        base_url=settings.zenopay_base_url,
        timeout_seconds=settings.zenopay_timeout_seconds,
        redirect_base=settings.frontend_url,
    )


def build_services(
        settings: Settings,
        session_factory: SessionFactory,
        gateway: PaymentGateway,
        renderer: Optional[DocumentRenderer] = None,
) -> Services:
    ledger = CreditLedger(session_factory, signup_bonus=settings.signup_bonus, max_attempts=settings.ledger_max_attempts)
    achievements = AchievementEngine(session_factory, ledger, max_attempts=settings.ledger_max_attempts)
    return Services(
        settings=settings,
        session_factory=session_factory,
        ledger=ledger,
        reconciler=PaymentReconciler(
            session_factory, ledger, gateway,
            max_attempts=settings.ledger_max_attempts,
            log_dir=settings.log_dir,
        ),
        downloads=DownloadGate(
            session_factory, ledger,
            cost=settings.download_cost,
            max_attempts=settings.ledger_max_attempts,
        ),
        renderer=renderer or PlainTextRenderer(),
        achievements=achievements,
        submissions=SubmissionRewards(session_factory, ledger, achievements, max_attempts=settings.ledger_max_attempts),
    )


def create_app(
        settings: Optional[Settings] = None,
        session_factory: Optional[SessionFactory] = None,
        gateway: Optional[PaymentGateway] = None,
        renderer: Optional[DocumentRenderer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    engine = None
    if session_factory is None:
        engine = create_engine_for(settings.database_url)
        session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # tables are created only for an engine this app owns
        if engine is not None:
            await init_models(engine)
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="Credit Engine API", lifespan=lifespan)
    app.state.services = build_services(settings, session_factory, gateway or build_gateway(settings), renderer)

    root_router = APIRouter(prefix="/api")

    @root_router.get("/health")
    async def health():
        return {"status": "healthy", "service": "credit-engine"}

    app.include_router(root_router)
    app.include_router(auth.router)
    app.include_router(credits.router)
    app.include_router(payments.router)
    app.include_router(payments.admin_router)
    app.include_router(assignments.router)
    app.include_router(submissions.router)

    @app.exception_handler(InsufficientCredits)
    async def insufficient_credits_handler(request: Request, exc: InsufficientCredits):
        return JSONResponse(
            status_code=402,
            content={
                "message": str(exc),
                "creditCost": exc.required,
                "remainingCredits": exc.remaining,
                "shortfall": exc.shortfall,
            },
        )

    @app.exception_handler(LedgerConflict)
    async def ledger_conflict_handler(request: Request, exc: LedgerConflict):
        logger.error("Ledger conflict on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": "Please retry: the request conflicted with another update"})

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
