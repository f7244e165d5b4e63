"""
FastAPI application main module.
Wires the conversion engine together and adds middleware, error handling and health checks.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional
from aggregator.api.v1 import api_router
from aggregator.config import Settings, load_settings
from aggregator.database import Database
from aggregator.integrations.postback import PostbackClient, PostbackTransport
from aggregator.jobs.flush_scheduler import FlushScheduler
from aggregator.services.aggregation_store import AggregationStore
from aggregator.services.audit import DecisionLogSink, PostbackLedger
from aggregator.services.conversion_processor import ConversionProcessor
from aggregator.services.flush_sweeper import FlushSweeper
from aggregator.services.scope_resolver import OfferRegistry, ScopeResolver
from aggregator.utils import get_logger, setup_logging

SERVICE_NAME = "conversion-aggregator"
VERSION = "1.0.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Opens the database on startup, runs the optional in-process sweep, and releases both on shutdown.
    """
    logger.info("Application startup initiated")
    database: Database = app.state.database
    scheduler: Optional[FlushScheduler] = app.state.scheduler
    try:
        database.open()
        logger.info("Creating database tables")
        database.create_tables()
        logger.info("Database tables created successfully")
        if scheduler is not None:
            scheduler.start()
        else:
            logger.info("In-process sweep disabled; relying on the external scheduler")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if scheduler is not None:
            scheduler.stop()
        database.close()
        logger.info("Application shutdown completed")


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    transport: Optional[PostbackTransport] = None,
) -> FastAPI:
    """
    Build the application and its engine components.

    Args:
        settings: Service configuration; read from the environment when omitted.
        database: Database handle; built from ``settings.database_url`` when omitted.
        transport: Postback transport; an aiohttp ``PostbackClient`` when omitted.
    """
    settings = settings or load_settings()
    database = database or Database(settings.database_url)
    transport = transport or PostbackClient(
        settings.postback_base_url,
        timeout_seconds=settings.postback_timeout_seconds,
        user_agent=f"{SERVICE_NAME}/{VERSION}",
    )

    store = AggregationStore(database)
    registry = OfferRegistry(database)
    resolver = ScopeResolver(registry, settings)
    decision_log = DecisionLogSink(database)
    ledger = PostbackLedger(database)
    processor = ConversionProcessor(settings, store, resolver, transport, decision_log, ledger)
    sweeper = FlushSweeper(store, resolver, transport, decision_log, ledger, postback_base_url=settings.postback_base_url)
    scheduler = (
        FlushScheduler(sweeper, interval_seconds=settings.sweep_interval_seconds)
        if settings.sweep_interval_seconds > 0
        else None
    )

    app = FastAPI(
        title="Conversion Aggregator",
        description="""
    Accumulates small conversion payouts per scope and forwards them to the tracker
    once the pooled amount reaches the scope's threshold.

    ## Response codes (conversion callback)
    * `0` rejected
    * `1` cached
    * `2` forwarded
    * `3` forwarded, tracker reported failure
    * `4` internal error

    ## Authentication
    The flush trigger expects `Authorization: Bearer <scheduler secret>`.
    Admin routes expect `Authorization: Bearer <admin token>` when one is configured.
    """,
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.store = store
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.decision_log = decision_log
    app.state.ledger = ledger
    app.state.processor = processor
    app.state.sweeper = sweeper
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_request_context_and_logging(request: Request, call_next):
        """
        Add request ID, timing, and request/response logging.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            user_agent=request.headers.get("User-Agent"),
            remote_addr=request.client.host if request.client else "unknown",
            request_id=request_id
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
        response.headers["X-Content-Type-Options"] = "nosniff"

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            process_time_ms=round(process_time * 1000, 2),
            request_id=request_id
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            "Request validation failed",
            errors=exc.errors(),
            request_id=request_id,
            url=str(request.url),
            method=request.method
        )
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "message": "Request validation failed",
                "details": _validation_details(exc),
                "request_id": request_id
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=request_id,
            url=str(request.url),
            method=request.method
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": exc.detail,
                "request_id": request_id
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=request_id,
            url=str(request.url),
            method=request.method,
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal server error",
                "request_id": request_id
            }
        )

    @app.get("/health", tags=["health"], summary="Basic health check")
    async def health_check():
        """Basic health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "timestamp": time.time(),
            "scope_mode": settings.scope_mode.value,
        }

    @app.get("/health/detailed", tags=["health"], summary="Detailed health check")
    async def detailed_health_check():
        """Health check including the database and the in-process sweep."""
        health_status = {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "timestamp": time.time(),
            "checks": {}
        }

        try:
            with database.session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = "healthy"
        except Exception as e:
            health_status["checks"]["database"] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

        if scheduler is None:
            health_status["checks"]["scheduler"] = "disabled"
        else:
            last = scheduler.last_report
            health_status["checks"]["scheduler"] = {
                "running": scheduler.running,
                "interval_seconds": scheduler.interval_seconds,
                "last_sweep": last.timestamp.isoformat() if last is not None else None,
            }
        return health_status

    @app.get("/", tags=["root"])
    async def root():
        """API root endpoint with basic information."""
        return {
            "message": "Conversion Aggregator API",
            "version": VERSION,
            "documentation": "/docs",
            "health_check": "/health",
            "api_base": "/api/v1"
        }

    app.include_router(api_router, prefix="/api/v1")
    return app


def _validation_details(exc: RequestValidationError) -> list:
    # ctx may carry exception instances that JSONResponse cannot encode
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


_settings = load_settings()

# Setup logging before creating the app
setup_logging(
    log_level=_settings.log_level,
    log_file=_settings.log_file,
    enable_console=True
)

app = create_app(_settings)

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "aggregator.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["aggregator"],
        log_level="info",
        access_log=True
    )
