"""
Sales Co-Pilot API
Main FastAPI application for the scoped sales assistant chat
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from sales_copilot.routers import chat
from sales_copilot.services.config import get_settings
from sales_copilot.services.doc_search import DocumentSearchClient
from sales_copilot.services.identity import IdentityResolver
from sales_copilot.services.llm import LLMService
from sales_copilot.services.persistence import build_store
from sales_copilot.services.pipeline import ChatPipeline
from sales_copilot.services.scope import get_profile
from sales_copilot.utils.logging import setup_logging

# Load settings
settings = get_settings()

setup_logging(settings.LOG_LEVEL, json_logs=settings.use_json_logs)
logger = structlog.get_logger()

# Metrics
request_counter = Counter(
    'sales_copilot_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)
request_duration = Histogram(
    'sales_copilot_request_duration_seconds',
    'Request duration',
    ['method', 'endpoint']
)
active_connections = Gauge(
    'sales_copilot_active_connections',
    'Number of active connections'
)


def setup_tracing(app: FastAPI):
    """Export traces over OTLP when enabled"""
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": settings.OTEL_SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTEL_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    profile = get_profile(settings.SCOPE_PROFILE)
    logger.info("Starting Sales Co-Pilot API",
                version=settings.API_VERSION,
                environment=settings.ENVIRONMENT,
                scope=profile.key)

    doc_search = DocumentSearchClient(settings)
    llm_service = LLMService(settings)
    store = build_store(settings)
    identity_resolver = IdentityResolver(settings)

    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; answers will use the fallback message")

    if settings.OTEL_ENABLED:
        setup_tracing(app)

    # Set services in app state
    app.state.settings = settings
    app.state.identity_resolver = identity_resolver
    app.state.pipeline = ChatPipeline(settings, doc_search, llm_service, store, profile=profile)

    logger.info("API initialization complete")

    yield

    # Shutdown
    logger.info("Shutting down Sales Co-Pilot API")

    await doc_search.close()
    await llm_service.close()
    await store.close()
    await identity_resolver.close()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Sales Co-Pilot API",
    description="Scoped sales assistant with document grounding and engineering escalation",
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# Middleware for request tracking
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Track request metrics and add request ID"""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    active_connections.inc()
    start_time = time.time()

    # Add request ID to logger context
    structlog.contextvars.bind_contextvars(request_id=request_id)

    try:
        response = await call_next(request)

        duration = time.time() - start_time
        request_counter.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=duration
        )

        return response

    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e)
        )
        request_counter.labels(
            method=request.method,
            endpoint=request.url.path,
            status=500
        ).inc()
        raise

    finally:
        active_connections.dec()
        structlog.contextvars.unbind_contextvars("request_id")


# Include routers (the web client posts to /api/chat)
app.include_router(chat.router)
app.include_router(chat.router, prefix="/api")


# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "version": settings.API_VERSION}


@app.get("/health/ready")
async def readiness_check():
    """Readiness probe - checks that the pipeline is wired and the model is configured"""
    checks = {
        "api": "healthy",
        "pipeline": "healthy" if getattr(app.state, "pipeline", None) else "unhealthy",
        "models": "healthy" if settings.OPENAI_API_KEY else "unconfigured",
        "persistence": "healthy" if settings.persistence_enabled else "disabled",
    }

    if checks["pipeline"] != "healthy":
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "checks": checks}
        )
    return {"status": "ready", "checks": checks}


@app.get("/health/live")
async def liveness_check():
    """Liveness probe - checks if the application is running"""
    return {"status": "alive"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Sales Co-Pilot API",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "scope": settings.SCOPE_PROFILE,
        "docs": "/docs" if settings.ENVIRONMENT == "development" else None,
        "health": "/health",
        "metrics": "/metrics"
    }


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "status_code": exc.status_code}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "request_id": request.headers.get("X-Request-ID")
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sales_copilot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,  # Use structlog instead
        access_log=False,  # Handled by middleware
    )
