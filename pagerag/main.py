"""
Page RAG API
Main FastAPI application for page-scoped Q&A with RAG
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import httpx
from pydantic import ValidationError
import redis.asyncio as aioredis
import structlog
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from qdrant_client import AsyncQdrantClient
from starlette.responses import Response

from pagerag.routers import chat, embeddings
from pagerag.services.chunk_store import ChunkStore
from pagerag.services.config import Settings
from pagerag.services.embeddings import EmbeddingClient
from pagerag.services.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    GenerationError,
    MalformedResponseError,
    PersistenceError,
    ProviderRequestError,
)
from pagerag.services.generation import AnswerGenerator
from pagerag.services.rag import RAGService
from pagerag.services.retrieval import Retriever
from pagerag.services.segmentation import PageSegmenter
from pagerag.services.sessions import SessionManager
from pagerag.utils.logging import setup_logging
from pagerag.utils.metrics import active_connections, request_counter, request_duration

# Configure structured logging
logger = structlog.get_logger()

# Load settings
settings = Settings()
setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info("Starting Page RAG API",
                version=settings.API_VERSION,
                environment=settings.ENVIRONMENT)

    redis_client = aioredis.from_url(
        settings.get_redis_url(),
        encoding="utf-8",
        decode_responses=True
    )
    qdrant_client = AsyncQdrantClient(location=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY)
    http_client = httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    store = ChunkStore(qdrant_client, settings)
    await store.ensure_collection()

    rag_service = RAGService(
        settings=settings,
        segmenter=PageSegmenter(settings),
        embeddings=EmbeddingClient(settings, http_client=http_client),
        store=store,
        retriever=Retriever(store, settings),
        generator=AnswerGenerator(settings, http_client=http_client),
        sessions=SessionManager(redis_client, settings)
    )

    # Set services in app state
    app.state.settings = settings
    app.state.redis_client = redis_client
    app.state.qdrant_client = qdrant_client
    app.state.rag_service = rag_service

    logger.info("API initialization complete")

    yield

    # Shutdown
    logger.info("Shutting down Page RAG API")

    await http_client.aclose()
    await qdrant_client.close()
    await redis_client.aclose()

    logger.info("Shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="Page RAG API",
    description="Page-scoped Q&A service with RAG for e-learning pages",
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

# Include routers
app.include_router(chat.router, prefix="/api/v1")
app.include_router(embeddings.router, prefix="/api/v1")

# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "version": settings.API_VERSION}

@app.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness probe - checks if all services are ready"""
    checks = {
        "api": "healthy",
        "sessions": "unknown",
        "vector_store": "unknown",
        "providers": "unknown"
    }

    try:
        await request.app.state.redis_client.ping()
        checks["sessions"] = "healthy"
    except Exception as e:
        logger.error("Session store health check failed", error=str(e))
        checks["sessions"] = "unhealthy"

    try:
        if await request.app.state.qdrant_client.collection_exists(settings.QDRANT_COLLECTION):
            checks["vector_store"] = "healthy"
        else:
            checks["vector_store"] = "unhealthy"
    except Exception as e:
        logger.error("Vector store health check failed", error=str(e))
        checks["vector_store"] = "unhealthy"

    # Credentials only; providers are not called from a probe
    if settings.EMBEDDING_API_KEY and settings.CHAT_API_KEY:
        checks["providers"] = "healthy"
    else:
        checks["providers"] = "unconfigured"

    if all(v == "healthy" for v in checks.values()):
        return {"status": "ready", "checks": checks}
    return JSONResponse(
        status_code=503,
        content={"status": "not ready", "checks": checks}
    )

@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    if not settings.ENABLE_METRICS:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Page RAG API",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/docs" if settings.ENVIRONMENT == "development" else None,
        "health": "/health",
        "metrics": "/metrics"
    }


def _error_response(request: Request, status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "status_code": status_code,
            "request_id": request.headers.get("X-Request-ID")
        }
    )

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

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Service misconfigured", error=str(exc), path=request.url.path)
    return _error_response(request, 503, "Service is not configured")

@app.exception_handler(EmbeddingProviderError)
@app.exception_handler(GenerationError)
@app.exception_handler(ProviderRequestError)
@app.exception_handler(MalformedResponseError)
async def provider_error_handler(request: Request, exc: Exception):
    """Handle upstream provider failures"""
    logger.error(
        "Upstream provider failed",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path
    )
    return _error_response(request, 502, "Upstream provider failed")

@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Storage failure", error=str(exc), path=request.url.path)
    return _error_response(request, 503, "Storage is unavailable")

@app.exception_handler(ValidationError)
async def model_validation_error_handler(request: Request, exc: ValidationError):
    """Handle pydantic errors raised by internal model construction"""
    logger.error("Model validation failed", error=str(exc), path=request.url.path, exc_info=True)
    return _error_response(request, 500, "Internal server error")

@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle validation errors"""
    logger.error("Validation error", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "status_code": 400}
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
    return _error_response(request, 500, "Internal server error")

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pagerag.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,  # Use structlog instead
        access_log=False,  # Handled by middleware
    )
