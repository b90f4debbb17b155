"""
FastAPI Backend for the Creative Render Pipeline
"""

import logging
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
import time

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()

# Import settings
from config import settings
from pipeline.ffmpeg_runner import FFmpegRunner

SERVICE_NAME = "creative-render-pipeline"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("application_startup", message="FastAPI application starting up")

    # Validate configuration
    try:
        settings.validate_storage_config()
        logger.info("config_validated", message="Configuration validated successfully")
    except ValueError as e:
        logger.error("config_validation_failed", error=str(e))
        raise

    # Initialize database
    try:
        from database import init_db
        init_db()
        logger.info("database_tables_created", message="Database initialized successfully")
    except Exception as e:
        logger.error("database_init_error", error=str(e))

    yield

    from redis_client import render_queue
    render_queue.close()
    logger.info("application_shutdown", message="FastAPI application shutting down")


# Initialize FastAPI app
app = FastAPI(
    title="Creative Render Pipeline API",
    description="Compiles creative variations into execution plans and renders them with ffmpeg",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    swagger_ui_parameters={
        "persistAuthorization": True,
    }
)

# Configure OpenAPI schema to include API key authentication
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "ApiKeyAuth": {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "API key for authentication. Use the value from your .env file (API_KEY)"
        }
    }
    # Apply security globally to all endpoints
    openapi_schema["security"] = [{"ApiKeyAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API Authentication middleware - applies to all /api/ routes
@app.middleware("http")
async def api_authentication_middleware(request: Request, call_next):
    """Authenticate all /api/ routes with API key"""
    # Skip authentication for non-API routes (health, docs, storage)
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    # Skip authentication for CORS preflight requests
    if request.method == "OPTIONS":
        return await call_next(request)

    # Import the verification function (not the FastAPI dependency)
    import auth

    if not auth.auth_enabled():
        return await call_next(request)

    # Get API key from header or query parameter
    api_key = request.headers.get(auth.API_KEY_HEADER) or request.query_params.get(auth.API_KEY_QUERY)

    if not api_key:
        return JSONResponse(
            status_code=401,
            content={
                "error": "Unauthorized",
                "message": "API key missing. Provide X-API-Key header or ?api_key=YOUR_KEY",
                "detail": "Authentication required for /api/ endpoints"
            },
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not auth.check_api_key(api_key):
        return JSONResponse(
            status_code=401,
            content={
                "error": "Unauthorized",
                "message": "Invalid API key",
                "detail": "The provided API key is not valid"
            },
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return await call_next(request)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=f"{process_time:.3f}s"
        )

        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            process_time=f"{process_time:.3f}s"
        )
        raise


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "details": str(exc) if app.debug else None
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint

    Returns:
        dict: Health status of the API and whether ffmpeg can be run
    """
    runner = FFmpegRunner(settings.ffmpeg_binary, probe_timeout=settings.FFMPEG_PROBE_TIMEOUT)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "ffmpegAvailable": await runner.probe()
    }


# Include routers
from routers import creative, render, engines

app.include_router(creative.router)
app.include_router(render.router)
app.include_router(engines.router)

# Published renders for the local storage backend
if settings.STORAGE_BACKEND == "local":
    app.mount("/storage", StaticFiles(directory=settings.LOCAL_STORAGE_DIR, check_dir=False), name="storage")


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Creative Render Pipeline API",
        "version": SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "compile": "/api/creative/compile",
            "render": "/api/render",
            "retry": "/api/render/retry",
            "queue_render": "/api/render/jobs",
            "render_job_status": "/api/render/jobs/{task_id}",
            "select_engines": "/api/engines/select"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
