"""
Exam Proctoring Service - FastAPI Application
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.deps import get_container
from .api.routes.sessions import router as sessions_router
from .api.routes.signals import router as signals_router
from .config import settings
from .errors import ProctoringError
from .utils.logging import Colors, log_error, log_startup, setup_logger

setup_logger("exam_proctoring", getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

QUIET_PATHS = ["/health", "/favicon.ico"]


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Exam session lifecycle, live proctoring and post-exam review",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


# ============================================================================
# Request Logging Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    method = request.method
    path = request.url.path

    if path not in QUIET_PATHS:
        print(f"{Colors.CYAN}→{Colors.RESET} {method} {path}")

    try:
        response = await call_next(request)
        duration_ms = int((time.time() - start) * 1000)

        if path not in QUIET_PATHS:
            status_color = Colors.GREEN if response.status_code < 400 else Colors.RED
            print(f"{Colors.CYAN}←{Colors.RESET} {status_color}{response.status_code}{Colors.RESET} in {duration_ms}ms")

        return response
    except Exception as e:
        log_error("RequestError", str(e))
        raise


# CORS middleware - exam clients are served from a separate origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(ProctoringError)
async def proctoring_error_handler(request: Request, exc: ProctoringError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message, "code": "validation_error"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "internal_error"})


# Include routers
app.include_router(sessions_router)
app.include_router(signals_router)


@app.on_event("startup")
async def startup_event():
    """Wire services and log service startup."""
    container = get_container()
    log_startup(settings.APP_NAME, settings.PORT)

    print(f"{Colors.DIM}Configuration:{Colors.RESET}")
    print(f"  Database: {Colors.CYAN}{settings.DATABASE_URL.split('://')[0]}{Colors.RESET}")
    print(f"  Log Encryption: {Colors.CYAN}{settings.LOG_ENCRYPTION_ENABLED}{Colors.RESET}")
    print(f"  Monitoring: {Colors.CYAN}{settings.MONITORING_ENABLED}{Colors.RESET}")
    print(f"  Escalation: {Colors.CYAN}{container.escalation.max_violations} violations, "
          f"{container.escalation.grace_seconds:.0f}s grace{Colors.RESET}")
    print()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop every active monitor before the loop goes away."""
    container = get_container()
    active = len(container.supervisor.active_sessions())
    container.supervisor.stop_all()
    logger.info(f"Stopped monitoring for {active} session(s)")


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint, also the target of the client latency measurement."""
    return {
        "status": "healthy",
        "service": settings.SERVICE_ID,
        "version": "1.0.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs" if settings.DEBUG else "Disabled in production"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "exam_proctoring.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
