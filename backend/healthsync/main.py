from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from healthsync.api import fhir_sync, health
from healthsync.config import settings
from healthsync.database import close_db, init_db
from healthsync.logging import configure_logging, request_id_var
from healthsync.services.fhir_sync_scheduler import get_fhir_sync_scheduler

configure_logging()
logger = logging.getLogger("healthsync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting HealthSync API")
    try:
        await init_db()
        logger.info("Database initialized")
    except Exception:
        logger.exception("Failed to initialize database")
        raise

    scheduler = get_fhir_sync_scheduler()
    await scheduler.start()

    yield

    logger.info("Shutting down HealthSync API")
    try:
        await scheduler.stop()
    except Exception:
        logger.exception("Error stopping FHIR sync scheduler")
    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception:
        logger.exception("Error closing database")
    logger.info("HealthSync API shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # HealthSync API

    Keeps locally stored patient records aligned with a remote FHIR R4 server.

    ## Features

    - **Patient Sync** - Reconcile demographics and delete patients removed upstream
    - **Health Records** - Conditions, allergies, medications, hospitalizations,
      procedures, discharge instructions and goals
    - **Background Scheduling** - Periodic re-sync of linked patients
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
    request_id_var.set(request_id)
    response = await call_next(request)
    response.headers.setdefault("X-Request-Id", request_id)
    return response


app.include_router(health.router)
app.include_router(fhir_sync.router, prefix=settings.api_prefix)


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "status_code": exc.status_code,
                "type": "http_error",
                "request_id": request_id_var.get(),
            }
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "message": "Validation error",
                "status_code": 422,
                "type": "validation_error",
                "details": exc.errors(),
                "request_id": request_id_var.get(),
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(_request: Request, _exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "Internal server error",
                "status_code": 500,
                "type": "server_error",
                "request_id": request_id_var.get(),
            }
        },
    )
