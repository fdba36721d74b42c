from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from utils.errors import DocumentServiceError
from utils.prometheus import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from routers import deal_documents, health, session_documents, trainer_documents, user_documents
from contextlib import asynccontextmanager
import logging
import asyncio
from config import config, normalize_cors_origins

# Configure Logging
import logging_config # This initializes logging

logger = logging.getLogger("erp_drive.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up application...", extra={"mock_drive": config.USE_MOCK_DRIVE})

    # Table creation runs in a separate thread to avoid blocking the event loop
    if config.CREATE_TABLES_ON_STARTUP:
        from init_db import init_db

        try:
            await asyncio.to_thread(init_db)
            logger.info("Database tables ensured")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
    else:
        logger.info("Skipping table creation (CREATE_TABLES_ON_STARTUP=false)")

    yield

    # Shutdown
    logger.info("Shutting down application...")

app = FastAPI(lifespan=lifespan)

# Parse and normalize CORS origins from config (comma-separated string)
origins = normalize_cors_origins(config.CORS_ORIGINS)

logger.info(f"CORS allowed origins: {origins}")

cors_params = {
    "allow_origins": origins,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}

# Extra origins (e.g. preview deployments) by regex
if config.CORS_ORIGIN_REGEX:
    cors_params["allow_origin_regex"] = config.CORS_ORIGIN_REGEX
    logger.info(f"CORS origin regex enabled: {config.CORS_ORIGIN_REGEX}")

app.add_middleware(
    CORSMiddleware,
    **cors_params,
)


HTTP_STATUS_CODE_MAP = {
    400: "VALIDATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
}


def _error_envelope(error_code: str, message: str) -> dict:
    return {"ok": False, "error_code": error_code, "message": message}


@app.middleware("http")
async def ensure_json_error_response(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error("Unhandled exception for request", exc_info=True, extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content=_error_envelope("UNEXPECTED", str(exc) or "Unexpected error"),
        )


@app.exception_handler(DocumentServiceError)
async def document_service_error_handler(request: Request, exc: DocumentServiceError):
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.error_code, "error_message": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else str(detail or "Request error")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_envelope(HTTP_STATUS_CODE_MAP.get(exc.status_code, "HTTP_ERROR"), message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Schema errors use the same 400 VALIDATION_ERROR envelope as service-level validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else (first.get("msg") or "Invalid request")
    return JSONResponse(status_code=400, content=_error_envelope("VALIDATION_ERROR", message))


app.include_router(user_documents.router)
app.include_router(deal_documents.router)
app.include_router(session_documents.router)
app.include_router(trainer_documents.router)
app.include_router(health.router)


@app.get("/metrics")
def prometheus_metrics():
    """Expose Prometheus metrics collected by the application."""
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

@app.get("/")
def read_root():
    return {"ok": True, "message": "ERP Drive Documents Backend"}
