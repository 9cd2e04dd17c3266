"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cafe_directory.config import settings
from cafe_directory.database import Base, engine
from cafe_directory.errors import APIError, ObjectNotFoundError, code_for_status
from cafe_directory.logging_config import configure_logging

# Import routers
from cafe_directory.routers import cafe_photos, cafes, moderation, submissions

# Import all models so Base.metadata knows about them
from cafe_directory.models.user import User  # noqa: F401
from cafe_directory.models.cafe import Cafe, CafePhoto  # noqa: F401
from cafe_directory.models.favorite import UserFavorite  # noqa: F401
from cafe_directory.models.submission import ModerationEvent, ModerationSubmission  # noqa: F401

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


class UTF8JSONResponse(JSONResponse):
    media_type = "application/json; charset=utf-8"


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return UTF8JSONResponse(status_code=status_code, content={"error": body})


app = FastAPI(
    title="Cafe Directory",
    description="Cafe catalog with a moderation queue and a photo ingest pipeline",
    version="0.1.0",
    default_response_class=UTF8JSONResponse,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(submissions.router, prefix="/api/submissions", tags=["Submissions"])
app.include_router(moderation.router, prefix="/api/moderation", tags=["Moderation"])
app.include_router(cafes.router, prefix="/api/cafes", tags=["Cafes"])
app.include_router(cafe_photos.router, prefix="/api/cafes", tags=["CafePhotos"])


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
    return UTF8JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
        fields.append({"field": field, "message": error.get("msg", "Invalid value")})
    return error_response(400, "invalid_argument", "invalid request", {"fields": fields})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "request failed"
    return error_response(exc.status_code, code_for_status(exc.status_code), message)


@app.exception_handler(ObjectNotFoundError)
async def object_not_found_handler(request: Request, exc: ObjectNotFoundError):
    return error_response(404, "not_found", f"file {exc.key} not found in storage")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal", "internal server error")


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
