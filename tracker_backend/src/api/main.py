import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import InternalError, TrackerError
from .logging_config import configure_logging
from .routers import articles as articles_router
from .routers import sections as sections_router
from .routers import tasks as tasks_router
from .settings import get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "sections", "description": "Owner-scoped sections with archiving and guarded deletion."},
    {
        "name": "tasks",
        "description": "Tasks with filtering, sorting, pagination, bulk updates and statistics.",
    },
    {
        "name": "articles",
        "description": "Articles with slug lookup, view counting, cross-references and statistics.",
    },
]

_settings = get_settings()
configure_logging(_settings.log_level)

app = FastAPI(
    title="Tracker Backend",
    description="Personal productivity tracker: sections, tasks and knowledge-base articles.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(TrackerError)
async def tracker_exception_handler(request: Request, exc: TrackerError) -> JSONResponse:
    """Map domain errors onto the same envelope, keyed by their status code."""
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
        content = {"error": exc.error, "message": "Internal server error", "detail": None}
    else:
        content = {"error": exc.error, "message": exc.message, "detail": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "message": "Internal server error", "detail": None},
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health and the active storage backend.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers
app.include_router(sections_router.router)
app.include_router(tasks_router.router)
app.include_router(articles_router.router)
