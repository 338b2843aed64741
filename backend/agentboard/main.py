import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from . import database
from .api import activities as activities_api
from .api import applications as applications_api
from .api import jobs as jobs_api
from .api import matches as matches_api
from .api import profiles as profiles_api
from .config import EMBEDDINGS_ENABLED, EMBEDDINGS_PROVIDER, LOG_LEVEL, RATE_LIMIT_BACKEND
from .services.match_cache import clear_expired
from .utils.error_handlers import AppError, app_error_response, get_error_message

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Agent Job Board")


def register_routes(target: FastAPI) -> FastAPI:
    target.include_router(profiles_api.router)
    target.include_router(jobs_api.router)
    target.include_router(applications_api.router)
    target.include_router(matches_api.router)
    target.include_router(activities_api.router)
    return target


def register_error_handlers(target: FastAPI) -> FastAPI:
    @target.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """Domain errors carry their own status code and machine-readable code."""
        return app_error_response(exc)

    @target.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTPException with user-friendly messages."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "status_code": exc.status_code,
            },
        )

    @target.exception_handler(OperationalError)
    async def sqlalchemy_operational_error_handler(request: Request, exc: OperationalError):
        """Handle database operational errors."""
        logger.exception("Database OperationalError: %s", exc)
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "error": get_error_message("database_error"),
            },
        )

    @target.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
        """Handle general database errors."""
        logger.exception("Database SQLAlchemyError: %s", exc)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": get_error_message("database_error"),
            },
        )

    @target.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Handle ValueError with user-friendly message."""
        logger.warning("ValueError: %s", exc)
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": str(exc) or get_error_message("validation_error"),
            },
        )

    @target.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors globally."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": get_error_message("server_error"),
            },
        )

    return target


register_routes(app)
register_error_handlers(app)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    db_ok = True
    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Health check: database unreachable: %s", e)
        db_ok = False
    return {
        "status": "Backend running" if db_ok else "Database unavailable",
        "service": "Agent Job Board",
        "database": db_ok,
        "embeddings": EMBEDDINGS_PROVIDER if EMBEDDINGS_ENABLED else "disabled",
        "rate_limit_backend": RATE_LIMIT_BACKEND,
    }


_default_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
_extra_origins = [
    origin.strip()
    for origin in os.getenv("FRONTEND_ORIGINS", "").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=[*_default_origins, *_extra_origins],
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    database.init_db()

    db = database.SessionLocal()
    try:
        clear_expired(db)
    finally:
        db.close()
