# library_app/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status as fastapi_status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from loguru import logger
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from library_app.core import config
from library_app.core.config import setup_logging
from library_app.core.exceptions import LibraryError
from library_app.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from library_app.core.responses import error_response
from library_app.middleware.logging import RequestLoggingMiddleware
from library_app.db.database import init_db
from library_app.api.v1.api import api_router_v1
from library_app.models.loan import Loan

GENERIC_ERROR_MESSAGE = "An internal server error occurred."


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    client = await init_db()
    logger.info("Database initialized.")
    yield
    logger.info("Application shutdown...")
    client.close()


app = FastAPI(
    title="Library Borrowing API",
    description="Books, members and the borrowing lifecycle: checkout, renewal, return and fines.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Error handling ---
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


def _visible_message(status_code: int, message: str) -> str:
    if status_code >= 500 and config.ENVIRONMENT == "production":
        return GENERIC_ERROR_MESSAGE
    return message


@app.exception_handler(LibraryError)
async def library_exception_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} ({exc.status_code}): {exc.message}")
    return error_response(exc.status_code, _visible_message(exc.status_code, exc.message), exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    logger.warning(f"Validation Error: {errors}")
    return error_response(fastapi_status.HTTP_400_BAD_REQUEST, "Validation error", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(PyMongoError)
async def storage_exception_handler(request: Request, exc: PyMongoError):
    logger.opt(exception=exc).error(f"Unwrapped storage error: {exc}")
    return error_response(
        fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
        _visible_message(500, "Storage is currently unavailable."),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled Exception: {exc}")
    return error_response(fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, _visible_message(500, str(exc) or GENERIC_ERROR_MESSAGE))


# --- Middleware ---
app.add_middleware(RequestLoggingMiddleware)
app.state.limiter = get_rate_limiter()
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api_router_v1)


@app.get("/")
async def read_root():
    return {"message": "Welcome to Library Management System API"}


@app.get("/ping-mongodb")
async def ping_mongodb():
    try:
        await Loan.get_motor_collection().database.command("ping")
        return {"status": "success", "message": "MongoDB connection is healthy."}
    except PyMongoError:
        return error_response(503, "MongoDB connection failed.")
