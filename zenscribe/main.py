from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from zenscribe.api.routes import api_router
from zenscribe.core.config import settings
from zenscribe.core.exceptions import BaseAPIException
from zenscribe.core.logging import setup_logging
from zenscribe.db.init_db import init_db
from zenscribe.db.session import engine
from zenscribe.utils.http import prefers_plain_text, request_id_of
from zenscribe.utils.security import generate_request_id

setup_logging()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # Short correlation id, also bound to every log line of the request
        request_id = generate_request_id()
        request.state.request_id = request_id

        with logger.contextualize(request_id=request_id):
            logger.info(f"Request {request_id}: {request.method} {request.url.path}")

            try:
                response = await call_next(request)
            except Exception as e:
                process_time = time.time() - start_time
                logger.error(f"Error {request_id}: {e!r} after {process_time:.3f}s")
                raise

            process_time = time.time() - start_time
            logger.info(f"Response {request_id}: {response.status_code} completed in {process_time:.3f}s")

        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        response.headers["X-Request-ID"] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown events.
    """
    await init_db()

    logger.info(f"Application startup complete in {settings.ENVIRONMENT} environment")
    yield

    await engine.dispose()
    logger.info("Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for consultation audio transcription and clinical reports",
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "GET", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Type", "Content-Length", "X-Process-Time", "X-Request-ID", "X-Client-Id"],
    max_age=600,
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_STR)


# Exception handlers
@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Handle custom API exceptions"""
    request_id = request_id_of(request)
    if exc.status_code >= 500:
        logger.error(f"Request {request_id} failed with {exc.code}: {exc.detail}")
    else:
        logger.warning(f"Request {request_id} rejected with {exc.code}: {exc.detail}")

    if prefers_plain_text(request):
        return PlainTextResponse(
            f"Error: {exc.detail}",
            status_code=exc.status_code,
            headers=exc.headers or {},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code, "request_id": request_id},
        headers=exc.headers or {},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Handle anything else without leaking internals"""
    request_id = request_id_of(request)
    logger.opt(exception=exc).error(f"Unhandled error in request {request_id}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "internal_error", "request_id": request_id},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("zenscribe.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
