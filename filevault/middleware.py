# filevault/middleware.py
import asyncio
import logging
import time

from fastapi import FastAPI, Request

from .errors import RequestTimeout, error_response

logger = logging.getLogger(__name__)


def add_timeout_middleware(app: FastAPI, seconds: float):
    """Answer 408 REQUEST_TIMEOUT when a request runs longer than ``seconds``"""

    @app.middleware("http")
    async def enforce_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=seconds)
        except asyncio.TimeoutError:
            logger.warning("Request timeout: %s %s after %ss", request.method, request.url.path, seconds)
            return error_response(request, RequestTimeout(f"Request timeout after {seconds:g}s"))


def add_request_logging(app: FastAPI, slow_threshold_ms: int = 1000):
    """Log every request with its status and duration, warn on slow ones"""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.info("%s %s - %s - %.0fms", request.method, request.url.path,
                    response.status_code, duration_ms)
        if duration_ms > slow_threshold_ms:
            logger.warning("Slow request: %s %s took %.0fms", request.method, request.url.path,
                           duration_ms)
        return response
