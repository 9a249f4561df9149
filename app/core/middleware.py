"""
Middleware for request logging.
"""
import time
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import logger


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Log every request with its tenant, status and duration."""

    async def dispatch(self, request: Request, call_next: Callable):
        tenant_id = request.headers.get("x-tenant-id", "-")
        started = time.perf_counter()

        with logger.contextualize(tenant_id=tenant_id):
            try:
                response = await call_next(request)
            except Exception:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.exception(f"{request.method} {request.url.path} failed after {elapsed_ms:.1f} ms")
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({elapsed_ms:.1f} ms, tenant={tenant_id})"
            )
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"
        return response
