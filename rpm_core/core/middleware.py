import re
import time
import uuid
from typing import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from rpm_core.core.config import settings

PATIENT_PATH = re.compile(r"/patients/([^/]+)")


def request_subjects(request: Request) -> dict[str, str | None]:
    """Patient addressed by the path and clinician acting on it, when present."""
    match = PATIENT_PATH.search(request.url.path)
    return {
        "patient_id": match.group(1) if match else None,
        "clinician_id": request.headers.get("X-Clinician-ID"),
    }


class StructlogMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        correlation_id = request.headers.get("X-Correlation-ID") or request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
            **request_subjects(request),
        )

        logger = structlog.get_logger()
        # Request start is only interesting while developing
        if settings.ENVIRONMENT in ["local", "dev"]:
            logger.info("request_started")

        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            process_time = time.perf_counter() - start_time
            logger.info(
                "request_finished",
                status_code=response.status_code,
                duration=process_time,
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception:
            # Logged here, re-raised for the exception handler
            process_time = time.perf_counter() - start_time
            logger.exception(
                "request_failed",
                duration=process_time,
            )
            raise
