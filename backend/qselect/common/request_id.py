"""Request ID middleware and the context variable that carries it into logs."""

import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from qselect.core.logging import get_logger

logger = get_logger(__name__)

# Copied into threadpool workers, so sync endpoints and the engine see it too
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def current_request_id() -> str | None:
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Accepts or mints X-Request-ID and logs one access line per request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)

        started = time.perf_counter()
        context = {"method": request.method, "path": request.url.path}
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Request failed",
                extra={**context, "status_code": 500, "latency_ms": _elapsed_ms(started)},
            )
            raise
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            extra={
                **context,
                "request_id": request_id,
                "status_code": response.status_code,
                "latency_ms": _elapsed_ms(started),
            },
        )
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
