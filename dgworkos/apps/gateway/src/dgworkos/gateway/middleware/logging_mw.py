"""LoggingMiddleware -- 请求级日志与兜底错误信封

每个请求生成 ULID request_id，绑定到 structlog contextvars 并通过
X-Request-ID 返回。未被异常处理器接住的异常在这里记录，
转换为 INTERNAL_ERROR 信封，不向调用方暴露内部细节。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

from ..responses import error_response

log = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            log.exception("request_failed", error_type=type(e).__name__)
            response = error_response(
                500,
                "INTERNAL_ERROR",
                "An unexpected error occurred",
                request_id=request_id,
            )

        log.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
