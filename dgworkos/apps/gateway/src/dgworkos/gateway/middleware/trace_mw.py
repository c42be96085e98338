"""TraceMiddleware -- 为任务 / 延期操作绑定追踪上下文

从 /api/tasks/{task_id}/... 与 /api/extensions/{extension_id}/... 路径中提取 ID，
绑定到 structlog contextvars，贯穿该请求内的全部日志（含通知生成与入队）。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径段 -> 绑定的上下文键
_TRACE_SEGMENTS = {"tasks": "task_id", "extensions": "extension_id"}

# 不是 ID 的子路由
_RESERVED = {"bulk", "stats"}


def extract_trace_context(path: str) -> dict[str, str]:
    """从请求路径提取追踪 ID"""
    context: dict[str, str] = {}
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts[:-1]):
        key = _TRACE_SEGMENTS.get(part)
        value = parts[i + 1]
        if key and value not in _RESERVED:
            context[key] = value
    return context


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = extract_trace_context(request.url.path)
        if context:
            structlog.contextvars.bind_contextvars(**context)
        return await call_next(request)
