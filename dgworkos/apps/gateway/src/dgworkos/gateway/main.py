"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、投递通道与后台调度器启动/停止、
异常处理器与路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from dgworkos.core.config import get_db_path
from dgworkos.core.errors import WorkflowError
from dgworkos.core.store import create_store_group
from dgworkos.delivery import create_senders, load_delivery_config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .responses import error_envelope, error_response
from .routes import extensions, health, notifications, push, tasks
from .services.delivery_hub import DeliveryDispatcher
from .services.notification_service import NotificationGenerator

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与投递组件，关闭时停止 worker 并关闭连接"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    # 投递通道：SMTP / VAPID 未配置时退化为日志通道
    delivery_config = load_delivery_config()
    email_sender, push_sender = create_senders(delivery_config)
    app.state.delivery_config = delivery_config

    dispatcher = DeliveryDispatcher(
        store_group,
        email_sender,
        push_sender,
        base_url=delivery_config.base_url,
    )
    dispatcher.start()
    app.state.dispatcher = dispatcher
    app.state.generator = NotificationGenerator(store_group, dispatcher)

    log.info(
        "delivery_initialized",
        email="smtp" if delivery_config.email_enabled else "log",
        push="webpush" if delivery_config.push_enabled else "log",
        mode=delivery_config.delivery_mode,
    )

    yield

    await dispatcher.stop()
    await store_group.close()


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """WorkflowError -> 错误信封（4xx）"""
    log.info(
        "request_rejected",
        code=exc.code,
        status_code=exc.status_code,
        message=exc.message,
    )
    return error_envelope(exc.status_code, exc.to_dict())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """请求体 / 参数校验失败 -> 400 VALIDATION_ERROR"""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return error_response(400, "VALIDATION_ERROR", "Invalid request", errors=errors)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="DG Work OS Task Engine",
        version="0.1.0",
        description="任务生命周期与通知引擎 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging，Logging 在最外层）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(WorkflowError, workflow_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(extensions.router, tags=["extensions"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(push.router, tags=["push"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
