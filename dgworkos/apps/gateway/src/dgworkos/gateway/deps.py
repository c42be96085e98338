"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 与服务实例

Store 与通知生成器通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from dgworkos.core.store import StoreGroup
from fastapi import Request

from .services.notification_service import NotificationGenerator
from .services.task_service import TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_generator(request: Request) -> NotificationGenerator:
    """从 app.state 获取 NotificationGenerator 实例"""
    return request.app.state.generator


def get_task_service(request: Request) -> TaskService:
    """按请求构造编排服务（无状态，依赖均来自 app.state）"""
    return TaskService(request.app.state.store_group, request.app.state.generator)
