"""apps/gateway 测试配置 -- 手动装配的 app + httpx AsyncClient

ASGITransport 不触发 lifespan，这里直接把 StoreGroup、调度器、
通知生成器挂到 app.state 上。
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from dgworkos.core.store import StoreGroup
from dgworkos.delivery import DeliveryConfig, LoggingEmailSender, LoggingPushSender
from dgworkos.gateway.services.delivery_hub import DeliveryDispatcher
from dgworkos.gateway.services.notification_service import NotificationGenerator
from dgworkos.gateway.services.task_service import TaskService
from httpx import ASGITransport, AsyncClient

CRON_SECRET = "test-cron-secret"


@pytest.fixture
def email_sender() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def push_sender() -> LoggingPushSender:
    return LoggingPushSender()


@pytest_asyncio.fixture
async def generator(store_group: StoreGroup) -> NotificationGenerator:
    """不带调度器的生成器：通知只写库，不投递"""
    return NotificationGenerator(store_group)


@pytest_asyncio.fixture
async def service(store_group: StoreGroup, generator: NotificationGenerator) -> TaskService:
    return TaskService(store_group, generator)


@pytest_asyncio.fixture
async def app(
    store_group: StoreGroup,
    tmp_db_path: Path,
    email_sender: LoggingEmailSender,
    push_sender: LoggingPushSender,
    monkeypatch: pytest.MonkeyPatch,
):
    """创建测试用 FastAPI app 实例（绕过 lifespan）"""
    monkeypatch.setenv("DGWORKOS_DB_PATH", str(tmp_db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.setenv("DGWORKOS_CRON_SECRET", CRON_SECRET)

    from dgworkos.gateway.main import create_app

    application = create_app()

    dispatcher = DeliveryDispatcher(
        store_group, email_sender, push_sender, base_url="http://test"
    )
    dispatcher.start()
    application.state.store_group = store_group
    application.state.dispatcher = dispatcher
    application.state.generator = NotificationGenerator(store_group, dispatcher)
    application.state.delivery_config = DeliveryConfig(vapid_public_key="test-vapid-public")

    yield application

    await dispatcher.stop()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
