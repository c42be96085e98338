"""集成测试共享 fixture -- 完整装配的 app，投递通道可切换为失败模式"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from dgworkos.core.store import StoreGroup
from dgworkos.delivery import DeliveryConfig, LoggingPushSender, PushResult
from dgworkos.gateway.services.delivery_hub import DeliveryDispatcher
from dgworkos.gateway.services.notification_service import NotificationGenerator
from httpx import ASGITransport, AsyncClient


class SwitchableEmailSender:
    """记录已发送邮件；failing=True 时模拟 SMTP 不可用"""

    def __init__(self) -> None:
        self.failing = False
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0

    async def send(self, to: str, subject: str, html: str) -> bool:
        self.attempts += 1
        if self.failing:
            return False
        self.sent.append((to, subject))
        return True


class SwitchablePushSender(LoggingPushSender):
    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    async def send(self, notification, subscriptions) -> PushResult:
        if self.failing:
            return PushResult(failed=len(subscriptions))
        return await super().send(notification, subscriptions)


@pytest.fixture
def email_channel() -> SwitchableEmailSender:
    return SwitchableEmailSender()


@pytest.fixture
def push_channel() -> SwitchablePushSender:
    return SwitchablePushSender()


@pytest_asyncio.fixture
async def integration_app(
    store_group: StoreGroup,
    tmp_db_path: Path,
    email_channel: SwitchableEmailSender,
    push_channel: SwitchablePushSender,
    monkeypatch: pytest.MonkeyPatch,
):
    """集成测试用 FastAPI app"""
    monkeypatch.setenv("DGWORKOS_DB_PATH", str(tmp_db_path))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.setenv("DGWORKOS_CRON_SECRET", "integration-secret")

    from dgworkos.gateway.main import create_app

    app = create_app()

    dispatcher = DeliveryDispatcher(
        store_group, email_channel, push_channel, base_url="https://dg.example.gy"
    )
    dispatcher.start()
    app.state.store_group = store_group
    app.state.dispatcher = dispatcher
    app.state.generator = NotificationGenerator(store_group, dispatcher)
    app.state.delivery_config = DeliveryConfig()

    yield app

    await dispatcher.stop()


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
