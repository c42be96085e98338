"""Delivery 包测试 fixtures"""

from datetime import UTC, date, datetime

import pytest
from dgworkos.core.models import (
    Notification,
    NotificationType,
    PushSubscription,
    Task,
    TaskPriority,
    User,
    UserRole,
)
from dgworkos.delivery import DeliveryConfig
from pydantic import SecretStr

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)


@pytest.fixture
def recipient() -> User:
    return User(
        user_id="alice",
        full_name="Alice <Ops>",
        email="alice@example.gov.gy",
        role=UserRole.DATA_ENTRY,
        created_at=NOW,
    )


@pytest.fixture
def decider() -> User:
    return User(
        user_id="dir-one",
        full_name="Director One",
        email="dg@example.gov.gy",
        role=UserRole.DIRECTOR,
        created_at=NOW,
    )


@pytest.fixture
def task() -> Task:
    return Task(
        task_id="01TASK",
        title='Fix "GPL" <feeder> report',
        assignee_id="alice",
        created_by="dir-one",
        agency="gpl",
        priority=TaskPriority.HIGH,
        due_date=date(2026, 5, 10),
        rejection_reason="Missing <b>figures</b>",
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def make_notification():
    def _make(
        type: NotificationType = NotificationType.TASK_ASSIGNED,
        *,
        task_id: str | None = "01TASK",
        priority: TaskPriority = TaskPriority.MEDIUM,
        message: str = "Something happened",
    ) -> Notification:
        return Notification(
            notification_id="01NOTE",
            recipient_id="alice",
            type=type,
            task_id=task_id,
            title="Title",
            message=message,
            priority=priority,
            scheduled_for=NOW,
            created_at=NOW,
        )

    return _make


@pytest.fixture
def subscription() -> PushSubscription:
    return PushSubscription(
        endpoint="https://push.example.com/sub/1",
        user_id="alice",
        p256dh="p256dh-key",
        auth="auth-key",
        created_at=NOW,
    )


@pytest.fixture
def live_config() -> DeliveryConfig:
    return DeliveryConfig(
        smtp_host="smtp.example.com",
        smtp_user="bot@example.com",
        smtp_password=SecretStr("app-password"),
        vapid_public_key="pub",
        vapid_private_key=SecretStr("priv"),
        base_url="https://dgworkos.example.gy",
        timeout_s=2,
    )
