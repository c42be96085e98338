"""DeliveryDispatcher 测试 -- 投递顺序、结果回写、接收人偏好、队列背压"""

from datetime import UTC, datetime, time, timedelta

from dgworkos.core.models import (
    NotificationPreferences,
    NotificationType,
    PushSubscription,
    TaskPriority,
)
from dgworkos.delivery import PushResult
from dgworkos.gateway.services.delivery_hub import DeliveryDispatcher, due_in_priority_order
from dgworkos.gateway.services.notification_service import (
    NotificationDraft,
    NotificationGenerator,
)


class FakeEmailSender:
    """记录收件顺序，可按地址设置失败或异常"""

    def __init__(self, fail: set[str] | None = None, explode: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.explode = explode or set()
        self.sent: list[tuple[str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> bool:
        if to in self.explode:
            raise RuntimeError("template blew up")
        if to in self.fail:
            return False
        self.sent.append((to, subject))
        return True


class FakePushSender:
    def __init__(self, gone: bool = False) -> None:
        self.gone = gone
        self.sent: list[str] = []

    async def send(self, notification, subscriptions) -> PushResult:
        self.sent.append(notification.notification_id)
        if self.gone:
            return PushResult(
                failed=len(subscriptions),
                gone_endpoints=[s.endpoint for s in subscriptions],
            )
        return PushResult(delivered=len(subscriptions))


def draft(recipient: str = "alice", **kwargs) -> NotificationDraft:
    kwargs.setdefault("type", NotificationType.COMMENT_ADDED)
    kwargs.setdefault("title", "Note")
    kwargs.setdefault("message", "Something happened")
    return NotificationDraft(recipient_id=recipient, **kwargs)


async def subscribe(store_group, user_id: str, endpoint: str = "https://push.example.com/1"):
    async with store_group.transaction():
        await store_group.subscription_store.save(
            PushSubscription(
                endpoint=endpoint,
                user_id=user_id,
                p256dh="key",
                auth="auth",
                created_at=datetime.now(UTC),
            )
        )


def make_dispatcher(store_group, email=None, push=None, **kwargs) -> DeliveryDispatcher:
    return DeliveryDispatcher(
        store_group,
        email or FakeEmailSender(),
        push or FakePushSender(),
        base_url="http://test",
        **kwargs,
    )


class TestPriorityOrder:
    async def test_urgent_first(self, store_group, generator, users):
        email = FakeEmailSender()
        notes = await generator.create_many(
            [
                draft(title="low", priority=TaskPriority.LOW),
                draft(title="urgent", priority=TaskPriority.URGENT),
                draft(title="medium"),
                draft(title="high", priority=TaskPriority.HIGH),
            ]
        )

        delivered = await make_dispatcher(store_group, email).deliver(notes)

        assert delivered == 4
        assert [subject for _, subject in email.sent] == [
            "New Comment: urgent",
            "New Comment: high",
            "New Comment: medium",
            "New Comment: low",
        ]

    async def test_filters_not_due_and_dismissed(self, store_group, generator, users):
        now = datetime.now(UTC)
        due, later, dismissed = await generator.create_many(
            [
                draft(title="now"),
                draft(title="later", scheduled_for=now + timedelta(hours=3)),
                draft(title="dismissed"),
            ]
        )
        dismissed = dismissed.model_copy(update={"dismissed_at": now})

        ordered = due_in_priority_order([due, later, dismissed], now + timedelta(seconds=1))

        assert [n.title for n in ordered] == ["now"]


class TestDeliveryBookkeeping:
    async def test_success_marks_delivered(self, store_group, generator, users):
        (note,) = await generator.create_many([draft()])

        await make_dispatcher(store_group).deliver([note])

        stored = await store_group.notification_store.get(note.notification_id)
        assert stored.is_delivered is True
        assert stored.delivery_attempts == 0

    async def test_all_channels_failed_increments_attempts(self, store_group, generator, users):
        (note,) = await generator.create_many([draft()])
        email = FakeEmailSender(fail={users["alice"].email})

        delivered = await make_dispatcher(store_group, email).deliver([note])

        assert delivered == 0
        stored = await store_group.notification_store.get(note.notification_id)
        assert stored.is_delivered is False
        assert stored.delivery_attempts == 1

    async def test_push_alone_counts_as_delivered(self, store_group, generator, users):
        await subscribe(store_group, "alice")
        (note,) = await generator.create_many([draft()])
        email = FakeEmailSender(fail={users["alice"].email})
        push = FakePushSender()

        await make_dispatcher(store_group, email, push).deliver([note])

        assert push.sent == [note.notification_id]
        assert (await store_group.notification_store.get(note.notification_id)).is_delivered

    async def test_inactive_recipient_not_delivered(self, store_group, generator, users):
        email = FakeEmailSender()
        (note,) = await generator.create_many([draft("carol")])

        await make_dispatcher(store_group, email).deliver([note])

        assert email.sent == []
        stored = await store_group.notification_store.get(note.notification_id)
        assert stored.delivery_attempts == 1

    async def test_sender_exception_isolated(self, store_group, generator, users):
        email = FakeEmailSender(explode={users["alice"].email})
        dispatcher = make_dispatcher(store_group, email)
        notes = await generator.create_many([draft("alice"), draft("bob")])

        delivered = await dispatcher.deliver(notes)

        assert delivered == 1
        assert [to for to, _ in email.sent] == [users["bob"].email]
        assert len(dispatcher.errors) == 1
        assert dispatcher.errors[0].notification_id == notes[0].notification_id
        assert "RuntimeError" in dispatcher.errors[0].error

    async def test_gone_endpoints_deactivated(self, store_group, generator, users):
        await subscribe(store_group, "alice")
        (note,) = await generator.create_many([draft()])

        await make_dispatcher(store_group, push=FakePushSender(gone=True)).deliver([note])

        assert await store_group.subscription_store.list_active("alice") == []

    async def test_send_push_only(self, store_group, generator, users):
        await subscribe(store_group, "bob")
        email = FakeEmailSender()
        notes = await generator.create_many([draft("alice"), draft("bob")])

        delivered = await make_dispatcher(store_group, email).send_push(notes)

        assert delivered == 1
        assert email.sent == []
        stored = await store_group.notification_store.get_many([n.notification_id for n in notes])
        assert {n.recipient_id: n.is_delivered for n in stored} == {"alice": False, "bob": True}


class TestRecipientPreferences:
    """免打扰与安静时段只拦截推送"""

    @staticmethod
    def tomorrow_at(hour: int) -> datetime:
        # 晚于通知的 scheduled_for，保证已到投递时间
        day = datetime.now(UTC).date() + timedelta(days=1)
        return datetime.combine(day, time(hour), tzinfo=UTC)

    async def save_prefs(self, store_group, user_id: str, **fields) -> None:
        async with store_group.transaction():
            await store_group.preference_store.save(
                NotificationPreferences(user_id=user_id, **fields)
            )

    async def test_quiet_hours_defer_push(self, store_group, generator, users):
        await subscribe(store_group, "alice")
        await self.save_prefs(
            store_group, "alice", quiet_hours_start=time(22), quiet_hours_end=time(7)
        )
        (note,) = await generator.create_many([draft()])
        email = FakeEmailSender(fail={users["alice"].email})
        push = FakePushSender()

        delivered = await make_dispatcher(store_group, email, push).deliver(
            [note], now=self.tomorrow_at(23)
        )

        assert delivered == 0
        assert push.sent == []
        stored = await store_group.notification_store.get(note.notification_id)
        assert stored.is_delivered is False
        assert stored.delivery_attempts == 0

    async def test_push_sent_outside_quiet_hours(self, store_group, generator, users):
        await subscribe(store_group, "alice")
        await self.save_prefs(
            store_group, "alice", quiet_hours_start=time(22), quiet_hours_end=time(7)
        )
        (note,) = await generator.create_many([draft()])
        push = FakePushSender()

        await make_dispatcher(store_group, FakeEmailSender(), push).deliver(
            [note], now=self.tomorrow_at(12)
        )

        assert push.sent == [note.notification_id]

    async def test_email_still_sent_under_do_not_disturb(self, store_group, generator, users):
        await subscribe(store_group, "alice")
        await self.save_prefs(store_group, "alice", do_not_disturb=True)
        (note,) = await generator.create_many([draft()])
        email = FakeEmailSender()
        push = FakePushSender()

        delivered = await make_dispatcher(store_group, email, push).deliver([note])

        assert delivered == 1
        assert push.sent == []
        assert [to for to, _ in email.sent] == [users["alice"].email]
        assert (await store_group.notification_store.get(note.notification_id)).is_delivered

    async def test_send_push_skips_do_not_disturb(self, store_group, generator, users):
        await subscribe(store_group, "alice", "https://push.example.com/a")
        await subscribe(store_group, "bob", "https://push.example.com/b")
        await self.save_prefs(store_group, "alice", do_not_disturb=True)
        notes = await generator.create_many([draft("alice"), draft("bob")])
        push = FakePushSender()

        delivered = await make_dispatcher(store_group, push=push).send_push(notes)

        assert delivered == 1
        assert push.sent == [notes[1].notification_id]


class TestQueue:
    async def test_full_queue_drops(self, store_group, generator, users):
        dispatcher = make_dispatcher(store_group, queue_maxsize=1)
        (first,) = await generator.create_many([draft()])
        (second,) = await generator.create_many([draft()])

        assert dispatcher.submit([first]) is True
        assert dispatcher.submit([second]) is False
        assert dispatcher.dropped == 1
        assert dispatcher.queue_size == 1

    async def test_worker_delivers_in_background(self, store_group, users):
        email = FakeEmailSender()
        dispatcher = make_dispatcher(store_group, email)
        generator = NotificationGenerator(store_group, dispatcher)
        dispatcher.start()
        try:
            notes = await generator.create_many([draft()])
            assert generator.dispatch(notes) == 1
            await dispatcher.join()
        finally:
            await dispatcher.stop()

        assert dispatcher.running is False
        assert len(email.sent) == 1
        assert (await store_group.notification_store.get(notes[0].notification_id)).is_delivered

    async def test_batch_failure_keeps_worker_alive(
        self, store_group, generator, users, monkeypatch
    ):
        dispatcher = make_dispatcher(store_group)
        notes = await generator.create_many([draft()])

        async def broken(ids):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(store_group.notification_store, "get_many", broken)
        dispatcher.start()
        try:
            assert dispatcher.submit(notes) is True
            await dispatcher.join()
            assert dispatcher.running is True
            assert dispatcher.errors[0].notification_id is None
        finally:
            await dispatcher.stop()

    async def test_empty_submit(self, store_group):
        dispatcher = make_dispatcher(store_group)
        assert dispatcher.submit([]) is True
        assert dispatcher.queue_size == 0
