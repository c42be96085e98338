"""日志后备通道测试"""

from dgworkos.delivery import LoggingEmailSender, LoggingPushSender


class TestLoggingSenders:
    async def test_email_outbox(self):
        sender = LoggingEmailSender()
        assert await sender.send("a@x.gy", "Subject", "<p>body</p>") is True
        assert list(sender.outbox) == [("a@x.gy", "Subject", "<p>body</p>")]

    async def test_push_without_subscriptions_not_delivered(self, make_notification):
        result = await LoggingPushSender().send(make_notification(), [])
        assert result.ok is False

    async def test_push_with_subscription(self, make_notification, subscription):
        sender = LoggingPushSender()
        result = await sender.send(make_notification(), [subscription])
        assert result.delivered == 1
        assert list(sender.outbox) == [(subscription.endpoint, "01NOTE")]
