"""通知 / 推送订阅路由测试"""

from datetime import UTC, datetime, timedelta

from httpx import AsyncClient

CRON = {"Authorization": "Bearer test-cron-secret"}
DIRECTOR = {"X-User-Id": "dir-one"}
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


async def assign_task(client: AsyncClient, days: int = 7, assignee: str = "alice") -> dict:
    resp = await client.post(
        "/api/tasks",
        json={
            "title": "Review tariff proposal",
            "assignee_id": assignee,
            "due_date": (datetime.now(UTC).date() + timedelta(days=days)).isoformat(),
        },
        headers=DIRECTOR,
    )
    assert resp.status_code == 201
    return resp.json()["data"]


class TestInbox:
    async def test_assignment_appears_in_inbox(self, client, users):
        task = await assign_task(client)

        resp = await client.get("/api/notifications", headers=ALICE)

        data = resp.json()["data"]
        assert data["unread_count"] == 1
        (note,) = data["notifications"]
        assert note["type"] == "task_assigned"
        assert note["task_id"] == task["task_id"]
        assert note["title"] == "New task: Review tariff proposal"

    async def test_read_and_read_all(self, client, users):
        await assign_task(client)
        await assign_task(client)
        notes = (await client.get("/api/notifications", headers=ALICE)).json()["data"]

        first = notes["notifications"][0]["notification_id"]
        resp = await client.post(f"/api/notifications/{first}/read", headers=ALICE)
        assert resp.json()["data"] == {"notification_id": first, "is_read": True}

        unread = await client.get(
            "/api/notifications", params={"unread_only": "true"}, headers=ALICE
        )
        assert len(unread.json()["data"]["notifications"]) == 1

        read_all = await client.post("/api/notifications/read-all", headers=ALICE)
        assert read_all.json()["data"] == {"updated": 1}
        after = await client.get("/api/notifications", headers=ALICE)
        assert after.json()["data"]["unread_count"] == 0

    async def test_dismiss_hides(self, client, users):
        await assign_task(client)
        (note,) = (await client.get("/api/notifications", headers=ALICE)).json()["data"][
            "notifications"
        ]

        resp = await client.post(
            f"/api/notifications/{note['notification_id']}/dismiss", headers=ALICE
        )

        assert resp.status_code == 200
        after = await client.get("/api/notifications", headers=ALICE)
        assert after.json()["data"] == {"notifications": [], "unread_count": 0}

    async def test_dismiss_all(self, client, users):
        await assign_task(client)
        await assign_task(client)
        resp = await client.post("/api/notifications/dismiss-all", headers=ALICE)
        assert resp.json()["data"] == {"updated": 2}

    async def test_cannot_touch_others_notifications(self, client, users):
        await assign_task(client)
        (note,) = (await client.get("/api/notifications", headers=ALICE)).json()["data"][
            "notifications"
        ]
        nid = note["notification_id"]

        assert (await client.post(f"/api/notifications/{nid}/read", headers=BOB)).status_code == 404
        assert (
            await client.post(f"/api/notifications/{nid}/dismiss", headers=BOB)
        ).status_code == 404

    async def test_limit_bounds(self, client, users):
        resp = await client.get("/api/notifications", params={"limit": 500}, headers=ALICE)
        assert resp.status_code == 400

    async def test_assignment_delivered_in_background(self, client, app, users, email_sender):
        await assign_task(client)
        await app.state.dispatcher.join()

        assert [(to, subject) for to, subject, _ in email_sender.outbox] == [
            ("alice@example.gov.gy", "New Task Assigned: Review tariff proposal")
        ]
        (note,) = (await client.get("/api/notifications", headers=ALICE)).json()["data"][
            "notifications"
        ]
        assert note["is_delivered"] is True


class TestGenerate:
    """定时 sweep 入口"""

    async def test_requires_cron_secret(self, client, users):
        assert (await client.post("/api/notifications/generate")).status_code == 401
        wrong = await client.post(
            "/api/notifications/generate", headers={"Authorization": "Bearer nope"}
        )
        assert wrong.status_code == 401
        assert wrong.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_user_identity_is_not_enough(self, client, users):
        resp = await client.post("/api/notifications/generate", headers=DIRECTOR)
        assert resp.status_code == 401

    async def test_unconfigured_secret_rejects(self, client, users, monkeypatch):
        monkeypatch.setenv("DGWORKOS_CRON_SECRET", "")
        resp = await client.post(
            "/api/notifications/generate", headers={"Authorization": "Bearer anything"}
        )
        assert resp.status_code == 401

    async def test_sweep_summary(self, client, users):
        await assign_task(client, days=1)
        later = datetime.combine(
            datetime.now(UTC).date() + timedelta(days=3), datetime.min.time()
        ).replace(hour=9)

        resp = await client.post(
            "/api/notifications/generate",
            params={"now": later.isoformat()},
            headers=CRON,
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["success"] is True
        assert data["created"] == 1
        assert data["rules"]["task_overdue"] == {"created": 1, "skipped": 0}
        assert data["errors"] == []

        again = await client.post(
            "/api/notifications/generate",
            params={"now": later.isoformat()},
            headers=CRON,
        )
        assert again.json()["data"]["created"] == 0
        assert again.json()["data"]["rules"]["task_overdue"]["skipped"] == 1


class TestPreferences:
    async def test_defaults(self, client, users):
        resp = await client.get("/api/notifications/preferences", headers=ALICE)

        data = resp.json()["data"]
        assert data["user_id"] == "alice"
        assert data["do_not_disturb"] is False
        assert data["quiet_hours_start"] is None
        assert data["task_due_reminders"] is True
        assert data["task_overdue_alerts"] is True

    async def test_partial_update(self, client, users):
        first = await client.put(
            "/api/notifications/preferences",
            json={"quiet_hours_start": "22:00", "quiet_hours_end": "07:00"},
            headers=ALICE,
        )
        assert first.status_code == 200

        second = await client.put(
            "/api/notifications/preferences",
            json={"task_overdue_alerts": False},
            headers=ALICE,
        )

        data = second.json()["data"]
        assert data["quiet_hours_start"] == "22:00:00"
        assert data["quiet_hours_end"] == "07:00:00"
        assert data["task_overdue_alerts"] is False
        fetched = await client.get("/api/notifications/preferences", headers=ALICE)
        assert fetched.json()["data"] == data

        bob = await client.get("/api/notifications/preferences", headers=BOB)
        assert bob.json()["data"]["task_overdue_alerts"] is True

    async def test_clear_quiet_hours(self, client, users):
        await client.put(
            "/api/notifications/preferences",
            json={"quiet_hours_start": "22:00", "quiet_hours_end": "07:00"},
            headers=ALICE,
        )
        resp = await client.put(
            "/api/notifications/preferences",
            json={"quiet_hours_start": None, "quiet_hours_end": None},
            headers=ALICE,
        )
        assert resp.json()["data"]["quiet_hours_start"] is None

    async def test_unpaired_quiet_hours_rejected(self, client, users):
        resp = await client.put(
            "/api/notifications/preferences",
            json={"quiet_hours_start": "22:00"},
            headers=ALICE,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_unknown_field_rejected(self, client, users):
        resp = await client.put(
            "/api/notifications/preferences",
            json={"meeting_reminders": False},
            headers=ALICE,
        )
        assert resp.status_code == 400

    async def test_sweep_respects_overdue_toggle(self, client, users):
        await client.put(
            "/api/notifications/preferences",
            json={"task_overdue_alerts": False},
            headers=ALICE,
        )
        await assign_task(client, days=1)
        later = datetime.now(UTC) + timedelta(days=3)

        resp = await client.post(
            "/api/notifications/generate",
            params={"now": later.isoformat()},
            headers=CRON,
        )

        rule = resp.json()["data"]["rules"]["task_overdue"]
        assert rule["created"] == 0
        assert rule["suppressed"] == 1


class TestPushRoutes:
    async def test_vapid_key(self, client):
        resp = await client.get("/api/push/vapid-key")
        assert resp.json()["data"] == {"public_key": "test-vapid-public"}

    async def test_subscribe_then_push_delivery(self, client, app, users, push_sender):
        resp = await client.post(
            "/api/push/subscriptions",
            json={
                "endpoint": "https://fcm.example.com/send/abc",
                "keys": {"p256dh": "BNcR", "auth": "tBHI"},
                "expirationTime": None,
            },
            headers=ALICE,
        )
        assert resp.status_code == 201

        await assign_task(client)
        await app.state.dispatcher.join()

        assert [endpoint for endpoint, _ in push_sender.outbox] == [
            "https://fcm.example.com/send/abc"
        ]

    async def test_unsubscribe(self, client, users):
        for endpoint in ("https://push.example.com/a", "https://push.example.com/b"):
            await client.post(
                "/api/push/subscriptions",
                json={"endpoint": endpoint, "keys": {"p256dh": "k", "auth": "a"}},
                headers=ALICE,
            )

        one = await client.request(
            "DELETE",
            "/api/push/subscriptions",
            json={"endpoint": "https://push.example.com/a"},
            headers=ALICE,
        )
        assert one.json()["data"] == {"deactivated": 1}

        rest = await client.delete("/api/push/subscriptions", headers=ALICE)
        assert rest.json()["data"] == {"deactivated": 1}

    async def test_subscribe_rejects_missing_keys(self, client, users):
        resp = await client.post(
            "/api/push/subscriptions",
            json={"endpoint": "https://push.example.com/a"},
            headers=ALICE,
        )
        assert resp.status_code == 400
