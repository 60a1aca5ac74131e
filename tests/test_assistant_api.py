"""
Tests for the assistant HTTP endpoints.

The service graph is the test one (scripted providers, in-memory database);
jobs are drained explicitly with services.queue.run_until_empty().
"""

import uuid

from assistant_core.db.database import with_unit_of_work
from assistant_core.db.models import User
from assistant_core.services.broadcaster import Broadcaster

BASE = "/api/v1/assistant"


class NullBroadcaster(Broadcaster):
    async def publish(self, thread_id, event, payload):
        return None


class TestAuth:
    async def test_missing_api_key(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(user.id), "content": "Hi"},
            headers={"X-API-Key": ""},
        )

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "APP-401-AUTH"
        assert body["origin"] == "app"

    async def test_wrong_api_key(self, async_client, user):
        response = await async_client.get(
            f"{BASE}/threads/{uuid.uuid4()}/messages",
            params={"userId": str(user.id)},
            headers={"X-API-Key": "wrong"},
        )

        assert response.status_code == 401


class TestSubmitMessage:
    """Test suite for POST /assistant/threads/{thread_id}/messages."""

    async def test_new_thread_accepted(self, async_client, services, user):
        response = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={
                "userId": str(user.id),
                "content": "Summarize my profile",
                "pageContext": {"page": "profile"},
                "clientRequestId": "client-msg-1",
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["threadId"]
        assert body["duplicate"] is False
        assert body["message"]["role"] == "user"
        assert body["message"]["content"] == "Summarize my profile"
        assert body["traceId"] == body["message"]["traceId"]
        assert services.queue.pending() == 1

    async def test_duplicate_submission(self, async_client, user, thread):
        payload = {"userId": str(user.id), "content": "Hi", "clientRequestId": "abc"}

        first = await async_client.post(f"{BASE}/threads/{thread.id}/messages", json=payload)
        second = await async_client.post(f"{BASE}/threads/{thread.id}/messages", json=payload)

        assert first.status_code == second.status_code == 202
        assert second.json()["duplicate"] is True
        assert second.json()["message"]["id"] == first.json()["message"]["id"]

    async def test_empty_content_rejected(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(user.id), "content": ""},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "APP-400-VALIDATION"
        assert any(d["field"].endswith("content") for d in body["details"])

    async def test_unknown_thread(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/threads/{uuid.uuid4()}/messages",
            json={"userId": str(user.id), "content": "Hi"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "APP-404-NOT-FOUND"

    async def test_malformed_thread_id(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/threads/not-a-uuid/messages",
            json={"userId": str(user.id), "content": "Hi"},
        )

        assert response.status_code == 404

    async def test_unknown_user(self, async_client):
        response = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(uuid.uuid4()), "content": "Hi"},
        )

        assert response.status_code == 404

    async def test_request_id_echoed(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(user.id), "content": "Hi"},
            headers={"X-Request-ID": "req-123"},
        )

        assert response.headers["X-Request-ID"] == "req-123"


class TestListMessages:
    async def test_answer_visible_after_turn(
        self, async_client, services, openai_provider, user, scripted
    ):
        openai_provider.queue(scripted.openai("Hello Ada"))
        posted = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(user.id), "content": "Hi"},
        )
        await services.queue.run_until_empty()

        response = await async_client.get(
            f"{BASE}/threads/{posted.json()['threadId']}/messages",
            params={"userId": str(user.id)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["thread"]["title"] == "Hi"
        assert [(m["role"], m["content"]) for m in body["messages"]] == [
            ("user", "Hi"),
            ("assistant", "Hello Ada"),
        ]
        assert body["messages"][1]["pendingToolFollowup"] is False
        assert body["toolExecutions"] == []

    async def test_other_users_thread(self, async_client, thread, other_user):
        response = await async_client.get(
            f"{BASE}/threads/{thread.id}/messages",
            params={"userId": str(other_user.id)},
        )

        assert response.status_code == 404


class TestApproveToolExecution:
    """Test suite for POST /assistant/tool-executions/{id}/approve."""

    async def test_approval_queues_and_runs(
        self, async_client, services, openai_provider, user, scripted
    ):
        openai_provider.queue(
            scripted.openai(calls=[("call_1", "add_target_company", {"company_name": "Globex"})]),
            scripted.openai("Globex is now on your target list."),
        )
        posted = await async_client.post(
            f"{BASE}/threads/new/messages",
            json={"userId": str(user.id), "content": "Track Globex"},
        )
        await services.queue.run_until_empty()
        thread_id = posted.json()["threadId"]
        listing = await async_client.get(
            f"{BASE}/threads/{thread_id}/messages", params={"userId": str(user.id)}
        )
        [execution] = listing.json()["toolExecutions"]
        assert execution["status"] == "proposed"
        assert execution["requiresConfirmation"] is True

        response = await async_client.post(
            f"{BASE}/tool-executions/{execution['id']}/approve",
            json={"userId": str(user.id)},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "queued"
        await services.queue.run_until_empty()

        listing = await async_client.get(
            f"{BASE}/threads/{thread_id}/messages", params={"userId": str(user.id)}
        )
        body = listing.json()
        assert body["toolExecutions"][0]["status"] == "success"
        assistant = [m for m in body["messages"] if m["role"] == "assistant"][0]
        assert assistant["content"] == "Globex is now on your target list."

    async def test_unknown_execution(self, async_client, user):
        response = await async_client.post(
            f"{BASE}/tool-executions/{uuid.uuid4()}/approve",
            json={"userId": str(user.id)},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "APP-404-NOT-FOUND"

    async def test_rejected_execution_conflicts(
        self, async_client, services, session_factory, propose, thread, assistant_message, user
    ):
        async with with_unit_of_work(session_factory) as session:
            (await session.get(User, user.id)).assistant_write_enabled = False
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
        )
        await services.engine.execute(proposal.execution.id)

        response = await async_client.post(
            f"{BASE}/tool-executions/{proposal.execution.id}/approve",
            json={"userId": str(user.id)},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "APP-409-CONFLICT"


class TestThreadEvents:
    async def test_other_users_thread(self, async_client, thread, other_user):
        response = await async_client.get(
            f"{BASE}/threads/{thread.id}/events",
            params={"userId": str(other_user.id)},
        )

        assert response.status_code == 404

    async def test_stream_needs_in_process_broadcaster(
        self, async_client, services, thread, user
    ):
        services.broadcaster = NullBroadcaster()

        response = await async_client.get(
            f"{BASE}/threads/{thread.id}/events",
            params={"userId": str(user.id)},
        )

        assert response.status_code == 501
        assert response.json()["error"] == "APP-501"


class TestBroadcaster:
    async def test_subscribers_receive_thread_events(self, broadcaster, thread):
        queue = broadcaster.subscribe(thread.id)

        await broadcaster.publish(thread.id, "message.created", {"id": "m1"})
        await broadcaster.publish(uuid.uuid4(), "message.created", {"id": "other"})

        assert queue.get_nowait() == ("message.created", {"id": "m1"})
        assert queue.empty()

        broadcaster.unsubscribe(thread.id, queue)
        await broadcaster.publish(thread.id, "message.updated", {"id": "m1"})
        assert queue.empty()
