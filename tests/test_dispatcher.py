"""Tests for event fan-out to webhook subscriptions."""

from __future__ import annotations

import json
from collections.abc import Iterator
from unittest.mock import AsyncMock

import httpx
import pytest
from receivers import MockReceiver, respond

from agilepm.config import Settings
from agilepm.exceptions import StorageError
from agilepm.models import ProjectRef, Subscription
from agilepm.storage import WebhookStorage
from agilepm.webhooks import (
    SIGNATURE_HEADER,
    EventDispatcher,
    get_dispatcher,
    set_dispatcher,
    sign,
    trigger_webhooks,
)


@pytest.fixture(autouse=True)
def reset_dispatcher() -> Iterator[None]:
    set_dispatcher(None)
    yield
    set_dispatcher(None)


class TestResolveCompany:
    """Tenant resolution order: project, then event data."""

    @pytest.mark.asyncio
    async def test_project_company_first(self, mock_storage: AsyncMock) -> None:
        mock_storage.get_project_company_id.return_value = "cmp_project"
        dispatcher = EventDispatcher(mock_storage, client=AsyncMock())

        company = await dispatcher.resolve_company("prj_1", {"companyId": "cmp_data"})

        assert company == "cmp_project"
        mock_storage.get_project_company_id.assert_awaited_once_with("prj_1")

    @pytest.mark.asyncio
    async def test_falls_back_to_data(self, mock_storage: AsyncMock) -> None:
        dispatcher = EventDispatcher(mock_storage, client=AsyncMock())
        assert await dispatcher.resolve_company("prj_unknown", {"companyId": "cmp_d"}) == "cmp_d"
        assert await dispatcher.resolve_company(None, {"company_id": "cmp_s"}) == "cmp_s"

    @pytest.mark.asyncio
    async def test_unresolvable(self, mock_storage: AsyncMock) -> None:
        dispatcher = EventDispatcher(mock_storage, client=AsyncMock())
        assert await dispatcher.resolve_company(None, {"id": "t1"}) is None
        assert await dispatcher.resolve_company(None, ["not", "a", "mapping"]) is None

    @pytest.mark.asyncio
    async def test_custom_resolver(self, mock_storage: AsyncMock) -> None:
        resolver = AsyncMock(return_value="cmp_custom")
        dispatcher = EventDispatcher(
            mock_storage, client=AsyncMock(), resolve_project_company=resolver
        )
        assert await dispatcher.resolve_company("prj_1", None) == "cmp_custom"
        mock_storage.get_project_company_id.assert_not_awaited()


class TestDispatch:
    """Tests for EventDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_explicit_company_skips_resolution(
        self, mock_storage: AsyncMock, fast_settings: Settings
    ) -> None:
        dispatcher = EventDispatcher(mock_storage, fast_settings, client=AsyncMock())

        result = await dispatcher.dispatch("task.created", {}, project_id="prj_1", company_id="c1")

        assert result == []
        mock_storage.get_project_company_id.assert_not_awaited()
        mock_storage.get_subscriptions_for_event.assert_awaited_once_with(
            event="task.created", company_id="c1", project_id="prj_1"
        )

    @pytest.mark.asyncio
    async def test_no_company_is_noop(
        self, mock_storage: AsyncMock, fast_settings: Settings
    ) -> None:
        dispatcher = EventDispatcher(mock_storage, fast_settings, client=AsyncMock())

        result = await dispatcher.dispatch("task.created", {"id": "t1"})

        assert result == []
        mock_storage.get_subscriptions_for_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(
        self, mock_storage: AsyncMock, fast_settings: Settings
    ) -> None:
        mock_storage.get_subscriptions_for_event.side_effect = StorageError("down")
        dispatcher = EventDispatcher(mock_storage, fast_settings, client=AsyncMock())

        result = await dispatcher.dispatch("task.created", {}, company_id="c1")

        assert result == []

    @pytest.mark.asyncio
    async def test_same_body_for_every_recipient(
        self, mock_storage: AsyncMock, fast_settings: Settings
    ) -> None:
        subs = [
            Subscription(
                company_id="c1",
                url=f"https://r{i}.example.com/",
                secret=f"secret-{i}",
                events=["task.updated"],
            )
            for i in range(3)
        ]
        mock_storage.get_subscriptions_for_event.return_value = subs
        receiver = MockReceiver(respond(200))

        async with receiver.client() as client:
            dispatcher = EventDispatcher(mock_storage, fast_settings, client=client)
            ids = await dispatcher.dispatch(
                "task.updated", {"id": "t1", "title": "Ship"}, company_id="c1"
            )
            await dispatcher.drain()

        assert ids == [s.id for s in subs]
        assert len(receiver.requests) == 3
        assert len({r.body for r in receiver.requests}) == 1
        for sub in subs:
            (request,) = receiver.to(str(sub.url))
            assert request.headers[SIGNATURE_HEADER] == sign(request.body, sub.secret or "")

        payload = receiver.requests[0].json()
        assert payload["event"] == "task.updated"
        assert payload["data"] == {"id": "t1", "title": "Ship"}
        assert "projectId" not in payload
        assert "timestamp" in payload


class TestScenario:
    """End to end through a real in-memory store."""

    @pytest.mark.asyncio
    async def test_company_wide_and_project_scoped_both_notified(
        self, storage: WebhookStorage, fast_settings: Settings
    ) -> None:
        await storage.store_project(ProjectRef(project_id="P1", company_id="C"))
        await storage.store_project(ProjectRef(project_id="P2", company_id="C"))
        sub_a = Subscription(
            company_id="C",
            url="https://a.example.com/",
            secret="secret-a",
            events=["task.created"],
        )
        sub_b = Subscription(
            company_id="C",
            project_id="P1",
            url="https://b.example.com/",
            secret="secret-b",
            events=["task.created", "task.updated"],
        )
        other_company = Subscription(
            company_id="D", url="https://d.example.com/", events=["task.created"]
        )
        for sub in (sub_a, sub_b, other_company):
            await storage.store_subscription(sub)

        receiver = MockReceiver(respond(200))
        async with receiver.client() as client:
            dispatcher = EventDispatcher(storage, fast_settings, client=client)
            await dispatcher.dispatch("task.created", {"id": "t1"}, project_id="P1", company_id="C")
            await dispatcher.dispatch("task.created", {"id": "t2"}, project_id="P2")
            await dispatcher.drain()

        a_requests = receiver.to("https://a.example.com/")
        b_requests = receiver.to("https://b.example.com/")
        assert len(a_requests) == 2
        assert len(b_requests) == 1
        assert receiver.to("https://d.example.com/") == []

        assert b_requests[0].body in {r.body for r in a_requests}
        assert json.loads(b_requests[0].body)["projectId"] == "P1"
        for request in a_requests:
            assert request.headers[SIGNATURE_HEADER] == sign(request.body, "secret-a")
        assert b_requests[0].headers[SIGNATURE_HEADER] == sign(b_requests[0].body, "secret-b")

        logs = await storage.get_delivery_logs(sub_a.id)
        assert [r.status for r in logs] == ["success", "success"]


class TestTrigger:
    """Fire-and-forget entry points."""

    @pytest.mark.asyncio
    async def test_trigger_returns_immediately(
        self, mock_storage: AsyncMock, subscription: Subscription, fast_settings: Settings
    ) -> None:
        mock_storage.get_subscriptions_for_event.return_value = [subscription]
        receiver = MockReceiver(respond(200))
        async with receiver.client() as client:
            dispatcher = EventDispatcher(mock_storage, fast_settings, client=client)

            result = dispatcher.trigger("task.created", {"id": "t1"}, company_id="cmp_1")
            assert result is None
            assert receiver.requests == []

            await dispatcher.drain()

        assert len(receiver.requests) == 1

    def test_trigger_without_loop_drops_event(self, mock_storage: AsyncMock) -> None:
        dispatcher = EventDispatcher(mock_storage, client=AsyncMock())
        dispatcher.trigger("task.created", {}, company_id="c1")
        assert dispatcher.worker.in_flight == 0

    def test_trigger_webhooks_without_dispatcher(self) -> None:
        assert get_dispatcher() is None
        trigger_webhooks("task.created", {"id": "t1"}, project_id="prj_1")

    @pytest.mark.asyncio
    async def test_trigger_webhooks_uses_installed_dispatcher(
        self, mock_storage: AsyncMock, subscription: Subscription, fast_settings: Settings
    ) -> None:
        mock_storage.get_project_company_id.return_value = "cmp_1"
        mock_storage.get_subscriptions_for_event.return_value = [subscription]
        receiver = MockReceiver(respond(200))
        async with receiver.client() as client:
            dispatcher = EventDispatcher(mock_storage, fast_settings, client=client)
            set_dispatcher(dispatcher)

            trigger_webhooks("task.created", {"id": "t1"}, project_id="prj_1")
            await dispatcher.drain()

        assert len(receiver.requests) == 1
        assert receiver.requests[0].json()["projectId"] == "prj_1"

    @pytest.mark.asyncio
    async def test_receiver_failure_never_reaches_producer(
        self, mock_storage: AsyncMock, subscription: Subscription, fast_settings: Settings
    ) -> None:
        mock_storage.get_subscriptions_for_event.return_value = [subscription]

        def explode(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("receiver exploded")

        receiver = MockReceiver(explode)
        async with receiver.client() as client:
            dispatcher = EventDispatcher(mock_storage, fast_settings, client=client)
            dispatcher.trigger("task.created", {}, company_id="cmp_1")
            await dispatcher.drain()

        assert len(receiver.requests) == 1


class TestClose:
    @pytest.mark.asyncio
    async def test_aclose_drops_retries_and_closes_owned_client(
        self, mock_storage: AsyncMock, subscription: Subscription, fast_settings: Settings
    ) -> None:
        dispatcher = EventDispatcher(mock_storage, fast_settings)
        client = dispatcher.worker._client

        await dispatcher.aclose()

        assert client.is_closed
        assert dispatcher.worker.pending_retries == 0

    @pytest.mark.asyncio
    async def test_aclose_leaves_borrowed_client_open(
        self, mock_storage: AsyncMock, fast_settings: Settings
    ) -> None:
        async with httpx.AsyncClient() as client:
            dispatcher = EventDispatcher(mock_storage, fast_settings, client=client)
            await dispatcher.aclose()
            assert not client.is_closed
