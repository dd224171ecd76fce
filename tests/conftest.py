import asyncio
import itertools
import json
import re
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from channel_bridge.config import Settings
from channel_bridge.dependencies import get_services
from channel_bridge.main import app
from channel_bridge.services.agent.base import AgentPort, AgentReply
from channel_bridge.services.container import build_services

GRAPH_HOST = "graph.facebook.com"
CHATWOOT_HOST = "chatwoot.test"
AGENT_HOST = "agent.test"
CRM_HOST = "crm.test"

CHATWOOT_PREFIX = "/api/v1/accounts/1"


def _digits(value) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """In-memory Graph API, Chatwoot, agent and CRM behind one MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.graph_messages: list[dict] = []
        self.graph_errors: list[httpx.Response] = []
        self.graph_successes_before_errors = 0
        self.contacts: list[dict] = []
        self.conversations: list[dict] = []
        self.chatwoot_messages: list[dict] = []
        self.chatwoot_down = False
        self.agent_replies: list[dict] = []
        self.profile_response = None
        self.profile_status = 200
        self._ids = itertools.count(100)
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    @property
    def graph_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == GRAPH_HOST]

    def chatwoot_calls(self, method: str, pattern: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == CHATWOOT_HOST
            and r.method == method
            and re.fullmatch(pattern, r.url.path.removeprefix(CHATWOOT_PREFIX))
        ]

    def fail_graph(self, status_code: int, times: int = 1, headers: Optional[dict] = None, after: int = 0) -> None:
        """Queue ``times`` error responses, served once ``after`` sends have succeeded."""
        self.graph_successes_before_errors = after
        for _ in range(times):
            self.graph_errors.append(
                httpx.Response(status_code, json={"error": {"message": "upstream error"}}, headers=headers)
            )

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == GRAPH_HOST:
            return self._graph(request)
        if host == CHATWOOT_HOST:
            return await self._chatwoot(request)
        if host == AGENT_HOST:
            if self.agent_replies:
                return httpx.Response(200, json=self.agent_replies.pop(0))
            return httpx.Response(204)
        if host == CRM_HOST:
            if self.profile_status != 200:
                return httpx.Response(self.profile_status, text="crm error")
            return httpx.Response(200, json=self.profile_response)
        return httpx.Response(404)

    def _graph(self, request: httpx.Request) -> httpx.Response:
        if self.graph_errors and self.graph_successes_before_errors <= 0:
            return self.graph_errors.pop(0)
        self.graph_successes_before_errors -= 1
        self.graph_messages.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [{"id": f"wamid.{len(self.graph_messages)}"}]})

    async def _chatwoot(self, request: httpx.Request) -> httpx.Response:
        if self.chatwoot_down:
            return httpx.Response(500, text="chatwoot down")

        path = request.url.path.removeprefix(CHATWOOT_PREFIX)
        body = json.loads(request.content) if request.content else {}

        if request.method == "GET" and path == "/contacts/search":
            query = _digits(request.url.params.get("q"))
            found = [c for c in self.contacts if query and query in _digits(c.get("phone_number"))]
            return httpx.Response(200, json={"payload": found})

        if request.method == "POST" and path == "/contacts":
            # yield so concurrent callers overlap
            await asyncio.sleep(0.01)
            contact = {
                "id": next(self._ids),
                "name": body["name"],
                "phone_number": body["phone_number"],
                "identifier": body["identifier"],
            }
            self.contacts.append(contact)
            return httpx.Response(200, json={"payload": {"contact": contact}})

        match = re.fullmatch(r"/contacts/(\d+)", path)
        if request.method == "PUT" and match:
            for contact in self.contacts:
                if contact["id"] == int(match.group(1)):
                    contact["name"] = body["name"]
                    return httpx.Response(200, json=contact)
            return httpx.Response(404)

        match = re.fullmatch(r"/contacts/(\d+)/conversations", path)
        if request.method == "GET" and match:
            found = [c for c in self.conversations if c["contact_id"] == int(match.group(1))]
            return httpx.Response(200, json={"payload": found})

        if request.method == "POST" and path == "/conversations":
            conversation = {
                "id": next(self._ids),
                "contact_id": body["contact_id"],
                "inbox_id": body["inbox_id"],
                "status": body.get("status", "open"),
            }
            self.conversations.append(conversation)
            return httpx.Response(200, json=conversation)

        match = re.fullmatch(r"/conversations/(\d+)/messages", path)
        if request.method == "POST" and match:
            message = {"conversation_id": int(match.group(1)), **body}
            self.chatwoot_messages.append(message)
            return httpx.Response(200, json={"id": next(self._ids)})

        return httpx.Response(404)


class RecordingAgent(AgentPort):
    def __init__(self):
        self.calls: list[tuple] = []
        self.next_reply: Optional[AgentReply] = AgentReply(text="Hello from the agent")
        self.error: Optional[Exception] = None

    async def reply(self, message, profile=None):
        self.calls.append((message, profile))
        if self.error is not None:
            raise self.error
        return self.next_reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        state_dir=tmp_path / "state",
        hooks_token="hooks-secret",
        admin_token="admin-secret",
        meta_enabled=True,
        meta_phone_number_id="123456",
        meta_access_token="meta-token",
        meta_app_secret="app-secret",
        meta_verify_token="verify-me",
        meta_self_number="+5511978681404",
        chatwoot_enabled=True,
        chatwoot_base_url=f"https://{CHATWOOT_HOST}",
        chatwoot_api_token="cw-token",
        chatwoot_account_id=1,
        chatwoot_inbox_id=7,
        retry_base_delay_seconds=0.0,
        handoff_admin_numbers="+5511900000001",
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def agent():
    return RecordingAgent()


@pytest.fixture
def services(settings, agent, upstream):
    return build_services(settings, agent=agent, http_client=upstream.client)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
