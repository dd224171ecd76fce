import json

import pytest

from channel_bridge.schemas.meta_webhook import InboundMessage
from channel_bridge.services.agent import HttpAgent, NullAgent
from channel_bridge.services.errors import UpstreamHTTPError

AGENT_HOST = "agent.test"


def _message():
    return InboundMessage(
        sender="5511988887777",
        wa_id="551188887777",
        text="Oi",
        name="Ana",
        message_id="wamid.A",
        timestamp_ms=1_700_000_000_000,
    )


@pytest.fixture
def http_agent(upstream):
    return HttpAgent(upstream.client, f"https://{AGENT_HOST}/reply")


class TestHttpAgent:
    @pytest.mark.asyncio
    async def test_posts_message_and_parses_reply(self, http_agent, upstream):
        upstream.agent_replies.append(
            {"text": "Olá Ana", "template": {"name": "welcome", "language": "pt_BR"}, "idempotencyKey": "k1"}
        )

        reply = await http_agent.reply(_message(), profile="plan: gold")

        assert reply.text == "Olá Ana"
        assert reply.template.name == "welcome"
        assert reply.idempotency_key == "k1"
        [request] = upstream.requests
        assert json.loads(request.content) == {
            "from": "5511988887777",
            "name": "Ana",
            "text": "Oi",
            "messageId": "wamid.A",
            "timestamp": 1_700_000_000_000,
            "profile": "plan: gold",
        }

    @pytest.mark.asyncio
    async def test_no_content_means_no_reply(self, http_agent):
        assert await http_agent.reply(_message()) is None

    @pytest.mark.asyncio
    async def test_unusable_reply_is_dropped(self, http_agent, upstream):
        upstream.agent_replies.append({"template": {"name": ""}})
        assert await http_agent.reply(_message()) is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self, upstream):
        agent = HttpAgent(upstream.client, "https://unknown.test/reply")
        with pytest.raises(UpstreamHTTPError) as exc_info:
            await agent.reply(_message())
        assert exc_info.value.status_code == 404


class TestNullAgent:
    @pytest.mark.asyncio
    async def test_never_replies(self):
        assert await NullAgent().reply(_message()) is None
