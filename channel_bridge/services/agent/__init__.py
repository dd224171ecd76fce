from channel_bridge.services.agent.base import AgentPort, AgentReply, NullAgent
from channel_bridge.services.agent.http_agent import HttpAgent

__all__ = ["AgentPort", "AgentReply", "HttpAgent", "NullAgent"]
