"""Inline template directive in agent replies.

An agent that must open a conversation with an approved template writes
``[[template: name | var1 | var2]]`` in its reply. The block is removed from
the visible text and becomes a template send.
"""

import re

from channel_bridge.schemas.delivery import TemplateParams
from channel_bridge.services.agent.base import AgentReply

_DIRECTIVE = re.compile(r"\[\[template:\s*(.*?)\]\]", re.IGNORECASE | re.DOTALL)


def parse_template_directive(reply: AgentReply, language: str = "pt_BR") -> AgentReply:
    if not reply.text or reply.template is not None:
        return reply

    match = _DIRECTIVE.search(reply.text)
    if not match:
        return reply

    parts = [part.strip() for part in match.group(1).split("|")]
    parts = [part for part in parts if part]
    if not parts:
        return reply

    clean_text = _DIRECTIVE.sub("", reply.text).strip()
    return AgentReply(
        text=clean_text or None,
        media_url=reply.media_url,
        template=TemplateParams(name=parts[0], language=language, variables=parts[1:]),
        idempotency_key=reply.idempotency_key,
    )
