"""Handoff control surfaces: admin text command and Chatwoot status events."""

import re
from dataclasses import dataclass
from typing import Optional

from channel_bridge.logging_config import get_logger
from channel_bridge.schemas.chatwoot import STATUS_CHANGED_EVENT, ChatwootEvent, ChatwootEventResponse
from channel_bridge.services.chatwoot_service import ChatwootMirror
from channel_bridge.services.errors import InvalidInputError
from channel_bridge.services.handoff_store import HandoffEntry, HandoffStore
from channel_bridge.services.identity import is_valid_phone, mask_phone, normalize_phone, to_e164

logger = get_logger("handoff_service")

CHATWOOT_ACTOR = "chatwoot:resolver"

USAGE = "Usage: /handoff on +55... [minutes] | /handoff off +55... | /handoff list"
USAGE_ON = "Usage: /handoff on +55XXXXXXXXXXX [minutes]"
USAGE_OFF = "Usage: /handoff off +55XXXXXXXXXXX"

_COMMAND = re.compile(r"^/handoff(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)


@dataclass
class HandoffCommand:
    action: Optional[str] = None
    number: Optional[str] = None
    minutes: Optional[int] = None


@dataclass
class CommandOutcome:
    handled: bool
    reply: Optional[str] = None


def parse_handoff_command(text: str) -> Optional[HandoffCommand]:
    """Parse ``/handoff ...``. Returns None when the text is not a handoff command."""
    match = _COMMAND.match(text.strip())
    if not match:
        return None

    args = (match.group(1) or "").split()
    if not args:
        return HandoffCommand()

    action = args[0].lower()
    if action == "list":
        return HandoffCommand(action="list")
    if action not in {"on", "off"}:
        return HandoffCommand()

    number = args[1] if len(args) > 1 else None
    minutes = None
    if len(args) > 2 and args[2].isdigit() and int(args[2]) > 0:
        minutes = int(args[2])
    return HandoffCommand(action=action, number=number, minutes=minutes)


def format_entry_line(entry: HandoffEntry, now_ms: int) -> str:
    return f"{entry.number} - {entry.remaining_minutes(now_ms)}min left (by {entry.activated_by})"


class HandoffService:
    def __init__(
        self,
        store: HandoffStore,
        mirror: Optional[ChatwootMirror] = None,
        default_minutes: int = 30,
        chatwoot_minutes: int = 1440,
        admin_numbers: Optional[list[str]] = None,
    ):
        self.store = store
        self.mirror = mirror
        self.default_minutes = default_minutes
        self.chatwoot_minutes = chatwoot_minutes
        self.admin_numbers = {normalize_phone(n) for n in (admin_numbers or []) if normalize_phone(n)}

    def is_admin(self, sender: str) -> bool:
        return normalize_phone(sender) in self.admin_numbers

    def handle_command(self, sender: str, text: str) -> CommandOutcome:
        """Run an admin ``/handoff`` command sent from the channel.

        Without configured admin numbers the command is disabled and the text
        goes to the agent like any other message. Commands from non-admin
        senders are swallowed without a reply.
        """
        command = parse_handoff_command(text)
        if command is None or not self.admin_numbers:
            return CommandOutcome(handled=False)

        if not self.is_admin(sender):
            logger.warning("Handoff command from non-admin sender", extra={"context": {"sender": mask_phone(sender)}})
            return CommandOutcome(handled=True)

        if command.action is None:
            return CommandOutcome(handled=True, reply=USAGE)

        if command.action == "list":
            return CommandOutcome(handled=True, reply=self._list_reply())

        if not command.number:
            return CommandOutcome(handled=True, reply=USAGE_ON if command.action == "on" else USAGE_OFF)

        canonical = normalize_phone(command.number)
        if command.action == "on":
            minutes = command.minutes or self.default_minutes
            try:
                entry = self.store.activate(canonical, to_e164(normalize_phone(sender)), minutes)
            except InvalidInputError as exc:
                return CommandOutcome(handled=True, reply=exc.message)
            return CommandOutcome(
                handled=True,
                reply=f"Handoff on for {entry.number} for {minutes} minutes. Bot paused for this number.",
            )

        if self.store.deactivate(canonical):
            return CommandOutcome(handled=True, reply=f"Handoff off for {to_e164(canonical)}. Bot resumed.")
        return CommandOutcome(handled=True, reply=f"No active handoff found for {to_e164(canonical)}.")

    def _list_reply(self) -> str:
        entries = self.store.list_active()
        if not entries:
            return "No active handoffs."
        now_ms = self.store.now_ms()
        lines = [format_entry_line(entry, now_ms) for entry in entries]
        return "Active handoffs:\n" + "\n".join(lines)

    def handle_chatwoot_event(self, event: ChatwootEvent) -> ChatwootEventResponse:
        """Map Chatwoot conversation status changes onto the handoff store.

        ``resolved`` pauses the bot for ``chatwoot_minutes``; ``open`` resumes it.
        """
        if event.event != STATUS_CHANGED_EVENT:
            return ChatwootEventResponse(ok=True, action="ignored")

        if event.conversation is None or event.conversation.id is None:
            logger.warning("Chatwoot event rejected: conversation.id missing")
            return ChatwootEventResponse(ok=False, error="invalid payload: conversation.id missing")

        if event.contact is None or not event.contact.phone_number:
            logger.debug("Chatwoot event ignored: contact without phone_number")
            return ChatwootEventResponse(ok=True, action="ignored:no-phone")

        canonical = normalize_phone(event.contact.phone_number)
        if not is_valid_phone(canonical):
            logger.warning("Chatwoot event rejected: invalid phone", extra={"context": {"phone": mask_phone(canonical)}})
            return ChatwootEventResponse(ok=False, error="invalid phone")

        status = event.status or (event.conversation.status if event.conversation else None)
        if status == "resolved":
            self.store.activate(canonical, CHATWOOT_ACTOR, self.chatwoot_minutes)
            if self.mirror is not None:
                self.mirror.invalidate_conversation(canonical)
            return ChatwootEventResponse(ok=True, action="handoff-on")

        if status == "open":
            self.store.deactivate(canonical)
            return ChatwootEventResponse(ok=True, action="handoff-off")

        logger.debug("Chatwoot status not mapped", extra={"context": {"status": status}})
        return ChatwootEventResponse(ok=True, action=f"ignored:{status}")
