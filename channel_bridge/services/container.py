from dataclasses import dataclass
from typing import Optional

import httpx

from channel_bridge.config import Settings
from channel_bridge.logging_config import get_logger
from channel_bridge.services.agent.base import AgentPort, NullAgent
from channel_bridge.services.agent.http_agent import HttpAgent
from channel_bridge.services.background import BackgroundWork
from channel_bridge.services.chatwoot_service import ChatwootClient, ChatwootMirror
from channel_bridge.services.contact_profile import ContactProfileLookup
from channel_bridge.services.dedup import WebhookDedupTracker
from channel_bridge.services.delivery_service import DeliveryService
from channel_bridge.services.handoff_service import HandoffService
from channel_bridge.services.handoff_store import HandoffStore
from channel_bridge.services.idempotency import IdempotencyLedger
from channel_bridge.services.inbound_service import InboundProcessor
from channel_bridge.services.meta_cloud_api import MetaCloudClient
from channel_bridge.services.retry import RetryExecutor

logger = get_logger("container")


@dataclass
class BridgeServices:
    """Long-lived service objects, built once per process."""

    settings: Settings
    http_client: httpx.AsyncClient
    background: BackgroundWork
    dedup: WebhookDedupTracker
    ledger: IdempotencyLedger
    handoff_store: HandoffStore
    handoff: HandoffService
    mirror: ChatwootMirror
    meta: MetaCloudClient
    delivery: DeliveryService
    inbound: InboundProcessor
    profile_lookup: Optional[ContactProfileLookup] = None
    owns_http_client: bool = True

    def run_maintenance(self) -> dict:
        """Sweep expired entries from every in-memory table."""
        results = {
            "dedup": self.dedup.sweep(),
            "idempotency": self.ledger.sweep(),
            "chatwoot_cache": self.mirror.sweep(),
        }
        if self.profile_lookup is not None:
            results["profile_cache"] = self.profile_lookup.cache.sweep()
        return results

    async def aclose(self) -> None:
        await self.background.join(timeout=10.0)
        await self.background.cancel_all()
        if self.owns_http_client:
            await self.http_client.aclose()


def build_services(
    settings: Settings,
    agent: Optional[AgentPort] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BridgeServices:
    owns_http_client = http_client is None
    client = http_client or httpx.AsyncClient()
    state_dir = settings.resolved_state_dir

    background = BackgroundWork(max_pending=settings.background_max_pending)

    chatwoot_client = None
    if settings.chatwoot_configured:
        chatwoot_client = ChatwootClient(
            client,
            base_url=settings.chatwoot_base_url,
            api_token=settings.chatwoot_api_token,
            account_id=settings.chatwoot_account_id,
            inbox_id=settings.chatwoot_inbox_id,
            timeout_seconds=settings.chatwoot_timeout_seconds,
        )
    mirror = ChatwootMirror(
        chatwoot_client,
        background,
        cache_ttl_seconds=settings.chatwoot_cache_ttl_minutes * 60,
        cache_max_entries=settings.chatwoot_cache_max_entries,
    )

    meta = MetaCloudClient(
        client,
        phone_number_id=settings.meta_phone_number_id,
        access_token=settings.meta_access_token,
        api_base=settings.meta_graph_api_base,
        timeout_seconds=settings.meta_timeout_seconds,
    )
    ledger = IdempotencyLedger.in_dir(state_dir, ttl_seconds=settings.idempotency_ttl_hours * 3600)
    retry = RetryExecutor(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )
    delivery = DeliveryService(meta, ledger, retry, mirror)

    handoff_store = HandoffStore.in_dir(state_dir)
    handoff = HandoffService(
        handoff_store,
        mirror=mirror,
        default_minutes=settings.handoff_default_minutes,
        chatwoot_minutes=settings.handoff_chatwoot_minutes,
        admin_numbers=settings.admin_numbers,
    )

    profile_lookup = None
    if settings.profile_lookup_url:
        profile_lookup = ContactProfileLookup(
            client,
            settings.profile_lookup_url,
            timeout_seconds=settings.profile_timeout_seconds,
            cache_ttl_seconds=settings.profile_cache_ttl_minutes * 60,
            sentinel_ttl_seconds=settings.profile_sentinel_ttl_seconds,
            max_entries=settings.profile_cache_max_entries,
        )

    if agent is None:
        if settings.agent_url:
            agent = HttpAgent(client, settings.agent_url, timeout_seconds=settings.agent_timeout_seconds)
        else:
            logger.warning("No agent configured, inbound messages will not be answered")
            agent = NullAgent()

    dedup = WebhookDedupTracker(
        ttl_seconds=settings.dedup_ttl_seconds,
        sweep_interval_seconds=settings.dedup_sweep_interval_seconds,
    )
    inbound = InboundProcessor(
        dedup,
        handoff,
        delivery,
        agent,
        background,
        mirror=mirror,
        profile_lookup=profile_lookup,
        self_number=settings.meta_self_number,
        pause_message=settings.handoff_pause_message,
        template_language=settings.meta_template_language,
    )

    return BridgeServices(
        settings=settings,
        http_client=client,
        background=background,
        dedup=dedup,
        ledger=ledger,
        handoff_store=handoff_store,
        handoff=handoff,
        mirror=mirror,
        meta=meta,
        delivery=delivery,
        inbound=inbound,
        profile_lookup=profile_lookup,
        owns_http_client=owns_http_client,
    )
