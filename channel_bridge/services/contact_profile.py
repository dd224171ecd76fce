"""Contact profile lookup injected into the agent's context.

``GET {url}?phone=<id>`` returns CRM data about the sender. Good answers are
cached for the full TTL; empty answers and failures are cached as sentinels
for a short while so a broken CRM is not hit on every message.
"""

import json
from typing import Any, Optional

import httpx

from channel_bridge.logging_config import get_logger
from channel_bridge.services.identity import mask_phone
from channel_bridge.services.inflight import InflightCoalescer
from channel_bridge.services.ttl_cache import CacheSentinel, TTLCache

logger = get_logger("contact_profile")

MAX_PROFILE_CHARS = 2000
MAX_VALUE_CHARS = 500


def format_profile(data: Any) -> Optional[str]:
    """Render a lookup response as ``key: value`` lines within the prompt budget."""
    if isinstance(data, str):
        text = data.strip()
        return text[:MAX_PROFILE_CHARS] if text else None

    if isinstance(data, list):
        return format_profile(data[0]) if data else None

    if isinstance(data, dict):
        lines: list[str] = []
        total = 0
        for key, value in data.items():
            if value is None or value == "":
                continue
            rendered = json.dumps(value, ensure_ascii=False) if isinstance(value, (dict, list)) else str(value)
            if len(rendered) > MAX_VALUE_CHARS:
                rendered = rendered[:MAX_VALUE_CHARS] + "..."
            line = f"{key}: {rendered}"
            total += len(line) + 1
            if total > MAX_PROFILE_CHARS:
                break
            lines.append(line)
        return "\n".join(lines) if lines else None

    return None


class ContactProfileLookup:
    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        timeout_seconds: float = 4.0,
        cache_ttl_seconds: float = 30 * 60,
        sentinel_ttl_seconds: float = 120,
        max_entries: int = 5000,
    ):
        self.client = client
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.cache: TTLCache[str] = TTLCache(
            cache_ttl_seconds,
            max_entries,
            sentinel_ttl_seconds=sentinel_ttl_seconds,
        )
        self._inflight: InflightCoalescer[Optional[str]] = InflightCoalescer()

    async def lookup(self, phone: str) -> Optional[str]:
        cached = self.cache.get(phone)
        if isinstance(cached, CacheSentinel):
            return None
        if cached is not None:
            return cached
        return await self._inflight.coalesce(phone, lambda: self._fetch(phone))

    async def _fetch(self, phone: str) -> Optional[str]:
        try:
            response = await self.client.get(
                self.url,
                params={"phone": phone},
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            self.cache.set_sentinel(phone, CacheSentinel.ERROR)
            logger.warning(
                "Contact lookup failed",
                extra={"context": {"phone": mask_phone(phone), "error": str(exc) or type(exc).__name__}},
            )
            return None

        if response.status_code >= 400:
            self.cache.set_sentinel(phone, CacheSentinel.ERROR)
            logger.warning(
                "Contact lookup returned error status",
                extra={"context": {"phone": mask_phone(phone), "status_code": response.status_code}},
            )
            return None

        try:
            data = response.json()
        except ValueError:
            self.cache.set_sentinel(phone, CacheSentinel.ERROR)
            logger.warning("Contact lookup returned invalid JSON", extra={"context": {"phone": mask_phone(phone)}})
            return None

        profile = format_profile(data) if data else None
        if not profile:
            self.cache.set_sentinel(phone, CacheSentinel.EMPTY)
            return None

        self.cache.set(phone, profile)
        return profile
