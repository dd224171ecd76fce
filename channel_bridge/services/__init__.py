from channel_bridge.services.dedup import WebhookDedupTracker
from channel_bridge.services.handoff_store import HandoffEntry, HandoffStore
from channel_bridge.services.identity import is_valid_phone, mask_phone, normalize_phone
from channel_bridge.services.idempotency import IdempotencyLedger, IdempotencyRecord
from channel_bridge.services.inflight import InflightCoalescer
from channel_bridge.services.retry import RetryExecutor, is_transient_error
from channel_bridge.services.signature import verify_signature
from channel_bridge.services.ttl_cache import CacheSentinel, TTLCache

__all__ = [
    "CacheSentinel",
    "HandoffEntry",
    "HandoffStore",
    "IdempotencyLedger",
    "IdempotencyRecord",
    "InflightCoalescer",
    "RetryExecutor",
    "TTLCache",
    "WebhookDedupTracker",
    "is_transient_error",
    "is_valid_phone",
    "mask_phone",
    "normalize_phone",
    "verify_signature",
]
