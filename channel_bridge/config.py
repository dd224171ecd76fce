from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    debug: bool = False
    log_level: str = "INFO"

    # Directory holding handoff.json and idempotency.json
    state_dir: Path = Path("~/.channel-bridge/state")

    # Bearer token for /hooks/* and HMAC secret for the Chatwoot webhook
    hooks_token: Optional[str] = None
    admin_token: Optional[str] = None

    # Meta Cloud API (WhatsApp Business)
    meta_enabled: bool = False
    meta_phone_number_id: Optional[str] = None
    meta_access_token: Optional[str] = None
    meta_app_secret: Optional[str] = None
    meta_verify_token: Optional[str] = None
    meta_self_number: Optional[str] = None
    meta_graph_api_base: str = "https://graph.facebook.com/v21.0"
    meta_timeout_seconds: float = 10.0
    meta_template_language: str = "pt_BR"

    # Chatwoot (monitoring inbox)
    chatwoot_enabled: bool = False
    chatwoot_base_url: Optional[str] = None
    chatwoot_api_token: Optional[str] = None
    chatwoot_account_id: Optional[int] = None
    chatwoot_inbox_id: Optional[int] = None
    chatwoot_timeout_seconds: float = 5.0
    chatwoot_cache_ttl_minutes: int = 1440
    chatwoot_cache_max_entries: int = 10_000

    # Inbound webhook limits
    webhook_max_body_bytes: int = 1024 * 1024
    webhook_body_timeout_seconds: float = 10.0
    dedup_ttl_seconds: int = 600
    dedup_sweep_interval_seconds: int = 60

    # Outbound delivery
    idempotency_ttl_hours: int = 24
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 60.0
    background_max_pending: int = 1000

    # Handoff
    handoff_default_minutes: int = 30
    handoff_chatwoot_minutes: int = 1440
    handoff_pause_message: Optional[str] = None
    handoff_admin_numbers: str = ""

    # Agent endpoint (message in, reply payload out)
    agent_url: Optional[str] = None
    agent_timeout_seconds: float = 60.0

    # Contact profile lookup injected into the agent context
    profile_lookup_url: Optional[str] = None
    profile_timeout_seconds: float = 4.0
    profile_cache_ttl_minutes: int = 30
    profile_sentinel_ttl_seconds: int = 120
    profile_cache_max_entries: int = 5000

    maintenance_enabled: bool = True
    maintenance_interval_seconds: float = 60.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir.expanduser()

    @property
    def admin_numbers(self) -> list[str]:
        return [n.strip() for n in self.handoff_admin_numbers.split(",") if n.strip()]

    def missing_meta_fields(self) -> list[str]:
        required = {
            "meta_phone_number_id": self.meta_phone_number_id,
            "meta_access_token": self.meta_access_token,
            "meta_app_secret": self.meta_app_secret,
            "meta_verify_token": self.meta_verify_token,
            "meta_self_number": self.meta_self_number,
        }
        return [name for name, value in required.items() if not value]

    @property
    def chatwoot_configured(self) -> bool:
        return bool(
            self.chatwoot_enabled
            and self.chatwoot_base_url
            and self.chatwoot_api_token
            and self.chatwoot_account_id
            and self.chatwoot_inbox_id
        )


settings = Settings()
