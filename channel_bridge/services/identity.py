"""Phone identifier normalization.

Every cache, ledger and store in the bridge is keyed by the canonical form
produced here, so two spellings of one number never create two remote
contacts.
"""

import re

_NON_DIGITS = re.compile(r"\D")

BRAZIL_COUNTRY_CODE = "55"
# 55 + area code (2) + 8 digits: WhatsApp JIDs sometimes drop the mobile 9
BRAZIL_LEGACY_MOBILE_LENGTH = 12

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

MAX_NAME_CHARS = 100
MAX_TEXT_CHARS = 6000
TRUNCATION_MARKER = "…[truncated]"


def normalize_phone(raw: str) -> str:
    """Return the digits-only canonical id.

    "+55 11 98888-7777", "5511988887777@s.whatsapp.net" and "551188887777"
    all map to "5511988887777". Numbers outside Brazil only lose formatting.
    """
    local = (raw or "").split("@", 1)[0]
    digits = _NON_DIGITS.sub("", local)

    if len(digits) == BRAZIL_LEGACY_MOBILE_LENGTH and digits.startswith(BRAZIL_COUNTRY_CODE):
        return digits[:4] + "9" + digits[4:]

    return digits


def is_valid_phone(canonical: str) -> bool:
    if not canonical or not canonical.isdigit() or not canonical.isascii():
        return False
    return MIN_PHONE_DIGITS <= len(canonical) <= MAX_PHONE_DIGITS


def mask_phone(value: str) -> str:
    """Log-safe rendering: "5511988887777" -> "5511****87777"."""
    if not value or len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-5:]


def to_e164(canonical: str) -> str:
    return f"+{canonical}"


def sanitize_name(name: str | None) -> str | None:
    if not name:
        return None
    cleaned = name.strip()
    if not cleaned:
        return None
    return cleaned[:MAX_NAME_CHARS]


def sanitize_text(text: str) -> str:
    if len(text) <= MAX_TEXT_CHARS:
        return text
    return text[:MAX_TEXT_CHARS] + TRUNCATION_MARKER
