import pytest

from channel_bridge.services.identity import (
    MAX_NAME_CHARS,
    MAX_TEXT_CHARS,
    TRUNCATION_MARKER,
    is_valid_phone,
    mask_phone,
    normalize_phone,
    sanitize_name,
    sanitize_text,
    to_e164,
)

SPELLINGS = [
    "+55 11 98888-7777",
    "5511988887777",
    "5511988887777@s.whatsapp.net",
    "+55 (11) 98888.7777",
    "551188887777",
    "551188887777@c.us",
]


class TestNormalizePhone:
    @pytest.mark.parametrize("raw", SPELLINGS)
    def test_spellings_share_one_canonical_id(self, raw):
        assert normalize_phone(raw) == "5511988887777"

    @pytest.mark.parametrize("raw", SPELLINGS + ["+1 (415) 555-0100", "447911123456", "", "abc"])
    def test_idempotent(self, raw):
        once = normalize_phone(raw)
        assert normalize_phone(once) == once

    def test_non_brazilian_numbers_only_lose_formatting(self):
        assert normalize_phone("+1 (415) 555-0100") == "14155550100"

    def test_brazilian_mobile_digit_only_added_at_twelve_digits(self):
        assert normalize_phone("55119888877") == "55119888877"
        assert normalize_phone("5511988887777") == "5511988887777"

    def test_output_has_no_plus(self):
        assert not normalize_phone("+5511988887777").startswith("+")


class TestIsValidPhone:
    def test_accepts_ten_to_fifteen_digits(self):
        assert is_valid_phone("1234567890")
        assert is_valid_phone("123456789012345")
        assert is_valid_phone("5511988887777")

    def test_rejects_out_of_range_and_non_digits(self):
        assert not is_valid_phone("")
        assert not is_valid_phone("123456789")
        assert not is_valid_phone("1234567890123456")
        assert not is_valid_phone("12345abc90")
        assert not is_valid_phone("+5511988887777")


class TestMaskPhone:
    def test_keeps_prefix_and_suffix(self):
        assert mask_phone("5511988887777") == "5511****87777"

    def test_short_values_fully_masked(self):
        assert mask_phone("12345678") == "****"
        assert mask_phone("") == "****"


class TestSanitize:
    def test_to_e164(self):
        assert to_e164("5511988887777") == "+5511988887777"

    def test_sanitize_name(self):
        assert sanitize_name("  Ana  ") == "Ana"
        assert sanitize_name("   ") is None
        assert sanitize_name(None) is None
        assert len(sanitize_name("x" * 150)) == MAX_NAME_CHARS

    def test_sanitize_text_truncates_with_marker(self):
        text = "a" * (MAX_TEXT_CHARS + 1)
        result = sanitize_text(text)
        assert result.startswith("a" * MAX_TEXT_CHARS)
        assert result.endswith(TRUNCATION_MARKER)
        assert sanitize_text("short") == "short"
