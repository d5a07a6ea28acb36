"""Unit tests for input normalization, rupiah formatting, settings and error rendering."""

from __future__ import annotations

import pytest

from dealer_mcp.config import load_settings
from dealer_mcp.constants import BODY_TYPES
from dealer_mcp.errors import (
    NotFoundError,
    RecordStoreError,
    ReferenceCreationError,
    ValidationError,
    user_message,
)
from dealer_mcp.formatting import format_idr
from dealer_mcp.normalization import (
    as_number,
    escape_filter_value,
    is_unset,
    normalize_transmission,
    parse_int,
    parse_price,
)


class TestParsing:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (150_000_000, 150_000_000.0),
            ("Rp 150000000", 150_000_000.0),
            ("  ", None),
            ("abc", None),
            (None, None),
            (True, None),
        ],
    )
    def test_parse_price(self, raw, expected):
        assert parse_price(raw) == expected

    def test_parse_int(self):
        assert parse_int("7") == 7
        assert parse_int(7.9) == 7
        assert parse_int("") is None

    def test_as_number(self):
        assert as_number(2.0) == 2 and isinstance(as_number(2.0), int)
        assert as_number(2.5) == 2.5
        assert as_number(None) is None

    def test_is_unset(self):
        assert is_unset(None)
        assert is_unset(" All ")
        assert is_unset("")
        assert not is_unset(0)
        assert not is_unset("honda-id")

    def test_transmission_aliases(self):
        assert normalize_transmission(" AT ") == "Automatic"
        assert normalize_transmission("manual") == "Manual"
        assert normalize_transmission("CVT") == "CVT"
        assert normalize_transmission(None) == ""

    def test_escape(self):
        assert escape_filter_value('a"b\\c') == 'a\\"b\\\\c'


class TestFormatIdr:
    @pytest.mark.parametrize(
        "price,expected",
        [
            (1_500_000_000, "Rp 1,5 Milyar"),
            (1_000_000_000, "Rp 1 Milyar"),
            (250_000_000, "Rp 250 Juta"),
            (99_500_000, "Rp 99,5 Juta"),
            (95_000, "Rp 95.000"),
        ],
    )
    def test_labels(self, price, expected):
        assert format_idr(price) == expected


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "DEALER_STORE_BACKEND",
            "DEALER_POCKETBASE_URL",
            "DEALER_SEARCH_DEBOUNCE_MS",
            "DEALER_REQUIRE_AUTH",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = load_settings()
        assert settings.store_backend == "memory"
        assert settings.search_debounce_seconds == pytest.approx(0.3)
        assert settings.require_auth is True

    def test_pocketbase_needs_url(self, monkeypatch):
        monkeypatch.setenv("DEALER_STORE_BACKEND", "pocketbase")
        monkeypatch.delenv("DEALER_POCKETBASE_URL", raising=False)
        with pytest.raises(ValidationError, match="DEALER_POCKETBASE_URL"):
            load_settings()

    def test_pocketbase_url_trimmed(self, monkeypatch):
        monkeypatch.setenv("DEALER_STORE_BACKEND", "PocketBase")
        monkeypatch.setenv("DEALER_POCKETBASE_URL", "https://pb.example.com/")
        monkeypatch.setenv("DEALER_SEARCH_DEBOUNCE_MS", "150")
        settings = load_settings()
        assert settings.pocketbase_url == "https://pb.example.com"
        assert settings.search_debounce_seconds == pytest.approx(0.15)

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("DEALER_STORE_BACKEND", "mongo")
        with pytest.raises(ValidationError):
            load_settings()

    def test_bad_number(self, monkeypatch):
        monkeypatch.delenv("DEALER_STORE_BACKEND", raising=False)
        monkeypatch.setenv("DEALER_SEARCH_DEBOUNCE_MS", "fast")
        with pytest.raises(ValidationError):
            load_settings()


class TestUserMessage:
    def test_validation_is_verbatim(self):
        assert user_message(ValidationError("year", "Year is required"), "x") == "Year is required"

    def test_not_found(self):
        assert user_message(NotFoundError(BODY_TYPES, "b1")) == "Body type with ID b1 not found"

    def test_store_error_appends_message(self):
        exc = RecordStoreError("Failed to create record.", code="HTTP_ERROR", status=400)
        assert user_message(exc, "Failed to save car.") == (
            "Failed to save car. Failed to create record."
        )

    def test_store_404(self):
        exc = RecordStoreError("nope", code="HTTP_ERROR", status=404)
        assert user_message(exc) == "The requested record was not found."

    def test_reference_failure(self):
        cause = RecordStoreError("Failed to create record.", code="HTTP_ERROR", status=400)
        exc = ReferenceCreationError("model", cause, completed={"brand": "b1"})
        assert user_message(exc, "Failed to save car.") == (
            "Failed to save car. Could not save model: Failed to create record."
        )

    def test_other_errors_hidden(self):
        assert user_message(KeyError("secret"), "Operation failed.") == "Operation failed."
