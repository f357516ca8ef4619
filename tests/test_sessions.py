"""Tests for timestamp normalization and market session detection."""

import pytest

from app.services.email.sessions import (
    ISO_WITH_OFFSET,
    MarketSession,
    detect_market_session,
    parse_timestamp,
    session_display_name,
)


class TestDetectMarketSession:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10:00", MarketSession.TOKYO),
            ("18:00", MarketSession.LONDON),
            ("23:30", MarketSession.LONDON),  # London and New York overlap; London is checked first
            ("03:00", MarketSession.NEW_YORK),
            ("07:00", MarketSession.SYDNEY),
            ("16:00", None),
        ],
    )
    def test_bare_times(self, value, expected):
        assert detect_market_session(value) == expected

    def test_missing_timestamp(self):
        assert detect_market_session(None) is None
        assert detect_market_session("") is None

    def test_offset_timestamp_converted_to_jst(self):
        assert detect_market_session("2024-11-29T01:30:00Z") == MarketSession.TOKYO
        assert detect_market_session("2024-11-29T18:05:00+09:00") == MarketSession.LONDON

    def test_japanese_date_with_weekday(self):
        assert detect_market_session("2024年11月29日(金) 10:30:15") == MarketSession.TOKYO
        assert detect_market_session("2024年11月29日(金) 18:05") == MarketSession.LONDON

    def test_display_name(self):
        assert session_display_name(MarketSession.TOKYO) == "東京"


class TestParseTimestamp:
    def test_offset_passes_through(self):
        assert parse_timestamp("2024-11-29T10:30:00+09:00") == "2024-11-29T10:30:00+09:00"

    @pytest.mark.parametrize(
        "value",
        [
            "2024-11-29 10:30",
            "2024/11/29 10:30:00",
            "2024年11月29日 10時30分",
            "2024年11月29日(金) 10時30分",
            "2024年11月29日（金）10:30",
        ],
    )
    def test_local_formats_in_default_zone(self, value):
        assert parse_timestamp(value) == "2024-11-29T10:30:00+09:00"

    def test_utc_converted(self):
        assert parse_timestamp("2024-11-29T01:30:00Z") == "2024-11-29T10:30:00+09:00"

    def test_other_zone(self):
        assert parse_timestamp("2024-11-29 10:30", "UTC") == "2024-11-29T10:30:00+00:00"

    def test_unparseable_falls_back_to_now(self):
        assert ISO_WITH_OFFSET.fullmatch(parse_timestamp("not a date"))
