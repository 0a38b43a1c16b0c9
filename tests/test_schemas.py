"""
Record and snapshot schema tests.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from livefeed.schemas.feed import (
    PLACEHOLDER,
    ChannelState,
    FeedSnapshot,
    InstrumentKind,
    InstrumentRecord,
)


class TestInstrumentRecord:
    """Test upstream field mapping and display rules."""

    def test_upstream_aliases(self):
        rec = InstrumentRecord.model_validate({
            "instrument_token": 256265,
            "tradingsymbol": "NIFTY24JAN21500CE",
            "name": "NIFTY",
            "last_price": "123.45",
            "change": -2.5,
            "instrument_type": "ce",
            "strike": 21500,
            "expiry": "2024-01-25",
            "oi": 1200,
            "change_in_oi": -40,
            "volume_traded": 5000,
            "yesterday_volume": 4000,
            "unknown_field": "ignored",
        })
        assert rec.token == 256265
        assert rec.symbol == "NIFTY24JAN21500CE"
        assert rec.display_name == "NIFTY"
        assert rec.last_price == 123.45
        assert rec.change_percent == -2.5
        assert rec.instrument_kind == InstrumentKind.CALL
        assert rec.expiry == date(2024, 1, 25)
        assert rec.open_interest == 1200
        assert rec.change_in_open_interest == -40
        assert rec.is_positive is False

    def test_field_names_accepted(self):
        rec = InstrumentRecord(token="X", last_price=1)
        assert rec.token == "X"
        assert rec.flash is False

    @pytest.mark.parametrize("token", [None, "", "   ", True])
    def test_token_required(self, token):
        with pytest.raises(ValidationError):
            InstrumentRecord.model_validate({"instrument_token": token, "last_price": 1})

    @pytest.mark.parametrize("raw, token", [
        ("256265", 256265),
        (" 42 ", 42),
        (256265, 256265),
        ("007", "007"),
        ("NIFTY-FUT", "NIFTY-FUT"),
    ])
    def test_numeric_string_tokens_become_ints(self, raw, token):
        assert InstrumentRecord(token=raw).token == token

    def test_token_missing(self):
        with pytest.raises(ValidationError):
            InstrumentRecord.model_validate({"last_price": 1})

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            InstrumentRecord(token=1, last_price=-1)

    @pytest.mark.parametrize("blank", ["", "-", " - "])
    def test_placeholders_are_unknown(self, blank):
        rec = InstrumentRecord(token=1, last_price=blank, oi=blank, change=blank)
        assert rec.last_price is None
        assert rec.open_interest is None
        assert rec.change_percent is None
        assert rec.is_positive is True

    def test_unknown_kind(self):
        assert InstrumentRecord(token=1, instrument_type="SWAP").instrument_kind == InstrumentKind.UNKNOWN
        assert InstrumentRecord(token=1).instrument_kind == InstrumentKind.UNKNOWN

    def test_bad_expiry_is_unknown(self):
        assert InstrumentRecord(token=1, expiry="soon").expiry is None
        assert InstrumentRecord(token=1, expiry="2024-03-28T00:00:00").expiry == date(2024, 3, 28)

    def test_future_hides_strike_and_oi_change(self):
        fut = InstrumentRecord(token=1, instrument_type="FUT", strike=0, change_in_oi=12)
        assert fut.is_future
        assert fut.visible_strike is None
        assert fut.visible_change_in_open_interest is None
        assert fut.display_value("strike") == PLACEHOLDER
        assert fut.display_value("change_in_open_interest") == PLACEHOLDER

    def test_option_shows_strike(self):
        opt = InstrumentRecord(token=1, instrument_type="PE", strike=21500.0, change_in_oi=12.5)
        assert opt.display_value("strike") == "21500"
        assert opt.display_value("change_in_open_interest") == "12.5"

    def test_display_placeholder_and_dates(self):
        rec = InstrumentRecord(token=1, expiry="2024-01-25")
        assert rec.display_value("last_price") == PLACEHOLDER
        assert rec.display_value("expiry") == "2024-01-25"

    def test_immutable(self):
        rec = InstrumentRecord(token=1, last_price=1)
        with pytest.raises(ValidationError):
            rec.last_price = 2


class TestFeedSnapshot:

    def test_empty_default(self):
        snapshot = FeedSnapshot()
        assert snapshot.records == ()
        assert snapshot.error == ""
        assert snapshot.channel_state == ChannelState.IDLE

    def test_lookup_helpers(self):
        snapshot = FeedSnapshot(records=(
            InstrumentRecord(token=1, last_price=10),
            InstrumentRecord(token="B", last_price=None),
        ))
        assert snapshot.tokens == (1, "B")
        assert snapshot.price_of(1) == 10
        assert snapshot.price_of("B") is None
        assert snapshot.price_of(99) is None

    def test_payload_is_json_ready(self):
        snapshot = FeedSnapshot(
            records=(InstrumentRecord(token=1, last_price=10, expiry="2024-01-25", flash=True),),
            flash_tokens=frozenset({1}),
            channel_state=ChannelState.LIVE,
            sequence=4,
        )
        payload = snapshot.to_payload()
        assert payload["records"][0]["expiry"] == "2024-01-25"
        assert payload["records"][0]["flash"] is True
        assert payload["flash_tokens"] == [1]
        assert payload["channel_state"] == "live"
        assert payload["sequence"] == 4
