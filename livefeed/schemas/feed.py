"""
Feed data schemas using Pydantic for validation and serialization.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Token = Union[int, str]

PLACEHOLDER = "-"


class InstrumentKind(str, Enum):
    """Instrument type tag as sent by the endpoint."""
    FUTURE = "FUT"
    CALL = "CE"
    PUT = "PE"
    OPTION = "OPT"
    EQUITY = "EQ"
    UNKNOWN = "UNKNOWN"


class ChannelState(str, Enum):
    """Lifecycle of one logical feed channel."""
    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class InstrumentRecord(BaseModel):
    """One quoted instrument at a point in time."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    token: Token = Field(alias="instrument_token")
    symbol: Optional[str] = Field(default=None, alias="tradingsymbol")
    display_name: Optional[str] = Field(default=None, alias="name")
    last_price: Optional[float] = Field(default=None, ge=0)
    change_percent: Optional[float] = Field(default=None, alias="change")
    instrument_kind: InstrumentKind = Field(default=InstrumentKind.UNKNOWN, alias="instrument_type")
    strike: Optional[float] = None
    expiry: Optional[date] = None
    open_interest: Optional[float] = Field(default=None, alias="oi")
    change_in_open_interest: Optional[float] = Field(default=None, alias="change_in_oi")
    volume_traded: Optional[float] = None
    yesterday_volume: Optional[float] = None
    flash: bool = False  # engine-computed, never read from upstream

    @field_validator("token", mode="before")
    @classmethod
    def _token_present(cls, v: Any) -> Any:
        if v is None or isinstance(v, bool):
            raise ValueError("token is required")
        if isinstance(v, str):
            text = v.strip()
            if not text:
                raise ValueError("token is required")
            # "256265" and 256265 name the same instrument
            if text.isdecimal() and str(int(text)) == text:
                return int(text)
        return v

    @field_validator("instrument_kind", mode="before")
    @classmethod
    def _kind_from_tag(cls, v: Any) -> InstrumentKind:
        if isinstance(v, InstrumentKind):
            return v
        try:
            return InstrumentKind(str(v or "").strip().upper())
        except ValueError:
            return InstrumentKind.UNKNOWN

    @field_validator(
        "last_price", "change_percent", "strike", "open_interest",
        "change_in_open_interest", "volume_traded", "yesterday_volume",
        mode="before",
    )
    @classmethod
    def _blank_is_unknown(cls, v: Any) -> Any:
        # Endpoint sends "" or "-" for fields it has no value for
        if isinstance(v, str) and v.strip() in ("", PLACEHOLDER):
            return None
        return v

    @field_validator("expiry", mode="before")
    @classmethod
    def _parse_expiry(cls, v: Any) -> Optional[date]:
        if v is None or isinstance(v, date):
            return v.date() if isinstance(v, datetime) else v
        text = str(v).strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None

    @field_validator("flash", mode="before")
    @classmethod
    def _flash_is_bool(cls, v: Any) -> bool:
        return bool(v)

    @property
    def is_future(self) -> bool:
        return self.instrument_kind == InstrumentKind.FUTURE

    @property
    def is_positive(self) -> bool:
        """Styling sign; a missing change renders as positive."""
        return (self.change_percent or 0.0) >= 0

    @property
    def visible_strike(self) -> Optional[float]:
        """Strike, hidden for futures."""
        return None if self.is_future else self.strike

    @property
    def visible_change_in_open_interest(self) -> Optional[float]:
        """Change in OI, hidden for futures."""
        return None if self.is_future else self.change_in_open_interest

    def display_value(self, field_name: str) -> str:
        """Render a field for display, using the placeholder for unknowns."""
        if field_name == "strike":
            value = self.visible_strike
        elif field_name == "change_in_open_interest":
            value = self.visible_change_in_open_interest
        else:
            value = getattr(self, field_name)
        if value is None:
            return PLACEHOLDER
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, date):
            return value.isoformat()
        return str(value)


class FeedSnapshot(BaseModel):
    """Complete set of records published to the renderer at one instant."""
    model_config = ConfigDict(frozen=True)

    records: Tuple[InstrumentRecord, ...] = ()
    flash_tokens: FrozenSet[Token] = frozenset()
    error: str = ""
    channel_state: ChannelState = ChannelState.IDLE
    sequence: int = 0          # monotonic publish counter
    published_at: float = 0.0  # epoch seconds

    @property
    def tokens(self) -> Tuple[Token, ...]:
        return tuple(r.token for r in self.records)

    def price_of(self, token: Token) -> Optional[float]:
        for record in self.records:
            if record.token == token:
                return record.last_price
        return None

    def to_payload(self) -> dict:
        """JSON-ready dict for the renderer surface."""
        return self.model_dump(mode="json")


class ChannelHealth(BaseModel):
    """Feed channel health status."""
    state: ChannelState
    mode: str                      # "stream" | "poll"
    endpoint: str
    attempts: int                  # connection attempts since start
    reconnects: int                # reconnects scheduled since start
    messages: int                  # data messages delivered
    pings_sent: int
    pongs_received: int
    decode_errors: int
    transport_errors: int
    last_inbound_s_ago: Optional[float] = None
