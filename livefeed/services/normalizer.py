"""
Payload normalizer.
Turns any of the shapes the endpoint emits into an ordered list of canonical records.

Accepted shapes, checked in this order:
    null / empty        -> NoData
    404                 -> NoData (out-of-band not-found)
    {"data": [...]}     -> the wrapped list
    [...]               -> the list itself
    {...}               -> a single record
Anything that leaves no valid record behind is NoData.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Union

from pydantic import ValidationError

from livefeed.errors import DecodeError, RecordContractError
from livefeed.observability.metrics import record_dropped_records
from livefeed.schemas.feed import InstrumentRecord, Token

logger = logging.getLogger("feed_normalizer")

NOT_FOUND_SENTINEL = 404


class PayloadShape(str, Enum):
    ABSENT = "absent"
    NOT_FOUND = "not_found"
    WRAPPED = "wrapped"
    SEQUENCE = "sequence"
    SINGLE = "single"


@dataclass(frozen=True)
class NoData:
    """Expected no-data outcome, not an error."""
    reason: str


NormalizeResult = Union[List[InstrumentRecord], NoData]


def decode_message(raw: Union[str, bytes, bytearray, None]) -> Any:
    """Decode one transport message. Blank input decodes to None."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError("Message is not valid UTF-8", details={"position": e.start})
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed JSON message: {e.msg}", details={"position": e.pos})


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _is_not_found(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == NOT_FOUND_SENTINEL


def classify_payload(raw: Any) -> PayloadShape:
    """Tag a decoded payload with its shape."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return PayloadShape.ABSENT
    if _is_not_found(raw):
        return PayloadShape.NOT_FOUND
    if isinstance(raw, Mapping) and _is_sequence(raw.get("data")):
        return PayloadShape.WRAPPED
    if _is_sequence(raw):
        return PayloadShape.SEQUENCE
    return PayloadShape.SINGLE


def coerce_record(item: Any) -> InstrumentRecord:
    """Validate one upstream item into a canonical record."""
    if isinstance(item, InstrumentRecord):
        return item
    if not isinstance(item, Mapping):
        raise RecordContractError("Record is not an object", details={"type": type(item).__name__})
    try:
        return InstrumentRecord.model_validate(dict(item))
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise RecordContractError("Record failed validation", details={"fields": fields})


def _to_records(items: Sequence) -> List[InstrumentRecord]:
    by_token: Dict[Token, InstrumentRecord] = {}
    dropped = 0
    for index, item in enumerate(items):
        try:
            record = coerce_record(item)
        except RecordContractError as e:
            dropped += 1
            logger.warning(f"[normalizer] Dropping record #{index}: {e.message} {e.details}")
            continue
        # First position wins, latest values win
        by_token[record.token] = record
    record_dropped_records(dropped)
    if len(by_token) + dropped < len(items):
        logger.debug(f"[normalizer] Collapsed {len(items) - dropped - len(by_token)} duplicate tokens")
    return list(by_token.values())


def normalize(raw: Any) -> NormalizeResult:
    """Normalize a decoded payload into canonical records or NoData."""
    shape = classify_payload(raw)

    if shape == PayloadShape.WRAPPED:
        items = raw["data"]
    elif shape == PayloadShape.SEQUENCE:
        items = raw
    elif shape == PayloadShape.SINGLE:
        items = [raw]
    elif shape == PayloadShape.NOT_FOUND:
        return NoData("not_found")
    else:
        return NoData("empty_payload")

    if len(items) == 0:
        return NoData("empty_sequence")

    records = _to_records(items)
    if not records:
        return NoData("no_valid_records")
    return records
