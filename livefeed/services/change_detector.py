"""
Price change detection for flash highlighting.
"""

from typing import Dict, Iterable, Mapping, Set, Tuple

from livefeed.schemas.feed import InstrumentRecord, Token


def detect_changes(
    previous_prices: Mapping[Token, float],
    records: Iterable[InstrumentRecord],
) -> Tuple[Set[Token], Dict[Token, float]]:
    """
    Compare incoming records against the previous last-traded prices.

    Args:
        previous_prices: token -> last price seen on the previous snapshot
        records: records of the new snapshot

    Returns:
        (flash_set, updated_prices). A token flashes only when a previous
        price exists and differs. Records without a price are not comparable
        and leave their previous entry in place. The input mapping is not
        modified.
    """
    updated: Dict[Token, float] = dict(previous_prices)
    flash_set: Set[Token] = set()

    for record in records:
        price = record.last_price
        if price is None:
            continue
        previous = previous_prices.get(record.token)
        if previous is not None and previous != price:
            flash_set.add(record.token)
        updated[record.token] = price

    return flash_set, updated
