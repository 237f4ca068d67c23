"""Reference price aggregation across CEX venues.

Each venue contributes at most one mid price per asset.  A reference is
only produced once a quorum of venues returned a usable quote, and the
reference itself is the median of those mids so a single venue printing
garbage cannot drag it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Sequence, Union

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueQuote:
    """Mid price observed on one venue."""

    venue: str
    mid: float

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.mid) and self.mid > 0.0


@dataclass(frozen=True)
class FetchError:
    """A venue fetch that produced no quote, with the reason kept for diagnostics."""

    venue: str
    reason: str


QuoteResult = Union[VenueQuote, FetchError]


@dataclass(frozen=True)
class AssetReference:
    asset: str
    reference_price: float
    quotes: tuple[VenueQuote, ...]

    @property
    def source_count(self) -> int:
        return len(self.quotes)

    def describe_venues(self) -> str:
        return ", ".join(f"{q.venue}:{q.mid:.2f}" for q in self.quotes)


def median(values: Iterable[float]) -> float:
    """Standard median; even-sized inputs average the two central values."""
    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of empty sequence")
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return ordered[mid]


def build_reference(
    asset: str,
    results: Sequence[QuoteResult],
    min_sources: int,
) -> AssetReference | None:
    """Combine resolved venue results into one reference price.

    Returns ``None`` when fewer than *min_sources* venues produced a valid
    quote.  Failed fetches and invalid mids are dropped.
    """
    quotes: list[VenueQuote] = []
    for result in results:
        if isinstance(result, FetchError):
            LOGGER.debug("%s quote from %s dropped: %s", asset, result.venue, result.reason)
            continue
        if not result.is_valid:
            LOGGER.debug("%s quote from %s dropped: invalid mid %r", asset, result.venue, result.mid)
            continue
        quotes.append(result)

    if len(quotes) < min_sources:
        LOGGER.info(
            "%s reference skipped: %d valid quotes < quorum %d",
            asset, len(quotes), min_sources,
        )
        return None
    # min_sources <= 0 with no quotes still has nothing to take a median of
    if not quotes:
        return None

    return AssetReference(
        asset=asset,
        reference_price=median(q.mid for q in quotes),
        quotes=tuple(quotes),
    )


def build_references(
    results_by_asset: Mapping[str, Sequence[QuoteResult]],
    min_sources: int,
) -> Dict[str, AssetReference]:
    """Build references for every asset; assets without quorum are left out."""
    references: Dict[str, AssetReference] = {}
    for asset, results in results_by_asset.items():
        reference = build_reference(asset, results, min_sources)
        if reference is not None:
            references[asset] = reference
    return references
