"""Collects signed entries into the latest payload and tracks publishing health."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol

from .plutus import system_time_to_iso
from .price_feed import (
    BoundKind,
    GenericPriceFeed,
    Signed,
    SignedEntries,
    SyntheticPriceFeed,
    cbor_hex_in_list,
    serialize,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_UNBOUNDED_HORIZON = timedelta(minutes=525600)
_INITIAL_VALIDITY = timedelta(seconds=60)
_MAX_FAILURES = 5


class _Abdicator(Protocol):
    def abdicate(self) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _json_float(value: float) -> float | None:
    return value if math.isfinite(value) else None


def feed_names(synthetics: Iterable[str], currencies: Iterable[str]) -> list[str]:
    """Every feed a healthy node produces: synthetics, then four feeds per currency."""
    feeds = list(synthetics)
    for currency in currencies:
        feeds.extend(
            [
                f"USD/{currency}#RAW",
                f"{currency}/USD#RAW",
                f"USD/{currency}#GEMA",
                f"{currency}/USD#GEMA",
            ]
        )
    return feeds


@dataclass
class SyntheticPayloadEntry:
    timestamp: datetime
    synthetic: str
    price: float
    payload: Signed[SyntheticPriceFeed]

    @property
    def feed(self) -> str:
        return self.synthetic

    def to_json(self) -> dict[str, Any]:
        return {
            "timestamp": system_time_to_iso(self.timestamp),
            "synthetic": self.synthetic,
            "price": _json_float(self.price),
            "payload": cbor_hex_in_list(self.payload),
        }


@dataclass
class GenericPayloadEntry:
    timestamp: datetime
    name: str
    payload: Signed[GenericPriceFeed]

    @property
    def feed(self) -> str:
        return self.name

    def to_json(self) -> dict[str, Any]:
        return {
            "timestamp": system_time_to_iso(self.timestamp),
            "name": self.name,
            "payload": cbor_hex_in_list(self.payload),
        }


PayloadEntry = SyntheticPayloadEntry | GenericPayloadEntry


@dataclass
class Payload:
    publisher: str
    timestamp: datetime
    generics: list[GenericPayloadEntry] = field(default_factory=list)
    synthetics: list[SyntheticPayloadEntry] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "publisher": self.publisher,
            "timestamp": system_time_to_iso(self.timestamp),
            "generics": [entry.to_json() for entry in self.generics],
            "synthetics": [entry.to_json() for entry in self.synthetics],
        }


def find_end_of_entry_validity(entry: SyntheticPayloadEntry) -> datetime:
    """The moment a synthetic entry stops being valid."""
    upper = entry.payload.data.validity.upper_bound
    if upper.kind is BoundKind.NEGATIVE_INFINITY:
        return _EPOCH
    if upper.kind is BoundKind.POSITIVE_INFINITY:
        return _now() + _UNBOUNDED_HORIZON
    return _EPOCH + timedelta(milliseconds=upper.timestamp)


def _valid_until(entry: PayloadEntry) -> datetime | None:
    if isinstance(entry, SyntheticPayloadEntry):
        return find_end_of_entry_validity(entry)
    return None


class PayloadTracker:
    """Keeps the newest entry per feed and abdicates after repeated publishing failures."""

    def __init__(self, node_id: str, feeds: Iterable[str], raft_client: _Abdicator) -> None:
        self.node_id = node_id
        self.feeds = list(feeds)
        self._raft_client = raft_client
        self._latest: dict[str, PayloadEntry] = {}
        self._failures = {feed: 0 for feed in self.feeds}
        now = _now()
        self.ages: dict[str, tuple[datetime, datetime | None]] = {
            feed: (now, now + _INITIAL_VALIDITY) for feed in self.feeds
        }

    @property
    def failures(self) -> dict[str, int]:
        """Consecutive rounds in which each feed was not updated."""
        return dict(self._failures)

    def _entries(self, signed: SignedEntries) -> list[PayloadEntry]:
        entries: list[PayloadEntry] = [
            SyntheticPayloadEntry(
                timestamp=s.timestamp if s.timestamp is not None else signed.timestamp,
                synthetic=s.feed.data.synthetic,
                price=s.price,
                payload=s.feed,
            )
            for s in signed.synthetics
        ]
        entries.extend(
            GenericPayloadEntry(timestamp=g.timestamp, name=g.feed.data.name, payload=g.feed)
            for g in signed.generics
        )
        return entries

    def process(self, publisher: str, entries: SignedEntries) -> Payload:
        """Merge a round's signed entries and return the resulting payload."""
        updated: set[str] = set()
        for entry in self._entries(entries):
            feed = entry.feed
            existing = self._latest.get(feed)
            if existing is not None and existing.timestamp >= entry.timestamp:
                continue
            updated.add(feed)
            if isinstance(entry, SyntheticPayloadEntry):
                logger.debug(
                    "price feed size metrics: synthetic=%s size=%d",
                    entry.synthetic,
                    len(serialize(entry.payload)),
                )
            self.ages[feed] = (entry.timestamp, _valid_until(entry))
            self._latest[feed] = entry

        if publisher == self.node_id:
            failed_too_often = False
            for feed in sorted(self._failures):
                if feed in updated:
                    self._failures[feed] = 0
                    continue
                self._failures[feed] += 1
                logger.warning(
                    "Could not publish new price feed for synthetic %s (failures %d)",
                    feed,
                    self._failures[feed],
                )
                if self._failures[feed] >= _MAX_FAILURES:
                    failed_too_often = True
            if failed_too_often:
                logger.warning("Too many failures, we are no longer fit to be leader")
                self._raft_client.abdicate()
        else:
            self._failures = dict.fromkeys(self._failures, 0)

        payload = Payload(publisher=publisher, timestamp=entries.timestamp)
        for feed in sorted(self._latest):
            entry = self._latest[feed]
            if isinstance(entry, SyntheticPayloadEntry):
                payload.synthetics.append(entry)
            else:
                payload.generics.append(entry)
        return payload