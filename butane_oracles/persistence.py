"""Saves the latest USD token prices to disk and loads them back at startup."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Callable, Iterable

from .plutus import PlutusArray, PlutusError, decode_cbor, encode_cbor

logger = logging.getLogger(__name__)

_FILENAME = "prices.cbor"


@dataclass
class TokenPriceSource:
    name: str
    value: Fraction
    reliability: Fraction


@dataclass
class TokenPrice:
    token: str
    unit: str
    value: Fraction
    sources: list[TokenPriceSource] = field(default_factory=list)


def _encode(prices: dict[str, Fraction]) -> bytes:
    entries = [
        PlutusArray(
            [token.encode("utf-8"), PlutusArray([value.numerator, value.denominator], indefinite=False)],
            indefinite=False,
        )
        for token, value in prices.items()
    ]
    return encode_cbor(PlutusArray([PlutusArray(entries, indefinite=False)], indefinite=False))


def _decode(raw: bytes) -> dict[str, Fraction]:
    data = decode_cbor(raw)
    if not isinstance(data, PlutusArray) or len(data.items) != 1:
        raise PlutusError("expected a one-field record")
    (entries,) = data.items
    if not isinstance(entries, PlutusArray):
        raise PlutusError("expected a list of prices")
    prices = {}
    for entry in entries.items:
        if not isinstance(entry, PlutusArray) or len(entry.items) != 2:
            raise PlutusError("expected a token price pair")
        token, value = entry.items
        if not isinstance(token, bytes) or not isinstance(value, PlutusArray):
            raise PlutusError("malformed token price")
        if len(value.items) != 2:
            raise PlutusError("expected a rational pair")
        numerator, denominator = value.items
        if not isinstance(numerator, int) or not isinstance(denominator, int) or denominator <= 0:
            raise PlutusError("malformed rational")
        try:
            name = token.decode("utf-8")
        except UnicodeDecodeError as error:
            raise PlutusError(str(error)) from error
        prices[name] = Fraction(numerator, denominator)
    return prices


def _data_directory(directory: str | os.PathLike | None) -> Path:
    if directory is None:
        directory = os.environ.get("DATA_DIRECTORY", "data")
    path = Path(directory)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


class TokenPricePersistence:
    """Keeps each currency's last known USD value in ``prices.cbor``."""

    def __init__(
        self, currencies: Iterable[str], directory: str | os.PathLike | None = None
    ) -> None:
        self.currencies = list(currencies)
        folder = _data_directory(directory)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass
        self.filename = folder / _FILENAME
        self._warned_about_fs_error = False
        try:
            raw = self.filename.read_bytes()
        except OSError as error:
            logger.info("Persisted data not loaded: file did not exist: %s", error)
            self._prices: dict[str, Fraction] = {}
        else:
            try:
                self._prices = dict(sorted(_decode(raw).items()))
            except PlutusError as error:
                logger.info("Persisted data not loaded: file was not valid: %s", error)
                self._prices = {}

    async def save_prices(self, value_in_usd: Callable[[str], Fraction | None]) -> None:
        """Record the current USD value of every known currency and write it out."""
        values = {token: value_in_usd(token) for token in self.currencies}
        self._prices = {
            token: value for token, value in sorted(values.items()) if value is not None
        }
        raw = _encode(self._prices)
        try:
            await asyncio.to_thread(self.filename.write_bytes, raw)
        except OSError as error:
            if not self._warned_about_fs_error:
                logger.warning("Could not save price data to disk: %s", error)
                self._warned_about_fs_error = True

    def saved_prices(self) -> list[TokenPrice]:
        """The stored prices, as USD prices from a single fully reliable source."""
        return [
            TokenPrice(
                token=token,
                unit="USD",
                value=value,
                sources=[TokenPriceSource("Loaded from disk", value, Fraction(1))],
            )
            for token, value in self._prices.items()
        ]