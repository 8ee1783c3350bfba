"""Collateral configuration for synthetics, read from on-chain datums."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from .plutus import Constr, PlutusArray, PlutusError, decode_cbor

logger = logging.getLogger(__name__)

_REFRESH_INTERVAL = 30.0
_VARIANT_0 = 121


class _KupoMatch(Protocol):
    datum_hash: str | None


class _KupoClient(Protocol):
    async def matches(self, asset_id: str) -> Sequence[_KupoMatch]:
        """Return the unspent outputs holding the given asset."""

    async def datum(self, datum_hash: str) -> str | None:
        """Return the hex-encoded datum with the given hash, if known."""


class _HealthSink(Protocol):
    def update(self, synthetic: str, error: str | None) -> None:
        """Record a synthetic's config as healthy (None) or failing."""


@dataclass(frozen=True)
class AssetClass:
    """A policy id and asset name, both hex encoded."""

    policy_id: str
    asset_name: str


class ConfigUpdateError(Exception):
    """Failure to refresh a synthetic's config; ``clear`` drops the old config."""

    def __init__(self, synthetic: str, message: str, clear: bool) -> None:
        super().__init__(message)
        self.synthetic = synthetic
        self.clear = clear


def _decode_struct(datum: Any, variant: int, count: int) -> list:
    if not isinstance(datum, Constr):
        raise PlutusError("datum is not a struct")
    expected = variant + _VARIANT_0
    if datum.tag != expected:
        raise PlutusError(
            f"datum has unexpected variant (expected {expected}, got {datum.tag})"
        )
    if len(datum.fields) < count:
        raise PlutusError(
            f"too few elements (expected at least {count}, got {len(datum.fields)})"
        )
    return list(datum.fields[:count])


def extract_collateral_assets(datum: Any) -> list[AssetClass]:
    """Read the collateral asset classes out of a synthetic's parameter datum."""
    (wrapper,) = _decode_struct(datum, 0, 1)
    (params,) = _decode_struct(wrapper, 0, 1)
    (collateral_assets,) = _decode_struct(params, 0, 1)
    if not isinstance(collateral_assets, PlutusArray):
        raise PlutusError("datum has invalid collateral assets")

    assets = []
    for index, asset in enumerate(collateral_assets.items):
        policy_id, asset_name = _decode_struct(asset, 0, 2)
        if not isinstance(policy_id, bytes):
            raise PlutusError(f"asset {index} has invalid policy id")
        if not isinstance(asset_name, bytes):
            raise PlutusError(f"asset {index} has invalid asset name")
        assets.append(AssetClass(policy_id.hex(), asset_name.hex()))
    return assets


class SyntheticConfigSource:
    """Tracks which collateral each synthetic accepts."""

    def __init__(
        self,
        asset_ids: Mapping[str, str],
        collateral_lists: Mapping[str, Sequence[str]],
        nfts: Mapping[str, str],
        client: _KupoClient,
    ) -> None:
        self._asset_names = {asset_id: name for name, asset_id in asset_ids.items()}
        self._collateral: dict[str, list[str]] = {
            synthetic: sorted(
                tokens,
                key=lambda token: (token in asset_ids, asset_ids.get(token, "")),
            )
            for synthetic, tokens in collateral_lists.items()
        }
        self._nfts = dict(nfts)
        self._client = client
        self._next_refresh = time.monotonic()

    async def _fetch_collateral(self, synthetic: str, nft: str) -> list[str]:
        def fail(clear: bool, message: str) -> ConfigUpdateError:
            return ConfigUpdateError(synthetic, message, clear)

        try:
            matches = list(await self._client.matches(nft))
        except Exception as error:
            raise fail(False, f"could not fetch owner for NFT {nft}: {error}") from error
        if not matches:
            raise fail(True, f"no UTxO found for NFT {nft}")
        if len(matches) > 1:
            raise fail(True, f"found {len(matches)} UTxOs for NFT {nft}, expected 1")
        datum_hash = matches[0].datum_hash
        if datum_hash is None:
            raise fail(True, f"no datum associated with NFT {nft}")
        try:
            raw_datum = await self._client.datum(datum_hash)
        except Exception as error:
            raise fail(False, f"could not fetch datum for NFT {nft}: {error}") from error
        if raw_datum is None:
            raise fail(True, f"datum not found for NFT {nft}")
        try:
            datum_bytes = bytes.fromhex(raw_datum)
        except ValueError as error:
            raise fail(True, f"malformed datum for NFT {nft}") from error
        try:
            datum = decode_cbor(datum_bytes)
        except PlutusError as error:
            raise fail(True, f"invalid CBOR for NFT {nft}") from error
        try:
            assets = extract_collateral_assets(datum)
        except PlutusError as error:
            raise fail(True, f"could not parse datum for NFT {nft}: {error}") from error

        collateral = []
        for asset in assets:
            if not asset.policy_id and not asset.asset_name:
                collateral.append("ADA")
                continue
            asset_id = f"{asset.policy_id}.{asset.asset_name}"
            name = self._asset_names.get(asset_id)
            if name is None:
                raise fail(True, f"unrecognized asset id {asset_id}")
            collateral.append(name)
        return collateral

    async def refresh(self, health: _HealthSink) -> None:
        """Reload NFT-backed collateral, at most once every thirty seconds."""
        now = time.monotonic()
        if now < self._next_refresh:
            return

        synthetics = list(self._nfts)
        results = await asyncio.gather(
            *(self._fetch_collateral(s, self._nfts[s]) for s in synthetics),
            return_exceptions=True,
        )
        for synthetic, result in zip(synthetics, results):
            if isinstance(result, ConfigUpdateError):
                if result.clear:
                    self._collateral.pop(synthetic, None)
                logger.warning("could not update parameters for %s: %s", synthetic, result)
                health.update(synthetic, str(result))
            elif isinstance(result, BaseException):
                raise result
            else:
                self._collateral[synthetic] = result
                health.update(synthetic, None)

        self._next_refresh = now + _REFRESH_INTERVAL

    def synthetic_collateral(self, name: str) -> list[str] | None:
        """The collateral names for a synthetic, or None if unknown."""
        collateral = self._collateral.get(name)
        return None if collateral is None else list(collateral)