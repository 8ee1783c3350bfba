"""Publishes the current payload over HTTP when this node is the leader."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterable
from urllib.parse import quote

import httpx

from .aggregator import Payload, _json_float
from .price_feed import cbor_hex_in_list

logger = logging.getLogger(__name__)

_TIMEOUT = 5.0


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def build_synthetic_entries(payload: Payload) -> list[dict[str, Any]]:
    """The synthetic entries produced in the payload's own round."""
    return [
        {
            "synthetic": entry.synthetic,
            "price": _json_float(entry.price),
            "payload": cbor_hex_in_list(entry.payload),
        }
        for entry in payload.synthetics
        if entry.timestamp == payload.timestamp
    ]


def build_feed_entries(payload: Payload) -> list[dict[str, Any]]:
    """The generic feed entries produced in the payload's own round."""
    return [
        {"feed": entry.name, "payload": cbor_hex_in_list(entry.payload)}
        for entry in payload.generics
        if entry.timestamp == payload.timestamp
    ]


class Publisher:
    """Posts synthetic and feed payloads to the configured endpoints."""

    def __init__(
        self,
        node_id: str,
        publish_url: str | None = None,
        publish_feed_base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.node_id = node_id
        self.publish_url = publish_url
        self.publish_feed_base_url = publish_feed_base_url
        self._client = client

    async def _post(self, url: str, body: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self._client is not None:
            response = await self._client.post(
                url, content=body, headers=headers, timeout=_TIMEOUT
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url, content=body, headers=headers, timeout=_TIMEOUT
                )
        return response.text

    async def _publish_synthetics(self, entries: list[dict[str, Any]]) -> None:
        body = _to_json(entries)
        if self.publish_url is None:
            logger.info("final payload (not publishing): %s", body)
            return
        logger.info("publishing payload: %s", body)
        try:
            result = await self._post(self.publish_url, body)
        except httpx.HTTPError as error:
            logger.warning("Could not publish payload: %s", error)
        else:
            logger.debug("Payload published! %s", result)

    async def _publish_feed(self, url: str, name: str, body: str) -> None:
        logger.info("publishing feed payload %s: %s", name, body)
        try:
            result = await self._post(url, body)
        except httpx.HTTPError as error:
            logger.warning("Could not publish payload %s: %s", name, error)
        else:
            logger.debug("Payload %s published! %s", name, result)

    async def _publish_feeds(self, feeds: list[dict[str, Any]]) -> None:
        tasks = []
        for feed in feeds:
            name = feed["feed"]
            body = _to_json(feed)
            if self.publish_feed_base_url is None:
                logger.info("feed payload %s (not publishing): %s", name, body)
                continue
            url = f"{self.publish_feed_base_url}/{quote(name, safe='')}"
            tasks.append(self._publish_feed(url, name, body))
        await asyncio.gather(*tasks)

    async def handle_payload(self, payload: Payload) -> bool:
        """Publish the payload if this node produced it; return whether it did."""
        synthetics = build_synthetic_entries(payload)
        feeds = build_feed_entries(payload)
        if payload.publisher != self.node_id:
            logger.info(
                "someone else (%s) is publishing a payload: %s %s",
                payload.publisher,
                _to_json(synthetics),
                _to_json(feeds),
            )
            return False
        await asyncio.gather(self._publish_synthetics(synthetics), self._publish_feeds(feeds))
        return True

    async def run(self, source: AsyncIterable[Payload]) -> None:
        """Handle every payload the source yields."""
        async for payload in source:
            await self.handle_payload(payload)