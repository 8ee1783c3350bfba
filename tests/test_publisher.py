import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from butane_oracles.aggregator import GenericPayloadEntry, Payload, SyntheticPayloadEntry
from butane_oracles.price_feed import (
    GenericPriceFeed,
    Signed,
    SyntheticPriceFeed,
    cbor_hex_in_list,
)
from butane_oracles.publisher import Publisher, build_feed_entries, build_synthetic_entries

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
SYNTH_URL = "https://publish.example.com/prices"
FEED_BASE = "https://publish.example.com/feeds"


def make_payload(publisher="me"):
    current = Signed(SyntheticPriceFeed([1, 2], "USDb", 3), b"sig")
    stale = Signed(SyntheticPriceFeed([4], "EURb", 5), b"sig")
    generic = Signed(GenericPriceFeed(100, "USD/ADA#RAW", 7), b"sig")
    return Payload(
        publisher,
        T0,
        generics=[GenericPayloadEntry(T0, "USD/ADA#RAW", generic)],
        synthetics=[
            SyntheticPayloadEntry(T0 - timedelta(seconds=5), "EURb", 2.0, stale),
            SyntheticPayloadEntry(T0, "USDb", 1.5, current),
        ],
    )


async def payload_stream(publishers):
    for publisher in publishers:
        yield make_payload(publisher)


def compact(value):
    return json.dumps(value, separators=(",", ":")).encode()


def test_build_synthetic_entries_keeps_current_round_only():
    payload = make_payload()
    assert build_synthetic_entries(payload) == [
        {
            "synthetic": "USDb",
            "price": 1.5,
            "payload": cbor_hex_in_list(payload.synthetics[1].payload),
        }
    ]


def test_build_feed_entries():
    payload = make_payload()
    assert build_feed_entries(payload) == [
        {"feed": "USD/ADA#RAW", "payload": cbor_hex_in_list(payload.generics[0].payload)}
    ]


@pytest.mark.asyncio
async def test_publishes_when_we_are_publisher():
    payload = make_payload()
    with respx.mock(assert_all_called=False) as mock:
        synth_route = mock.post(SYNTH_URL).mock(return_value=httpx.Response(200, text="ok"))
        feed_route = mock.post(f"{FEED_BASE}/USD%2FADA%23RAW").mock(
            return_value=httpx.Response(200, text="ok")
        )
        async with httpx.AsyncClient() as client:
            publisher = Publisher("me", SYNTH_URL, FEED_BASE, client)
            assert await publisher.handle_payload(payload) is True
    assert synth_route.call_count == 1
    request = synth_route.calls[0].request
    assert request.headers["content-type"] == "application/json"
    assert request.content == compact(build_synthetic_entries(payload))
    assert feed_route.call_count == 1
    assert feed_route.calls[0].request.content == compact(build_feed_entries(payload)[0])


@pytest.mark.asyncio
async def test_does_not_publish_for_other_publisher():
    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(SYNTH_URL).mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as client:
            publisher = Publisher("me", SYNTH_URL, None, client)
            assert await publisher.handle_payload(make_payload("other")) is False
    assert route.call_count == 0


@pytest.mark.asyncio
async def test_request_failure_is_not_raised():
    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(SYNTH_URL).mock(side_effect=httpx.ConnectError("down"))
        async with httpx.AsyncClient() as client:
            publisher = Publisher("me", SYNTH_URL, None, client)
            assert await publisher.handle_payload(make_payload()) is True
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_run_handles_each_payload():
    with respx.mock(assert_all_called=False) as mock:
        route = mock.post(SYNTH_URL).mock(return_value=httpx.Response(200, text="ok"))
        async with httpx.AsyncClient() as client:
            publisher = Publisher("me", SYNTH_URL, None, client)
            await publisher.run(payload_stream(["me", "other", "me"]))
    assert route.call_count == 2