# butane_oracles

Building blocks for an oracle node that produces signed price feeds for
Plutus smart contracts: the feed data types and their CBOR encoding, price
smoothing, leader election, payload tracking, HTTP publishing and a small
on-disk price store.

## Modules

- `butane_oracles.plutus`: Plutus data values (`Constr`, `PlutusArray`,
  integers, byte strings, maps) and their CBOR encoding with `encode_cbor`
  and `decode_cbor`. Helpers encode and decode structs, enums, booleans,
  strings, unsigned integers and lists; malformed data raises `PlutusError`.
  `system_time_to_iso` formats a moment as RFC 3339 in UTC.
- `butane_oracles.price_feed`: `SyntheticPriceFeed`, `GenericPriceFeed`,
  `Validity` and `IntervalBound` (with `BoundKind`), the `Signed` wrapper,
  and the entry types `SyntheticEntry`, `GenericEntry`, `SignedEntries`,
  `SyntheticPriceData` and `PriceData`. `serialize` and `deserialize`
  convert feeds to and from CBOR; `cbor_hex_in_list` gives the hex CBOR of
  a one-element list holding a feed. A synthetic feed's `collateral_names`
  is not part of its encoding.
- `butane_oracles.gema`: `GemaCalculator`, an exponential moving average
  that passes price drops through unchanged and smooths price rises. The
  weight depends on how many rounds have passed since the last result.
- `butane_oracles.rationals`: `decimal_to_rational` turns a finite
  `Decimal` into a `Fraction`; `rational_to_decimal_string` renders a
  `Fraction` as the plain decimal text of its nearest float.
- `butane_oracles.synth_config`: `SyntheticConfigSource` keeps the list of
  collateral names for each synthetic, either fixed or read from the datum
  of an NFT's output. `extract_collateral_assets` reads `AssetClass` values
  out of such a datum. `refresh` reloads NFT-backed collateral at most once
  every thirty seconds and reports each synthetic's health.
- `butane_oracles.raft`: `RaftState`, a leader-election state machine fed
  with messages (`Connect`, `Disconnect`, `RequestVote`,
  `RequestVoteResponse`, `Heartbeat`), clock ticks and commands (`Abdicate`,
  `ForceElection`). Each call returns the messages to send to peers. A
  callback is told of every change of `RaftLeader`. Nodes that report
  missing payloads wait longer before standing for election.
  `create_raft_client` returns a `RaftClient` and the `asyncio.Queue` of
  commands it feeds.
- `butane_oracles.aggregator`: `PayloadTracker` keeps the newest signed
  entry per feed and builds a `Payload` from them. When this node publishes
  and a feed goes five rounds in a row without an update, it asks its raft
  client to abdicate. `feed_names` lists every feed a healthy node
  produces, and `find_end_of_entry_validity` gives when a synthetic entry
  expires.
- `butane_oracles.publisher`: `Publisher` posts the entries of the current
  round as JSON over HTTP (with `httpx`), synthetics to one URL and each
  generic feed to its own URL under a base URL. Payloads from other nodes,
  or with no URL configured, are only logged.
- `butane_oracles.persistence`: `TokenPricePersistence` keeps the last
  known USD value of each currency in `prices.cbor` under a data directory
  (the `DATA_DIRECTORY` environment variable, or `data` in the working
  directory), and hands them back as `TokenPrice` values.

## Installing

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Example

    from butane_oracles.price_feed import (
        SyntheticPriceFeed, Validity, serialize, deserialize,
    )

    feed = SyntheticPriceFeed(
        collateral_prices=[1, 2],
        synthetic="HIPI",
        denominator=31337,
        validity=Validity(),
    )
    raw = serialize(feed)
    assert deserialize(SyntheticPriceFeed, raw) == feed

Smoothing a price with GEMA:

    from datetime import timedelta
    from butane_oracles.gema import GemaCalculator

    calculator = GemaCalculator(2, timedelta(seconds=5))
    calculator.smooth_price(timedelta(seconds=5), 1_000_000, 2_000_000)  # 1_500_000

Driving an election by hand:

    from butane_oracles.raft import RaftState, Connect, RequestVoteResponse

    state = RaftState("me", 0.0, quorum=2, heartbeat_freq=1.0, timeout_freq=2.0)
    state.receive(0.0, "a", Connect())
    state.tick(2.0)      # [("a", RequestVote(term=1))]
    state.receive(2.1, "a", RequestVoteResponse(term=1, vote=True))
    # [("a", Heartbeat(term=1))]; this node is now leader

## What this package does not do

There is no command-line program and no node that runs these parts
together. The package does not gather prices from exchanges, sign feeds,
or carry raft messages between nodes: `RaftState` only says which messages
to send. `SyntheticConfigSource` needs a chain-index client to be passed in
(any object with async `matches` and `datum` methods); none is included.

## Compatibility

Python 3.11 or later.