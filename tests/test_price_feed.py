from datetime import datetime, timezone

import pytest

from butane_oracles.plutus import (
    PlutusArray,
    PlutusError,
    decode_cbor,
    encode_bool,
    encode_enum,
    encode_struct,
)
from butane_oracles.price_feed import (
    BoundKind,
    GenericPriceFeed,
    IntervalBound,
    Signed,
    SyntheticPriceFeed,
    Validity,
    cbor_hex_in_list,
    deserialize,
    serialize,
)

U128_MAX = 2**128 - 1


def test_should_serialize_infinite_validity():
    validity = Validity()
    assert deserialize(Validity, serialize(validity)) == validity


def test_should_serialize_finite_validity():
    validity = Validity(
        lower_bound=IntervalBound.unix_timestamp(1000000, True),
        upper_bound=IntervalBound.unix_timestamp(1005000, True),
    )
    assert deserialize(Validity, serialize(validity)) == validity


def test_should_serialize_price_feed():
    feed = SyntheticPriceFeed(
        collateral_names=None,
        collateral_prices=[1, U128_MAX * 2],
        synthetic="HIPI",
        denominator=31337,
        validity=Validity(),
    )
    assert deserialize(SyntheticPriceFeed, serialize(feed)) == feed


def test_collateral_names_do_not_round_trip():
    feed = SyntheticPriceFeed([5], "HIPI", 7, collateral_names=["ADA"])
    decoded = deserialize(SyntheticPriceFeed, serialize(feed))
    assert decoded.collateral_names is None
    assert decoded.collateral_prices == [5]


def test_default_validity_is_unbounded_and_exclusive():
    validity = Validity()
    assert validity.lower_bound == IntervalBound.start_of_time(False)
    assert validity.upper_bound == IntervalBound.end_of_time(False)


def test_generic_feed_round_trip():
    feed = GenericPriceFeed(price=U128_MAX, name="ADA/USD#GEMA", timestamp=1005000)
    assert deserialize(GenericPriceFeed, serialize(feed)) == feed


def test_generic_feed_rejects_out_of_range_timestamp():
    data = encode_struct([1, b"ADA", 2**64])
    with pytest.raises(PlutusError, match="out of range"):
        GenericPriceFeed.from_plutus(data)


def test_signed_round_trip():
    feed = GenericPriceFeed(price=31337, name="USD/ADA#RAW", timestamp=1000000)
    signed = Signed(feed, b"\x01\x02\x03")
    decoded = Signed.from_plutus(decode_cbor(serialize(signed)), GenericPriceFeed)
    assert decoded == signed


def test_signed_synthetic_round_trip():
    feed = SyntheticPriceFeed([1, 2, 3], "HIPI", 31337)
    signed = Signed(feed, bytes(range(64)))
    decoded = Signed.from_plutus(decode_cbor(serialize(signed)), SyntheticPriceFeed)
    assert decoded == signed


def test_signed_rejects_non_bytes_signature():
    feed = GenericPriceFeed(price=1, name="ADA", timestamp=0)
    data = encode_struct([feed.to_plutus(), 5])
    with pytest.raises(PlutusError, match="Unexpected signature"):
        Signed.from_plutus(data, GenericPriceFeed)


def test_moment_truncates_to_milliseconds():
    moment = datetime(1970, 1, 1, 0, 0, 1, 500900, tzinfo=timezone.utc)
    assert IntervalBound.moment(moment, True) == IntervalBound.unix_timestamp(1500, True)


def test_moment_before_epoch_raises():
    with pytest.raises(ValueError):
        IntervalBound.moment(datetime(1969, 12, 31, tzinfo=timezone.utc), False)


def test_finite_bound_requires_timestamp():
    with pytest.raises(ValueError):
        IntervalBound(BoundKind.FINITE, True)


def test_infinite_bound_rejects_timestamp():
    with pytest.raises(ValueError):
        IntervalBound(BoundKind.POSITIVE_INFINITY, True, 10)


def test_unknown_bound_variant_raises():
    data = encode_struct([encode_enum(3), encode_bool(True)])
    with pytest.raises(PlutusError, match="IntervalBoundType"):
        IntervalBound.from_plutus(data)


def test_finite_bound_without_value_raises():
    data = encode_struct([encode_enum(1), encode_bool(True)])
    with pytest.raises(PlutusError):
        IntervalBound.from_plutus(data)


def test_price_feed_with_wrong_field_count_raises():
    with pytest.raises(PlutusError):
        SyntheticPriceFeed.from_plutus(encode_struct([1, 2, 3]))


def test_cbor_hex_in_list_wraps_single_item():
    feed = GenericPriceFeed(price=42, name="ADA/USD#RAW", timestamp=1000)
    signed = Signed(feed, b"sig")
    encoded = cbor_hex_in_list(signed)
    assert encoded.startswith("9f")
    assert encoded.endswith("ff")
    assert decode_cbor(bytes.fromhex(encoded)) == PlutusArray([signed.to_plutus()])
    assert bytes.fromhex(encoded)[1:-1] == serialize(signed)