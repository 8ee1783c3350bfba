"""Price feed payloads and their plutus encoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from fractions import Fraction
from typing import Any, Generic, Protocol, TypeVar

from .plutus import (
    PlutusArray,
    PlutusError,
    decode_bool,
    decode_cbor,
    decode_enum,
    decode_list,
    decode_string,
    decode_struct,
    decode_u64,
    decode_uint,
    encode_bool,
    encode_cbor,
    encode_enum,
    encode_list,
    encode_string,
    encode_struct,
    encode_uint,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class _PlutusCompatible(Protocol):
    def to_plutus(self) -> Any: ...


T = TypeVar("T")


class BoundKind(Enum):
    """Which kind of end an interval bound is."""

    NEGATIVE_INFINITY = 0
    FINITE = 1
    POSITIVE_INFINITY = 2


@dataclass(frozen=True)
class IntervalBound:
    """One end of a validity interval; finite bounds carry a unix time in milliseconds."""

    kind: BoundKind
    is_inclusive: bool
    timestamp: int | None = None

    def __post_init__(self) -> None:
        if (self.kind is BoundKind.FINITE) != (self.timestamp is not None):
            raise ValueError("only finite bounds carry a timestamp")

    @classmethod
    def start_of_time(cls, is_inclusive: bool) -> IntervalBound:
        return cls(BoundKind.NEGATIVE_INFINITY, is_inclusive)

    @classmethod
    def end_of_time(cls, is_inclusive: bool) -> IntervalBound:
        return cls(BoundKind.POSITIVE_INFINITY, is_inclusive)

    @classmethod
    def moment(cls, moment: datetime, is_inclusive: bool) -> IntervalBound:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        elapsed = moment - _EPOCH
        if elapsed < timedelta(0):
            raise ValueError("moment is before the unix epoch")
        return cls.unix_timestamp(elapsed // timedelta(milliseconds=1), is_inclusive)

    @classmethod
    def unix_timestamp(cls, timestamp: int, is_inclusive: bool) -> IntervalBound:
        return cls(BoundKind.FINITE, is_inclusive, timestamp)

    def to_plutus(self) -> Any:
        if self.kind is BoundKind.FINITE:
            kind = encode_enum(1, encode_uint(self.timestamp))
        else:
            kind = encode_enum(self.kind.value)
        return encode_struct([kind, encode_bool(self.is_inclusive)])

    @classmethod
    def from_plutus(cls, data: Any) -> IntervalBound:
        encoded_kind, encoded_inclusive = decode_struct(data, 2)
        is_inclusive = decode_bool(encoded_inclusive)
        match decode_enum(encoded_kind):
            case (0, None):
                return cls.start_of_time(is_inclusive)
            case (1, value) if value is not None:
                return cls.unix_timestamp(decode_u64(value), is_inclusive)
            case (2, None):
                return cls.end_of_time(is_inclusive)
        raise PlutusError("Unexpected IntervalBoundType value")


@dataclass(frozen=True)
class Validity:
    """The time interval over which a feed is valid; unbounded by default."""

    lower_bound: IntervalBound = field(
        default_factory=lambda: IntervalBound.start_of_time(False)
    )
    upper_bound: IntervalBound = field(
        default_factory=lambda: IntervalBound.end_of_time(False)
    )

    def to_plutus(self) -> Any:
        return encode_struct([self.lower_bound.to_plutus(), self.upper_bound.to_plutus()])

    @classmethod
    def from_plutus(cls, data: Any) -> Validity:
        lower, upper = decode_struct(data, 2)
        return cls(IntervalBound.from_plutus(lower), IntervalBound.from_plutus(upper))


@dataclass
class SyntheticPriceFeed:
    """Collateral prices for a synthetic asset; collateral names are not serialized."""

    collateral_prices: list[int]
    synthetic: str
    denominator: int
    validity: Validity = field(default_factory=Validity)
    collateral_names: list[str] | None = None

    def to_plutus(self) -> Any:
        return encode_struct(
            [
                encode_list([encode_uint(price) for price in self.collateral_prices]),
                encode_string(self.synthetic),
                encode_uint(self.denominator),
                self.validity.to_plutus(),
            ]
        )

    @classmethod
    def from_plutus(cls, data: Any) -> SyntheticPriceFeed:
        prices, synthetic, denominator, validity = decode_struct(data, 4)
        return cls(
            collateral_prices=decode_list(prices, decode_uint),
            synthetic=decode_string(synthetic),
            denominator=decode_uint(denominator),
            validity=Validity.from_plutus(validity),
        )


@dataclass
class SyntheticPriceData:
    price: Fraction
    feed: SyntheticPriceFeed


@dataclass
class GenericPriceFeed:
    """A named price with the unix time in milliseconds it was taken at."""

    price: int
    name: str
    timestamp: int

    def to_plutus(self) -> Any:
        return encode_struct(
            [
                encode_uint(self.price),
                encode_string(self.name),
                encode_uint(self.timestamp),
            ]
        )

    @classmethod
    def from_plutus(cls, data: Any) -> GenericPriceFeed:
        price, name, timestamp = decode_struct(data, 3)
        return cls(decode_uint(price), decode_string(name), decode_u64(timestamp))


@dataclass
class Signed(Generic[T]):
    """A feed together with its signature."""

    data: T
    signature: bytes

    def to_plutus(self) -> Any:
        return encode_struct([self.data.to_plutus(), bytes(self.signature)])

    @classmethod
    def from_plutus(cls, data: Any, data_type: Any) -> Signed:
        encoded_data, encoded_signature = decode_struct(data, 2)
        inner = data_type.from_plutus(encoded_data)
        if not isinstance(encoded_signature, bytes):
            raise PlutusError("Unexpected signature")
        return cls(inner, encoded_signature)


@dataclass
class SyntheticEntry:
    price: float
    feed: Signed[SyntheticPriceFeed]
    timestamp: datetime | None = None


@dataclass
class GenericEntry:
    feed: Signed[GenericPriceFeed]
    timestamp: datetime


@dataclass
class SignedEntries:
    timestamp: datetime
    synthetics: list[SyntheticEntry]
    generics: list[GenericEntry] = field(default_factory=list)


@dataclass
class PriceData:
    synthetics: list[SyntheticPriceData]
    generics: list[GenericPriceFeed]


def serialize(obj: _PlutusCompatible) -> bytes:
    """Encode a plutus-compatible object as CBOR."""
    return encode_cbor(obj.to_plutus())


def deserialize(data_type: Any, raw: bytes) -> Any:
    """Decode CBOR bytes into an instance of ``data_type``."""
    return data_type.from_plutus(decode_cbor(raw))


def cbor_hex_in_list(obj: _PlutusCompatible) -> str:
    """Hex of the CBOR for a one-element list holding ``obj``."""
    return encode_cbor(PlutusArray([obj.to_plutus()], indefinite=True)).hex()