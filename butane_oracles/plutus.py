"""Plutus data values and their CBOR wire encoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

T = TypeVar("T")

CBOR_VARIANT_0 = 121
_GENERAL_CONSTR_TAG = 102
_BYTES_CHUNK = 64
_MAX_U64 = 2**64 - 1
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_BREAK = 0xFF
_HEADER_SIZES = {24: 1, 25: 2, 26: 4, 27: 8}


class PlutusError(ValueError):
    """Raised when plutus data cannot be encoded or decoded."""


@dataclass(frozen=True)
class Constr:
    """A constructor application: a CBOR tag with a list of fields."""

    tag: int
    fields: tuple = ()
    any_constructor: int | None = None
    indefinite: bool = field(default=True, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class PlutusArray:
    """A plutus list of data items."""

    items: tuple = ()
    indefinite: bool = field(default=True, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))


def _is_constr_tag(tag: int) -> bool:
    return 121 <= tag <= 127 or 1280 <= tag <= 1400


def _head(major: int, value: int) -> bytes:
    if value < 24:
        return bytes([major << 5 | value])
    for info, size in _HEADER_SIZES.items():
        if value < 1 << (8 * size):
            return bytes([major << 5 | info]) + value.to_bytes(size, "big")
    raise PlutusError("value too large for a CBOR header")


def _int_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def _encode_bytes(data: bytes, out: bytearray) -> None:
    if len(data) <= _BYTES_CHUNK:
        out += _head(2, len(data))
        out += data
        return
    out.append(0x5F)
    for start in range(0, len(data), _BYTES_CHUNK):
        chunk = data[start : start + _BYTES_CHUNK]
        out += _head(2, len(chunk))
        out += chunk
    out.append(_BREAK)


def _encode_array(items: tuple, indefinite: bool, out: bytearray) -> None:
    if indefinite and items:
        out.append(0x9F)
        for item in items:
            _encode_into(item, out)
        out.append(_BREAK)
    else:
        out += _head(4, len(items))
        for item in items:
            _encode_into(item, out)


def _encode_into(item: Any, out: bytearray) -> None:
    if isinstance(item, bool):
        raise PlutusError("booleans are not plutus data")
    if isinstance(item, int):
        if 0 <= item <= _I64_MAX:
            out += _head(0, item)
        elif _I64_MIN <= item < 0:
            out += _head(1, -1 - item)
        elif item > 0:
            out += _head(6, 2)
            _encode_bytes(_int_bytes(item), out)
        else:
            out += _head(6, 3)
            _encode_bytes(_int_bytes(-1 - item), out)
    elif isinstance(item, (bytes, bytearray, memoryview)):
        _encode_bytes(bytes(item), out)
    elif isinstance(item, Constr):
        out += _head(6, item.tag)
        if item.tag == _GENERAL_CONSTR_TAG:
            out += _head(4, 2)
            _encode_into(item.any_constructor or 0, out)
        _encode_array(item.fields, item.indefinite, out)
    elif isinstance(item, PlutusArray):
        _encode_array(item.items, item.indefinite, out)
    elif isinstance(item, dict):
        out += _head(5, len(item))
        for key, value in item.items():
            _encode_into(key, out)
            _encode_into(value, out)
    else:
        raise PlutusError(f"cannot encode {type(item).__name__} as plutus data")


def encode_cbor(data: Any) -> bytes:
    """Encode a plutus data value as CBOR."""
    out = bytearray()
    _encode_into(data, out)
    return bytes(out)


class _Decoder:
    def __init__(self, raw: bytes) -> None:
        self._raw = raw
        self._pos = 0

    def _read(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._raw):
            raise PlutusError("unexpected end of CBOR input")
        chunk = self._raw[self._pos : end]
        self._pos = end
        return chunk

    def _at_break(self) -> bool:
        if self._pos < len(self._raw) and self._raw[self._pos] == _BREAK:
            self._pos += 1
            return True
        return False

    def _header(self) -> tuple[int, int | None]:
        initial = self._read(1)[0]
        major, info = initial >> 5, initial & 0x1F
        if info < 24:
            return major, info
        if info in _HEADER_SIZES:
            return major, int.from_bytes(self._read(_HEADER_SIZES[info]), "big")
        if info == 31:
            return major, None
        raise PlutusError(f"reserved CBOR header value {info}")

    def _bytes(self, length: int | None) -> bytes:
        if length is not None:
            return self._read(length)
        chunks = []
        while not self._at_break():
            major, size = self._header()
            if major != 2 or size is None:
                raise PlutusError("invalid chunk in indefinite byte string")
            chunks.append(self._read(size))
        return b"".join(chunks)

    def _array(self, length: int | None) -> PlutusArray:
        if length is None:
            items = []
            while not self._at_break():
                items.append(self.item())
            return PlutusArray(items, indefinite=True)
        return PlutusArray([self.item() for _ in range(length)], indefinite=False)

    def _map(self, length: int | None) -> dict:
        pairs = []
        if length is None:
            while not self._at_break():
                pairs.append((self.item(), self.item()))
        else:
            pairs = [(self.item(), self.item()) for _ in range(length)]
        try:
            return dict(pairs)
        except TypeError as error:
            raise PlutusError("unhashable map key") from error

    def _tagged(self, tag: int) -> Any:
        content = self.item()
        if tag in (2, 3):
            if not isinstance(content, bytes):
                raise PlutusError("big integer tag must wrap a byte string")
            value = int.from_bytes(content, "big")
            return value if tag == 2 else -1 - value
        if _is_constr_tag(tag):
            if not isinstance(content, PlutusArray):
                raise PlutusError("constructor fields must be an array")
            return Constr(tag, content.items, indefinite=content.indefinite)
        if tag == _GENERAL_CONSTR_TAG:
            if not isinstance(content, PlutusArray) or len(content.items) != 2:
                raise PlutusError("general constructor must be a pair")
            constructor, fields = content.items
            if not isinstance(constructor, int) or constructor < 0:
                raise PlutusError("invalid general constructor index")
            if not isinstance(fields, PlutusArray):
                raise PlutusError("constructor fields must be an array")
            return Constr(tag, fields.items, constructor, fields.indefinite)
        raise PlutusError(f"unexpected CBOR tag {tag}")

    def item(self) -> Any:
        major, arg = self._header()
        if arg is None and major in (0, 1, 6):
            raise PlutusError("indefinite length not allowed here")
        match major:
            case 0:
                return arg
            case 1:
                return -1 - arg
            case 2:
                return self._bytes(arg)
            case 4:
                return self._array(arg)
            case 5:
                return self._map(arg)
            case 6:
                return self._tagged(arg)
            case _:
                raise PlutusError(f"unexpected CBOR major type {major}")


def decode_cbor(raw: bytes) -> Any:
    """Decode one plutus data value from CBOR bytes."""
    return _Decoder(bytes(raw)).item()


def encode_struct(fields: list) -> Constr:
    """Wrap fields in the first constructor variant."""
    return Constr(CBOR_VARIANT_0, fields, indefinite=True)


def decode_struct(data: Any, count: int) -> list:
    """Unwrap exactly ``count`` fields from a first-variant constructor."""
    if not isinstance(data, Constr):
        raise PlutusError("Unexpected plutus type, expected struct")
    if data.tag != CBOR_VARIANT_0:
        raise PlutusError(f"Invalid plutus struct tag {data.tag}")
    if len(data.fields) != count:
        raise PlutusError(f"Expected {count} field(s), found {len(data.fields)}")
    return list(data.fields)


def encode_enum(variant: int, value: Any = None) -> Constr:
    """Encode an enum variant carrying at most one value."""
    if value is None:
        return Constr(CBOR_VARIANT_0 + variant, (), indefinite=False)
    return Constr(CBOR_VARIANT_0 + variant, (value,), indefinite=True)


def decode_enum(data: Any) -> tuple[int, Any]:
    """Return the variant index and its value (or None)."""
    if not isinstance(data, Constr):
        raise PlutusError("Unexpected plutus type, expected struct")
    variant = data.tag - CBOR_VARIANT_0
    if variant < 0:
        raise PlutusError("Invalid plutus struct tag")
    if len(data.fields) > 1:
        raise PlutusError("Enum has too much data")
    return variant, (data.fields[0] if data.fields else None)


def encode_uint(value: int) -> int:
    """Encode a non-negative integer."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise PlutusError(f"expected a non-negative integer, got {value!r}")
    return value


def decode_uint(data: Any) -> int:
    """Decode a non-negative integer of any size."""
    if isinstance(data, bool) or not isinstance(data, int):
        raise PlutusError("Unexpected plutus type, expected bigint")
    if data < 0:
        raise PlutusError("Unexpected signed integer")
    return data


def decode_u64(data: Any) -> int:
    """Decode an integer that must fit in 64 unsigned bits."""
    value = decode_uint(data)
    if value > _MAX_U64:
        raise PlutusError("Value out of range")
    return value


def encode_bool(value: bool) -> Constr:
    return encode_enum(1 if value else 0)


def decode_bool(data: Any) -> bool:
    match decode_enum(data):
        case (1, None):
            return True
        case (0, None):
            return False
    raise PlutusError("Unexpected bool value")


def encode_string(value: str) -> bytes:
    return value.encode("utf-8")


def decode_string(data: Any) -> str:
    if not isinstance(data, bytes):
        raise PlutusError("Unexpected plutus type, expected bytes")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as error:
        raise PlutusError(str(error)) from error


def encode_list(items: list) -> PlutusArray:
    """Wrap already-encoded items in an indefinite plutus list."""
    return PlutusArray(items, indefinite=True)


def decode_list(data: Any, item_decoder: Callable[[Any], T]) -> list[T]:
    if not isinstance(data, PlutusArray):
        raise PlutusError("Unexpected plutus type, expected array")
    return [item_decoder(item) for item in data.items]


def system_time_to_iso(timestamp: datetime) -> str:
    """Format a moment as RFC 3339 in UTC, with only as many fraction digits as needed."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    else:
        timestamp = timestamp.astimezone(timezone.utc)
    micro = timestamp.microsecond
    if micro == 0:
        spec = "seconds"
    elif micro % 1000 == 0:
        spec = "milliseconds"
    else:
        spec = "microseconds"
    return timestamp.isoformat(timespec=spec)