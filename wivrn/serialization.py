"""Binary serialization of protocol types, with structural type hashing.

Every wire type is described by a type descriptor (``Arithmetic``, ``Struct``,
``Vector`` ...).  A descriptor knows how to feed its structure into a
:class:`HashContext`, how to write a value into a :class:`SerializationPacket`
and how to read one back from a :class:`DeserializationPacket`.

All multi-byte numbers are encoded little-endian.
"""

from __future__ import annotations

import dataclasses
import enum
import struct as _struct
from typing import Any, Callable, Iterable

__all__ = [
    "HashContext",
    "DeserializationError",
    "SerializationPacket",
    "DeserializationPacket",
    "SerialType",
    "Arithmetic",
    "EnumType",
    "Struct",
    "String",
    "Vector",
    "Optional",
    "Array",
    "Variant",
    "Duration",
    "Span",
    "DataHolder",
    "Pair",
    "type_hash",
    "BOOL",
    "INT8",
    "INT16",
    "INT32",
    "INT64",
    "UINT8",
    "UINT16",
    "UINT32",
    "UINT64",
    "FLOAT32",
    "FLOAT64",
    "NANOSECONDS",
    "DATA_HOLDER",
]

_MASK64 = 0xFFFFFFFFFFFFFFFF


class HashContext:
    """Incremental 64-bit FNV-1a hash over strings and decimal integers."""

    FNV_PRIME = 0x100000001B3
    FNV_OFFSET_BASIS = 0xCBF29CE484222325

    def __init__(self) -> None:
        self.hash = self.FNV_OFFSET_BASIS

    def feed(self, value: str | int) -> int:
        """Feed a string, or an integer as its signed decimal text; return the hash."""
        if isinstance(value, str):
            h = self.hash
            for byte in value.encode("utf-8"):
                # Bytes are mixed in as sign-extended chars.
                c = byte if byte < 0x80 else byte | 0xFFFFFFFFFFFFFF00
                h = ((h ^ c) * self.FNV_PRIME) & _MASK64
            self.hash = h
        elif isinstance(value, int):
            if value < 0:
                self.feed("-")
                self.feed(str(-value))
            else:
                self.feed(str(value))
        else:
            raise TypeError(f"cannot hash value of type {type(value).__name__}")
        return self.hash


class DeserializationError(Exception):
    """Raised when a buffer does not hold a valid encoding of the expected type."""

    def __init__(self, message: str = "Deserialization error") -> None:
        super().__init__(message)


class SerializationPacket:
    """Output buffer made of copied bytes interleaved with borrowed spans."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Either a byte count taken from the buffer, or a span kept as is.
        # The last element is always a count.
        self._chunks: list[int | bytes] = [0]

    def write(self, data: bytes | bytearray | memoryview) -> None:
        """Append bytes to the internal buffer."""
        self._buffer += data
        self._chunks[-1] += len(data)  # type: ignore[operator]

    def write_span(self, span: bytes | bytearray | memoryview) -> None:
        """Append a span that is sent as a separate chunk without copying into the buffer."""
        self._chunks.append(bytes(span))
        self._chunks.append(0)

    def serialize(self, type_: SerialType, value: Any) -> None:
        """Serialize ``value`` as ``type_``."""
        type_.serialize(value, self)

    def spans(self) -> list[bytes]:
        """Return the packet as an ordered list of chunks."""
        result: list[bytes] = []
        pos = 0
        for chunk in self._chunks:
            if isinstance(chunk, int):
                if chunk > 0:
                    result.append(bytes(self._buffer[pos : pos + chunk]))
                pos += chunk
            else:
                result.append(chunk)
        return result

    def to_bytes(self) -> bytes:
        """Return the whole packet as contiguous bytes."""
        return b"".join(self.spans())


class DeserializationPacket:
    """Input buffer with a read cursor."""

    def __init__(self, buffer: bytes | bytearray | memoryview = b"", skip: int = 0) -> None:
        self._buffer = bytes(buffer)
        self._read_index = skip

    def read(self, size: int) -> bytes:
        """Read exactly ``size`` bytes."""
        self.check_remaining_size(size)
        start = self._read_index
        self._read_index += size
        return self._buffer[start : self._read_index]

    def read_span(self, size: int) -> bytes:
        """Read ``size`` bytes of payload data."""
        return self.read(size)

    def remaining(self) -> int:
        """Number of unread bytes."""
        return max(0, len(self._buffer) - self._read_index)

    def empty(self) -> bool:
        """True when every byte has been read."""
        return len(self._buffer) <= self._read_index

    def check_remaining_size(self, min_size: int) -> None:
        """Raise DeserializationError unless at least ``min_size`` bytes remain."""
        if min_size > self.remaining():
            raise DeserializationError()

    def deserialize(self, type_: SerialType) -> Any:
        """Read one value of ``type_``."""
        return type_.deserialize(self)

    def steal_buffer(self) -> tuple[int, bytes]:
        """Take the underlying buffer and the read position; the packet is left empty."""
        result = (self._read_index, self._buffer)
        self._buffer = b""
        self._read_index = 0
        return result


class SerialType:
    """Base class of type descriptors."""

    def type_hash(self, h: HashContext) -> None:
        raise NotImplementedError

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        raise NotImplementedError

    def deserialize(self, packet: DeserializationPacket) -> Any:
        raise NotImplementedError

    def matches(self, value: Any) -> bool:
        """Whether ``value`` can be an instance of this type (used by Variant)."""
        return False


def _pack(fmt: str, value: Any) -> bytes:
    try:
        return _struct.pack("<" + fmt, value)
    except _struct.error as exc:
        raise ValueError(f"cannot encode {value!r} with format {fmt!r}: {exc}") from None


def _unpack(fmt: str, packet: DeserializationPacket) -> Any:
    return _struct.unpack("<" + fmt, packet.read(_struct.calcsize("<" + fmt)))[0]


class Arithmetic(SerialType):
    """Fixed-size number, described by a ``struct`` format character."""

    _FLOAT = "efd"
    _SIGNED = "bhilq"
    _UNSIGNED = "BHILQ?"

    def __init__(self, fmt: str) -> None:
        if fmt not in self._FLOAT + self._SIGNED + self._UNSIGNED:
            raise ValueError(f"unsupported arithmetic format {fmt!r}")
        self.fmt = fmt
        self.bits = _struct.calcsize("<" + fmt) * 8

    @property
    def kind(self) -> str:
        if self.fmt in self._FLOAT:
            return "float"
        if self.fmt in self._SIGNED:
            return "int"
        return "uint"

    def type_hash(self, h: HashContext) -> None:
        h.feed(self.kind)
        h.feed(self.bits)

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        packet.write(_pack(self.fmt, value))

    def deserialize(self, packet: DeserializationPacket) -> Any:
        return _unpack(self.fmt, packet)

    def matches(self, value: Any) -> bool:
        if self.fmt == "?":
            return isinstance(value, bool)
        if self.kind == "float":
            return isinstance(value, float)
        return isinstance(value, int) and not isinstance(value, bool)

    def __repr__(self) -> str:
        return f"Arithmetic({self.fmt!r})"


BOOL = Arithmetic("?")
INT8 = Arithmetic("b")
INT16 = Arithmetic("h")
INT32 = Arithmetic("i")
INT64 = Arithmetic("q")
UINT8 = Arithmetic("B")
UINT16 = Arithmetic("H")
UINT32 = Arithmetic("I")
UINT64 = Arithmetic("Q")
FLOAT32 = Arithmetic("f")
FLOAT64 = Arithmetic("d")


class EnumType(SerialType):
    """Enumeration stored as an integer of the given format."""

    def __init__(self, enum_cls: type[enum.Enum], fmt: str = "B") -> None:
        self.enum_cls = enum_cls
        self.fmt = fmt
        self.bits = _struct.calcsize("<" + fmt) * 8

    def type_hash(self, h: HashContext) -> None:
        h.feed("enum")
        h.feed(self.bits)

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        packet.write(_pack(self.fmt, int(self.enum_cls(value).value)))

    def deserialize(self, packet: DeserializationPacket) -> Any:
        raw = _unpack(self.fmt, packet)
        try:
            return self.enum_cls(raw)
        except ValueError:
            raise DeserializationError(f"invalid {self.enum_cls.__name__} value {raw}") from None

    def matches(self, value: Any) -> bool:
        return isinstance(value, self.enum_cls)

    def __repr__(self) -> str:
        return f"EnumType({self.enum_cls.__name__}, {self.fmt!r})"


class Struct(SerialType):
    """Aggregate: the listed fields serialized one after another."""

    def __init__(self, cls: Callable[..., Any], fields: Iterable[tuple[str, SerialType]]) -> None:
        self.cls = cls
        self.fields: tuple[tuple[str, SerialType], ...] = tuple(fields)

    @classmethod
    def of(cls, dataclass_type: type, **types: SerialType) -> Struct:
        """Describe a dataclass, taking field order from its definition."""
        names = [f.name for f in dataclasses.fields(dataclass_type)]
        return cls(dataclass_type, [(name, types[name]) for name in names])

    def type_hash(self, h: HashContext) -> None:
        h.feed("structure{")
        for i, (_, field_type) in enumerate(self.fields):
            if i > 0:
                h.feed(",")
            field_type.type_hash(h)
        h.feed("}")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        for name, field_type in self.fields:
            field_type.serialize(getattr(value, name, None), packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        values = {name: field_type.deserialize(packet) for name, field_type in self.fields}
        return self.cls(**values)

    def matches(self, value: Any) -> bool:
        return isinstance(self.cls, type) and isinstance(value, self.cls)

    def __repr__(self) -> str:
        return f"Struct({getattr(self.cls, '__name__', self.cls)!r})"


class String(SerialType):
    """UTF-8 text prefixed by a 64-bit byte count."""

    def type_hash(self, h: HashContext) -> None:
        h.feed("string")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        data = value.encode("utf-8")
        UINT64.serialize(len(data), packet)
        packet.write(data)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        size = UINT64.deserialize(packet)
        packet.check_remaining_size(size)
        try:
            return packet.read(size).decode("utf-8")
        except UnicodeDecodeError:
            raise DeserializationError("invalid UTF-8 string") from None

    def matches(self, value: Any) -> bool:
        return isinstance(value, str)

    def __repr__(self) -> str:
        return "String()"


class Vector(SerialType):
    """Variable-length list prefixed by a 16-bit element count."""

    def __init__(self, element: SerialType) -> None:
        self.element = element

    def type_hash(self, h: HashContext) -> None:
        h.feed("vector<")
        self.element.type_hash(h)
        h.feed(">")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        items = list(value)
        if len(items) > 0xFFFF:
            raise ValueError(f"vector too long: {len(items)} elements")
        UINT16.serialize(len(items), packet)
        for item in items:
            self.element.serialize(item, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        size = UINT16.deserialize(packet)
        return [self.element.deserialize(packet) for _ in range(size)]

    def matches(self, value: Any) -> bool:
        return isinstance(value, list)

    def __repr__(self) -> str:
        return f"Vector({self.element!r})"


class Optional(SerialType):
    """Value or None, preceded by a presence flag."""

    def __init__(self, element: SerialType) -> None:
        self.element = element

    def type_hash(self, h: HashContext) -> None:
        h.feed("optional<")
        self.element.type_hash(h)
        h.feed(">")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        if value is None:
            BOOL.serialize(False, packet)
        else:
            BOOL.serialize(True, packet)
            self.element.serialize(value, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        if BOOL.deserialize(packet):
            return self.element.deserialize(packet)
        return None

    def matches(self, value: Any) -> bool:
        return value is None or self.element.matches(value)

    def __repr__(self) -> str:
        return f"Optional({self.element!r})"


class Array(SerialType):
    """Fixed-length sequence with no length prefix."""

    def __init__(self, element: SerialType, length: int) -> None:
        self.element = element
        self.length = length

    def type_hash(self, h: HashContext) -> None:
        h.feed("array<")
        self.element.type_hash(h)
        h.feed(",")
        h.feed(self.length)
        h.feed(">")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        items = list(value)
        if len(items) != self.length:
            raise ValueError(f"array needs {self.length} elements, got {len(items)}")
        for item in items:
            self.element.serialize(item, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        return [self.element.deserialize(packet) for _ in range(self.length)]

    def matches(self, value: Any) -> bool:
        return isinstance(value, (list, tuple)) and len(value) == self.length

    def __repr__(self) -> str:
        return f"Array({self.element!r}, {self.length})"


class Variant(SerialType):
    """One of several alternatives, preceded by an 8-bit alternative index."""

    def __init__(self, *alternatives: SerialType) -> None:
        if not alternatives:
            raise ValueError("a variant needs at least one alternative")
        self.alternatives: tuple[SerialType, ...] = alternatives

    def type_hash(self, h: HashContext) -> None:
        h.feed("variant<")
        for i, alternative in enumerate(self.alternatives):
            if i > 0:
                h.feed(",")
            alternative.type_hash(h)
        h.feed(">")

    def index_of(self, value: Any) -> int:
        """Index of the first alternative that ``value`` belongs to."""
        for index, alternative in enumerate(self.alternatives):
            if alternative.matches(value):
                return index
        raise TypeError(f"{type(value).__name__} is not an alternative of this variant")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        index = self.index_of(value)
        UINT8.serialize(index, packet)
        self.alternatives[index].serialize(value, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        index = UINT8.deserialize(packet)
        if index >= len(self.alternatives):
            raise DeserializationError()
        return self.alternatives[index].deserialize(packet)

    def matches(self, value: Any) -> bool:
        return any(alternative.matches(value) for alternative in self.alternatives)

    def __repr__(self) -> str:
        return f"Variant{self.alternatives!r}"


class Duration(SerialType):
    """Tick count of a duration whose period is ``num/den`` seconds."""

    def __init__(self, rep: SerialType, num: int, den: int) -> None:
        self.rep = rep
        self.num = num
        self.den = den

    def type_hash(self, h: HashContext) -> None:
        h.feed("duration<")
        self.rep.type_hash(h)
        h.feed(",")
        h.feed(self.num)
        h.feed("/")
        h.feed(self.den)
        h.feed(">")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        self.rep.serialize(value, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        return self.rep.deserialize(packet)

    def matches(self, value: Any) -> bool:
        return self.rep.matches(value)

    def __repr__(self) -> str:
        return f"Duration({self.rep!r}, {self.num}, {self.den})"


NANOSECONDS = Duration(INT64, 1, 1_000_000_000)


class Span(SerialType):
    """Byte payload with a 16-bit length, sent as its own chunk."""

    def type_hash(self, h: HashContext) -> None:
        h.feed("span<uint8_t>")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        data = bytes(value)
        if len(data) > 0xFFFF:
            raise ValueError(f"span too long: {len(data)} bytes")
        UINT16.serialize(len(data), packet)
        packet.write_span(data)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        size = UINT16.deserialize(packet)
        return packet.read_span(size)

    def matches(self, value: Any) -> bool:
        return isinstance(value, (bytes, bytearray, memoryview))

    def __repr__(self) -> str:
        return "Span()"


class DataHolder(SerialType):
    """Trailing field that takes ownership of the whole received buffer.

    It contributes nothing to the hash and writes nothing.
    """

    def type_hash(self, h: HashContext) -> None:
        pass

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        pass

    def deserialize(self, packet: DeserializationPacket) -> Any:
        _, buffer = packet.steal_buffer()
        return buffer

    def __repr__(self) -> str:
        return "DataHolder()"


DATA_HOLDER = DataHolder()


class Pair(SerialType):
    """Two values in sequence, as a tuple."""

    def __init__(self, first: SerialType, second: SerialType) -> None:
        self.first = first
        self.second = second

    def type_hash(self, h: HashContext) -> None:
        h.feed("pair<")
        self.first.type_hash(h)
        h.feed(",")
        self.second.type_hash(h)
        h.feed(">")

    def serialize(self, value: Any, packet: SerializationPacket) -> None:
        first, second = value
        self.first.serialize(first, packet)
        self.second.serialize(second, packet)

    def deserialize(self, packet: DeserializationPacket) -> Any:
        first = self.first.deserialize(packet)
        second = self.second.deserialize(packet)
        return (first, second)

    def matches(self, value: Any) -> bool:
        return isinstance(value, tuple) and len(value) == 2

    def __repr__(self) -> str:
        return f"Pair({self.first!r}, {self.second!r})"


def type_hash(type_: SerialType) -> int:
    """Structural hash of a type descriptor."""
    h = HashContext()
    type_.type_hash(h)
    return h.hash