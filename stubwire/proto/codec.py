"""Binary encoding and decoding of values against type descriptors.

Encoding is driven entirely by the declared type; nothing about the type is
written to the wire except record field ids and variant case ids, which are
32-bit hashes of the member names.

    nat        unsigned LEB128, any magnitude
    text       LEB128 byte length, UTF-8 bytes
    bool       0x00 or 0x01
    principal  LEB128 length, raw bytes
    null       nothing
    vec        LEB128 count, elements
    record     LEB128 field count, then (LEB128 field id, value) per field
    variant    LEB128 case id, payload

An argument sequence is the magic ``SWR1``, a LEB128 count and the values.
Values of recursive types may nest at most MAX_DEPTH composites deep.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from .errors import MalformedSchema, MalformedWire, TypeMismatch
from .principal import MAX_LENGTH as MAX_PRINCIPAL_LENGTH
from .principal import Principal
from .types import NULL, Field, Primitive, Record, Ref, TypeDescriptor, Variant, Vec, describe

MAGIC = b"SWR1"

# A vec of null has no per-element bytes to run out of.
MAX_NULL_ELEMENTS = 1 << 16

# Composite values nest at most this deep, on input and on output.
MAX_DEPTH = 256


def idl_hash(name: str) -> int:
    """Hash a member name to its 32-bit wire id."""
    h = 0
    for byte in name.encode("utf-8"):
        h = (h * 223 + byte) & 0xFFFFFFFF
    return h


def write_leb128(value: int, buf: bytearray) -> None:
    """Append an unsigned LEB128 integer to ``buf``."""
    if value < 0:
        raise ValueError("LEB128 value must be non-negative")
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            buf.append(byte | 0x80)
        else:
            buf.append(byte)
            return


class WireReader:
    """Cursor over a byte buffer that fails with MalformedWire on underrun."""

    def __init__(self, data: bytes | memoryview, offset: int = 0) -> None:
        self._data = memoryview(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def at_end(self) -> bool:
        return self.offset >= len(self._data)

    def read_byte(self) -> int:
        if self.offset >= len(self._data):
            raise MalformedWire(f"Truncated input at offset {self.offset}")
        byte = self._data[self.offset]
        self.offset += 1
        return byte

    def read_bytes(self, n: int) -> bytes:
        if n > self.remaining:
            raise MalformedWire(
                f"Truncated input: need {n} bytes at offset {self.offset}, have {self.remaining}"
            )
        chunk = bytes(self._data[self.offset : self.offset + n])
        self.offset += n
        return chunk

    def read_leb128(self) -> int:
        result = 0
        shift = 0
        while True:
            byte = self.read_byte()
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                if byte == 0 and shift:
                    raise MalformedWire(f"Non-minimal LEB128 ending at offset {self.offset}")
                return result
            shift += 7

    def read_text(self) -> str:
        raw = self.read_bytes(self.read_leb128())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedWire(f"Invalid UTF-8 in text: {e}") from None


def write_text(value: str, buf: bytearray) -> None:
    raw = value.encode("utf-8")
    write_leb128(len(raw), buf)
    buf.extend(raw)


def _member_index(members: tuple[Field, ...]) -> dict[int, Field]:
    return {idl_hash(m.name): m for m in members}


class TypeCodec:
    """Encodes and decodes values for one service's type table.

    A codec holds no per-call state and never suspends, so one instance may
    be shared by concurrent calls.
    """

    def __init__(self, types: Mapping[str, TypeDescriptor] | None = None) -> None:
        self._types = types or {}
        self._indexes: dict[tuple[Field, ...], dict[int, Field]] = {}

    def resolve(self, t: TypeDescriptor) -> TypeDescriptor:
        """Follow named references until a structural type is reached."""
        seen: set[str] = set()
        while isinstance(t, Ref):
            if t.name in seen or t.name not in self._types:
                raise MalformedSchema(f"Type {t.name} does not resolve to a structural type")
            seen.add(t.name)
            t = self._types[t.name]
        return t

    def _index(self, members: tuple[Field, ...]) -> dict[int, Field]:
        index = self._indexes.get(members)
        if index is None:
            index = self._indexes[members] = _member_index(members)
        return index

    # Conformance

    def check(self, value: Any, t: TypeDescriptor, path: str = "value", depth: int = 0) -> None:
        """Raise TypeMismatch unless ``value`` structurally matches ``t``."""
        t = self.resolve(t)

        if isinstance(t, Primitive):
            self._check_primitive(value, t, path)
            return
        if depth > MAX_DEPTH:
            raise TypeMismatch(f"{path}: nested deeper than {MAX_DEPTH} levels")

        if isinstance(t, Record):
            if not isinstance(value, Mapping):
                raise TypeMismatch(f"{path}: expected {describe(t)}, got {type(value).__name__}")
            names = t.field_names()
            for name in names:
                if name not in value:
                    raise TypeMismatch(f"{path}: missing field {name!r}")
            for key in value:
                if key not in names:
                    raise TypeMismatch(f"{path}: unexpected field {key!r}")
            for f in t.fields:
                self.check(value[f.name], f.type, f"{path}.{f.name}", depth + 1)
        elif isinstance(t, Variant):
            if not isinstance(value, Mapping) or len(value) != 1:
                raise TypeMismatch(f"{path}: expected a single-case mapping for {describe(t)}")
            (tag, payload), = value.items()
            case = next((c for c in t.cases if c.name == tag), None)
            if case is None:
                raise TypeMismatch(f"{path}: unknown variant case {tag!r}")
            self.check(payload, case.type, f"{path}.{tag}", depth + 1)
        elif isinstance(t, Vec):
            if isinstance(value, (str, bytes, bytearray, Mapping)) or not isinstance(value, Sequence):
                raise TypeMismatch(f"{path}: expected {describe(t)}, got {type(value).__name__}")
            for i, item in enumerate(value):
                self.check(item, t.element, f"{path}[{i}]", depth + 1)
        else:
            raise MalformedSchema(f"Not a type descriptor: {t!r}")

    @staticmethod
    def _check_primitive(value: Any, t: Primitive, path: str) -> None:
        name = t.name
        if name == "text":
            ok = isinstance(value, str)
        elif name == "nat":
            ok = isinstance(value, int) and not isinstance(value, bool)
            if ok and value < 0:
                raise TypeMismatch(f"{path}: nat must be non-negative, got {value}")
        elif name == "bool":
            ok = isinstance(value, bool)
        elif name == "principal":
            ok = isinstance(value, Principal)
        elif name == "null":
            ok = value is None
        else:
            raise MalformedSchema(f"Unknown primitive type: {name}")
        if not ok:
            raise TypeMismatch(f"{path}: expected {name}, got {type(value).__name__}")

    # Encoding

    def encode(self, value: Any, t: TypeDescriptor) -> bytes:
        """Encode a single value. Raises TypeMismatch before writing anything."""
        self.check(value, t)
        buf = bytearray()
        self._encode(value, t, buf)
        return bytes(buf)

    def encode_args(self, values: Sequence[Any], types: Sequence[TypeDescriptor]) -> bytes:
        """Encode an argument (or result) sequence."""
        if len(values) != len(types):
            raise TypeMismatch(f"Expected {len(types)} values, got {len(values)}")
        for i, (value, t) in enumerate(zip(values, types)):
            self.check(value, t, f"args[{i}]")

        buf = bytearray(MAGIC)
        write_leb128(len(values), buf)
        for value, t in zip(values, types):
            self._encode(value, t, buf)
        return bytes(buf)

    def _encode(self, value: Any, t: TypeDescriptor, buf: bytearray) -> None:
        t = self.resolve(t)

        if isinstance(t, Primitive):
            if t.name == "nat":
                write_leb128(value, buf)
            elif t.name == "text":
                write_text(value, buf)
            elif t.name == "bool":
                buf.append(1 if value else 0)
            elif t.name == "principal":
                write_leb128(len(value.raw), buf)
                buf.extend(value.raw)
            # null has no bytes
        elif isinstance(t, Record):
            write_leb128(len(t.fields), buf)
            for f in t.fields:
                write_leb128(idl_hash(f.name), buf)
                self._encode(value[f.name], f.type, buf)
        elif isinstance(t, Variant):
            (tag, payload), = value.items()
            case = next(c for c in t.cases if c.name == tag)
            write_leb128(idl_hash(case.name), buf)
            self._encode(payload, case.type, buf)
        elif isinstance(t, Vec):
            write_leb128(len(value), buf)
            for item in value:
                self._encode(item, t.element, buf)

    # Decoding

    def decode(self, data: bytes | memoryview, t: TypeDescriptor) -> Any:
        """Decode exactly one value; trailing bytes are an error."""
        reader = WireReader(data)
        value = self.read(reader, t)
        if not reader.at_end():
            raise MalformedWire(f"{reader.remaining} trailing bytes after value")
        return value

    def decode_args(self, data: bytes | memoryview, types: Sequence[TypeDescriptor]) -> tuple:
        """Decode an argument (or result) sequence of the declared types."""
        reader = WireReader(data)
        if reader.read_bytes(len(MAGIC)) != MAGIC:
            raise MalformedWire("Missing argument sequence header")
        count = reader.read_leb128()
        if count != len(types):
            raise MalformedWire(f"Expected {len(types)} values, got {count}")
        values = tuple(self.read(reader, t) for t in types)
        if not reader.at_end():
            raise MalformedWire(f"{reader.remaining} trailing bytes after values")
        return values

    def read(self, reader: WireReader, t: TypeDescriptor, depth: int = 0) -> Any:
        """Read one value of type ``t`` from ``reader``."""
        t = self.resolve(t)

        if isinstance(t, Primitive):
            return self._read_primitive(reader, t)
        if depth > MAX_DEPTH:
            raise MalformedWire(
                f"Value nested deeper than {MAX_DEPTH} levels at offset {reader.offset}"
            )

        if isinstance(t, Record):
            index = self._index(t.fields)
            count = reader.read_leb128()
            values: dict[str, Any] = {}
            for _ in range(count):
                field_id = reader.read_leb128()
                f = index.get(field_id)
                if f is None:
                    raise MalformedWire(f"Field id {field_id} is not declared in {describe(t)}")
                if f.name in values:
                    raise MalformedWire(f"Field {f.name!r} appears twice")
                values[f.name] = self.read(reader, f.type, depth + 1)
            missing = [name for name in t.field_names() if name not in values]
            if missing:
                raise MalformedWire(f"Missing fields {', '.join(missing)}")
            return {name: values[name] for name in t.field_names()}

        if isinstance(t, Variant):
            case_id = reader.read_leb128()
            case = self._index(t.cases).get(case_id)
            if case is None:
                raise MalformedWire(f"Variant discriminant {case_id} matches no case")
            return {case.name: self.read(reader, case.type, depth + 1)}

        if isinstance(t, Vec):
            count = reader.read_leb128()
            limit = MAX_NULL_ELEMENTS if self.resolve(t.element) == NULL else reader.remaining
            if count > limit:
                raise MalformedWire(f"Vec length {count} exceeds available input")
            return [self.read(reader, t.element, depth + 1) for _ in range(count)]

        raise MalformedSchema(f"Not a type descriptor: {t!r}")

    @staticmethod
    def _read_primitive(reader: WireReader, t: Primitive) -> Any:
        if t.name == "nat":
            return reader.read_leb128()
        if t.name == "text":
            return reader.read_text()
        if t.name == "bool":
            byte = reader.read_byte()
            if byte > 1:
                raise MalformedWire(f"Invalid bool byte 0x{byte:02x}")
            return byte == 1
        if t.name == "principal":
            length = reader.read_leb128()
            if length > MAX_PRINCIPAL_LENGTH:
                raise MalformedWire(f"Principal length {length} exceeds {MAX_PRINCIPAL_LENGTH}")
            return Principal(reader.read_bytes(length))
        if t.name == "null":
            return None
        raise MalformedSchema(f"Unknown primitive type: {t.name}")


_default_codec = TypeCodec()


def check(value: Any, t: TypeDescriptor, types: Mapping[str, TypeDescriptor] | None = None) -> None:
    """Check ``value`` against ``t``; see TypeCodec.check."""
    codec = TypeCodec(types) if types else _default_codec
    codec.check(value, t)


def encode(value: Any, t: TypeDescriptor, types: Mapping[str, TypeDescriptor] | None = None) -> bytes:
    """Encode ``value`` as ``t``; see TypeCodec.encode."""
    codec = TypeCodec(types) if types else _default_codec
    return codec.encode(value, t)


def decode(
    data: bytes | memoryview, t: TypeDescriptor, types: Mapping[str, TypeDescriptor] | None = None
) -> Any:
    """Decode a value of type ``t``; see TypeCodec.decode."""
    codec = TypeCodec(types) if types else _default_codec
    return codec.decode(data, t)


def encode_args(
    values: Sequence[Any],
    types: Sequence[TypeDescriptor],
    table: Mapping[str, TypeDescriptor] | None = None,
) -> bytes:
    """Encode an argument sequence; see TypeCodec.encode_args."""
    codec = TypeCodec(table) if table else _default_codec
    return codec.encode_args(values, types)


def decode_args(
    data: bytes | memoryview,
    types: Sequence[TypeDescriptor],
    table: Mapping[str, TypeDescriptor] | None = None,
) -> tuple:
    """Decode an argument sequence; see TypeCodec.decode_args."""
    codec = TypeCodec(table) if table else _default_codec
    return codec.decode_args(data, types)
