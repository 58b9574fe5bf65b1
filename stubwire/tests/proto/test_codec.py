"""Tests for the type codec."""

import pytest

from stubwire.proto.codec import (
    MAX_DEPTH,
    TypeCodec,
    decode,
    decode_args,
    encode,
    encode_args,
    idl_hash,
    write_leb128,
)
from stubwire.proto.errors import MalformedWire, TypeMismatch
from stubwire.proto.principal import Principal
from stubwire.proto.types import (
    BOOL,
    NAT,
    NULL,
    PRINCIPAL,
    TEXT,
    Field,
    Record,
    Ref,
    Variant,
    Vec,
)

ITEM = Record(
    (
        Field("id", NAT),
        Field("name", TEXT),
        Field("addedBy", PRINCIPAL),
        Field("quantity", NAT),
    )
)

RESULT = Variant((Field("ok", TEXT), Field("err", TEXT), Field("none", NULL)))

LIST_TYPES = {
    "List": Variant(
        (
            Field("nil", NULL),
            Field("cons", Record((Field("head", NAT), Field("tail", Ref("List"))))),
        )
    )
}

CHAIN_TYPES = {"Chain": Variant((Field("nil", NULL), Field("cons", Ref("Chain"))))}


def _chain_value(depth):
    value = {"nil": None}
    for _ in range(depth):
        value = {"cons": value}
    return value


def _chain_bytes(depth):
    buf = bytearray()
    for _ in range(depth):
        write_leb128(idl_hash("cons"), buf)
    write_leb128(idl_hash("nil"), buf)
    return bytes(buf)


def describe_idl_hash():
    def matches_known_field_ids(expect):
        expect(idl_hash("id")) == 23515
        expect(idl_hash("")) == 0
        expect(idl_hash("a")) == 97

    def wraps_at_32_bits(expect):
        expect(idl_hash("a" * 64) < 2**32) == True


def describe_primitives():
    def encodes_nat_as_leb128(expect):
        expect(encode(0, NAT)) == b"\x00"
        expect(encode(127, NAT)) == b"\x7f"
        expect(encode(300, NAT)) == b"\xac\x02"

    def round_trips_unbounded_nat(expect):
        big = 2**200 + 12345
        expect(decode(encode(big, NAT), NAT)) == big

    def encodes_text_with_length_prefix(expect):
        expect(encode("hi", TEXT)) == b"\x02hi"
        expect(decode(encode("héllo ✓", TEXT), TEXT)) == "héllo ✓"

    def encodes_bool(expect):
        expect(encode(True, BOOL)) == b"\x01"
        expect(encode(False, BOOL)) == b"\x00"

    def encodes_principal(expect):
        p = Principal(b"\x01\x02\x03")
        expect(encode(p, PRINCIPAL)) == b"\x03\x01\x02\x03"
        expect(decode(b"\x03\x01\x02\x03", PRINCIPAL)) == p

    def encodes_null_as_nothing(expect):
        expect(encode(None, NULL)) == b""
        expect(decode(b"", NULL)) == None


def describe_composites():
    def round_trips_item_record(expect):
        item = {"id": 7, "name": "widget", "addedBy": Principal.anonymous(), "quantity": 10}
        expect(decode(encode(item, ITEM), ITEM)) == item

    def writes_record_field_ids(expect):
        t = Record((Field("a", NAT),))
        expect(encode({"a": 5}, t)) == b"\x01\x61\x05"

    def accepts_fields_in_any_order(expect):
        t = Record((Field("a", NAT), Field("b", NAT)))
        # b first, then a
        expect(decode(b"\x02\x62\x02\x61\x01", t)) == {"a": 1, "b": 2}

    def round_trips_vec(expect):
        t = Vec(TEXT)
        expect(encode(["a", "b"], t)) == b"\x02\x01a\x01b"
        expect(decode(encode(("x", "y", "z"), t), t)) == ["x", "y", "z"]
        expect(decode(encode([], t), t)) == []

    def round_trips_vec_of_records(expect):
        t = Vec(ITEM)
        items = [
            {"id": i, "name": f"item-{i}", "addedBy": Principal(bytes([i])), "quantity": i * 3}
            for i in range(5)
        ]
        expect(decode(encode(items, t), t)) == items

    def round_trips_variant_cases(expect):
        for value in ({"ok": "done"}, {"err": "nope"}, {"none": None}):
            expect(decode(encode(value, RESULT), RESULT)) == value

    def round_trips_recursive_types(expect):
        codec = TypeCodec(LIST_TYPES)
        value = {"cons": {"head": 1, "tail": {"cons": {"head": 2, "tail": {"nil": None}}}}}
        expect(codec.decode(codec.encode(value, Ref("List")), Ref("List"))) == value

    def encodes_argument_sequences(expect):
        codec = TypeCodec()
        data = codec.encode_args(("widget", 10), (TEXT, NAT))
        expect(data) == b"SWR1\x02\x06widget\x0a"
        expect(codec.decode_args(data, (TEXT, NAT))) == ("widget", 10)
        expect(codec.decode_args(codec.encode_args((), ()), ())) == ()

    def encodes_argument_sequences_against_a_type_table(expect):
        data = encode_args(({"nil": None},), (Ref("List"),), LIST_TYPES)
        expect(decode_args(data, (Ref("List"),), LIST_TYPES)) == ({"nil": None},)


def describe_type_mismatch():
    @pytest.mark.parametrize(
        "value,t",
        [
            (-1, NAT),
            (True, NAT),
            ("1", NAT),
            (1.5, NAT),
            (1, TEXT),
            (b"bytes", TEXT),
            (1, BOOL),
            ("2vxsx-fae", PRINCIPAL),
            (0, NULL),
            ("abc", Vec(TEXT)),
            ({"a": 1}, Vec(NAT)),
            ([1, "2"], Vec(NAT)),
            ({"ok": 1}, RESULT),
            ({"maybe": "x"}, RESULT),
            ({"ok": "x", "err": "y"}, RESULT),
        ],
    )
    def rejects_wrong_shapes(value, t):
        with pytest.raises(TypeMismatch):
            encode(value, t)

    def rejects_missing_record_field(expect):
        with pytest.raises(TypeMismatch) as exinfo:
            encode({"id": 1, "name": "x", "addedBy": Principal.anonymous()}, ITEM)
        expect(str(exinfo.value)).includes("missing field 'quantity'")

    def rejects_extra_record_field(expect):
        item = {"id": 1, "name": "x", "addedBy": Principal.anonymous(), "quantity": 1, "x": 0}
        with pytest.raises(TypeMismatch) as exinfo:
            encode(item, ITEM)
        expect(str(exinfo.value)).includes("unexpected field 'x'")

    def reports_the_offending_path(expect):
        with pytest.raises(TypeMismatch) as exinfo:
            TypeCodec().encode_args(("widget", -1), (TEXT, NAT))
        expect(str(exinfo.value)).includes("args[1]")

    def rejects_wrong_argument_count(expect):
        with pytest.raises(TypeMismatch):
            TypeCodec().encode_args(("widget",), (TEXT, NAT))

    def rejects_values_nested_too_deeply(expect):
        codec = TypeCodec(CHAIN_TYPES)
        codec.check(_chain_value(MAX_DEPTH), Ref("Chain"))
        with pytest.raises(TypeMismatch) as exinfo:
            codec.encode(_chain_value(MAX_DEPTH + 1), Ref("Chain"))
        expect(str(exinfo.value)).includes("nested deeper")


def describe_malformed_wire():
    @pytest.mark.parametrize(
        "data,t",
        [
            (b"", NAT),
            (b"\xac", NAT),
            (b"\x05abc", TEXT),
            (b"", BOOL),
            (b"\x02", Vec(NAT)),
            (b"\x01\x61", Record((Field("a", NAT),))),
            (b"\x1e" + b"\x00" * 30, PRINCIPAL),
        ],
    )
    def rejects_truncated_or_invalid_input(data, t):
        with pytest.raises(MalformedWire):
            decode(data, t)

    def rejects_non_minimal_leb128():
        with pytest.raises(MalformedWire):
            decode(b"\x80\x00", NAT)

    def rejects_invalid_bool_byte():
        with pytest.raises(MalformedWire):
            decode(b"\x02", BOOL)

    def rejects_invalid_utf8():
        with pytest.raises(MalformedWire):
            decode(b"\x02\xff\xfe", TEXT)

    def rejects_trailing_bytes():
        with pytest.raises(MalformedWire):
            decode(b"\x01\x00", BOOL)

    def rejects_undeclared_field(expect):
        t = Record((Field("a", NAT),))
        with pytest.raises(MalformedWire) as exinfo:
            decode(b"\x01\x62\x05", t)
        expect(str(exinfo.value)).includes("not declared")

    def rejects_duplicate_field():
        t = Record((Field("a", NAT),))
        with pytest.raises(MalformedWire):
            decode(b"\x02\x61\x01\x61\x02", t)

    def rejects_missing_field():
        t = Record((Field("a", NAT),))
        with pytest.raises(MalformedWire):
            decode(b"\x00", t)

    def rejects_unknown_variant_discriminant(expect):
        with pytest.raises(MalformedWire) as exinfo:
            decode(b"\x05", RESULT)
        expect(str(exinfo.value)).includes("matches no case")

    def rejects_vec_longer_than_input():
        with pytest.raises(MalformedWire):
            decode(b"\xff\xff\xff\x7f", Vec(NAT))

    def rejects_argument_count_mismatch():
        codec = TypeCodec()
        with pytest.raises(MalformedWire):
            codec.decode_args(codec.encode_args(("a",), (TEXT,)), (TEXT, NAT))

    def rejects_missing_header():
        with pytest.raises(MalformedWire):
            TypeCodec().decode_args(b"\x01\x01a", (TEXT,))

    def rejects_truncated_argument_sequence():
        codec = TypeCodec()
        data = codec.encode_args(("widget", 10), (TEXT, NAT))
        with pytest.raises(MalformedWire):
            codec.decode_args(data[:-1], (TEXT, NAT))

    def rejects_values_nested_too_deeply(expect):
        codec = TypeCodec(CHAIN_TYPES)
        with pytest.raises(MalformedWire) as exinfo:
            codec.decode(_chain_bytes(5000), Ref("Chain"))
        expect(str(exinfo.value)).includes("nested deeper")

    def decodes_values_up_to_the_nesting_limit(expect):
        codec = TypeCodec(CHAIN_TYPES)
        expect(codec.decode(_chain_bytes(MAX_DEPTH), Ref("Chain"))) == _chain_value(MAX_DEPTH)
        with pytest.raises(MalformedWire):
            codec.decode(_chain_bytes(MAX_DEPTH + 1), Ref("Chain"))
