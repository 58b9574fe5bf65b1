"""Tests for the schema registry."""

import pytest

from stubwire.proto.errors import (
    DuplicateService,
    MalformedSchema,
    SchemaError,
    UnknownMethod,
    UnknownService,
)
from stubwire.proto.registry import SchemaRegistry, validate_service
from stubwire.proto.types import (
    NAT,
    NULL,
    TEXT,
    CallMode,
    Field,
    MethodDescriptor,
    NamedType,
    Primitive,
    Record,
    Ref,
    ServiceDescriptor,
    Variant,
    Vec,
)


def _service(types=(), methods=None, name="svc"):
    if methods is None:
        methods = (MethodDescriptor("ping", (), (TEXT,), CallMode.QUERY),)
    return ServiceDescriptor(name=name, methods=tuple(methods), types=tuple(types))


def describe_register():
    def registers_and_looks_up_methods(expect):
        registry = SchemaRegistry()
        registry.register("svc", _service())
        expect("svc" in registry) == True
        expect(list(registry)) == ["svc"]
        expect(registry.lookup("svc", "ping").mode) == CallMode.QUERY

    def rejects_duplicate_service(expect):
        registry = SchemaRegistry()
        registry.register("svc", _service())
        with pytest.raises(DuplicateService):
            registry.register("svc", _service())

    def rejects_registration_after_freeze(expect):
        registry = SchemaRegistry().freeze()
        expect(registry.frozen) == True
        with pytest.raises(SchemaError):
            registry.register("svc", _service())

    def does_not_store_invalid_services(expect):
        registry = SchemaRegistry()
        bad = _service(types=[NamedType("Loop", Record((Field("next", Ref("Loop")),)))])
        with pytest.raises(MalformedSchema):
            registry.register("svc", bad)
        expect("svc" in registry) == False


def describe_lookup():
    def fails_for_unknown_service():
        with pytest.raises(UnknownService):
            SchemaRegistry().lookup("nope", "ping")

    def fails_for_unknown_method():
        registry = SchemaRegistry()
        registry.register("svc", _service())
        with pytest.raises(UnknownMethod):
            registry.lookup("svc", "pong")


def describe_validation():
    def accepts_recursion_through_vec():
        tree = NamedType("Tree", Record((Field("value", NAT), Field("children", Vec(Ref("Tree"))))))
        validate_service(_service(types=[tree]))

    def accepts_recursion_with_terminating_variant_case():
        cell = Record((Field("head", NAT), Field("tail", Ref("List"))))
        validate_service(
            _service(types=[NamedType("List", Variant((Field("nil", NULL), Field("cons", cell))))])
        )

    def accepts_mutual_recursion_with_an_exit():
        a = NamedType("A", Variant((Field("done", NULL), Field("more", Ref("B")))))
        b = NamedType("B", Record((Field("a", Ref("A")),)))
        validate_service(_service(types=[b, a]))

    def rejects_record_that_contains_itself(expect):
        loop = NamedType("Loop", Record((Field("next", Ref("Loop")),)))
        with pytest.raises(MalformedSchema) as exinfo:
            validate_service(_service(types=[loop]))
        expect(str(exinfo.value)).includes("unbounded recursion")

    def rejects_variant_without_a_terminating_case():
        loop = NamedType("Loop", Variant((Field("again", Ref("Loop")),)))
        with pytest.raises(MalformedSchema):
            validate_service(_service(types=[loop]))

    def rejects_alias_cycles():
        a = NamedType("A", Ref("B"))
        b = NamedType("B", Ref("A"))
        with pytest.raises(MalformedSchema):
            validate_service(_service(types=[a, b]))

    def rejects_duplicate_record_fields(expect):
        dup = Record((Field("a", NAT), Field("a", TEXT)))
        method = MethodDescriptor("put", (dup,), ())
        with pytest.raises(MalformedSchema) as exinfo:
            validate_service(_service(methods=[method]))
        expect(str(exinfo.value)).includes("declares 'a' twice")

    def rejects_duplicate_variant_cases():
        dup = Variant((Field("a", NAT), Field("a", NAT)))
        with pytest.raises(MalformedSchema):
            validate_service(_service(types=[NamedType("V", dup)]))

    def rejects_colliding_field_ids():
        # a leading NUL byte leaves the hash unchanged
        colliding = Record((Field("ab", NAT), Field("\x00ab", NAT)))
        with pytest.raises(MalformedSchema):
            validate_service(_service(types=[NamedType("C", colliding)]))

    def rejects_undeclared_references():
        method = MethodDescriptor("get", (), (Ref("Missing"),), CallMode.QUERY)
        with pytest.raises(MalformedSchema):
            validate_service(_service(methods=[method]))

    def rejects_unknown_primitives():
        method = MethodDescriptor("get", (), (Primitive("int64"),), CallMode.QUERY)
        with pytest.raises(MalformedSchema):
            validate_service(_service(methods=[method]))

    def rejects_duplicate_methods():
        ping = MethodDescriptor("ping", (), ())
        with pytest.raises(MalformedSchema):
            validate_service(_service(methods=[ping, ping]))

    def rejects_duplicate_type_names():
        with pytest.raises(MalformedSchema):
            validate_service(_service(types=[NamedType("T", NAT), NamedType("T", TEXT)]))

    def rejects_mismatched_argument_names():
        method = MethodDescriptor("put", (NAT, TEXT), (), arg_names=("only",))
        with pytest.raises(MalformedSchema):
            validate_service(_service(methods=[method]))
