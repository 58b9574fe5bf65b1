"""Lower parsed interface descriptions to runtime descriptors."""

from ..proto.errors import MalformedSchema
from ..proto.registry import SchemaRegistry
from ..proto.types import (
    PRIMITIVES,
    CallMode,
    Field,
    MethodDescriptor,
    NamedType,
    Record,
    Ref,
    ServiceDescriptor,
    TypeDescriptor,
    Variant,
    Vec,
)
from .parser import parse
from .types import IdlMethod, IdlService, IdlType, SchemaDocument


def to_descriptor(t: IdlType) -> TypeDescriptor:
    """Convert a parsed type expression to a type descriptor."""
    if t.kind in PRIMITIVES:
        return PRIMITIVES[t.kind]
    if t.kind == "ref" and t.name:
        return Ref(t.name)
    if t.kind == "vec" and t.element is not None:
        return Vec(to_descriptor(t.element))
    if t.kind == "record":
        return Record(tuple(Field(f.name, to_descriptor(f.type)) for f in t.fields))
    if t.kind == "variant":
        return Variant(tuple(Field(f.name, to_descriptor(f.type)) for f in t.fields))
    raise MalformedSchema(f"Cannot lower type expression {t}")


def _method(method: IdlMethod) -> MethodDescriptor:
    arg_names = tuple(a.name for a in method.args)
    return MethodDescriptor(
        name=method.name,
        args=tuple(to_descriptor(a.type) for a in method.args),
        results=tuple(to_descriptor(r) for r in method.results),
        mode=CallMode.QUERY if method.query else CallMode.UPDATE,
        arg_names=arg_names if any(arg_names) else (),
    )


def _service(service: IdlService, types: tuple[NamedType, ...], name: str) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=name,
        methods=tuple(_method(m) for m in service.methods),
        types=types,
    )


def build_services(
    document: SchemaDocument, default_name: str | None = None
) -> list[ServiceDescriptor]:
    """Build one descriptor per service block.

    Type definitions are shared by every service in the document. An
    unnamed service takes ``default_name``.
    """
    types = tuple(NamedType(d.name, to_descriptor(d.type)) for d in document.types)
    services = []
    for service in document.services:
        name = service.name or default_name
        if not name:
            raise MalformedSchema("Unnamed service and no default name given")
        services.append(_service(service, types, name))
    return services


def load_registry(
    text: str, default_name: str | None = None, registry: SchemaRegistry | None = None
) -> SchemaRegistry:
    """Parse schema text and register every service it declares."""
    registry = registry if registry is not None else SchemaRegistry()
    for service in build_services(parse(text), default_name):
        registry.register(service.name, service)
    return registry
