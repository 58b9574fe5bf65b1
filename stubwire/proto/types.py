"""Runtime descriptors for service contracts.

These frozen dataclasses describe the shape of values, methods and services
at runtime. They are plain data: built once from a trusted schema source,
validated by the registry, then shared read-only by stubs and codecs.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType


class CallMode(StrEnum):
    """How a method may affect remote state."""

    QUERY = "query"  # side-effect free
    UPDATE = "update"  # may mutate remote state, not idempotent


@dataclass(frozen=True, slots=True)
class Primitive:
    """A primitive type: text, nat, bool, principal or null."""

    name: str


@dataclass(frozen=True, slots=True)
class Field:
    """A named member of a record, or a case of a variant."""

    name: str
    type: "TypeDescriptor"


@dataclass(frozen=True, slots=True)
class Record:
    """A record with named fields, in declaration order."""

    fields: tuple[Field, ...]

    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)


@dataclass(frozen=True, slots=True)
class Variant:
    """A tagged union; a case with no payload carries ``null``."""

    cases: tuple[Field, ...]


@dataclass(frozen=True, slots=True)
class Vec:
    """A homogeneous sequence."""

    element: "TypeDescriptor"


@dataclass(frozen=True, slots=True)
class Ref:
    """A reference to a named type in the owning service's type table."""

    name: str


TypeDescriptor = Primitive | Record | Variant | Vec | Ref

TEXT = Primitive("text")
NAT = Primitive("nat")
BOOL = Primitive("bool")
PRINCIPAL = Primitive("principal")
NULL = Primitive("null")

PRIMITIVES: dict[str, Primitive] = {p.name: p for p in (TEXT, NAT, BOOL, PRINCIPAL, NULL)}


@dataclass(frozen=True, slots=True)
class NamedType:
    """Binds a name to a type descriptor."""

    name: str
    type: TypeDescriptor


@dataclass(frozen=True, slots=True)
class MethodDescriptor:
    """Describes one remote method.

    ``arg_names`` is optional; when present it has one entry per argument and
    unnamed arguments are ``None``.
    """

    name: str
    args: tuple[TypeDescriptor, ...]
    results: tuple[TypeDescriptor, ...]
    mode: CallMode = CallMode.UPDATE
    arg_names: tuple[str | None, ...] = ()

    @property
    def is_query(self) -> bool:
        return self.mode == CallMode.QUERY


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    """Describes a service: its methods and the named types they use."""

    name: str
    methods: tuple[MethodDescriptor, ...]
    types: tuple[NamedType, ...] = ()
    _method_map: Mapping[str, MethodDescriptor] = field(
        init=False, repr=False, compare=False, hash=False
    )
    _type_map: Mapping[str, TypeDescriptor] = field(
        init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        # First declaration wins; the registry rejects duplicates anyway.
        methods: dict[str, MethodDescriptor] = {}
        for method in self.methods:
            methods.setdefault(method.name, method)
        types: dict[str, TypeDescriptor] = {}
        for named in self.types:
            types.setdefault(named.name, named.type)
        object.__setattr__(self, "_method_map", MappingProxyType(methods))
        object.__setattr__(self, "_type_map", MappingProxyType(types))

    @property
    def method_names(self) -> tuple[str, ...]:
        return tuple(m.name for m in self.methods)

    @property
    def type_table(self) -> Mapping[str, TypeDescriptor]:
        """Read-only view of the named types."""
        return self._type_map

    def method(self, name: str) -> MethodDescriptor | None:
        return self._method_map.get(name)


def describe(t: TypeDescriptor) -> str:
    """Render a type descriptor in schema notation, e.g. ``vec Item``."""
    if isinstance(t, Primitive):
        return t.name
    if isinstance(t, Ref):
        return t.name
    if isinstance(t, Vec):
        return f"vec {describe(t.element)}"
    if isinstance(t, Record):
        inner = "; ".join(f"{f.name}: {describe(f.type)}" for f in t.fields)
        return f"record {{ {inner} }}" if inner else "record {}"
    if isinstance(t, Variant):
        inner = "; ".join(
            f.name if f.type == NULL else f"{f.name}: {describe(f.type)}" for f in t.cases
        )
        return f"variant {{ {inner} }}" if inner else "variant {}"
    raise TypeError(f"Not a type descriptor: {t!r}")
