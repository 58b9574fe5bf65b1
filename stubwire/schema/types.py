"""Parse-tree types for interface descriptions."""

from dataclasses import dataclass, field

from dataclasses_json import DataClassJsonMixin


@dataclass
class IdlType(DataClassJsonMixin):
    """A type expression.

    ``kind`` is a primitive name (``text``, ``nat``, ...) or one of
    ``record``, ``variant``, ``vec`` and ``ref``:
    - record/variant: ``fields`` holds the fields or cases
    - vec: ``element`` holds the element type
    - ref: ``name`` holds the referenced type name
    """

    kind: str
    name: str | None = None
    fields: list["IdlField"] = field(default_factory=list)
    element: "IdlType | None" = None


@dataclass
class IdlField(DataClassJsonMixin):
    """A record field or variant case."""

    name: str
    type: IdlType


@dataclass
class IdlArg(DataClassJsonMixin):
    """A method argument, optionally named."""

    name: str | None
    type: IdlType


@dataclass
class IdlTypeDef(DataClassJsonMixin):
    """A ``type Name = ...;`` definition."""

    name: str
    type: IdlType


@dataclass
class IdlMethod(DataClassJsonMixin):
    """A method signature inside a service block."""

    name: str
    args: list[IdlArg]
    results: list[IdlType]
    query: bool


@dataclass
class IdlService(DataClassJsonMixin):
    """A ``service [name] : { ... }`` block."""

    name: str | None
    methods: list[IdlMethod]


@dataclass
class SchemaDocument(DataClassJsonMixin):
    """A parsed interface description file."""

    types: list[IdlTypeDef]
    services: list[IdlService]
