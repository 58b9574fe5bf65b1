"""Interface description parser using Lark."""

import os
from dataclasses import dataclass
from typing import Any, TypeVar

from lark import Lark, Token
from lark.exceptions import LarkError
from lark.visitors import Transformer

from ..proto.errors import MalformedSchema
from ..proto.types import PRIMITIVES
from .types import IdlArg, IdlField, IdlMethod, IdlService, IdlType, IdlTypeDef, SchemaDocument

_g_parser: Lark | None = None


class SchemaSyntaxError(MalformedSchema):
    """Raised when schema text does not parse."""


@dataclass
class _Args:
    args: list[IdlArg]


@dataclass
class _Results:
    types: list[IdlType]


TFilter = TypeVar("TFilter")


def _find_many(args: list[Any], class_type: type[TFilter]) -> list[TFilter]:
    return [v for v in args if isinstance(v, class_type)]


def _find_one(args: list[Any], class_type: type[TFilter]) -> TFilter | None:
    found = _find_many(args, class_type)
    if len(found) > 1:
        raise RuntimeError(f"Found more than one {class_type}")
    return found[0] if found else None


def _token(args: list[Any], index: int) -> str | None:
    value = args[index] if index < len(args) else None
    return str(value) if isinstance(value, Token) else None


class TreeTransformer(Transformer):
    """Transform parse tree into schema types."""

    def start(self, args: list[Any]) -> SchemaDocument:
        return SchemaDocument(
            types=_find_many(args, IdlTypeDef),
            services=_find_many(args, IdlService),
        )

    def typedef(self, args: list[Any]) -> IdlTypeDef:
        return IdlTypeDef(name=str(args[0]), type=args[1])

    def service(self, args: list[Any]) -> IdlService:
        return IdlService(name=_token(args, 0), methods=_find_many(args, IdlMethod))

    def method(self, args: list[Any]) -> IdlMethod:
        arg_list = _find_one(args, _Args)
        results = _find_one(args, _Results)
        mode = _token(args, len(args) - 1)
        return IdlMethod(
            name=str(args[0]),
            args=arg_list.args if arg_list else [],
            results=results.types if results else [],
            query=mode in ("query", "composite_query"),
        )

    def args(self, args: list[Any]) -> _Args:
        return _Args(_find_many(args, IdlArg))

    def arg(self, args: list[Any]) -> IdlArg:
        return IdlArg(name=_token(args, 0), type=_find_many(args, IdlType)[0])

    def results(self, args: list[Any]) -> _Results:
        return _Results(_find_many(args, IdlType))

    def record(self, args: list[Any]) -> IdlType:
        return IdlType(kind="record", fields=_find_many(args, IdlField))

    def variant(self, args: list[Any]) -> IdlType:
        return IdlType(kind="variant", fields=_find_many(args, IdlField))

    def vec(self, args: list[Any]) -> IdlType:
        return IdlType(kind="vec", element=args[0])

    def named(self, args: list[Any]) -> IdlType:
        name = str(args[0])
        if name in PRIMITIVES:
            return IdlType(kind=name)
        return IdlType(kind="ref", name=name)

    def field(self, args: list[Any]) -> IdlField:
        return IdlField(name=str(args[0]), type=args[1])

    def case(self, args: list[Any]) -> IdlField:
        payload = _find_one(args, IdlType)
        return IdlField(name=str(args[0]), type=payload or IdlType(kind="null"))


def validate(document: SchemaDocument) -> None:
    """Check document-level rules that descriptors cannot express."""
    unnamed = [s for s in document.services if s.name is None]
    if len(unnamed) > 1:
        raise MalformedSchema("Only one service may be unnamed")

    seen: set[str] = set()
    for service in document.services:
        if service.name is not None and service.name in seen:
            raise MalformedSchema(f"Service {service.name} declared twice")
        if service.name is not None:
            seen.add(service.name)


def parse(text: str) -> SchemaDocument:
    """Parse an interface description."""
    global _g_parser

    if not _g_parser:
        with open(f"{os.path.dirname(__file__)}/schema.lark", encoding="utf-8") as f:
            grammar = f.read()
        _g_parser = Lark(grammar)

    try:
        tree = _g_parser.parse(text)
    except LarkError as e:
        raise SchemaSyntaxError(str(e)) from None

    document = TreeTransformer().transform(tree)
    validate(document)
    return document
