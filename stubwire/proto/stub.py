"""Typed stubs generated from registered service descriptors.

A stub is built once per service. Every declared method becomes a
``StubMethod`` with a real signature (``inspect.signature(stub.addItem)``
shows ``(arg0: str, arg1: int) -> str``), and every named record whose field
names are valid identifiers becomes a frozen dataclass.

Example:
    stub = ServiceStub.from_registry(registry, "inventory", dispatcher)
    await stub.addItem("widget", 10)
    items = await stub.listItems()  # list of stub.Item
"""

import dataclasses
import inspect
import keyword
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, cast

from .codec import MAX_DEPTH, TypeCodec
from .dispatch import Dispatcher
from .errors import TypeMismatch, UnknownMethod
from .principal import Principal
from .registry import SchemaRegistry
from .types import (
    MethodDescriptor,
    Primitive,
    Record,
    Ref,
    ServiceDescriptor,
    TypeDescriptor,
    Variant,
    Vec,
)

logger = logging.getLogger(__name__)

_PRIMITIVE_ANNOTATIONS: dict[str, Any] = {
    "text": str,
    "nat": int,
    "bool": bool,
    "principal": Principal,
    "null": None,
}


class StubRecord:
    """Base class for record types generated from a service's named records."""

    def to_value(self) -> dict[str, Any]:
        """Return the fields as a mapping (nested records are left as-is)."""
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}


def _is_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def _annotation(
    t: TypeDescriptor,
    types: Mapping[str, TypeDescriptor],
    records: Mapping[str, Any],
    seen: frozenset[str] = frozenset(),
) -> Any:
    if isinstance(t, Primitive):
        return _PRIMITIVE_ANNOTATIONS[t.name]
    if isinstance(t, Vec):
        return list[_annotation(t.element, types, records, seen)]
    if isinstance(t, Ref):
        if t.name in records:
            return records[t.name]
        if t.name in seen or t.name not in types:
            return Any
        return _annotation(types[t.name], types, records, seen | {t.name})
    return dict[str, Any]


def record_classes(service: ServiceDescriptor) -> dict[str, type[StubRecord]]:
    """Generate a frozen dataclass for each named record of ``service``.

    Records whose names or field names cannot be Python identifiers stay
    plain mappings.
    """
    reserved = {name for name in dir(StubRecord) if not name.startswith("__")}
    eligible = [
        named
        for named in service.types
        if isinstance(named.type, Record)
        and _is_identifier(named.name)
        and all(_is_identifier(f.name) and f.name not in reserved for f in named.type.fields)
    ]

    # Annotations may refer to records generated later in the loop; forward
    # references are filled in with the class names.
    names = {named.name: named.name for named in eligible}
    classes: dict[str, type[StubRecord]] = {}
    for named in eligible:
        record = cast(Record, named.type)
        fields = [
            (f.name, _annotation(f.type, service.type_table, {**names, **classes}))
            for f in record.fields
        ]
        cls = dataclasses.make_dataclass(named.name, fields, bases=(StubRecord,), frozen=True)
        cls.__doc__ = f"Record {named.name} of service {service.name}."
        classes[named.name] = cls
    return classes


class _Converter:
    """Moves values between stub-facing natives and codec values.

    Codec values use mappings for records; stubs hand out generated record
    classes instead. Conversion never validates: the codec does that.
    """

    def __init__(
        self,
        codec: TypeCodec,
        records: Mapping[str, type[StubRecord]],
        types: Mapping[str, TypeDescriptor],
    ) -> None:
        self._codec = codec
        self._records = records
        self._types = types

    def record_class(self, t: Ref) -> type[StubRecord] | None:
        """Return the generated class for ``t``, following aliases."""
        seen: set[str] = set()
        name = t.name
        while name not in self._records:
            target = self._types.get(name)
            if not isinstance(target, Ref) or name in seen:
                return None
            seen.add(name)
            name = target.name
        return self._records[name]

    def to_wire(self, value: Any, t: TypeDescriptor, depth: int = 0) -> Any:
        if depth > MAX_DEPTH and isinstance(t, (Record, Variant, Vec)):
            raise TypeMismatch(f"Value nested deeper than {MAX_DEPTH} levels")
        if isinstance(t, Ref):
            if isinstance(value, StubRecord):
                cls = self.record_class(t)
                # another record class is left for the codec to reject
                if cls is not None and isinstance(value, cls):
                    value = value.to_value()
            return self.to_wire(value, self._codec.resolve(t), depth)
        if isinstance(t, Record) and isinstance(value, Mapping):
            types = {f.name: f.type for f in t.fields}
            return {
                k: self.to_wire(v, types[k], depth + 1) if k in types else v
                for k, v in value.items()
            }
        if isinstance(t, Variant) and isinstance(value, Mapping) and len(value) == 1:
            (tag, payload), = value.items()
            case = next((c for c in t.cases if c.name == tag), None)
            return {tag: self.to_wire(payload, case.type, depth + 1) if case else payload}
        if isinstance(t, Vec) and isinstance(value, (list, tuple)):
            return [self.to_wire(item, t.element, depth + 1) for item in value]
        return value

    def from_wire(self, value: Any, t: TypeDescriptor) -> Any:
        if isinstance(t, Ref):
            converted = self.from_wire(value, self._codec.resolve(t))
            cls = self.record_class(t)
            return cls(**converted) if cls is not None else converted
        if isinstance(t, Record):
            return {f.name: self.from_wire(value[f.name], f.type) for f in t.fields}
        if isinstance(t, Variant):
            (tag, payload), = value.items()
            case = next(c for c in t.cases if c.name == tag)
            return {tag: self.from_wire(payload, case.type)}
        if isinstance(t, Vec):
            return [self.from_wire(item, t.element) for item in value]
        return value


class StubMethod:
    """A callable bound to one remote method of a stub."""

    def __init__(self, stub: "ServiceStub", method: MethodDescriptor) -> None:
        self._stub = stub
        self.descriptor = method
        self.__name__ = method.name
        self.__qualname__ = f"{stub.service_name}.{method.name}"
        self.__signature__ = stub._signature(method)
        if method.is_query:
            self.__doc__ = f"Query call {self.__qualname__}."
        else:
            self.__doc__ = (
                f"Update call {self.__qualname__}. Not idempotent; if abandoned, the remote "
                "effect is indeterminate."
            )

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        try:
            bound = self.__signature__.bind(*args, **kwargs)
        except TypeError as e:
            raise TypeMismatch(f"{self.__qualname__}: {e}") from None
        return await self._stub._invoke(self.descriptor, bound.args)

    def __repr__(self) -> str:
        return f"<StubMethod {self.__qualname__}{self.__signature__}>"


class ServiceStub:
    """Typed client for one service.

    Methods are resolved once, here; a call validates its arguments against
    the descriptor, encodes them, hands an envelope to the dispatcher and
    decodes the reply completely before returning. Zero results return None,
    one result returns the value, several return a tuple.

    With ``query_cache=True`` replies to query calls are kept per argument
    payload until ``clear_cache()`` or until an update call through this stub
    completes or is abandoned. Update calls are never cached.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        service: ServiceDescriptor,
        *,
        name: str | None = None,
        query_cache: bool = False,
    ) -> None:
        self._dispatcher = dispatcher
        self._service = service
        self._name = name or service.name
        self._codec = TypeCodec(service.type_table)
        self._records = MappingProxyType(record_classes(service))
        self._converter = _Converter(self._codec, self._records, service.type_table)
        self._cache: dict[tuple[str, bytes], bytes] | None = {} if query_cache else None
        self._cache_generation = 0
        self._methods = {m.name: StubMethod(self, m) for m in service.methods}

    @classmethod
    def from_registry(
        cls, registry: SchemaRegistry, service_name: str, dispatcher: Dispatcher, **kwargs: Any
    ) -> "ServiceStub":
        return cls(dispatcher, registry.service(service_name), name=service_name, **kwargs)

    @property
    def service_name(self) -> str:
        return self._name

    @property
    def descriptor(self) -> ServiceDescriptor:
        return self._service

    @property
    def records(self) -> Mapping[str, type[StubRecord]]:
        return self._records

    @property
    def method_names(self) -> tuple[str, ...]:
        return tuple(self._methods)

    def method(self, name: str) -> StubMethod:
        try:
            return self._methods[name]
        except KeyError:
            raise UnknownMethod(f"Service {self._name!r} has no method {name!r}") from None

    async def call(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        return await self.method(method_name)(*args, **kwargs)

    def clear_cache(self) -> None:
        self._cache_generation += 1
        if self._cache is not None:
            self._cache.clear()

    def __getattr__(self, name: str) -> Any:
        # only reached when normal attribute lookup fails
        methods = self.__dict__.get("_methods", {})
        if name in methods:
            return methods[name]
        records = self.__dict__.get("_records", {})
        if name in records:
            return records[name]
        raise UnknownMethod(f"Service {self.__dict__.get('_name')!r} has no method {name!r}")

    def __dir__(self) -> list[str]:
        return sorted({*super().__dir__(), *self._methods, *self._records})

    def __repr__(self) -> str:
        return f"<ServiceStub {self._name} methods={list(self._methods)}>"

    def _signature(self, method: MethodDescriptor) -> inspect.Signature:
        types = self._service.type_table
        names: list[str] = []
        for i in range(len(method.args)):
            name = method.arg_names[i] if method.arg_names else None
            if not name or not _is_identifier(name) or name in names:
                name = f"arg{i}"
            names.append(name)

        params = [
            inspect.Parameter(
                name,
                inspect.Parameter.POSITIONAL_OR_KEYWORD,
                annotation=_annotation(t, types, self._records),
            )
            for name, t in zip(names, method.args)
        ]
        results = [_annotation(t, types, self._records) for t in method.results]
        if not results:
            returns: Any = None
        elif len(results) == 1:
            returns = results[0]
        else:
            returns = tuple[tuple(results)]
        return inspect.Signature(params, return_annotation=returns)

    async def _invoke(self, method: MethodDescriptor, args: tuple[Any, ...]) -> Any:
        values = [self._converter.to_wire(v, t) for v, t in zip(args, method.args)]
        payload = self._codec.encode_args(values, method.args)

        cache_key = (method.name, payload)
        generation = self._cache_generation
        raw = None
        if self._cache is not None and method.is_query:
            raw = self._cache.get(cache_key)
            if raw is not None:
                logger.debug("Serving %s.%s from query cache", self._name, method.name)

        if raw is None:
            envelope = self._dispatcher.envelope(self._name, method.name, payload, method.mode)
            try:
                raw = await self._dispatcher.invoke(envelope)
            finally:
                # an update may have changed remote state even when it failed
                if not method.is_query:
                    self.clear_cache()

        results = self._codec.decode_args(raw, method.results)
        natives = tuple(self._converter.from_wire(v, t) for v, t in zip(results, method.results))

        # a reply that raced an update is not cached
        if self._cache is not None and method.is_query and generation == self._cache_generation:
            self._cache[cache_key] = raw

        if not natives:
            return None
        if len(natives) == 1:
            return natives[0]
        return natives
