"""Schema registry: validated, read-only service contracts."""

import logging
from collections.abc import Iterator

from .codec import idl_hash
from .errors import DuplicateService, MalformedSchema, SchemaError, UnknownMethod, UnknownService
from .types import (
    PRIMITIVES,
    Field,
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


def _check_members(members: tuple[Field, ...], kind: str, where: str) -> None:
    names: set[str] = set()
    ids: dict[int, str] = {}
    for member in members:
        if not isinstance(member, Field):
            raise MalformedSchema(f"{where}: {kind} member {member!r} is not a Field")
        if member.name in names:
            raise MalformedSchema(f"{where}: {kind} declares {member.name!r} twice")
        names.add(member.name)
        member_id = idl_hash(member.name)
        if member_id in ids:
            raise MalformedSchema(
                f"{where}: {kind} members {ids[member_id]!r} and {member.name!r} have the same id"
            )
        ids[member_id] = member.name


def _check_type(t: TypeDescriptor, type_names: set[str], where: str) -> None:
    """Walk one descriptor tree, checking members and references."""
    if isinstance(t, Primitive):
        if PRIMITIVES.get(t.name) != t:
            raise MalformedSchema(f"{where}: unknown primitive type {t.name!r}")
    elif isinstance(t, Ref):
        if t.name not in type_names:
            raise MalformedSchema(f"{where}: reference to undeclared type {t.name!r}")
    elif isinstance(t, Vec):
        _check_type(t.element, type_names, where)
    elif isinstance(t, Record):
        _check_members(t.fields, "record", where)
        for f in t.fields:
            _check_type(f.type, type_names, f"{where}.{f.name}")
    elif isinstance(t, Variant):
        _check_members(t.cases, "variant", where)
        for c in t.cases:
            _check_type(c.type, type_names, f"{where}.{c.name}")
    else:
        raise MalformedSchema(f"{where}: {t!r} is not a type descriptor")


def _has_finite_value(t: TypeDescriptor, inhabited: set[str]) -> bool:
    if isinstance(t, (Primitive, Vec)):
        return True  # a vec may always be empty
    if isinstance(t, Ref):
        return t.name in inhabited
    if isinstance(t, Record):
        return all(_has_finite_value(f.type, inhabited) for f in t.fields)
    if isinstance(t, Variant):
        return any(_has_finite_value(c.type, inhabited) for c in t.cases)
    return False


def _check_recursion(service: ServiceDescriptor) -> None:
    """Reject named types that have no finite value.

    Computes the least fixpoint of "has a finite value" over the type table.
    Recursion through a vec or a terminating variant case is fine; a record
    that must contain itself is not.
    """
    inhabited: set[str] = set()
    changed = True
    while changed:
        changed = False
        for named in service.types:
            if named.name not in inhabited and _has_finite_value(named.type, inhabited):
                inhabited.add(named.name)
                changed = True

    unbounded = [n.name for n in service.types if n.name not in inhabited]
    if unbounded:
        raise MalformedSchema(
            f"{service.name}: unbounded recursion in type(s) {', '.join(unbounded)}"
        )


def _check_method(method: MethodDescriptor, type_names: set[str], service: str) -> None:
    where = f"{service}.{method.name}"
    if not method.name:
        raise MalformedSchema(f"{service}: method with empty name")
    if method.arg_names and len(method.arg_names) != len(method.args):
        raise MalformedSchema(f"{where}: {len(method.arg_names)} names for {len(method.args)} args")
    for i, t in enumerate(method.args):
        _check_type(t, type_names, f"{where}(arg {i})")
    for i, t in enumerate(method.results):
        _check_type(t, type_names, f"{where}(result {i})")


def validate_service(service: ServiceDescriptor) -> None:
    """Validate a service descriptor, raising MalformedSchema on failure."""
    if not isinstance(service, ServiceDescriptor):
        raise MalformedSchema(f"{service!r} is not a ServiceDescriptor")

    type_names: set[str] = set()
    for named in service.types:
        if named.name in type_names:
            raise MalformedSchema(f"{service.name}: type {named.name!r} declared twice")
        type_names.add(named.name)

    for named in service.types:
        _check_type(named.type, type_names, f"{service.name}.{named.name}")
    _check_recursion(service)

    method_names: set[str] = set()
    for method in service.methods:
        if method.name in method_names:
            raise MalformedSchema(f"{service.name}: method {method.name!r} declared twice")
        method_names.add(method.name)
        _check_method(method, type_names, service.name)


class SchemaRegistry:
    """Holds validated service descriptors by name.

    Services are registered once at startup. After ``freeze()`` the registry
    rejects further registration and may be read from any number of
    concurrent calls without locking.
    """

    def __init__(self) -> None:
        self._services: dict[str, ServiceDescriptor] = {}
        self._frozen = False

    def register(self, service_name: str, service: ServiceDescriptor) -> ServiceDescriptor:
        """Validate and register a service.

        Raises:
            DuplicateService: ``service_name`` is already registered.
            MalformedSchema: the descriptor fails validation.
        """
        if self._frozen:
            raise SchemaError(f"Registry is frozen; cannot register {service_name!r}")
        if service_name in self._services:
            raise DuplicateService(f"Service {service_name!r} is already registered")
        validate_service(service)
        self._services[service_name] = service
        logger.debug(
            "Registered service %s with %d methods and %d types",
            service_name,
            len(service.methods),
            len(service.types),
        )
        return service

    def freeze(self) -> "SchemaRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def service(self, service_name: str) -> ServiceDescriptor:
        try:
            return self._services[service_name]
        except KeyError:
            raise UnknownService(f"Unknown service {service_name!r}") from None

    def lookup(self, service_name: str, method_name: str) -> MethodDescriptor:
        """Find a method descriptor.

        Raises:
            UnknownService: no service of that name is registered.
            UnknownMethod: the service does not declare the method.
        """
        method = self.service(service_name).method(method_name)
        if method is None:
            raise UnknownMethod(f"Service {service_name!r} has no method {method_name!r}")
        return method

    def __contains__(self, service_name: object) -> bool:
        return service_name in self._services

    def __iter__(self) -> Iterator[str]:
        return iter(self._services)

    def __len__(self) -> int:
        return len(self._services)
