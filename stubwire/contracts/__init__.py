"""Contracts of the access-control and inventory services."""

from importlib import resources

from ..proto.registry import SchemaRegistry
from ..schema import load_registry

AUTH = "auth"
INVENTORY = "inventory"

CONTRACT_FILES = {
    AUTH: "auth.did",
    INVENTORY: "inventory.did",
}


def contract_text(service_name: str) -> str:
    """Return the interface description of a bundled service."""
    return resources.files(__name__).joinpath(CONTRACT_FILES[service_name]).read_text()


def load_contracts(registry: SchemaRegistry | None = None) -> SchemaRegistry:
    """Register the bundled contracts and return the registry."""
    registry = registry if registry is not None else SchemaRegistry()
    for name in CONTRACT_FILES:
        load_registry(contract_text(name), default_name=name, registry=registry)
    return registry
