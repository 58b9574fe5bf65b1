"""Unit tests configuration file."""

import pytest

from stubwire.client import Client
from stubwire.config import ClientConfig
from stubwire.contracts import AUTH, INVENTORY, load_contracts
from stubwire.proto.principal import Principal
from stubwire.proto.transport import LocalTransport, Reject


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


class FakeInventory:
    """In-memory stand-in for the remote inventory service."""

    def __init__(self):
        self.items = []
        self._next_id = 0

    def addItem(self, caller, name, quantity):
        item = {"id": self._next_id, "name": name, "addedBy": caller, "quantity": quantity}
        self._next_id += 1
        self.items.append(item)
        return str(item["id"])

    def editItem(self, caller, item_id, name, quantity):
        for item in self.items:
            if item["id"] == item_id:
                item["name"] = name
                item["quantity"] = quantity
                return "Item updated"
        raise Reject(f"Item {item_id} not found")

    def listItems(self, caller):
        return [dict(item) for item in self.items]


class FakeAuth:
    """In-memory stand-in for the remote access-control service."""

    def __init__(self):
        self.subscriptions = {}

    async def hasAccess(self, caller, user, resource):
        return resource in self.subscriptions.get(user, set())

    async def subscribeUser(self, caller, user, resources):
        self.subscriptions.setdefault(user, set()).update(resources)


@pytest.fixture
def alice():
    return Principal(b"alice-test-identity")


@pytest.fixture
def registry():
    return load_contracts()


@pytest.fixture
def local(registry):
    transport = LocalTransport()
    transport.serve(registry.service(INVENTORY), FakeInventory())
    transport.serve(registry.service(AUTH), FakeAuth())
    return transport


@pytest.fixture
def client(local, registry, alice):
    return Client(local, config=ClientConfig(identity=alice.to_text()), registry=registry)
