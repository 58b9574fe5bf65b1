"""Client façade: one typed stub per registered service."""

from types import MappingProxyType
from typing import Any

from .config import ClientConfig
from .contracts import AUTH, INVENTORY, load_contracts
from .proto.dispatch import Dispatcher
from .proto.registry import SchemaRegistry
from .proto.stub import ServiceStub
from .proto.transport import StreamTransport, Transport


class Client:
    """Typed access to every service in a registry.

    The registry defaults to the bundled auth and inventory contracts and is
    frozen here; stubs are built once, up front.

    Example:
        client = await Client.connect("127.0.0.1", 4943, config=load_config("client.json"))
        await client.inventory.addItem("widget", 10)
        items = await client.inventory.listItems()
    """

    def __init__(
        self,
        transport: Transport,
        config: ClientConfig | None = None,
        registry: SchemaRegistry | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.config.validate()
        self.registry = (registry if registry is not None else load_contracts()).freeze()
        self.transport = transport
        self.dispatcher = Dispatcher(
            transport,
            identity=self.config.principal(),
            timeout=self.config.timeout,
            retry=self.config.retry_policy(),
        )
        self._stubs = MappingProxyType(
            {
                name: ServiceStub.from_registry(
                    self.registry, name, self.dispatcher, query_cache=self.config.query_cache
                )
                for name in self.registry
            }
        )

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        config: ClientConfig | None = None,
        registry: SchemaRegistry | None = None,
    ) -> "Client":
        config = config or ClientConfig()
        transport = await StreamTransport.connect(host, port, crc=config.crc)
        return cls(transport, config=config, registry=registry)

    def stub(self, service_name: str) -> ServiceStub:
        """Return the stub of a registered service."""
        # raises UnknownService for unregistered names
        self.registry.service(service_name)
        return self._stubs[service_name]

    @property
    def auth(self) -> ServiceStub:
        return self.stub(AUTH)

    @property
    def inventory(self) -> ServiceStub:
        return self.stub(INVENTORY)

    async def close(self) -> None:
        close: Any = getattr(self.transport, "close", None)
        if close is not None:
            await close()
