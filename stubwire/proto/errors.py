"""Failure taxonomy shared by the registry, codec, stubs and dispatcher."""


class StubwireError(RuntimeError):
    """Base class for every failure raised by stubwire."""


class SchemaError(StubwireError):
    """Raised when a service contract cannot be registered or resolved."""


class MalformedSchema(SchemaError):
    """Raised when a service descriptor violates a schema invariant."""


class DuplicateService(SchemaError):
    """Raised when a service name is registered twice."""


class UnknownService(SchemaError):
    """Raised when looking up a service that was never registered."""


class UnknownMethod(SchemaError, AttributeError):
    """Raised when a service does not declare the requested method."""


class CodecError(StubwireError):
    """Raised when encoding or decoding a value fails."""


class TypeMismatch(CodecError):
    """Raised when a value does not conform to its declared type."""


class MalformedWire(CodecError):
    """Raised when a byte stream cannot be decoded as the declared type."""


class CallFailure(StubwireError):
    """Raised when a remote call does not produce a result."""


class TransportUnavailable(CallFailure):
    """The remote service could not be reached."""


class Timeout(CallFailure):
    """No response arrived within the configured wait."""


class RemoteRejected(CallFailure):
    """The remote service answered with an application-level error."""

    def __init__(self, message: str, code: int = 0) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class CallStateError(StubwireError):
    """Raised on an illegal call state transition."""
