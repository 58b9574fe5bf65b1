"""Transports that carry call envelopes to a service and bring replies back."""

import asyncio
import inspect
import logging
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol, runtime_checkable

from .codec import TypeCodec, WireReader, write_leb128, write_text
from .crc import CrcSize, crc_size
from .dispatch import CallEnvelope
from .errors import CodecError, MalformedWire, RemoteRejected, TransportUnavailable
from .framing import FrameBuffer, FrameError, encode_frame
from .principal import MAX_LENGTH as MAX_PRINCIPAL_LENGTH
from .principal import Principal
from .types import CallMode, MethodDescriptor, ServiceDescriptor

logger = logging.getLogger(__name__)

KIND_REQUEST = 0x01
KIND_REPLY = 0x02

_MODES = {CallMode.QUERY: 0, CallMode.UPDATE: 1}
_MODES_BY_BYTE = {v: k for k, v in _MODES.items()}


class RejectCode(IntEnum):
    """Why a service refused a call."""

    SYS_FATAL = 1
    SYS_TRANSIENT = 2
    DESTINATION_INVALID = 3
    SERVICE_REJECT = 4
    SERVICE_ERROR = 5


@runtime_checkable
class Transport(Protocol):
    """Delivers an envelope and returns the raw reply payload.

    Implementations raise TransportUnavailable when the service cannot be
    reached and RemoteRejected when it answers with an error.
    """

    async def send(self, envelope: CallEnvelope) -> bytes: ...


@dataclass(frozen=True, slots=True)
class Reply:
    """A service's answer to one envelope."""

    call_id: int
    payload: bytes = b""
    reject_code: int = 0
    reject_message: str = ""

    @property
    def rejected(self) -> bool:
        return self.reject_code != 0

    def result(self) -> bytes:
        """Return the payload, or raise RemoteRejected."""
        if self.rejected:
            raise RemoteRejected(self.reject_message, self.reject_code)
        return self.payload


def encode_request(envelope: CallEnvelope) -> bytes:
    buf = bytearray([KIND_REQUEST])
    write_leb128(envelope.call_id, buf)
    buf.append(_MODES[envelope.mode])
    write_text(envelope.service, buf)
    write_text(envelope.method, buf)
    write_leb128(len(envelope.sender.raw), buf)
    buf.extend(envelope.sender.raw)
    write_leb128(len(envelope.args), buf)
    buf.extend(envelope.args)
    return bytes(buf)


def decode_request(data: bytes) -> CallEnvelope:
    reader = WireReader(data)
    if reader.read_byte() != KIND_REQUEST:
        raise MalformedWire("Not a request frame")
    call_id = reader.read_leb128()
    mode = _MODES_BY_BYTE.get(reader.read_byte())
    if mode is None:
        raise MalformedWire("Unknown call mode")
    service = reader.read_text()
    method = reader.read_text()
    sender_length = reader.read_leb128()
    if sender_length > MAX_PRINCIPAL_LENGTH:
        raise MalformedWire("Sender principal too long")
    sender = Principal(reader.read_bytes(sender_length))
    args = reader.read_bytes(reader.read_leb128())
    if not reader.at_end():
        raise MalformedWire("Trailing bytes after request")
    return CallEnvelope(call_id, service, method, args, mode, sender)


def encode_reply(reply: Reply) -> bytes:
    buf = bytearray([KIND_REPLY])
    write_leb128(reply.call_id, buf)
    write_leb128(reply.reject_code, buf)
    if reply.rejected:
        write_text(reply.reject_message, buf)
    else:
        write_leb128(len(reply.payload), buf)
        buf.extend(reply.payload)
    return bytes(buf)


def decode_reply(data: bytes) -> Reply:
    reader = WireReader(data)
    if reader.read_byte() != KIND_REPLY:
        raise MalformedWire("Not a reply frame")
    call_id = reader.read_leb128()
    code = reader.read_leb128()
    if code:
        reply = Reply(call_id, reject_code=code, reject_message=reader.read_text())
    else:
        reply = Reply(call_id, payload=reader.read_bytes(reader.read_leb128()))
    if not reader.at_end():
        raise MalformedWire("Trailing bytes after reply")
    return reply


class Reject(Exception):
    """Raised by a served implementation to refuse a call."""

    def __init__(self, message: str, code: int = RejectCode.SERVICE_REJECT) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class _Served:
    service: ServiceDescriptor
    codec: TypeCodec
    implementation: Any


class LocalTransport:
    """Serves Python implementations of services in-process.

    Each method of a served service is bound to the attribute of the same
    name on the implementation, called as ``impl.method(caller, *args)``.
    Arguments and results go through the codec exactly as they would over a
    network, so a stub cannot tell the difference.

    Setting ``offline`` makes every send fail with TransportUnavailable.
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._served: dict[str, _Served] = {}
        self.latency = latency
        self.offline = False

    def serve(self, service: ServiceDescriptor, implementation: Any, name: str | None = None) -> None:
        for method in service.methods:
            if not callable(getattr(implementation, method.name, None)):
                raise TypeError(f"{type(implementation).__name__} does not implement {method.name}")
        self._served[name or service.name] = _Served(
            service, TypeCodec(service.type_table), implementation
        )

    async def send(self, envelope: CallEnvelope) -> bytes:
        if self.offline:
            raise TransportUnavailable(f"Service {envelope.service!r} is offline")
        if self.latency:
            await asyncio.sleep(self.latency)
        reply = await self.handle(decode_request(encode_request(envelope)))
        return reply.result()

    async def handle(self, envelope: CallEnvelope) -> Reply:
        """Run one request against the served implementation."""
        served = self._served.get(envelope.service)
        if served is None:
            return _reject(envelope, RejectCode.DESTINATION_INVALID, "no such service")
        method = served.service.method(envelope.method)
        if method is None:
            return _reject(envelope, RejectCode.DESTINATION_INVALID, "no such method")
        if envelope.mode == CallMode.QUERY and not method.is_query:
            return _reject(envelope, RejectCode.SERVICE_ERROR, "update method called as query")

        try:
            args = served.codec.decode_args(envelope.args, method.args)
        except CodecError as e:
            return _reject(envelope, RejectCode.SERVICE_ERROR, f"invalid arguments: {e}")

        try:
            result = getattr(served.implementation, method.name)(envelope.sender, *args)
            if inspect.isawaitable(result):
                result = await result
        except Reject as e:
            return _reject(envelope, e.code, e.message)
        except Exception as e:
            logger.exception("%s.%s raised %s", envelope.service, method.name, type(e).__name__)
            return _reject(envelope, RejectCode.SERVICE_ERROR, f"{type(e).__name__}: {e}")

        try:
            payload = served.codec.encode_args(_as_results(method, result), method.results)
        except (CodecError, TypeError) as e:
            logger.error("%s.%s returned an invalid result: %s", envelope.service, method.name, e)
            return _reject(envelope, RejectCode.SERVICE_ERROR, f"invalid result: {e}")
        return Reply(envelope.call_id, payload)


def _reject(envelope: CallEnvelope, code: int, message: str) -> Reply:
    return Reply(envelope.call_id, reject_code=code, reject_message=message)


def _as_results(method: MethodDescriptor, result: Any) -> tuple:
    if not method.results:
        return ()
    if len(method.results) == 1:
        return (result,)
    return tuple(result)


class StreamTransport:
    """Carries envelopes as framed messages over an asyncio stream pair.

    Requests are written as COBS frames with a CRC trailer; a background task
    reads reply frames and hands each to the call waiting on its call id, so
    any number of calls may share one connection. When the connection drops,
    every waiting call fails with TransportUnavailable.

    Example:
        reader, writer = await asyncio.open_connection(host, port)
        transport = StreamTransport((reader, writer), crc="CRC16")
    """

    def __init__(self, stream: tuple[StreamReader, StreamWriter], *, crc: str = "CRC8") -> None:
        self._reader, self._writer = stream
        self._crc = crc_size(crc)
        self._buffer = FrameBuffer(self._crc)
        self._waiting: dict[int, asyncio.Future[Reply]] = {}
        self._read_task: asyncio.Task[None] | None = None
        self._closed: str | None = None

    @classmethod
    async def connect(cls, host: str, port: int, *, crc: str = "CRC8") -> "StreamTransport":
        try:
            stream = await asyncio.open_connection(host, port)
        except OSError as e:
            raise TransportUnavailable(f"Cannot connect to {host}:{port}: {e}") from e
        return cls(stream, crc=crc)

    @property
    def closed(self) -> bool:
        return self._closed is not None

    async def send(self, envelope: CallEnvelope) -> bytes:
        if self._closed is not None:
            raise TransportUnavailable(self._closed)
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_replies())

        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        self._waiting[envelope.call_id] = future
        try:
            self._writer.write(encode_frame(encode_request(envelope), self._crc))
            await self._writer.drain()
            reply = await future
        except OSError as e:
            raise TransportUnavailable(f"Connection failed: {e}") from e
        finally:
            self._waiting.pop(envelope.call_id, None)
        return reply.result()

    async def _read_replies(self) -> None:
        reason = "Connection closed by peer"
        try:
            while data := await self._reader.read(4096):
                self._buffer.feed(data)
                self._deliver_frames()
        except OSError as e:
            reason = f"Connection failed: {e}"
        finally:
            self._shutdown(reason)

    def _deliver_frames(self) -> None:
        while True:
            try:
                for payload in self._buffer.frames():
                    reply = decode_reply(payload)
                    future = self._waiting.get(reply.call_id)
                    if future is None or future.done():
                        logger.warning("Dropping reply for unknown call %d", reply.call_id)
                        continue
                    future.set_result(reply)
                return
            except (FrameError, MalformedWire) as e:
                logger.warning("Dropping undecodable frame: %s", e)

    def _shutdown(self, reason: str) -> None:
        if self._closed is None:
            self._closed = reason
        for future in self._waiting.values():
            if not future.done():
                future.set_exception(TransportUnavailable(reason))

    async def close(self) -> None:
        self._shutdown("Transport closed")
        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing stream: %s", e)


async def serve_connection(
    reader: StreamReader, writer: StreamWriter, handler: LocalTransport, *, crc: str = "CRC8"
) -> None:
    """Answer framed requests from one connection using ``handler``.

    Suitable as an ``asyncio.start_server`` callback for local development
    and tests. Requests are handled concurrently; replies may be written in
    any order.
    """
    size: CrcSize = crc_size(crc)
    buffer = FrameBuffer(size)
    tasks: set[asyncio.Task[None]] = set()

    async def answer(envelope: CallEnvelope) -> None:
        reply = await handler.handle(envelope)
        try:
            writer.write(encode_frame(encode_reply(reply), size))
            await writer.drain()
        except OSError as e:
            logger.warning("Cannot deliver reply to call %d: %s", envelope.call_id, e)

    try:
        while data := await reader.read(4096):
            buffer.feed(data)
            while True:
                try:
                    for payload in buffer.frames():
                        task = asyncio.create_task(answer(decode_request(payload)))
                        tasks.add(task)
                        task.add_done_callback(tasks.discard)
                    break
                except (FrameError, MalformedWire) as e:
                    logger.warning("Dropping undecodable request: %s", e)
        if tasks:
            await asyncio.gather(*tasks)
    finally:
        writer.close()
