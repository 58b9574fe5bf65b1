"""COBS framing with an optional CRC trailer for stream transports."""

from collections.abc import Iterator

from .crc import CrcSize, crc_funcs


class FrameError(RuntimeError):
    """Base exception for framing errors."""


class EncodeError(FrameError):
    """Raised when frame encoding fails."""


class DecodeError(FrameError):
    """Raised when frame decoding fails."""


class CRCCheckFailure(FrameError):
    """Raised when CRC validation fails."""


def cobs_encode(data: bytes) -> bytes:
    """Encode data using COBS (Consistent Overhead Byte Stuffing).

    The output contains no zero bytes, so zero can delimit frames.
    """
    if not data:
        return b""

    output = bytearray()
    block = bytearray()
    ended_full = False

    for byte in data:
        ended_full = False
        if byte:
            block.append(byte)
            if len(block) < 254:
                continue
            ended_full = True
        output.append(len(block) + 1)
        output.extend(block)
        block.clear()

    if not ended_full:
        output.append(len(block) + 1)
        output.extend(block)

    return bytes(output)


def cobs_decode(data: bytes) -> bytes:
    """Decode COBS-encoded data."""
    if not data:
        return b""

    output = bytearray()
    pos = 0
    while pos < len(data):
        code = data[pos]
        if code == 0:
            raise DecodeError("Unexpected null byte")
        end = pos + code
        if end > len(data):
            raise DecodeError("Block length exceeds size of available data")
        output.extend(data[pos + 1 : end])
        pos = end
        if code != 255:
            output.append(0)

    # the final block carries no trailing zero
    if output and output[-1] == 0:
        output.pop()
    return bytes(output)


def append_crc(data: bytes, crc: CrcSize = CrcSize.CRC8) -> bytes:
    """Append a little-endian CRC of ``data``."""
    if crc == CrcSize.NO_CRC:
        return data
    return data + crc_funcs[crc](data).to_bytes(crc.value, byteorder="little")


def check_crc(data: bytes, crc: CrcSize = CrcSize.CRC8) -> bytes:
    """Verify and strip the CRC trailer."""
    if crc == CrcSize.NO_CRC:
        return data
    if len(data) < crc.value:
        raise CRCCheckFailure("Frame shorter than its CRC")

    payload, trailer = data[: -crc.value], data[-crc.value :]
    if crc_funcs[crc](payload) != int.from_bytes(trailer, byteorder="little"):
        raise CRCCheckFailure("CRC mismatch")
    return payload


def encode_frame(payload: bytes, crc: CrcSize = CrcSize.CRC8) -> bytes:
    """Frame a payload: zero delimiter, COBS body, zero delimiter."""
    if not payload:
        raise EncodeError("payload must not be empty")
    return b"\x00" + cobs_encode(append_crc(payload, crc)) + b"\x00"


def decode_frame(body: bytes, crc: CrcSize = CrcSize.CRC8) -> bytes:
    """Decode the bytes between two delimiters back into a payload."""
    return check_crc(cobs_decode(body), crc)


class FrameBuffer:
    """Accumulates received bytes and yields complete frame bodies.

    Example:
        buffer = FrameBuffer(crc=CrcSize.CRC8)
        buffer.feed(await reader.read(4096))
        for payload in buffer.frames():
            handle(payload)
    """

    def __init__(self, crc: CrcSize = CrcSize.CRC8) -> None:
        self._crc = crc
        self._pending = bytearray()

    @property
    def crc(self) -> CrcSize:
        return self._crc

    def feed(self, data: bytes) -> None:
        self._pending.extend(data)

    def clear(self) -> None:
        self._pending.clear()

    def frames(self) -> Iterator[bytes]:
        """Yield decoded payloads for every complete frame received so far.

        A frame that fails to decode raises from the iterator; the buffer has
        already moved past it, so iteration may be resumed with a new call.
        """
        while True:
            end = self._pending.find(0)
            if end < 0:
                return
            body = bytes(self._pending[:end])
            del self._pending[: end + 1]
            if body:
                yield decode_frame(body, self._crc)
