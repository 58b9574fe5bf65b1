"""CRC checksums for frame integrity and principal text encoding."""

import zlib
from collections.abc import Callable
from enum import Enum


class CrcSize(Enum):
    """CRC width in bytes."""

    NO_CRC = 0
    CRC8 = 1
    CRC16 = 2
    CRC32 = 4


def _crc8_table() -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = ((crc << 1) ^ 0x07) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
        table.append(crc)
    return table


def _crc16_table() -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC8_TABLE = _crc8_table()
_CRC16_TABLE = _crc16_table()


def crc8(data: bytes) -> int:
    """CRC-8 with polynomial 0x07, zero init."""
    crc = 0
    for byte in data:
        crc = _CRC8_TABLE[crc ^ byte]
    return crc


def crc16(data: bytes) -> int:
    """CRC-16/ARC (reflected polynomial 0xA001, zero init)."""
    crc = 0
    for byte in data:
        crc = (crc >> 8) ^ _CRC16_TABLE[(crc ^ byte) & 0xFF]
    return crc


def crc32(data: bytes) -> int:
    """Standard CRC-32 (IEEE 802.3)."""
    return zlib.crc32(data) & 0xFFFFFFFF


crc_funcs: dict[CrcSize, Callable[[bytes], int]] = {
    CrcSize.CRC8: crc8,
    CrcSize.CRC16: crc16,
    CrcSize.CRC32: crc32,
}


def crc_size(name: str) -> CrcSize:
    """Resolve a CRC option name (``none``, ``CRC8``, ...) to its size."""
    try:
        return {
            "none": CrcSize.NO_CRC,
            "crc8": CrcSize.CRC8,
            "crc16": CrcSize.CRC16,
            "crc32": CrcSize.CRC32,
        }[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown CRC type {name}") from None
