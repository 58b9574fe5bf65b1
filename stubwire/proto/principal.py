"""Principal identifiers."""

import base64
from typing import Self

from .crc import crc32

MAX_LENGTH = 29

_ANONYMOUS = b"\x04"


class Principal:
    """An opaque identity, compared and hashed by its raw bytes.

    The textual form is the base32 encoding (lowercase, no padding) of the
    big-endian CRC-32 of the bytes followed by the bytes themselves, split
    into groups of five characters separated by dashes.

    Example:
        >>> Principal.anonymous().to_text()
        '2vxsx-fae'
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes = b"") -> None:
        if len(raw) > MAX_LENGTH:
            raise ValueError(f"Principal exceeds {MAX_LENGTH} bytes")
        self._raw = bytes(raw)

    @classmethod
    def anonymous(cls) -> Self:
        return cls(_ANONYMOUS)

    @classmethod
    def management(cls) -> Self:
        return cls(b"")

    @classmethod
    def from_text(cls, text: str) -> Self:
        """Parse the textual form, verifying the checksum and grouping."""
        compact = text.replace("-", "").upper()
        padding = "=" * (-len(compact) % 8)
        try:
            decoded = base64.b32decode(compact + padding)
        except ValueError:
            raise ValueError(f"Invalid principal text {text!r}") from None
        if len(decoded) < 4:
            raise ValueError(f"Invalid principal text {text!r}")

        checksum, raw = decoded[:4], decoded[4:]
        principal = cls(raw)
        if int.from_bytes(checksum, "big") != crc32(raw):
            raise ValueError(f"Principal checksum mismatch in {text!r}")
        if principal.to_text() != text:
            raise ValueError(f"Principal {text!r} is not in canonical form")
        return principal

    @property
    def raw(self) -> bytes:
        return self._raw

    @property
    def is_anonymous(self) -> bool:
        return self._raw == _ANONYMOUS

    def to_text(self) -> str:
        checksum = crc32(self._raw).to_bytes(4, "big")
        encoded = base64.b32encode(checksum + self._raw).decode("ascii").lower().rstrip("=")
        return "-".join(encoded[i : i + 5] for i in range(0, len(encoded), 5))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Principal):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash((Principal, self._raw))

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Principal({self.to_text()!r})"
