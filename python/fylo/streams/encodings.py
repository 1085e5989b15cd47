"""
Buffer encodings supported by stream options.

Names follow the host stream API ("utf8", "hex", "base64", ...). Text
encodings map to Python codecs; binary-to-text encodings (hex, base64,
base64url) are handled explicitly.
"""

import base64
import binascii
import codecs
from typing import Optional, Union

SUPPORTED_ENCODINGS = frozenset(
    {
        "ascii",
        "utf8",
        "utf-8",
        "utf16le",
        "ucs2",
        "ucs-2",
        "base64",
        "base64url",
        "latin1",
        "binary",
        "hex",
    }
)

_CODEC_NAMES = {
    "ascii": "ascii",
    "utf8": "utf-8",
    "utf-8": "utf-8",
    "utf16le": "utf-16-le",
    "ucs2": "utf-16-le",
    "ucs-2": "utf-16-le",
    "latin1": "latin-1",
    "binary": "latin-1",
}

_BINARY_TO_TEXT = ("hex", "base64", "base64url")

Chunk = Union[bytes, str]


def is_supported(encoding: object) -> bool:
    return isinstance(encoding, str) and encoding.lower() in SUPPORTED_ENCODINGS


def to_bytes(chunk: Chunk, encoding: Optional[str] = None) -> bytes:
    """Convert a write chunk to bytes; str chunks use encoding (default utf8)."""
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    if not isinstance(chunk, str):
        raise TypeError(f"chunk must be bytes or str, not {type(chunk).__name__}")

    name = (encoding or "utf8").lower()
    if name == "hex":
        return binascii.unhexlify(chunk)
    if name == "base64":
        return base64.b64decode(chunk + "=" * (-len(chunk) % 4))
    if name == "base64url":
        return base64.urlsafe_b64decode(chunk + "=" * (-len(chunk) % 4))
    return chunk.encode(_CODEC_NAMES[name])


class ChunkDecoder:
    """
    Incremental bytes -> str decoder for read streams.

    Multi-byte characters and base64 groups split across chunk boundaries
    are carried over to the next chunk.
    """

    def __init__(self, encoding: str) -> None:
        self.encoding = encoding.lower()
        self._pending = b""
        self._decoder = None
        if self.encoding not in _BINARY_TO_TEXT:
            self._decoder = codecs.getincrementaldecoder(_CODEC_NAMES[self.encoding])(errors="replace")

    def decode(self, data: bytes, final: bool = False) -> str:
        if self._decoder is not None:
            return self._decoder.decode(data, final)

        if self.encoding == "hex":
            return data.hex()

        data = self._pending + data
        if final:
            usable, self._pending = data, b""
        else:
            cut = len(data) - len(data) % 3
            usable, self._pending = data[:cut], data[cut:]
        if self.encoding == "base64":
            return base64.b64encode(usable).decode("ascii")
        return base64.urlsafe_b64encode(usable).decode("ascii").rstrip("=")
