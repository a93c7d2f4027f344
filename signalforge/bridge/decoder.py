"""Frame decoder — turns a raw websocket payload into text candidates.

Upstream framing is undocumented: a payload may be plain text, base64,
gzip or raw deflate, so every transform is attempted and whatever
succeeds is returned.  Pure functions, never raise.
"""

import base64
import binascii
import gzip
import logging
import re
import zlib
from typing import Union

logger = logging.getLogger("signalforge")

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\s]+$")
_WHITESPACE_RE = re.compile(r"\s+")


def _b64decode(text: str) -> bytes | None:
    compact = _WHITESPACE_RE.sub("", text)
    if not compact:
        return None
    # Tolerate missing padding
    compact = compact.rstrip("=")
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact)
    except (binascii.Error, ValueError):
        return None


def _gunzip(data: bytes) -> str | None:
    try:
        return gzip.decompress(data).decode("utf-8", errors="replace")
    except (OSError, EOFError, zlib.error):
        return None


def _inflate_raw(data: bytes) -> str | None:
    try:
        return zlib.decompress(data, -zlib.MAX_WBITS).decode("utf-8", errors="replace")
    except zlib.error:
        return None


def _decompressed(data: bytes) -> list[str]:
    return [s for s in (_gunzip(data), _inflate_raw(data)) if s is not None]


def decode_payload_candidates(payload: Union[str, bytes, bytearray, None]) -> list[str]:
    """Return plausible text renderings of *payload*, most literal first.

    Order: the payload as-is (bytes decoded as UTF-8 with replacement),
    base64 → UTF-8 for text in the base64 alphabet, gzip, raw deflate.
    Compressed forms are also tried on base64-decoded bytes.  The result
    is deduplicated preserving order, with empty strings dropped.
    """
    out: list[str] = []

    if isinstance(payload, str):
        out.append(payload)
        if _BASE64_RE.match(payload):
            raw = _b64decode(payload)
            if raw is not None:
                out.append(raw.decode("utf-8", errors="replace"))
                out.extend(_decompressed(raw))
    elif isinstance(payload, (bytes, bytearray)):
        data = bytes(payload)
        out.append(data.decode("utf-8", errors="replace"))
        out.extend(_decompressed(data))
    else:
        logger.debug("Ignoring payload of type %s", type(payload).__name__)

    seen: set[str] = set()
    unique: list[str] = []
    for candidate in out:
        if candidate and candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique
