"""Transparent gzip compression for large text payloads.

Compression is an optimisation, never a requirement: any failure falls back
to the raw bytes and the caller records ``compressed=False``.
"""

import gzip
import logging
import zlib

logger = logging.getLogger(__name__)


def compress_text(text: str, threshold: int = 1024) -> tuple[bytes, bool]:
    """
    Encode text for the large-object tier.

    Returns:
        (payload, compressed) - gzip'd UTF-8 when ``len(text) > threshold``
        and compression actually shrank it, raw UTF-8 otherwise
    """
    raw = text.encode("utf-8")
    if len(text) <= threshold:
        return raw, False
    try:
        packed = gzip.compress(raw)
    except (OSError, zlib.error) as e:
        logger.warning(f"⚠ Compression failed, storing raw text: {e}")
        return raw, False
    if len(packed) >= len(raw):
        return raw, False
    logger.debug(f"Compressed text {len(raw)} → {len(packed)} bytes")
    return packed, True


def decompress_text(payload: bytes, compressed: bool) -> str:
    """Reverse compress_text. A corrupt gzip stream is returned decoded as-is."""
    if compressed:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as e:
            logger.warning(f"⚠ Decompression failed, returning raw payload: {e}")
    return payload.decode("utf-8", errors="replace")
