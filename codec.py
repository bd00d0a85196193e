"""Reversible transform for large message bodies: zlib deflate, then base64 so it fits a text field."""

import base64
import binascii
import zlib
from typing import Optional

from constants import COMPRESSION_THRESHOLD
from logging_config import get_logger

logger = get_logger(__name__)


class CompressionError(ValueError):
    pass


def compress(text: str) -> str:
    return base64.b64encode(zlib.compress(text.encode("utf-8"))).decode("ascii")


def decompress(data: str) -> str:
    try:
        return zlib.decompress(base64.b64decode(data.encode("ascii"), validate=True)).decode("utf-8")
    except (binascii.Error, zlib.error, UnicodeError) as e:
        raise CompressionError(f"Could not decompress message content: {e}") from e


def should_compress(text: str, threshold: int = COMPRESSION_THRESHOLD) -> bool:
    return len(text) > threshold


def encode_content(text: str, threshold: int = COMPRESSION_THRESHOLD) -> tuple[str, bool]:
    """Return (stored_content, is_compressed) for a message body."""
    if should_compress(text, threshold):
        encoded = compress(text)
        logger.debug(f"Compressed message content {len(text)} -> {len(encoded)} chars")
        return encoded, True
    return text, False


def read_content(content: Optional[str], is_compressed: bool) -> Optional[str]:
    """Read path for stored content. A corrupt payload is logged and returned as stored."""
    if not is_compressed or content is None:
        return content
    try:
        return decompress(content)
    except CompressionError as e:
        logger.error(f"Decompression error: {e}")
        return content
