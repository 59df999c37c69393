"""Best-effort text recovery from typedstream attributedBody blobs.

The attributedBody column holds an NSMutableAttributedString serialized with
the legacy NSArchiver "typedstream" format. The format is undocumented, so
text is recovered with an ordered list of strategies:

1. Find a known marker that precedes a length-prefixed string and decode it.
2. Scan the blob for the longest run of printable bytes.

Nothing in this module raises for malformed input. Every strategy returns
None (or an empty string) when it cannot recover text.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Fraction of characters that must be printable for decoded bytes to count as text
PRINTABLE_THRESHOLD = 0.8

# Lengths at or above this are treated as garbage
MAX_TEXT_LENGTH = 100_000

# Length prefix markers
U16_LENGTH_MARKER = 0x81
U32_LENGTH_MARKER = 0x82

# Content marker: the length of the message string follows directly
CONTENT_MARKER = b"\x01\x2b"
NSSTRING_MARKER = b"NSString"
NSMUTABLESTRING_MARKER = b"NSMutableString"

_REGION_SKIP_PREFIXES = ("NS", "streamtyped")
_REGION_SKIP_SUBSTRINGS = ("NSString", "NSMutableAttributedString")


def decode_var_length(data: bytes, pos: int) -> tuple[int, int]:
    """Decode a typedstream length prefix.

    Args:
        data: Raw blob.
        pos: Offset of the first length byte.

    Returns:
        Tuple of (length, bytes consumed). (0, 0) when pos is out of bounds,
        (0, 1) when a multi-byte length is truncated.
    """
    if pos < 0 or pos >= len(data):
        return 0, 0

    first = data[pos]
    if first < 0x80:
        return first, 1

    if first == U16_LENGTH_MARKER:
        if pos + 3 > len(data):
            return 0, 1
        return int.from_bytes(data[pos + 1 : pos + 3], "little"), 3

    if first == U32_LENGTH_MARKER:
        if pos + 5 > len(data):
            return 0, 1
        return int.from_bytes(data[pos + 1 : pos + 5], "little"), 5

    # Other high bytes are read as a plain single-byte length
    return first, 1


def is_printable_text(text: str, threshold: float = PRINTABLE_THRESHOLD) -> bool:
    """Check whether a decoded string is mostly printable.

    Printable means ASCII 0x20-0x7E, any code point above 0x7F, or
    newline, carriage return and tab.
    """
    if not text:
        return False

    printable = 0
    for char in text:
        code = ord(char)
        if 0x20 <= code <= 0x7E or code > 0x7F or char in "\n\r\t":
            printable += 1

    return printable / len(text) >= threshold


def _read_length_prefixed(data: bytes, pos: int) -> str | None:
    """Decode the length-prefixed UTF-8 string starting at pos."""
    length, consumed = decode_var_length(data, pos)
    if consumed == 0 or length <= 0 or length >= MAX_TEXT_LENGTH:
        return None

    start = pos + consumed
    end = start + length
    if end > len(data):
        return None

    try:
        text = data[start:end].decode("utf-8")
    except UnicodeDecodeError:
        return None

    return text if is_printable_text(text) else None


def _skip_padding(data: bytes, pos: int) -> int:
    """Advance past NUL and control bytes that follow a class name."""
    while pos < len(data) and data[pos] < 0x20:
        pos += 1
    return pos


def _from_content_marker(data: bytes) -> str | None:
    idx = data.find(CONTENT_MARKER)
    if idx == -1:
        return None
    return _read_length_prefixed(data, idx + len(CONTENT_MARKER))


def _class_marker_strategy(marker: bytes) -> Callable[[bytes], str | None]:
    def strategy(data: bytes) -> str | None:
        idx = data.find(marker)
        if idx == -1:
            return None
        # Length bytes below 0x20 are indistinguishable from padding here
        pos = _skip_padding(data, idx + len(marker))
        return _read_length_prefixed(data, pos)

    strategy.__name__ = f"_from_{marker.decode('ascii').lower()}_marker"
    return strategy


# Tried in order, first non-None result wins
MARKER_STRATEGIES: tuple[Callable[[bytes], str | None], ...] = (
    _from_content_marker,
    _class_marker_strategy(NSSTRING_MARKER),
    _class_marker_strategy(NSMUTABLESTRING_MARKER),
)


def extract_marker_text(data: bytes | None) -> str | None:
    """Recover the message string that follows a known marker.

    Args:
        data: Raw attributedBody blob.

    Returns:
        Decoded text from the first strategy that succeeds, or None.
    """
    if not data:
        return None

    for strategy in MARKER_STRATEGIES:
        text = strategy(data)
        if text is not None:
            return text
    return None


def _is_region_byte(byte: int) -> bool:
    # 0xC0-0xF7 approximates UTF-8 lead bytes; continuation bytes end a run
    return 0x20 <= byte <= 0x7E or byte in (0x0A, 0x0D, 0x09) or 0xC0 <= byte <= 0xF7


def _is_noise(region: str) -> bool:
    if region.startswith(_REGION_SKIP_PREFIXES):
        return True
    return any(marker in region for marker in _REGION_SKIP_SUBSTRINGS)


def scan_printable_regions(data: bytes | None) -> str:
    """Return the longest printable run in the blob that is not format noise.

    Args:
        data: Raw attributedBody blob.

    Returns:
        Longest surviving region (first one wins ties), or "" if none survive.
    """
    if not data:
        return ""

    regions: list[str] = []
    start = -1

    for i, byte in enumerate(data):
        if _is_region_byte(byte):
            if start == -1:
                start = i
            continue
        if start != -1:
            regions.append(data[start:i].decode("utf-8", errors="replace"))
            start = -1

    if start != -1:
        regions.append(data[start:].decode("utf-8", errors="replace"))

    best = ""
    for region in regions:
        if len(region) < 2 or not is_printable_text(region) or _is_noise(region):
            continue
        if len(region) > len(best):
            best = region
    return best
