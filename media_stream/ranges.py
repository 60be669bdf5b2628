"""Parsing of the ``Range`` request header (RFC 7233)."""

from __future__ import annotations

import re
from dataclasses import dataclass

_RANGE_PATTERN = re.compile(r"^bytes=\s*[0-9]*-[0-9]*(\s*,\s*[0-9]*-[0-9]*)*\s*$")


@dataclass(frozen=True)
class ByteRange:
    """Closed byte interval, both ends inclusive and zero based."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total: int) -> str:
        return f"bytes {self.start}-{self.end}/{total}"


@dataclass(frozen=True)
class NoRange:
    """No usable ``Range`` header; the full resource is served."""


@dataclass(frozen=True)
class InvalidRange:
    """The ``Range`` header is malformed or cannot be satisfied."""

    reason: str


@dataclass(frozen=True)
class Ranges:
    """One or more satisfiable byte ranges."""

    ranges: tuple[ByteRange, ...]

    def __len__(self) -> int:
        return len(self.ranges)

    def __iter__(self):
        return iter(self.ranges)


RangeResult = NoRange | InvalidRange | Ranges

NO_RANGE = NoRange()


def full_range(length: int) -> ByteRange:
    return ByteRange(0, length - 1)


def parse_range_spec(spec: str, length: int) -> ByteRange | None:
    """Resolve one ``first-last`` spec against the resource length.

    The first-byte-pos gives the offset of the first byte, the last-byte-pos
    the offset of the last one, both inclusive. A missing first-byte-pos
    selects the final ``last`` bytes (``-500`` on 10000 bytes is 9500-9999),
    a missing or too large last-byte-pos extends to the end of the resource.
    Returns ``None`` when the spec is not satisfiable.
    """
    first, _, last = spec.strip().partition("-")
    if not first:
        if not last or int(last) == 0:
            return None
        start = max(length - int(last), 0)
        end = length - 1
    else:
        start = int(first)
        end = length - 1 if not last or int(last) > length - 1 else int(last)

    if start > end:
        return None
    return ByteRange(start, end)


def parse_range_header(
    range_header: str | None, length: int, *, ignore_ranges: bool = False
) -> RangeResult:
    """Parse a ``Range`` header into a :data:`RangeResult`.

    Args:
        range_header: Raw header value, ``None`` when the header is absent.
        length: Total resource length in bytes.
        ignore_ranges: Serve the full resource even for a well formed header,
            used when an ``If-Range`` validator no longer matches. Syntax
            errors are still reported.

    Returns:
        ``NO_RANGE`` for a missing or ignored header, ``InvalidRange`` for a
        syntax or logic error (one bad spec invalidates the whole header) and
        ``Ranges`` otherwise.
    """
    if range_header is None:
        return NO_RANGE
    if not _RANGE_PATTERN.match(range_header):
        return InvalidRange(f"malformed range header {range_header!r}")
    if ignore_ranges:
        return NO_RANGE

    specs = range_header.split("=", 1)[1].split(",")
    ranges: list[ByteRange] = []
    for spec in specs:
        byte_range = parse_range_spec(spec, length)
        if byte_range is None:
            return InvalidRange(
                f"unsatisfiable range {spec.strip()!r} for {length} bytes"
            )
        ranges.append(byte_range)
    return Ranges(tuple(ranges))
