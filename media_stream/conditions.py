"""Conditional request evaluation (RFC 7232) against a resource's validators."""

from __future__ import annotations

import re
from datetime import UTC
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .resources import ResourceInfo

_MATCH_SPLIT = re.compile(r"\s*,\s*")
_ACCEPT_SPLIT = re.compile(r"\s*[,;]\s*")


def matches(match_header: str, to_match: str) -> bool:
    """Return True if a match header lists ``to_match`` or the ``*`` wildcard."""
    values = set(_MATCH_SPLIT.split(match_header.strip()))
    return to_match in values or "*" in values


def accepts(accept_header: str, to_accept: str) -> bool:
    """Return True if an accept header accepts ``to_accept``.

    ``text/plain`` is accepted by ``text/plain``, ``text/*`` or ``*/*``.
    """
    values = set(_ACCEPT_SPLIT.split(accept_header.strip()))
    wildcard = re.sub(r"/.*$", "/*", to_accept)
    return to_accept in values or wildcard in values or "*/*" in values


def parse_http_date(value: str | None) -> int | None:
    """Parse an HTTP date header into epoch seconds, ``None`` if unparseable."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def modified(header_seconds: int, last_modified: int) -> bool:
    """Return True if ``last_modified`` is at least a second after the header date."""
    return header_seconds + 1 <= last_modified


def _etag_matches(match_header: str, info: ResourceInfo) -> bool:
    return matches(match_header, info.entity_tag) or matches(match_header, info.etag)


def precondition_failed(headers: Mapping[str, str], info: ResourceInfo) -> bool:
    """Evaluate ``If-Match`` and ``If-Unmodified-Since``.

    ``If-Unmodified-Since`` is only consulted when ``If-Match`` is absent.
    """
    match = headers.get("if-match")
    if match is not None:
        return not _etag_matches(match, info)
    unmodified = parse_http_date(headers.get("if-unmodified-since"))
    return unmodified is not None and modified(unmodified, info.last_modified)


def not_modified(headers: Mapping[str, str], info: ResourceInfo) -> bool:
    """Evaluate ``If-None-Match`` and ``If-Modified-Since``.

    ``If-Modified-Since`` is ignored when any ``If-None-Match`` is sent.
    """
    no_match = headers.get("if-none-match")
    if no_match is not None:
        return _etag_matches(no_match, info)
    since = parse_http_date(headers.get("if-modified-since"))
    return since is not None and not modified(since, info.last_modified)


def if_range_satisfied(headers: Mapping[str, str], info: ResourceInfo) -> bool:
    """Return False if an ``If-Range`` validator says the ranges must be ignored."""
    if_range = headers.get("if-range")
    if if_range is None or info.etag_matches(if_range.strip()):
        return True
    since = parse_http_date(if_range)
    return since is not None and not modified(since, info.last_modified)
