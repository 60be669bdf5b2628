from __future__ import annotations

import time
from email.utils import formatdate
from typing import TYPE_CHECKING
from urllib.parse import quote

from .conditions import accepts

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .ranges import ByteRange
    from .resources import ResourceInfo

CONTENT_DISPOSITION = (
    "{disposition};filename=\"{filename}\"; filename*=UTF-8''{filename}"
)

# RFC 3986 unreserved characters plus the sub-delims browsers leave alone.
_URI_SAFE = "!'()~*-._"


def http_date(epoch_seconds: float) -> str:
    return formatdate(epoch_seconds, usegmt=True)


def encode_uri(value: str) -> str:
    """Percent-encode a filename using UTF-8 (space becomes ``%20``)."""
    return quote(value, safe=_URI_SAFE, encoding="utf-8")


def cache_headers(expire_seconds: int, now: float | None = None) -> dict[str, str]:
    """Build ``Cache-Control``/``Expires``/``Pragma`` for the expiry time."""
    if expire_seconds > 0:
        now = time.time() if now is None else now
        return {
            "Cache-Control": f"public,max-age={expire_seconds},must-revalidate",
            "Expires": http_date(now + expire_seconds),
            # Empty pragma keeps the server from adding its own.
            "Pragma": "",
        }
    return no_cache_headers()


def no_cache_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-cache,no-store,must-revalidate",
        "Expires": http_date(0),
        "Pragma": "no-cache",
    }


def validator_headers(info: ResourceInfo) -> dict[str, str]:
    return {
        "ETag": info.entity_tag,
        "Last-Modified": http_date(info.last_modified),
    }


def is_attachment(accept: str | None, content_type: str) -> bool:
    """Return True if the client should get a "Save As" dialog.

    Only text and image types are shown inline, and only when the client
    sends no ``Accept`` header or one that accepts the type.
    """
    if not content_type.startswith(("text", "image")):
        return True
    return accept is not None and not accepts(accept, content_type)


def content_disposition(disposition: str, filename: str) -> str:
    return CONTENT_DISPOSITION.format(
        disposition=disposition, filename=encode_uri(filename)
    )


def charset_content_type(content_type: str) -> str:
    """Append the UTF-8 charset to text types."""
    if content_type.startswith("text") and "charset" not in content_type:
        return f"{content_type};charset=UTF-8"
    return content_type


def multipart_content_type(boundary: str) -> str:
    return f"multipart/byteranges; boundary={boundary}"


def content_headers(
    info: ResourceInfo,
    ranges: Sequence[ByteRange],
    *,
    accept: str | None,
    partial: bool,
    boundary: str,
) -> tuple[str, dict[str, str]]:
    """Compute the content headers for the ranges being served.

    Returns the response media type and the remaining headers. A single
    range carries ``Content-Length`` (and ``Content-Range`` for a partial
    response); several ranges become a ``multipart/byteranges`` body.
    """
    content_type = info.content_type
    disposition = "attachment" if is_attachment(accept, content_type) else "inline"
    headers = {
        "Content-Disposition": content_disposition(disposition, info.file_name),
        "Accept-Ranges": "bytes",
    }

    if len(ranges) == 1:
        byte_range = ranges[0]
        headers["Content-Length"] = str(byte_range.length)
        if partial:
            headers["Content-Range"] = byte_range.content_range(info.length)
        return charset_content_type(content_type), headers

    return multipart_content_type(boundary), headers
