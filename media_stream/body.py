from __future__ import annotations

import io
import logging
import zlib
from typing import TYPE_CHECKING, Any

from anyio import get_cancelled_exc_class, to_thread

from .resources import ResourceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence
    from typing import BinaryIO

    from .ranges import ByteRange
    from .resources import Resource, ResourceInfo, ResourceService

LOG = logging.getLogger("media_stream.body")

CRLF = b"\r\n"


async def run_sync(func: Callable[..., Any], /, *args: Any) -> Any:
    return await to_thread.run_sync(func, *args)


async def no_content() -> AsyncIterator[bytes]:
    """Yield nothing.

    Body of HEAD responses: a plain empty response would be sent with
    ``Content-Length: 0`` where the GET body has an unknown length.
    """
    return
    yield b""


def close_quietly(stream: Any) -> None:
    """Close ``stream``, logging instead of raising on failure.

    Closing generally only fails when the client already went away.
    """
    if stream is None:
        return
    try:
        stream.close()
    except Exception:  # noqa: BLE001
        LOG.debug("ignoring error while closing %r", stream, exc_info=True)


def skip(stream: BinaryIO, count: int, buffer_size: int) -> int:
    """Advance ``stream`` by ``count`` bytes, returning how many were skipped."""
    if count <= 0:
        return 0
    seekable = getattr(stream, "seekable", None)
    if seekable is not None and seekable():
        stream.seek(count, io.SEEK_CUR)
        return count
    skipped = 0
    while skipped < count:
        chunk = stream.read(min(buffer_size, count - skipped))
        if not chunk:
            break
        skipped += len(chunk)
    return skipped


def part_header(boundary: str, content_type: str, content_range: str) -> bytes:
    lines = [
        b"",
        f"--{boundary}".encode("latin-1"),
        f"Content-Type: {content_type}".encode("latin-1"),
        f"Content-Range: {content_range}".encode("latin-1"),
        b"",
        b"",
    ]
    return CRLF.join(lines)


def closing_delimiter(boundary: str) -> bytes:
    return CRLF + f"--{boundary}--".encode("latin-1") + CRLF


class ContentStreamer:
    """Write the requested byte ranges of a resource as a response body.

    One range is copied as is; several ranges are framed as a
    ``multipart/byteranges`` body. The output can be gzip encoded.
    """

    def __init__(
        self,
        service: ResourceService,
        resource: Resource,
        info: ResourceInfo,
        ranges: Sequence[ByteRange],
        *,
        content_type: str,
        boundary: str,
        gzip: bool = False,
        buffer_size: int = 10240,
    ):
        if not ranges:
            msg = "at least one range is required"
            raise ValueError(msg)
        self._service = service
        self._resource = resource
        self._info = info
        self._ranges = tuple(ranges)
        self._content_type = content_type
        self._boundary = boundary
        self._gzip = gzip
        self._buffer_size = buffer_size

    @property
    def multipart(self) -> bool:
        return len(self._ranges) > 1

    async def stream(self) -> AsyncIterator[bytes]:
        compressor = None
        if self._gzip:
            compressor = zlib.compressobj(wbits=zlib.MAX_WBITS | 16)

        def encode(data: bytes) -> bytes:
            return compressor.compress(data) if compressor is not None else data

        source = None
        position = 0
        try:
            for byte_range in self._ranges:
                if source is None or byte_range.start < position:
                    close_quietly(source)
                    source = await run_sync(self._service.open_stream, self._resource)
                    position = 0

                if self.multipart:
                    header = part_header(
                        self._boundary,
                        self._content_type,
                        byte_range.content_range(self._info.length),
                    )
                    encoded = encode(header)
                    if encoded:
                        yield encoded

                async for chunk in self._copy(source, position, byte_range):
                    encoded = encode(chunk)
                    if encoded:
                        yield encoded
                position = byte_range.end + 1

            if self.multipart:
                encoded = encode(closing_delimiter(self._boundary))
                if encoded:
                    yield encoded
            if compressor is not None:
                yield compressor.flush()
        except (GeneratorExit, get_cancelled_exc_class()):
            LOG.debug(
                "client aborted stream of %s.%s",
                self._info.id,
                self._info.file_extension,
            )
            raise
        except (OSError, ResourceError):
            LOG.warning(
                "streaming %s.%s failed",
                self._info.id,
                self._info.file_extension,
                exc_info=True,
            )
        finally:
            close_quietly(source)

    async def _copy(
        self, source: BinaryIO, position: int, byte_range: ByteRange
    ) -> AsyncIterator[bytes]:
        total = self._info.length
        if position == 0 and byte_range.length == total:
            LOG.debug(
                "writing full range (%d kB of total %d kB)",
                byte_range.length // 1024,
                total // 1024,
            )
            while True:
                chunk = await run_sync(source.read, self._buffer_size)
                if not chunk:
                    break
                yield chunk
            return

        LOG.debug(
            "writing partial range (from byte %d to byte %d = %d kB of total %d kB)",
            byte_range.start,
            byte_range.end,
            byte_range.length // 1024,
            total // 1024,
        )
        await run_sync(skip, source, byte_range.start - position, self._buffer_size)
        remaining = byte_range.length
        while remaining > 0:
            chunk = await run_sync(source.read, min(self._buffer_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
