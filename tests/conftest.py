from __future__ import annotations

import io
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

import pytest
from litestar import Request
from litestar.types import HTTPScope
from media_stream import StreamingResponder, StreamingSettings
from media_stream.resources import Resource, ResourceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Generator

    from litestar.response import Response


LAST_MODIFIED = datetime(2024, 6, 15, 10, 0, 0, tzinfo=UTC)


class TrackingStream(io.BytesIO):
    """In-memory stream that can pretend not to be seekable."""

    def __init__(self, content: bytes, *, seekable: bool = True):
        super().__init__(content)
        self._seekable = seekable

    def seekable(self) -> bool:
        return self._seekable


class InMemoryResourceService:
    """Resource service keeping its resources in a dict."""

    def __init__(self, *, seekable: bool = True):
        self._objects: dict[tuple[str, str], tuple[bytes, datetime]] = {}
        self._seekable = seekable
        self.opened: list[TrackingStream] = []

    def add(
        self,
        resource_id: str,
        extension: str,
        content: bytes,
        last_modified: datetime = LAST_MODIFIED,
    ) -> None:
        self._objects[(resource_id, extension)] = (content, last_modified)

    def find(self, resource_id: str, extension: str) -> Resource:
        try:
            content, last_modified = self._objects[(resource_id, extension)]
        except KeyError:
            raise ResourceNotFoundError(f"{resource_id}.{extension}") from None
        return Resource(
            location=f"{resource_id}.{extension}",
            filename=f"{resource_id}.{extension}",
            size_in_bytes=len(content),
            last_modified=last_modified,
        )

    def open_stream(self, resource: Resource) -> TrackingStream:
        resource_id, extension = resource.location.rsplit(".", 1)
        content, _ = self._objects[(resource_id, extension)]
        stream = TrackingStream(content, seekable=self._seekable)
        self.opened.append(stream)
        return stream


@pytest.fixture
def binary_content() -> bytes:
    """Return 1000 bytes where every byte differs from its neighbours."""
    return bytes(i % 251 for i in range(1000))


@pytest.fixture
def text_content() -> bytes:
    return b"".join(b"line %04d of the streamed text file\n" % i for i in range(200))


@pytest.fixture
def memory_service(
    binary_content: bytes, text_content: bytes
) -> InMemoryResourceService:
    service = InMemoryResourceService()
    service.add("video", "mp4", binary_content)
    service.add("blob", "bin", binary_content)
    service.add("notes", "txt", text_content)
    service.add("cover", "png", binary_content)
    service.add("empty", "mp3", b"")
    return service


@pytest.fixture
def non_seekable_service(binary_content: bytes) -> InMemoryResourceService:
    service = InMemoryResourceService(seekable=False)
    service.add("blob", "bin", binary_content)
    return service


@pytest.fixture
def streaming_settings() -> StreamingSettings:
    return StreamingSettings(
        expire_seconds=3600, buffer_size=64, multipart_boundary="MULTIPART_BYTERANGES"
    )


@pytest.fixture
def responder(
    streaming_settings: StreamingSettings, memory_service: InMemoryResourceService
) -> StreamingResponder:
    return StreamingResponder(settings=streaming_settings, service=memory_service)


@pytest.fixture
def make_request() -> Callable[..., Request]:
    """Build a litestar request for a method, path and headers."""

    def factory(
        method: str, path: str, headers: dict[str, str] | None = None
    ) -> Request:
        scope = cast(
            HTTPScope,
            {
                "type": "http",
                "method": method,
                "path": path,
                "query_string": b"",
                "headers": [
                    (key.lower().encode("latin-1"), value.encode("latin-1"))
                    for key, value in (headers or {}).items()
                ],
            },
        )

        async def receive():
            return {"type": "http.request", "body": b""}

        return Request(scope=scope, receive=receive)

    return factory


async def _read_body(response: Response) -> bytes:
    body_chunks = []
    iterator_attr = getattr(response, "iterator", None)
    if callable(iterator_attr):
        iterator_func = cast(Callable[[], AsyncIterator[bytes]], iterator_attr)
        async for chunk in iterator_func():
            body_chunks.append(chunk)
    return b"".join(body_chunks)


@pytest.fixture
def read_body() -> Callable[[Response], Awaitable[bytes]]:
    """Return a coroutine function draining the iterator of a streaming response."""
    return _read_body


def _set_env(env_vars: dict[str, str]) -> Generator[dict[str, str]]:
    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def stream_env_vars(tmp_path) -> Generator[dict[str, str]]:
    """Set up environment variables for a filesystem backed responder."""
    yield from _set_env(
        {
            "MEDIA_STREAM_EXPIRE_SECONDS": "60",
            "MEDIA_STREAM_BUFFER_SIZE": "512",
            "MEDIA_STREAM_MULTIPART_BOUNDARY": "TEST_BOUNDARY",
            "MEDIA_STREAM_BACKEND": "filesystem",
            "MEDIA_STREAM_ROOT": str(tmp_path),
        }
    )


@pytest.fixture
def s3_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for an S3 backed responder."""
    yield from _set_env(
        {
            "MEDIA_STREAM_BACKEND": "s3",
            "MEDIA_STREAM_S3_ENDPOINT": "http://127.0.0.1:9000",
            "MEDIA_STREAM_S3_ACCESS_KEY": "minio",
            "MEDIA_STREAM_S3_SECRET_KEY": "minio123",
            "MEDIA_STREAM_S3_REGION": "eu-central-1",
            "MEDIA_STREAM_S3_BUCKET": "media-test",
            "MEDIA_STREAM_S3_KEY_TEMPLATE": "streams/{id}/default.{extension}",
        }
    )
