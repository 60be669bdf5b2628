from __future__ import annotations

import logging
import re
from http import HTTPStatus
from typing import TYPE_CHECKING

from litestar.enums import MediaType
from litestar.response import Response, Stream

from .body import ContentStreamer, no_content, run_sync
from .conditions import (
    accepts,
    if_range_satisfied,
    not_modified,
    precondition_failed,
)
from .headers import (
    cache_headers,
    charset_content_type,
    content_headers,
    validator_headers,
)
from .ranges import InvalidRange, Ranges, full_range, parse_range_header
from .resources import (
    ResourceInfo,
    ResourceIOError,
    ResourceNotFoundError,
    build_resource_service,
)
from .settings import (
    FileSystemSettings,
    S3Settings,
    StreamingSettings,
    load_streaming_settings_from_env,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar import Request

    from .resources import ResourceService

LOG = logging.getLogger("media_stream.responder")

STREAM_PATH = re.compile(r"^/stream/(?P<id>[^/]+)/default\.(?P<extension>[^/]+)$")

ALLOWED_METHODS = ("GET", "HEAD")


class StreamingResponder:
    """Answer GET and HEAD requests for stored media resources.

    Handles ``ETag``/``If-None-Match``/``If-Modified-Since`` caching
    requests and ``Range``/``If-Range`` ranging requests (RFC 7232 and
    RFC 7233), as needed by media players for audio/video streaming, by
    browsers to resume paused downloads and by download accelerators that
    fetch several parts at once.
    """

    def __init__(self, settings: StreamingSettings, service: ResourceService):
        self._settings = settings
        self._service = service

    @property
    def settings(self) -> StreamingSettings:
        return self._settings

    async def startup(self) -> None:
        LOG.info(
            "media stream ready (backend=%s, expires=%ss, buffer=%s bytes)",
            self._describe_service(),
            self._settings.expire_seconds,
            self._settings.buffer_size,
        )

    async def shutdown(self) -> None:
        close = getattr(self._service, "close", None)
        if close is not None:
            await run_sync(close)

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        match = STREAM_PATH.match(path)
        if match is None:
            LOG.debug("no stream route for path=%s", path)
            return self._error(HTTPStatus.NOT_FOUND)
        if request.method not in ALLOWED_METHODS:
            return self._error(
                HTTPStatus.METHOD_NOT_ALLOWED,
                {"Allow": ", ".join(ALLOWED_METHODS)},
            )

        resource_id = match.group("id")
        extension = match.group("extension")
        if request.method == "HEAD":
            LOG.info("HEAD for resource %s.%s requested", resource_id, extension)
        else:
            LOG.info("stream for resource %s.%s requested", resource_id, extension)
        return await self.respond(
            resource_id,
            extension,
            request.headers,
            head=request.method == "HEAD",
        )

    async def respond(
        self,
        resource_id: str,
        extension: str,
        headers: Mapping[str, str],
        *,
        head: bool = False,
    ) -> Response:
        """Create the response for one resource request.

        Args:
            resource_id: Identifier of the requested resource.
            extension: Requested file extension / format.
            headers: Case-insensitive request headers.
            head: Only compute the headers, without a body.

        Returns:
            A plain response for 304/404/412/416, a streaming response
            otherwise. HEAD responses stream an empty body.
        """
        self._log_request_headers(headers)

        try:
            resource = await run_sync(self._service.find, resource_id, extension)
        except ResourceNotFoundError:
            LOG.info(
                "response %d: resource with id %s and extension %s not found",
                HTTPStatus.NOT_FOUND,
                resource_id,
                extension,
            )
            return self._error(HTTPStatus.NOT_FOUND)
        except ResourceIOError:
            LOG.warning(
                "response %d: error referencing streaming resource with id %s "
                "and extension %s",
                HTTPStatus.NOT_FOUND,
                resource_id,
                extension,
                exc_info=True,
            )
            return self._error(HTTPStatus.NOT_FOUND)

        info = ResourceInfo.from_resource(resource_id, resource)
        if info.length <= 0:
            LOG.warning(
                "response %d: error streaming resource with id %s and extension %s: "
                "not found/no size",
                HTTPStatus.NOT_FOUND,
                resource_id,
                extension,
            )
            return self._error(HTTPStatus.NOT_FOUND)

        if precondition_failed(headers, info):
            LOG.warning(
                "response %d: precondition If-Match/If-Unmodified-Since failed for "
                "resource with id %s and extension %s",
                HTTPStatus.PRECONDITION_FAILED,
                resource_id,
                extension,
            )
            return self._error(HTTPStatus.PRECONDITION_FAILED)

        response_headers = cache_headers(self._settings.expire_seconds)
        response_headers.update(validator_headers(info))

        if not_modified(headers, info):
            LOG.debug(
                "response %d: not modified for resource with id %s and extension %s",
                HTTPStatus.NOT_MODIFIED,
                resource_id,
                extension,
            )
            return Response(
                content=b"",
                status_code=HTTPStatus.NOT_MODIFIED,
                headers=response_headers,
            )

        result = parse_range_header(
            headers.get("range"),
            info.length,
            ignore_ranges=not if_range_satisfied(headers, info),
        )
        if isinstance(result, InvalidRange):
            response_headers["Content-Range"] = f"bytes */{info.length}"
            LOG.warning(
                "response %d: range for resource with id %s and extension %s "
                "not satisfiable (%s)",
                HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE,
                resource_id,
                extension,
                result.reason,
            )
            return self._error(
                HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE, response_headers
            )

        if isinstance(result, Ranges):
            ranges = list(result.ranges)
            status = HTTPStatus.PARTIAL_CONTENT
        else:
            ranges = [full_range(info.length)]
            status = HTTPStatus.OK

        content_type, headers_for_content = content_headers(
            info,
            ranges,
            accept=headers.get("accept"),
            partial=status == HTTPStatus.PARTIAL_CONTENT,
            boundary=self._settings.multipart_boundary,
        )
        response_headers["Content-Type"] = content_type
        response_headers.update(headers_for_content)

        part_content_type = charset_content_type(info.content_type)
        accepts_gzip = False
        if info.content_type.startswith("text"):
            accept_encoding = headers.get("accept-encoding")
            accepts_gzip = accept_encoding is not None and accepts(
                accept_encoding, "gzip"
            )
            response_headers["Vary"] = "Accept-Encoding"
        if accepts_gzip:
            response_headers["Content-Encoding"] = "gzip"
            # The compressed size is unknown up front.
            response_headers.pop("Content-Length", None)

        if head:
            return Stream(
                content=no_content, status_code=status, headers=response_headers
            )

        streamer = ContentStreamer(
            self._service,
            resource,
            info,
            ranges,
            content_type=part_content_type,
            boundary=self._settings.multipart_boundary,
            gzip=accepts_gzip,
            buffer_size=self._settings.buffer_size,
        )
        LOG.debug(
            "response %d for resource %s.%s (%d range(s), gzip=%s)",
            status,
            resource_id,
            extension,
            len(ranges),
            accepts_gzip,
        )
        return Stream(
            content=streamer.stream, status_code=status, headers=response_headers
        )

    def _error(
        self, status: HTTPStatus, headers: Mapping[str, str] | None = None
    ) -> Response:
        return Response(
            content=status.phrase,
            status_code=status,
            headers=dict(headers or {}),
            media_type=MediaType.TEXT,
        )

    def _log_request_headers(self, headers: Mapping[str, str]) -> None:
        if not LOG.isEnabledFor(logging.DEBUG):
            return
        for name, value in headers.items():
            LOG.debug("request header: %s = %s", name, value)

    def _describe_service(self) -> str:
        describe = getattr(self._service, "describe", None)
        if describe is not None:
            return describe()
        return type(self._service).__name__

    @classmethod
    def from_env(cls) -> StreamingResponder:
        """Create a StreamingResponder from environment variables.

        Returns:
            StreamingResponder configured from environment variables.
        """
        return cls.from_settings(load_streaming_settings_from_env())

    @classmethod
    def from_settings(
        cls,
        settings: StreamingSettings,
        filesystem: FileSystemSettings | None = None,
        s3: S3Settings | None = None,
    ) -> StreamingResponder:
        service = build_resource_service(
            settings.backend, filesystem=filesystem, s3=s3
        )
        return cls(settings=settings, service=service)
