"""Resource lookup collaborators and the per-request resource metadata."""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO, Protocol

from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .settings import (
    FileSystemSettings,
    S3Settings,
    load_filesystem_settings_from_env,
    load_s3_settings_from_env,
)

LOG = logging.getLogger("media_stream.resources")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


class ResourceError(Exception):
    """Base class for resource lookup failures."""


class ResourceNotFoundError(ResourceError):
    """The requested resource does not exist."""


class ResourceIOError(ResourceError):
    """The storage backend failed while looking up or opening a resource."""


@dataclass(frozen=True)
class Resource:
    """A stored resource as reported by a resource service."""

    location: str
    filename: str
    size_in_bytes: int
    last_modified: datetime


class ResourceService(Protocol):
    def find(self, resource_id: str, extension: str) -> Resource: ...

    def open_stream(self, resource: Resource) -> BinaryIO: ...


def resolve_content_type(extension: str) -> str:
    """Return the MIME type registered for ``extension``.

    Unknown extensions resolve to ``application/octet-stream``.
    """
    if not extension:
        return DEFAULT_CONTENT_TYPE
    content_type, _ = mimetypes.guess_type(f"resource.{extension}", strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def _epoch_seconds(value: datetime) -> int:
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return int(aware.timestamp())


@dataclass(frozen=True)
class ResourceInfo:
    """Immutable snapshot of a resource's metadata for one request."""

    id: str
    file_name: str
    file_extension: str
    length: int
    last_modified: int
    content_type: str
    etag: str = field(init=False)

    def __post_init__(self) -> None:
        etag = f"{self.id}.{self.file_extension}_{self.length}_{self.last_modified}"
        object.__setattr__(self, "etag", etag)

    @property
    def entity_tag(self) -> str:
        """ETag formatted as a quoted entity-tag for the ``ETag`` header."""
        return f'"{self.etag}"'

    def etag_matches(self, token: str) -> bool:
        return token in (self.entity_tag, self.etag)

    @classmethod
    def from_resource(cls, resource_id: str, resource: Resource) -> ResourceInfo:
        extension = posixpath.splitext(resource.filename)[1].lstrip(".")
        info = cls(
            id=resource_id,
            file_name=resource.filename,
            file_extension=extension,
            length=resource.size_in_bytes,
            last_modified=_epoch_seconds(resource.last_modified),
            content_type=resolve_content_type(extension),
        )
        LOG.debug("etag for requested resource %s = %s", resource_id, info.etag)
        return info


class FileSystemResourceService:
    """Serve resources from a directory on the local filesystem."""

    def __init__(self, settings: FileSystemSettings):
        self._root = Path(settings.root).resolve()
        self._path_template = settings.path_template

    @property
    def root(self) -> Path:
        return self._root

    def describe(self) -> str:
        return f"filesystem {self._root}"

    def find(self, resource_id: str, extension: str) -> Resource:
        relative = self._path_template.format(id=resource_id, extension=extension)
        path = (self._root / relative).resolve()
        try:
            path.relative_to(self._root)
        except ValueError:
            LOG.warning("rejected path outside of root: %s", relative)
            raise ResourceNotFoundError(relative) from None

        try:
            stat = path.stat()
        except FileNotFoundError as error:
            raise ResourceNotFoundError(str(path)) from error
        except OSError as error:
            raise ResourceIOError(str(path)) from error
        if not path.is_file():
            raise ResourceNotFoundError(str(path))

        return Resource(
            location=str(path),
            filename=path.name,
            size_in_bytes=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        )

    def open_stream(self, resource: Resource) -> BinaryIO:
        try:
            return open(resource.location, "rb")  # noqa: SIM115
        except FileNotFoundError as error:
            raise ResourceNotFoundError(resource.location) from error
        except OSError as error:
            raise ResourceIOError(resource.location) from error


class S3ResourceService:
    """Serve resources from an S3 compatible bucket."""

    def __init__(self, settings: S3Settings, client=None):
        self._settings = settings
        self._client = client if client is not None else self._build_client()

    def _build_client(self):
        session = Session(
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            aws_session_token=self._settings.session_token,
            region_name=self._settings.region,
        )
        return session.client(
            "s3",
            endpoint_url=self._settings.endpoint,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3},
                s3={"addressing_style": self._settings.addressing_style},
            ),
        )

    def describe(self) -> str:
        endpoint = self._settings.endpoint or "aws"
        return f"s3://{self._settings.bucket} via {endpoint} ({self._settings.region})"

    def close(self) -> None:
        self._client.close()

    def find(self, resource_id: str, extension: str) -> Resource:
        key = self._settings.key_template.format(id=resource_id, extension=extension)
        try:
            head = self._client.head_object(Bucket=self._settings.bucket, Key=key)
        except ClientError as error:
            raise self._translate(error, key) from error
        except BotoCoreError as error:
            raise ResourceIOError(key) from error

        last_modified = head.get("LastModified") or datetime.fromtimestamp(0, tz=UTC)
        return Resource(
            location=key,
            filename=posixpath.basename(key),
            size_in_bytes=int(head.get("ContentLength", 0)),
            last_modified=last_modified,
        )

    def open_stream(self, resource: Resource) -> BinaryIO:
        try:
            result = self._client.get_object(
                Bucket=self._settings.bucket, Key=resource.location
            )
        except ClientError as error:
            raise self._translate(error, resource.location) from error
        except BotoCoreError as error:
            raise ResourceIOError(resource.location) from error
        return result["Body"]

    def _translate(self, error: ClientError, key: str) -> ResourceError:
        code = error.response.get("Error", {}).get("Code")
        if code in _NOT_FOUND_CODES:
            return ResourceNotFoundError(key)
        LOG.warning(
            "s3 error for s3://%s/%s: %s", self._settings.bucket, key, error
        )
        return ResourceIOError(key)


def build_resource_service(
    backend: str,
    filesystem: FileSystemSettings | None = None,
    s3: S3Settings | None = None,
) -> ResourceService:
    """Create the resource service selected by ``backend``."""
    if backend == "s3":
        return S3ResourceService(s3 or load_s3_settings_from_env())
    if backend == "filesystem":
        return FileSystemResourceService(
            filesystem or load_filesystem_settings_from_env()
        )
    msg = f"Unknown resource backend: {backend}"
    raise ValueError(msg)

