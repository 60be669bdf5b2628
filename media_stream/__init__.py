"""Range and conditional request aware media streaming service."""

from .app import create_app
from .resources import ResourceInfo
from .responder import StreamingResponder
from .settings import FileSystemSettings, S3Settings, StreamingSettings

__all__ = [
    "FileSystemSettings",
    "ResourceInfo",
    "S3Settings",
    "StreamingResponder",
    "StreamingSettings",
    "create_app",
]
