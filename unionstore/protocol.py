"""Union path parsing.

A union path names an object in one of the supported backends:

- Qiniu: ``qiniu:/path/to/key`` or ``qiniu:///path/to/key``
- S3: ``s3:/path/to/key`` or ``s3:///path/to/key``
- Local filesystem: ``/absolute/path``

Network paths (``qiniu://host/key``) are not supported and always fail to
classify, whatever the scheme.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Tuple
from urllib.parse import unquote, urlsplit

from unionstore.exceptions import PathProtocolError

__all__ = [
    "PathProtocol",
    "UnionPath",
    "get_path_protocol",
    "is_union_path",
]

# A '%' not followed by two hex digits
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class PathProtocol(str, Enum):
    QINIU = "qiniu"
    S3 = "s3"
    OS = ""
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class UnionPath:
    """Classified union path.

    Attributes:
        protocol: Backend protocol owning the path
        key: Normalized backend-local key
        original: Original unparsed path
    """

    protocol: PathProtocol
    key: str
    original: str

    @staticmethod
    def parse(path: str) -> "UnionPath":
        """Classify a union path and normalize its key.

        Object-store keys lose their leading slash; local paths keep it.
        A scheme that is not recognised yields ``PathProtocol.UNKNOWN``
        without raising.

        Raises:
            PathProtocolError: If the path is malformed, empty, names a
                network host, or is a relative local path

        Example:
            >>> UnionPath.parse("s3:///bucket/data.csv")
            UnionPath(protocol=<PathProtocol.S3: 's3'>, key='bucket/data.csv', original='s3:///bucket/data.csv')
        """
        if _CONTROL_CHARS.search(path):
            raise PathProtocolError(
                f"invalid control character in path: {path!r}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )
        if _BAD_ESCAPE.search(path):
            raise PathProtocolError(
                f"invalid escape in path: {path}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )
        # urlsplit drops leading blanks, which would turn " /x" into "/x"
        if path[:1].isspace():
            raise PathProtocolError(
                f"unsupported path: {path!r}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )
        try:
            parts = urlsplit(path)
        except ValueError as exc:
            raise PathProtocolError(
                f"malformed path: {path}: {exc}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            ) from exc

        raw_path = parts.path
        # "scheme:key" has an opaque part and no path at all
        if parts.scheme and not raw_path.startswith("/"):
            raw_path = ""
        if not raw_path:
            raise PathProtocolError(
                f"unsupported path: {path}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )
        if parts.netloc:
            raise PathProtocolError(
                f"unsupported network path: {path}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )

        try:
            raw_path = unquote(raw_path, errors="strict")
        except UnicodeDecodeError as exc:
            raise PathProtocolError(
                f"invalid escape in path: {path}: {exc.reason}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            ) from exc
        scheme = parts.scheme
        if scheme == PathProtocol.QINIU.value:
            return UnionPath(PathProtocol.QINIU, raw_path.lstrip("/"), path)
        if scheme == PathProtocol.S3.value:
            return UnionPath(PathProtocol.S3, raw_path.lstrip("/"), path)
        if scheme == PathProtocol.OS.value:
            if raw_path.startswith("/"):
                return UnionPath(PathProtocol.OS, raw_path, path)
            raise PathProtocolError(
                f"unsupported path: {path}",
                path=path,
                protocol=PathProtocol.UNKNOWN,
            )
        return UnionPath(PathProtocol.UNKNOWN, raw_path, path)

    def is_remote(self) -> bool:
        """Return True for object-store paths."""
        return self.protocol in (PathProtocol.QINIU, PathProtocol.S3)

    def __str__(self) -> str:
        return self.original


def get_path_protocol(path: str) -> Tuple[PathProtocol, str]:
    """Return the protocol and normalized key of a union path.

    Raises:
        PathProtocolError: See :meth:`UnionPath.parse`
    """
    parsed = UnionPath.parse(path)
    return parsed.protocol, parsed.key


def is_union_path(path: str) -> bool:
    """Return True if ``path`` classifies to anything but the local filesystem.

    Unknown schemes count as union paths; unparseable paths do not.
    """
    try:
        protocol, _ = get_path_protocol(path)
    except PathProtocolError:
        return False
    return protocol is not PathProtocol.OS
