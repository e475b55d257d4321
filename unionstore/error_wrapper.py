"""Helpers to wrap third-party exceptions into union-store exceptions.

Maps botocore, requests, qiniu responses and OS errors into the
StorageError family, and provides the guard that keeps store calls from
leaking anything outside the union-store hierarchy.
"""

from __future__ import annotations

import errno
import functools
import logging
from typing import Any, Callable, Optional, TypeVar

import requests
from botocore.exceptions import BotoCoreError, ClientError

from unionstore.exceptions import (
    ObjectExistsError,
    ObjectNotFoundError,
    RoutingError,
    StorageError,
    UnionStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

S3_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchObject"})
# Qiniu answers 612 for a missing object
QINIU_NOT_FOUND_STATUS = frozenset({404, 612})


def s3_error_code(exc: BaseException) -> Optional[str]:
    response = getattr(exc, "response", None) or {}
    return response.get("Error", {}).get("Code")


def wrap_boto3_exception(
    exc: Exception, operation: str, key: Optional[str] = None
) -> StorageError:
    """Convert boto3/botocore exceptions to StorageError.

    Not-found responses become ObjectNotFoundError.
    """
    if isinstance(exc, ClientError):
        error_code = s3_error_code(exc) or "Unknown"
        status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        error_cls = ObjectNotFoundError if error_code in S3_NOT_FOUND_CODES else StorageError
        return error_cls(
            f"S3 operation failed: {error_code} (HTTP {status_code})",
            backend_type="s3",
            operation=operation,
            key=key,
            original_error=exc,
        )
    if isinstance(exc, BotoCoreError):
        return StorageError(
            f"S3 operation failed: {type(exc).__name__}",
            backend_type="s3",
            operation=operation,
            key=key,
            original_error=exc,
        )
    return StorageError(
        f"S3 operation failed: {type(exc).__name__}: {exc}",
        backend_type="s3",
        operation=operation,
        key=key,
        original_error=exc,
    )


def wrap_os_error(exc: OSError, operation: str, key: Optional[str] = None) -> StorageError:
    """Convert filesystem errors to StorageError."""
    if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
        error_cls: type = ObjectNotFoundError
    elif isinstance(exc, FileExistsError):
        error_cls = ObjectExistsError
    else:
        error_cls = StorageError
    return error_cls(
        f"{operation} {key}: {exc.strerror or exc}",
        backend_type="os",
        operation=operation,
        key=key,
        original_error=exc,
    )


def wrap_requests_exception(
    exc: Exception, operation: str, key: Optional[str] = None
) -> StorageError:
    """Convert requests exceptions raised while downloading to StorageError."""
    if isinstance(exc, requests.exceptions.HTTPError):
        status_code = getattr(getattr(exc, "response", None), "status_code", None)
        error_cls = ObjectNotFoundError if status_code in QINIU_NOT_FOUND_STATUS else StorageError
        return error_cls(
            f"HTTP error {status_code}: {operation}",
            backend_type="qiniu",
            operation=operation,
            key=key,
            original_error=exc,
        )
    if isinstance(exc, requests.exceptions.Timeout):
        message = f"Request timed out: {operation}"
    elif isinstance(exc, requests.exceptions.ConnectionError):
        message = f"Connection failed: {operation}"
    else:
        message = f"Request failed: {type(exc).__name__}: {exc}"
    return StorageError(
        message,
        backend_type="qiniu",
        operation=operation,
        key=key,
        original_error=exc,
    )


def wrap_qiniu_response(info: Any, operation: str, key: Optional[str] = None) -> StorageError:
    """Convert a failed qiniu SDK ``ResponseInfo`` to StorageError."""
    status_code = getattr(info, "status_code", None)
    reason = getattr(info, "error", None) or getattr(info, "exception", None) or "unknown error"
    error_cls = ObjectNotFoundError if status_code in QINIU_NOT_FOUND_STATUS else StorageError
    return error_cls(
        f"Qiniu operation failed: {reason} (HTTP {status_code})",
        backend_type="qiniu",
        operation=operation,
        key=key,
    )


def wrap_storage_error(
    backend_type: str, operation: str
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator wrapping unexpected backend exceptions in StorageError.

    The last string positional argument is reported as the key.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            try:
                return func(self, *args, **kwargs)
            except UnionStoreError:
                raise
            except Exception as exc:
                key = next((a for a in reversed(args) if isinstance(a, str)), None)
                raise StorageError(
                    f"Storage operation failed: {type(exc).__name__}: {exc}",
                    backend_type=backend_type,
                    operation=operation,
                    key=key,
                    original_error=exc,
                ) from exc

        return wrapper

    return decorator


def routing_guard(operation: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for store entry points converting stray exceptions to RoutingError.

    The union path is the last string positional argument of every store
    method, which is what gets reported as the key.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            try:
                return func(self, *args, **kwargs)
            except UnionStoreError:
                raise
            except Exception as exc:
                key = kwargs.get("key")
                if key is None:
                    key = next((a for a in reversed(args) if isinstance(a, str)), None)
                logger.error(
                    "Unexpected %s failure in store call %s(%s): %s",
                    type(exc).__name__,
                    operation,
                    key,
                    exc,
                )
                raise RoutingError(
                    f"{operation} failed: {type(exc).__name__}: {exc}",
                    operation=operation,
                    key=key,
                    original_error=exc,
                ) from exc

        return wrapper

    return decorator
