"""Exception hierarchy for union-store.

Every failure raised by a store call is a :class:`UnionStoreError`. Each
class carries a short ``error_code`` and a ``details`` mapping that is
rendered after the message, so log lines stay greppable:

    [STG404] object not found (backend_type=s3, operation=stat, key=a/b)
"""

from typing import Any, Dict, Optional


def _present(**fields: Any) -> Dict[str, Any]:
    return {name: value for name, value in fields.items() if value}


def _cause_details(original_error: Optional[BaseException]) -> Dict[str, Any]:
    if original_error is None:
        return {}
    return {
        "original_error": str(original_error),
        "error_type": type(original_error).__name__,
    }


class UnionStoreError(Exception):
    """Base exception for all union-store errors."""

    error_code: str = "ERR000"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if not self.details:
            return text
        rendered = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{text} ({rendered})"


class PathProtocolError(UnionStoreError):
    """A union path could not be classified.

    Raised for empty or relative paths, paths naming a network host
    (``qiniu://host/key``) and malformed URIs. ``protocol`` is always
    :attr:`PathProtocol.UNKNOWN` for classification failures.
    """

    error_code = "PATH001"

    def __init__(self, message: str, path: Optional[str] = None, protocol: Any = None):
        super().__init__(message, {} if path is None else {"path": path})
        self.path = path
        self.protocol = protocol


class ConfigurationError(UnionStoreError):
    """A backend config file is missing, unparseable or invalid."""

    error_code = "CFG001"

    def __init__(
        self,
        message: str,
        config_path: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message, _present(config_path=config_path, config_key=key))
        self.config_path = config_path


class NotConfiguredError(UnionStoreError):
    """A protocol resolved but no backend serves it in the needed role."""

    error_code = "CFG002"

    def __init__(self, protocol: Any, role: Optional[str] = None):
        name = getattr(protocol, "value", protocol) or "os"
        super().__init__(
            f"{name} store is not configured", _present(protocol=name, role=role)
        )
        self.protocol = protocol
        self.role = role


class ConfigNotFoundError(ConfigurationError):
    """No prefix configuration covers a key."""

    error_code = "CFG003"

    def __init__(self, key: str, config_path: Optional[str] = None):
        super().__init__(f"no configuration found for key: {key}", config_path=config_path)
        self.details["key"] = key
        self.key = key


class StorageError(UnionStoreError):
    """A backend operation failed.

    ``backend_type`` is the backend scheme (``os``, ``s3``, ``qiniu``) and
    ``key`` the backend-local key, not the union path.
    """

    error_code = "STG001"

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        details = _present(backend_type=backend_type, operation=operation, key=key)
        details.update(_cause_details(original_error))
        super().__init__(message, details)
        self.backend_type = backend_type
        self.operation = operation
        self.key = key
        self.original_error = original_error


class ObjectNotFoundError(StorageError):
    """The key does not exist in the backend."""

    error_code = "STG404"


class ObjectExistsError(StorageError):
    """A write refused to replace an existing key."""

    error_code = "STG409"


class RoutingError(UnionStoreError):
    """A non union-store exception escaped a store call."""

    error_code = "RTE001"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        details = _present(operation=operation, key=key)
        details.update(_cause_details(original_error))
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.original_error = original_error
