"""Backend config discovery from the process environment.

Each backend role (primary store or fallback reader, per protocol) is
configured by the first variable set from an ordered list. Config values
may reference other variables as ``${NAME}`` or ``$NAME``; ``.env`` files
are loaded with python-dotenv.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv

__all__ = [
    "QINIU_STORE_ENVS",
    "QINIU_READER_ENVS",
    "S3_STORE_ENVS",
    "S3_READER_ENVS",
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    "lookup_env",
]

# Config path variables per backend role, in precedence order.
QINIU_STORE_ENVS: Tuple[str, ...] = (
    "QINIU_STORE_CONFIG",
    "QINIU",
    "QINIU_MULTI_CLUSTER",
)
QINIU_READER_ENVS: Tuple[str, ...] = (
    "QINIU_READER_CONFIG",
    "QINIU_READER_CONFIG_PATH",
)
S3_STORE_ENVS: Tuple[str, ...] = ("S3_STORE_CONFIG",)
S3_READER_ENVS: Tuple[str, ...] = ("S3_READER_CONFIG",)

_REFERENCE = re.compile(r"\$(?:\{(?P<braced>[^}]+)\}|(?P<bare>[A-Za-z_]\w*))")


def load_env_file(path: Optional[Union[str, Path]] = None, *, override: bool = False) -> bool:
    """Load ``path`` (or the nearest ``.env``) into ``os.environ``.

    Variables that are already set win unless ``override`` is True.
    Returns False when no file was found.
    """
    return load_dotenv(dotenv_path=path, override=override)


def lookup_env(
    names: Sequence[str],
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Tuple[str, str]]:
    """Return ``(name, value)`` for the first variable in ``names`` that is set.

    A variable set to an empty string still counts as set.

    Example:
        >>> lookup_env(["S3_STORE_CONFIG"], {"S3_STORE_CONFIG": "/etc/s3.json"})
        ('S3_STORE_CONFIG', '/etc/s3.json')
    """
    env = os.environ if environ is None else environ
    for name in names:
        if name in env:
            return name, env[name]
    return None


def expand_env_vars(
    value: str,
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Substitute ``${NAME}`` and ``$NAME`` references in ``value``.

    Unset references are left as written, or raise KeyError when ``strict``.
    """
    env = os.environ if environ is None else environ

    def substitute(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in env:
            return env[name]
        if strict:
            raise KeyError(f"Environment variable not set: {name}")
        return match.group(0)

    return _REFERENCE.sub(substitute, value)


def _expand(value: Any, strict: bool, environ: Optional[Mapping[str, str]]) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict, environ=environ)
    if isinstance(value, dict):
        return {k: _expand(v, strict, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(item, strict, environ) for item in value]
    return value


def expand_options(
    options: Dict[str, Any],
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Expand references in every string of a parsed config document.

    Example:
        >>> expand_options({"secret_key": "${S3_SECRET}", "use_ssl": True},
        ...                environ={"S3_SECRET": "s3cr3t"})
        {'secret_key': 's3cr3t', 'use_ssl': True}
    """
    return _expand(options, strict, environ)
