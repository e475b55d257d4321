"""Backend configuration models and file loading.

Config files are JSON, TOML or YAML, chosen by file extension. A file holds
either a single backend record or a prefix table mapping key prefixes to
records (the multi-tenant form).
"""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from unionstore.env import expand_options
from unionstore.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "S3Config",
    "QiniuConfig",
    "is_prefix_table",
    "load_config",
    "load_config_table",
    "parse_config",
    "parse_config_table",
    "read_config_file",
]

ModelT = TypeVar("ModelT", bound=BaseModel)

SUPPORTED_EXTENSIONS = (".json", ".toml", ".yaml", ".yml")


class S3Config(BaseModel):
    """Connection settings for an S3-compatible bucket."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    endpoint: str = ""
    region: str = ""
    bucket: str
    access_key: str = Field(
        default="", validation_alias=AliasChoices("access_key", "accessKey")
    )
    secret_key: str = Field(
        default="", validation_alias=AliasChoices("secret_key", "secretKey")
    )
    token: Optional[str] = None
    use_ssl: bool = Field(
        default=False, validation_alias=AliasChoices("use_ssl", "useSSL", "useSsl")
    )

    def endpoint_url(self) -> Optional[str]:
        """Return the endpoint as a URL, adding a scheme from ``use_ssl`` if needed."""
        if not self.endpoint:
            return None
        if "://" in self.endpoint:
            return self.endpoint
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint}"


class QiniuConfig(BaseModel):
    """Credentials and hosts for a Qiniu Kodo bucket."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    access_key: str = Field(validation_alias=AliasChoices("access_key", "ak"))
    secret_key: str = Field(validation_alias=AliasChoices("secret_key", "sk"))
    bucket: str
    io_hosts: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("io_hosts", "domains", "domain"),
    )
    private: bool = True
    use_https: bool = False

    @field_validator("io_hosts", mode="before")
    @classmethod
    def _single_host(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    def download_host(self) -> str:
        if not self.io_hosts:
            raise ConfigurationError(
                "qiniu configuration has no io_hosts", key="io_hosts"
            )
        host = self.io_hosts[0].rstrip("/")
        if "://" in host:
            return host
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{host}"


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a config file into a dict, expanding ${VAR} references.

    Raises:
        ConfigurationError: If the file is missing, has an unsupported
            extension, or does not parse to a mapping
    """
    config_path = Path(path)
    ext = config_path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            "invalid configuration format", config_path=str(config_path)
        )

    logger.debug("Loading backend config from %s", config_path)
    try:
        raw = config_path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(
            f"read configuration file error: {exc}", config_path=str(config_path)
        ) from exc

    try:
        if ext == ".json":
            data = json.loads(raw)
        elif ext == ".toml":
            data = tomllib.loads(raw.decode("utf-8"))
        else:
            data = yaml.safe_load(raw)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(
            f"unmarshal configuration error: {exc}", config_path=str(config_path)
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            "configuration must be a mapping", config_path=str(config_path)
        )
    return expand_options(data)


def is_prefix_table(data: Dict[str, Any]) -> bool:
    """Return True if every top-level value is a mapping."""
    return bool(data) and all(isinstance(value, dict) for value in data.values())


def parse_config(
    model: Type[ModelT],
    data: Dict[str, Any],
    source: Optional[str] = None,
    key: Optional[str] = None,
) -> ModelT:
    """Validate a single backend record.

    Raises:
        ConfigurationError: If the record fails validation
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"invalid {model.__name__}: {exc}", config_path=source, key=key
        ) from exc


def parse_config_table(
    model: Type[ModelT], data: Dict[str, Any], source: Optional[str] = None
) -> Dict[str, ModelT]:
    """Validate a prefix table. Entries keep their original order."""
    table: Dict[str, ModelT] = {}
    for prefix, entry in data.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(
                "prefix table entries must be mappings",
                config_path=source,
                key=prefix,
            )
        table[prefix] = parse_config(model, entry, source, key=prefix)
    return table


def load_config(path: Union[str, Path], model: Type[ModelT]) -> ModelT:
    """Load a single backend record from ``path``."""
    return parse_config(model, read_config_file(path), str(path))


def load_config_table(path: Union[str, Path], model: Type[ModelT]) -> Dict[str, ModelT]:
    """Load a prefix table mapping key prefixes to backend records."""
    return parse_config_table(model, read_config_file(path), str(path))
