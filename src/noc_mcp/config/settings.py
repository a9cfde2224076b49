"""
Settings models for the NOC MCP connection manager.

Holds both the server configuration records kept in the registry and the
application-wide settings loaded from YAML and the environment.
"""

import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from noc_mcp.errors import ConfigError

DEFAULT_CONFIG_FILE = "noc_mcp.config.yaml"
ENV_PREFIX = "NOC_MCP__"


class TransportKind(str, Enum):
    """Wire transport used to reach an MCP server."""

    HTTP = "http"
    STDIO = "stdio"


class HttpTransportConfig(BaseModel):
    """Streamable HTTP endpoint."""

    kind: Literal["http"] = "http"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


class StdioTransportConfig(BaseModel):
    """Locally spawned process speaking JSON-RPC over stdin/stdout."""

    kind: Literal["stdio"] = "stdio"
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


TransportConfig = Annotated[
    Union[HttpTransportConfig, StdioTransportConfig], Field(discriminator="kind")
]

_HTTP_FIELDS = ("url", "headers")
_STDIO_FIELDS = ("command", "args", "env")


class ServerConfig(BaseModel):
    """
    A persisted MCP server record.

    Accepts either the nested form (``transport: {kind: http, url: ...}``) or
    the flat form used by the REST API (``transport_type: http, url: ...``).
    """

    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    transport: TransportConfig
    enabled: bool = True
    native: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_transport(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "transport" in data:
            return data

        data = dict(data)
        kind = data.pop("transport_type", None)
        if kind is None:
            kind = "stdio" if data.get("command") else "http"
        if isinstance(kind, TransportKind):
            kind = kind.value

        fields = _HTTP_FIELDS if kind == "http" else _STDIO_FIELDS
        transport = {"kind": kind}
        for field in _HTTP_FIELDS + _STDIO_FIELDS:
            value = data.pop(field, None)
            if field in fields and value is not None:
                transport[field] = value
        data["transport"] = transport
        return data

    @model_validator(mode="after")
    def _check_required_fields(self) -> "ServerConfig":
        if not self.name or not self.name.strip():
            raise ConfigError("Server name must not be empty")

        transport = self.transport
        if isinstance(transport, HttpTransportConfig):
            url = transport.url.strip()
            if not url:
                raise ConfigError("http transport requires 'url' field", self.name)
            if not url.startswith(("http://", "https://")):
                raise ConfigError(
                    f"url must start with http:// or https:// (got {transport.url!r})",
                    self.name,
                )
        elif not transport.command.strip():
            raise ConfigError("stdio transport requires 'command' field", self.name)
        return self

    @property
    def kind(self) -> TransportKind:
        return TransportKind(self.transport.kind)


def parse_server_config(data: Dict[str, Any]) -> ServerConfig:
    """
    Validate a raw server record.

    Args:
        data: Record in nested or flat form.

    Returns:
        The validated ServerConfig.

    Raises:
        ConfigError: If the record is missing fields or has the wrong types.
    """
    try:
        return ServerConfig.model_validate(data)
    except ValidationError as e:
        name = data.get("name") if isinstance(data, dict) else None
        raise ConfigError(f"Invalid server configuration: {e}", name) from e


class ServerUpdate(BaseModel):
    """
    Partial update of a ServerConfig.

    Only fields that are set are applied. The transport kind of an existing
    server can never change.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None
    transport_type: Optional[TransportKind] = None
    url: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    command: Optional[str] = None
    args: Optional[List[str]] = None
    env: Optional[Dict[str, str]] = None

    def apply(self, current: ServerConfig) -> ServerConfig:
        """
        Build the updated record without touching ``current``.

        Raises:
            ConfigError: If the update changes the transport kind, sets fields
                of the other kind, or leaves the record invalid.
        """
        kind = current.kind
        if self.transport_type is not None and self.transport_type != kind:
            raise ConfigError(
                f"transport kind cannot change from {kind.value} to {self.transport_type.value}",
                current.name,
            )

        own_fields = _HTTP_FIELDS if kind == TransportKind.HTTP else _STDIO_FIELDS
        foreign = [
            field
            for field in _HTTP_FIELDS + _STDIO_FIELDS
            if field not in own_fields and getattr(self, field) is not None
        ]
        if foreign:
            raise ConfigError(
                f"fields {', '.join(foreign)} do not apply to a {kind.value} server",
                current.name,
            )

        data = current.model_dump()
        for field in ("name", "description", "enabled"):
            value = getattr(self, field)
            if value is not None:
                data[field] = value
        for field in own_fields:
            value = getattr(self, field)
            if value is not None:
                data["transport"][field] = value

        return parse_server_config(data)


class MCPSettings(BaseModel):
    """Settings for MCP connectivity."""

    servers: Dict[str, ServerConfig] = Field(default_factory=dict)
    client_name: str = "noc_mcp"
    read_timeout_seconds: Optional[float] = 30
    concurrent_connect: bool = True
    close_timeout_seconds: float = 5

    @model_validator(mode="before")
    @classmethod
    def _populate_server_names(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("servers"), dict):
            servers = {}
            for name, server in data["servers"].items():
                if isinstance(server, dict):
                    server = {"name": name, **server}
                servers[name] = server
            data = {**data, "servers": servers}
        return data


class RegistrySettings(BaseModel):
    """Settings for the server registry."""

    path: Optional[str] = None
    seed_native: bool = False


class HealthSettings(BaseModel):
    """Settings for health probing."""

    probe_timeout_seconds: float = 10
    interval_seconds: float = 60


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    level: str = "info"
    file_path: Optional[str] = None


class Settings(BaseModel):
    """Root settings object for the NOC MCP connection manager."""

    mcp: MCPSettings = Field(default_factory=MCPSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate the configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
            If None, look for 'noc_mcp.config.yaml' in the current directory.

    Returns:
        Settings: Validated configuration object.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    load_dotenv(find_dotenv(usecwd=True))

    if config_path is None:
        config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)

    config_data = _read_yaml(Path(config_path))

    # Secrets live next to the config file and are merged over it
    secrets_path = Path(config_path).with_suffix(".secrets.yaml")
    _merge_dicts(config_data, _read_yaml(secrets_path))

    # Environment variables override file settings
    _merge_dicts(config_data, _load_from_env())

    try:
        return Settings.model_validate(config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _load_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    ``NOC_MCP__SECTION__KEY=value`` sets ``section.key``.

    Returns:
        Dict with configuration loaded from environment variables.
    """
    config: Dict[str, Any] = {}

    _set_nested_dict(config, ["logging", "level"], os.environ.get("LOG_LEVEL"))
    _set_nested_dict(config, ["logging", "file_path"], os.environ.get("LOG_FILE"))
    _set_nested_dict(config, ["registry", "path"], os.environ.get("NOC_MCP_REGISTRY_PATH"))
    _set_nested_dict(
        config, ["mcp", "client_name"], os.environ.get("NOC_MCP_CLIENT_NAME")
    )

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            path = [part for part in key[len(ENV_PREFIX):].lower().split("__") if part]
            if path:
                _set_nested_dict(config, path, value)

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if not isinstance(d.get(path[0]), dict):
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value
