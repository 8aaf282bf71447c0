from __future__ import annotations

import os
import tomllib
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

DEFAULT_CONFIG = "config.toml"

# WEBSTATS_* environment variables win over the file
ENV_OVERRIDES = {
    "WEBSTATS_LOG_DIR": "log_dir",
    "WEBSTATS_BATCH_SIZE": "batch_size",
    "WEBSTATS_HOST": "host",
    "WEBSTATS_PORT": "port",
    "WEBSTATS_ENCODING": "encoding",
    "WEBSTATS_LOG_LEVEL": "log_level",
}


class ConfigError(Exception):
    """Startup cannot proceed: bad config file, bad values or unusable log dir."""


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    whitelisted_domains: List[str] = Field(default_factory=list)
    log_dir: str = "logs"
    batch_size: int = Field(default=100, gt=0, validation_alias=AliasChoices("batch_size", "queue_size"))
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    encoding: Literal["json", "parquet"] = "json"
    parquet_compression: Literal["none", "snappy", "gzip", "brotli", "lz4", "zstd"] = "snappy"
    flush_on_shutdown: bool = False
    log_level: Literal["critical", "error", "warning", "info", "debug"] = "info"

    @field_validator("log_level", "parquet_compression", mode="before")
    @classmethod
    def _lower_names(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="before")
    @classmethod
    def _split_listen_address(cls, data: Any) -> Any:
        """
        Supports:
          port = 8080
          port = ":8080"            -> host unchanged
          port = "127.0.0.1:8080"   -> host = "127.0.0.1"
        """
        if not isinstance(data, dict):
            return data
        port = data.get("port")
        if isinstance(port, str) and ":" in port:
            host, _, num = port.rpartition(":")
            data = dict(data)
            data["port"] = num
            if host:
                data["host"] = host
        return data


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read the TOML file at path (else $WEBSTATS_CONFIG, else config.toml) and
    apply WEBSTATS_* overrides from environ.
    """
    env = os.environ if environ is None else environ
    path = path or env.get("WEBSTATS_CONFIG") or DEFAULT_CONFIG

    try:
        with open(path, "rb") as f:
            data: Dict[str, Any] = tomllib.load(f)
    except OSError as exc:
        raise ConfigError(f"Error reading config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Error parsing config file {path}: {exc}") from exc

    for var, key in ENV_OVERRIDES.items():
        val = env.get(var)
        if val:
            if key == "batch_size":
                data.pop("queue_size", None)
            data[key] = val

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc


def prepare_log_dir(settings: Settings) -> str:
    try:
        os.makedirs(settings.log_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"Error creating log directory ({settings.log_dir}): {exc}") from exc
    if not os.access(settings.log_dir, os.W_OK):
        raise ConfigError(f"Log directory ({settings.log_dir}) is not writable")
    return settings.log_dir
