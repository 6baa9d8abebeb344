"""
Shared configuration management for the CEP Lookup Service.
"""

import math
import re
from typing import Any, Tuple
from urllib.parse import quote_plus

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(ValueError):
    """Raised when the environment does not describe a usable configuration."""


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "\u00b5s": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|\u00b5s|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration such as ``24h``, ``1h30m``, ``500ms`` or ``90`` into seconds.

    Bare numbers are seconds. Raises ValueError for anything else.
    """
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if not text:
        raise ValueError(f"invalid duration: {value!r}")

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return sign * seconds

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="CEP_ENV")
    log_level: str = Field(default="info", validation_alias="CEP_LOG_LEVEL")

    # HTTP server
    http_addr: str = Field(default=":8080", validation_alias="HTTP_ADDR")

    # PostgreSQL
    db_dsn: str = Field(default="", validation_alias="DB_DSN")
    db_host: str = Field(default="", validation_alias="DB_HOST")
    db_port: str = Field(default="5432", validation_alias="DB_PORT")
    db_user: str = Field(default="", validation_alias="DB_USER")
    db_password: str = Field(default="", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="", validation_alias="DB_NAME")
    db_sslmode: str = Field(default="disable", validation_alias="DB_SSLMODE")

    # Lookup
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, validation_alias="CACHE_TTL")
    http_client_timeout: float = Field(default=5.0, validation_alias="HTTP_CLIENT_TIMEOUT")
    viacep_base_url: str = Field(default="https://viacep.com.br/ws", validation_alias="VIACEP_BASE_URL")
    lookup_timeout: float = Field(default=10.0, validation_alias="LOOKUP_TIMEOUT")
    health_timeout: float = Field(default=2.0, validation_alias="HEALTH_TIMEOUT")

    @field_validator(
        "cache_ttl_seconds", "http_client_timeout", "lookup_timeout", "health_timeout",
        mode="before"
    )
    @classmethod
    def parse_duration_fields(cls, value: Any, info: ValidationInfo) -> Any:
        """Accept Go-style durations; unparseable strings fall back to the default."""
        if not isinstance(value, str):
            return value
        try:
            return parse_duration(value)
        except ValueError:
            return cls.model_fields[info.field_name].default

    @property
    def host(self) -> str:
        return self._split_addr()[0]

    @property
    def port(self) -> int:
        return self._split_addr()[1]

    def _split_addr(self) -> Tuple[str, int]:
        host, _, port = self.http_addr.strip().rpartition(":")
        if not port.isdigit():
            raise ConfigurationError(f"invalid HTTP_ADDR: {self.http_addr!r}")
        return host or "0.0.0.0", int(port)

    def resolve_dsn(self) -> str:
        """Return DB_DSN, or assemble one from the discrete DB_* settings."""
        dsn = self.db_dsn.strip()
        if dsn:
            return dsn

        host = self.db_host.strip()
        user = self.db_user.strip()
        database = self.db_name.strip()
        if not host or not user or not database:
            raise ConfigurationError(
                "DB_DSN is not set and DB_HOST, DB_USER and DB_NAME are incomplete"
            )

        return build_dsn(
            host=host,
            port=self.db_port.strip() or "5432",
            user=user,
            password=self.db_password,
            database=database,
            sslmode=self.db_sslmode.strip() or "disable",
        )


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str = "cep"


def build_dsn(host: str, port: str, user: str, password: str, database: str, sslmode: str) -> str:
    """Assemble a PostgreSQL DSN with escaped credentials."""
    return "postgres://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}".format(
        user=quote_plus(user),
        password=quote_plus(password),
        host=host,
        port=port,
        database=quote_plus(database),
        sslmode=sslmode,
    )


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
