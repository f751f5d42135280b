"""Configuration for the satellite dispatcher."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from satellite_checks.models import Location, Strategy


DEFAULT_SATELLITE_PORT = 5464
DEFAULT_CACHE_DIR = "/var/cache/satellite-checks"


class ConfigurationError(Exception):
    """Missing or invalid input, detected before any location is contacted."""


class TlsSettings(BaseModel):
    """TLS material used for every satellite connection."""
    ca_file: Optional[str] = Field(default=None, description="CA bundle file")
    ca_path: Optional[str] = Field(default=None, description="Directory of hashed CA certificates")
    cert_file: Optional[str] = Field(default=None, description="Client certificate")
    key_file: Optional[str] = Field(default=None, description="Client private key")
    verify: Literal["peer", "none"] = Field(default="peer", description="Peer verification mode")


class LocationConfig(BaseModel):
    hostname: str = Field(min_length=1)
    ipaddr: str = Field(min_length=1)
    authkey: Optional[str] = Field(default=None, description="Location specific auth key")

    def to_location(self) -> Location:
        return Location(hostname=self.hostname, ipaddr=self.ipaddr, authkey=self.authkey)


class DispatcherConfig(BaseModel):
    """Main configuration of one dispatcher invocation."""

    strategy: Strategy = Field(default=Strategy.FAILOVER, description="failover, rotate or multiple")
    concurrency: int = Field(default=3, ge=1, description="Parallel requests for the multiple strategy")
    service: Optional[str] = Field(default=None, description="Service identifier, keys the rotation cache")
    locations: list[LocationConfig] = Field(default_factory=list)

    authkeys: Dict[str, str] = Field(default_factory=dict, description="Auth keys by location hostname")
    default_authkey: Optional[str] = Field(default=None, description="Fallback auth key")

    port: int = Field(default=DEFAULT_SATELLITE_PORT, ge=1, le=65535)
    timeout_seconds: float = Field(default=60.0, gt=0, description="Hard deadline per satellite call")
    window_size: int = Field(default=3, ge=1, description="Locations per rotate run")
    cache_dir: str = Field(default=DEFAULT_CACHE_DIR, description="Directory for rotation caches")

    tls: TlsSettings = Field(default_factory=TlsSettings)

    def configured_locations(self) -> list[Location]:
        return [lc.to_location() for lc in self.locations]

    def cache_file(self) -> Path:
        service = str(self.service or "").strip()
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in service)
        return Path(self.cache_dir) / f"{safe}.json"

    def validate_for_dispatch(self, command: Any) -> None:
        if command is None:
            raise ConfigurationError("no command payload given")

        seen: set[str] = set()
        for lc in self.locations:
            if lc.hostname in seen:
                raise ConfigurationError(f"duplicate location hostname: {lc.hostname}")
            seen.add(lc.hostname)
            if resolve_authkey(lc.to_location(), self) is None:
                raise ConfigurationError(f"no authkey configured for location {lc.hostname}")

        if self.strategy == Strategy.ROTATE and not str(self.service or "").strip():
            raise ConfigurationError("strategy 'rotate' requires a service identifier")

        if bool(self.tls.cert_file) != bool(self.tls.key_file):
            raise ConfigurationError("client certificate and key must be given together")


def resolve_authkey(location: Location, config: DispatcherConfig) -> str | None:
    """Location key, then the hostname keyed table, then the global default."""
    if location.authkey:
        return location.authkey
    key = config.authkeys.get(location.hostname)
    if key:
        return key
    return config.default_authkey or None


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    simple = {
        "strategy": os.getenv("SATELLITE_STRATEGY"),
        "concurrency": os.getenv("SATELLITE_CONCURRENCY"),
        "service": os.getenv("SATELLITE_SERVICE"),
        "cache_dir": os.getenv("SATELLITE_CACHE_DIR"),
        "default_authkey": os.getenv("SATELLITE_AUTHKEY"),
    }
    for key, value in simple.items():
        if value is not None and value != "":
            overrides[key] = value

    tls = {
        "ca_file": os.getenv("SATELLITE_CA_FILE"),
        "cert_file": os.getenv("SATELLITE_CERT_FILE"),
        "key_file": os.getenv("SATELLITE_KEY_FILE"),
        "verify": os.getenv("SATELLITE_VERIFY"),
    }
    tls = {k: v for k, v in tls.items() if v}
    if tls:
        overrides["tls"] = tls
    return overrides


def load_config(config_path: Optional[str] = None, **overrides: Any) -> DispatcherConfig:
    """
    Load configuration from YAML, then environment variables, then explicit overrides
    (command-line values). `None` overrides are ignored.
    """
    if config_path is None:
        config_path = os.getenv("SATELLITE_CONFIG")

    config_data: dict[str, Any] = {}
    if config_path:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"cannot read config {config_path}: {exc}") from exc
        if not isinstance(config_data, dict):
            raise ConfigurationError("config YAML must be a mapping")

    for key, value in _env_overrides().items():
        if key == "tls":
            current = config_data.get("tls") or {}
            if not isinstance(current, dict):
                raise ConfigurationError("tls must be a mapping")
            config_data["tls"] = {**current, **value}
        else:
            config_data[key] = value

    for key, value in overrides.items():
        if value is not None:
            config_data[key] = value

    try:
        return DispatcherConfig(**config_data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
