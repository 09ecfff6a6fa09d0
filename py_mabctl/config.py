"""Configuration for the address book tooling.

Settings are resolved once into a :class:`Config` that is passed to every
collaborator. Precedence, highest first: explicit overrides (command-line
flags), ``MABCTL_<NAME>`` environment variables, a YAML config file, built-in
defaults.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import dns.exception
import dns.resolver
import yaml

from .booktoken import DEFAULT_DAV_ROOT
from .errors import ConfigurationError

logger = logging.getLogger("py_mabctl.config")

ENV_PREFIX = "MABCTL_"

# Service record naming the CardDAV server of a domain (RFC 6764)
SRV_SERVICE = "_carddavs._tcp"

CONFIG_SEARCH_PATHS = (
    "~/.mabctl",
    "./.mabctl",
    "~/.mabctl/config",
    "./mabctl/config",
    "/etc/mabctl/config",
)


@dataclass
class Config:
    """Resolved configuration."""

    # Server location
    url: str = ""  # CardDAV/admin server host name
    domain: str = ""
    admin_url: str = ""
    dav_url: str = ""
    dav_root: str = DEFAULT_DAV_ROOT
    discover: bool = False  # find the CardDAV URL from the account domain

    # Admin API credentials
    admin_username: str = "admin"
    admin_password: str = ""
    api_key: str = ""

    # TLS client certificate
    cert: str = "/etc/mabctl/mabctl.pem"
    key: str = "/etc/mabctl/mabctl.key"
    insecure: bool = False

    # Account store: empty uses the admin API, otherwise a passwd file
    passwd: str = ""

    # Networking and concurrency
    timeout: float = 30.0
    max_workers: int = 8
    operation_timeout: float = 600.0

    verbose: bool = False

    def client_cert(self) -> tuple[str, str] | None:
        """Return the (cert, key) pair for httpx, if both files exist."""
        if self.cert and self.key and Path(self.cert).exists() and Path(self.key).exists():
            return (self.cert, self.key)
        return None

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(name: str, value: Any) -> Any:
    default = getattr(Config, name, None)
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return "" if value is None else str(value)


def _normalize(values: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(Config)}
    result = {}
    for key, value in values.items():
        name = key.replace("-", "_").lower()
        if name not in known:
            logger.debug("ignoring unknown config key %r", key)
            continue
        result[name] = _coerce(name, value)
    return result


def find_config_file(path: str | None = None) -> Path | None:
    """Locate the YAML config file.

    Args:
        path: Explicit path; it must exist when given

    Returns:
        Path of the config file, or None if no file was found
    """
    if path:
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigurationError(f"config file not found: {path}")
        return p
    for candidate in CONFIG_SEARCH_PATHS:
        p = Path(candidate).expanduser()
        if p.is_file():
            return p
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a flat mapping."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return data


def read_environment(environ: dict[str, str] | None = None) -> dict[str, str]:
    """Collect ``MABCTL_*`` environment variables."""
    environ = dict(os.environ) if environ is None else environ
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX)
    }


def lookup_domain(config: Config) -> str:
    """Return the configured domain, or the domain of the local host name."""
    if config.domain:
        return config.domain
    hostname = socket.getfqdn()
    _, dot, domain = hostname.partition(".")
    if not dot or not domain:
        raise ConfigurationError(f"no domain in hostname: {hostname}")
    return domain


def lookup_host(domain: str) -> str:
    """Find the CardDAV server host of a domain from its SRV record.

    Raises:
        ConfigurationError: If the lookup fails or returns no records
    """
    name = f"{SRV_SERVICE}.{domain}"
    try:
        answer = dns.resolver.resolve(name, "SRV")
    except dns.exception.DNSException as e:
        raise ConfigurationError(f"SRV lookup for {name} failed: {e}") from e
    records = sorted(answer, key=lambda r: (r.priority, -r.weight))
    if not records:
        raise ConfigurationError(f"SRV lookup for {name} returned no records")
    host = str(records[0].target).rstrip(".")
    logger.debug("SRV %s -> %s", name, host)
    return host


def apply_defaults(config: Config) -> Config:
    """Fill in the server URLs that were not configured explicitly.

    The server host is ``url`` when set, otherwise the target of the
    ``_carddavs._tcp`` SRV record of the domain.
    """
    if config.admin_url and config.dav_url:
        return config

    host = config.url or lookup_host(lookup_domain(config))
    return replace(
        config,
        url=host,
        admin_url=config.admin_url or f"https://{host}:4443/bcc",
        dav_url=config.dav_url or f"https://{host}{config.dav_root}",
    )


def load_config(
    path: str | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> Config:
    """Resolve the configuration.

    Args:
        path: Explicit config file path
        overrides: Values from command-line flags; None values are ignored
        environ: Environment to read (defaults to os.environ)

    Returns:
        Resolved configuration

    Raises:
        ConfigurationError: If the config file is unreadable or server
            URLs cannot be derived
    """
    values: dict[str, Any] = {}

    config_file = find_config_file(path)
    if config_file is not None:
        logger.debug("configured from file: %s", config_file)
        values.update(_normalize(read_config_file(config_file)))

    values.update(_normalize(read_environment(environ)))
    values.update(_normalize({k: v for k, v in (overrides or {}).items() if v is not None}))

    return apply_defaults(Config(**values))
