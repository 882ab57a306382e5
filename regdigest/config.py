"""
Process-wide settings (load_settings, get_settings) for registry access.

Settings come from an optional YAML file and are then overridden by the
REGISTRY_* environment variables. The resulting Settings value is read by
every registry call; it is replaced only at startup or from tests.
"""

import dataclasses
import logging
import os

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from regdigest import __version__
from regdigest.errors import ConfigError

logger = logging.getLogger(__name__)
yaml = YAML(typ="safe")

DEFAULT_HOST_ALIASES = {
    # lscr.io answers the auth challenge but serves no manifests
    "lscr.io": "ghcr.io",
}

TLS_VERSIONS = ("TLS1.0", "TLS1.1", "TLS1.2", "TLS1.3")
DEFAULT_TLS_MIN_VERSION = "TLS1.2"

_TRUTHY = ("1", "true", "yes", "on")


@dataclasses.dataclass(frozen=True)
class Settings:
    user_agent: str = f"regdigest/{__version__}"
    tls_skip: bool = False
    tls_min_version: str = DEFAULT_TLS_MIN_VERSION
    timeout: float = 30
    connect_timeout: float = 10
    max_redirects: int = 3
    pool_maxsize: int = 100
    host_aliases: dict = dataclasses.field(
        default_factory=lambda: dict(DEFAULT_HOST_ALIASES)
    )

    @property
    def scheme(self):
        return "http" if self.tls_skip else "https"

    def resolve_alias(self, host):
        return self.host_aliases.get(host, host)

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)


_FIELDS = {f.name for f in dataclasses.fields(Settings)}

_settings = Settings()


def get_settings():
    return _settings


def set_settings(settings):
    """
    Replace the process-wide settings.

    Only meant for initialization and tests; concurrent registry calls keep
    whichever value they read when they started.
    """
    global _settings
    _settings = settings


def normalize_tls_version(value):
    """
    Return the canonical TLS version name for value, defaulting to TLS 1.2
    """
    if not value:
        return DEFAULT_TLS_MIN_VERSION
    version = value.strip().upper()
    if version not in TLS_VERSIONS:
        logger.warning(
            f"Invalid TLS minimum version {value!r}; defaulting to "
            + DEFAULT_TLS_MIN_VERSION
        )
        return DEFAULT_TLS_MIN_VERSION
    return version


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _from_file(path):
    logger.info(f"Loading regdigest config from {path}")
    try:
        with open(path) as f:
            config = yaml.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except YAMLError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    values = {}
    for key, value in config.items():
        if key not in _FIELDS:
            logger.warning(f"Ignoring unknown config key {key!r} in {path}")
            continue
        values[key] = value
    return values


def load_settings(path=None, environ=None):
    """
    Build Settings from an optional YAML file plus environment overrides.

    Recognized environment variables: REGISTRY_TLS_SKIP,
    REGISTRY_TLS_MIN_VERSION and REGISTRY_USER_AGENT.
    """
    if environ is None:
        environ = os.environ

    values = _from_file(path) if path else {}

    if "REGISTRY_TLS_SKIP" in environ:
        values["tls_skip"] = environ["REGISTRY_TLS_SKIP"]
    if environ.get("REGISTRY_TLS_MIN_VERSION"):
        values["tls_min_version"] = environ["REGISTRY_TLS_MIN_VERSION"]
    if environ.get("REGISTRY_USER_AGENT"):
        values["user_agent"] = environ["REGISTRY_USER_AGENT"]

    aliases = dict(DEFAULT_HOST_ALIASES)
    extra_aliases = values.pop("host_aliases", None) or {}
    if not isinstance(extra_aliases, dict):
        raise ConfigError("host_aliases must be a mapping of host to host")
    aliases.update({str(k): str(v) for k, v in extra_aliases.items()})

    try:
        settings = Settings(
            user_agent=str(values.get("user_agent", Settings.user_agent)),
            tls_skip=_as_bool(values.get("tls_skip", False)),
            tls_min_version=normalize_tls_version(values.get("tls_min_version")),
            timeout=float(values.get("timeout", Settings.timeout)),
            connect_timeout=float(
                values.get("connect_timeout", Settings.connect_timeout)
            ),
            max_redirects=int(values.get("max_redirects", Settings.max_redirects)),
            pool_maxsize=int(values.get("pool_maxsize", Settings.pool_maxsize)),
            host_aliases=aliases,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e

    logger.debug(f"Settings loaded: {settings}")
    return settings
