"""Configuration loading from env vars, an optional YAML file, and CLI args."""

import os
from dataclasses import dataclass, fields, replace

import yaml

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_HOSTS = ("http://localhost",)


class ConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_hosts(value) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    return tuple(h.strip() for h in value if h and h.strip())


@dataclass(frozen=True)
class Config:
    hosts: tuple[str, ...] = DEFAULT_HOSTS
    path: str = "/nitro/api"
    key: str = "abc123"
    lag: int = 0
    load: float = 1.0
    maxrate: int = 200          # 0 = no cap
    cert: str | None = None
    limit: int | None = None    # None = unbounded
    timeout: float = 10.0       # seconds of intake inactivity
    match_prefix: str = "/nitro/api"
    exclude_marker: str = "/nitro/api/v1/"
    input_file: str | None = None
    from_start: bool = False
    request_timeout: float | None = None
    verify_tls: bool = True
    report_interval: float = 1.0
    tick_interval: float = 1.0
    log_level: str = "INFO"


# option name -> (env var, parser)
_ENV_OPTIONS = {
    "hosts": ("REPLAY_HOSTS", _parse_hosts),
    "path": ("REPLAY_PATH", str),
    "key": ("REPLAY_API_KEY", str),
    "lag": ("REPLAY_LAG", int),
    "load": ("REPLAY_LOAD", float),
    "maxrate": ("REPLAY_MAXRATE", int),
    "cert": ("REPLAY_CERT", str),
    "limit": ("REPLAY_LIMIT", int),
    "timeout": ("REPLAY_TIMEOUT", float),
    "match_prefix": ("REPLAY_MATCH", str),
    "exclude_marker": ("REPLAY_EXCLUDE", str),
    "input_file": ("REPLAY_FILE", str),
    "from_start": ("REPLAY_FROM_START", _parse_bool),
    "request_timeout": ("REPLAY_REQUEST_TIMEOUT", float),
    "verify_tls": ("REPLAY_VERIFY_TLS", _parse_bool),
    "report_interval": ("REPLAY_REPORT_INTERVAL", float),
    "tick_interval": ("REPLAY_TICK_INTERVAL", float),
    "log_level": ("LOG_LEVEL", str),
}

# YAML key -> field name; the short names mirror the CLI flags.
_YAML_ALIASES = {
    "host": "hosts",
    "file": "input_file",
    "match": "match_prefix",
    "exclude": "exclude_marker",
}


def _coerce(name: str, value, parser):
    try:
        return parser(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name!r}: {value!r}") from e


def env_overrides(environ=None) -> dict:
    """Collect overrides from REPLAY_* environment variables."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for name, (var, parser) in _ENV_OPTIONS.items():
        if var in environ:
            overrides[name] = _coerce(var, environ[var], parser)
    return overrides


def load_yaml_config(path: str | None) -> dict:
    """Load option overrides from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"config file {path} not found") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    known = {f.name for f in fields(Config)}
    overrides = {}
    for raw_key, value in data.items():
        name = _YAML_ALIASES.get(raw_key, str(raw_key).replace("-", "_"))
        if name not in known:
            raise ConfigError(f"unknown option {raw_key!r} in {path}")
        if value is None:
            overrides[name] = None
            continue
        parser = _ENV_OPTIONS[name][1]
        if parser is _parse_bool and isinstance(value, bool):
            overrides[name] = value
        else:
            overrides[name] = _coerce(raw_key, value, parser)
    return overrides


def cli_overrides(cli_args) -> dict:
    """Pick the options that were explicitly given on the command line."""
    if cli_args is None:
        return {}
    overrides = {}
    simple = ("path", "key", "lag", "load", "maxrate", "cert", "limit", "timeout",
              "match_prefix", "exclude_marker", "input_file", "request_timeout",
              "log_level")
    for name in simple:
        value = getattr(cli_args, name, None)
        if value is not None:
            overrides[name] = value
    hosts = getattr(cli_args, "hosts", None)
    if hosts:
        overrides["hosts"] = _parse_hosts(hosts)
    if getattr(cli_args, "from_start", False):
        overrides["from_start"] = True
    if getattr(cli_args, "insecure", False):
        overrides["verify_tls"] = False
    return overrides


def validate_config(config: Config) -> Config:
    """Reject values the replayer cannot run with."""
    if not config.hosts:
        raise ConfigError("at least one host is required")
    for host in config.hosts:
        if not host.startswith(("http://", "https://")):
            raise ConfigError(f"host {host!r} must start with http:// or https://")
    if config.lag < 0:
        raise ConfigError("lag must be >= 0")
    if config.load < 0:
        raise ConfigError("load must be >= 0")
    if config.maxrate < 0:
        raise ConfigError("maxrate must be >= 0")
    if config.limit is not None and config.limit <= 0:
        raise ConfigError("limit must be > 0")
    if config.timeout <= 0:
        raise ConfigError("timeout must be > 0")
    if config.request_timeout is not None and config.request_timeout <= 0:
        raise ConfigError("request timeout must be > 0")
    if config.report_interval <= 0 or config.tick_interval <= 0:
        raise ConfigError("report and tick intervals must be > 0")
    if not config.match_prefix:
        raise ConfigError("match prefix must not be empty")
    if config.cert and not os.path.isfile(config.cert):
        raise ConfigError(f"client certificate {config.cert} not found")
    if config.log_level.upper() not in LOG_LEVELS:
        raise ConfigError(f"unknown log level {config.log_level!r}")
    return config


def load_config(cli_args=None, yaml_data: dict | None = None, environ=None) -> Config:
    """Build Config from defaults <- env vars <- YAML <- CLI args (highest priority)."""
    kwargs: dict = {}
    kwargs.update(env_overrides(environ))
    kwargs.update(yaml_data or {})
    kwargs.update(cli_overrides(cli_args))

    config = replace(Config(), **kwargs)
    config = replace(config, log_level=config.log_level.upper())
    return validate_config(config)
