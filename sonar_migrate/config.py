"""Configuration loading and validation.

Usage:
    config = load("sonar-migrate.yaml", {"source_project": "com.example:app"})
    config.target.host                        # falls back to config.source.host
    generate_template("sonar-migrate.yaml")   # writes example file to disk

Values are taken, in order of precedence, from the overrides passed by the
CLI, the SONAR_* environment variables, then the YAML file.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = "sonar-migrate.yaml"

# (section, field) -> environment variable
_ENV_VARS = {
    ("source", "host"):     "SONAR_HOST",
    ("source", "user"):     "SONAR_USER",
    ("source", "password"): "SONAR_PASSWORD",
    ("target", "host"):     "SONAR_TARGET_HOST",
    ("target", "user"):     "SONAR_TARGET_USER",
    ("target", "password"): "SONAR_TARGET_PASSWORD",
}

_SERVER_FIELDS = ("host", "user", "password", "basic_auth_user", "basic_auth_password", "project")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ServerConfig:
    host: str = ""
    user: str = ""
    password: str = ""
    basic_auth_user: str = ""
    basic_auth_password: str = ""
    project: str = ""


@dataclass
class Config:
    source: ServerConfig = field(default_factory=ServerConfig)
    target: ServerConfig = field(default_factory=ServerConfig)
    timeout: int = 30
    verify_ssl: bool = True
    from_file: str | None = None
    csv_delimiter: str = ","

    def with_target_defaults(self) -> "Config":
        """Fill unset target values from the source server.

        Basic-auth credentials are only shared when both sides use the same
        host, they belong to the proxy in front of that host.
        """
        src, tgt = self.source, self.target
        target = replace(
            tgt,
            host=tgt.host or src.host,
            user=tgt.user or src.user,
            password=tgt.password or src.password,
        )
        if target.host == src.host:
            target = replace(
                target,
                basic_auth_user=tgt.basic_auth_user or src.basic_auth_user,
                basic_auth_password=tgt.basic_auth_password or src.basic_auth_password,
            )
        return replace(self, target=target)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str | None = None, overrides: dict[str, Any] | None = None) -> Config:
    """Build and validate the configuration.

    *config_path* may be None, in which case ``sonar-migrate.yaml`` is read
    if it exists. An explicit path that does not exist is an error.

    *overrides* uses flat keys as produced by the CLI: ``host``, ``user``,
    ``target_host``, ``source_project``, ``timeout`` ... ``None`` values are
    ignored.

    Raises:
        ConfigError: if the file is missing or malformed, or required values
                     are absent after all sources are merged.
    """
    raw = _read_file(config_path)
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    sections: dict[str, dict[str, str]] = {}
    for section in ("source", "target"):
        values = raw.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"'{section}' must be a mapping.")
        sections[section] = {name: str(values.get(name) or "").strip() for name in _SERVER_FIELDS}

    for (section, name), env_var in _ENV_VARS.items():
        if os.environ.get(env_var):
            sections[section][name] = os.environ[env_var]

    for section in ("source", "target"):
        for name in _SERVER_FIELDS:
            key = _override_key(section, name)
            if key in overrides:
                sections[section][name] = str(overrides[key])

    http = raw.get("http") or {}
    if not isinstance(http, dict):
        raise ConfigError("'http' must be a mapping.")
    try:
        timeout = int(overrides.get("timeout", http.get("timeout", 30)))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'http.timeout' must be an integer: {exc}") from exc
    verify_ssl = http.get("verify_ssl", True)
    if not isinstance(verify_ssl, bool):
        raise ConfigError(f"'http.verify_ssl' must be true or false, got {verify_ssl!r}")
    if overrides.get("insecure"):
        verify_ssl = False

    config = Config(
        source=ServerConfig(**sections["source"]),
        target=ServerConfig(**sections["target"]),
        timeout=timeout,
        verify_ssl=verify_ssl,
        from_file=overrides.get("from_file"),
        csv_delimiter=overrides.get("csv_delimiter", ","),
    ).with_target_defaults()
    _validate(config)
    return config


def _override_key(section: str, name: str) -> str:
    if name == "project":
        return f"{section}_project"
    return name if section == "source" else f"target_{name}"


def _read_file(config_path: str | None) -> dict:
    if config_path is None:
        if not Path(DEFAULT_CONFIG_PATH).exists():
            return {}
        config_path = DEFAULT_CONFIG_PATH

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(
            f"Config file not found: '{config_path}'\n"
            "Run `python -m sonar_migrate init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")
    return raw


def _validate(config: Config) -> None:
    """Raise ConfigError if required fields are missing."""
    errors: list[str] = []

    if not config.target.project:
        errors.append("  - 'target.project' is missing (--target-project)")

    if config.from_file is None:
        if not config.source.project:
            errors.append("  - 'source.project' is missing (--source-project)")
        for name, option, env_var in (
            ("host", "--host", "SONAR_HOST"),
            ("user", "--user", "SONAR_USER"),
            ("password", "--password", "SONAR_PASSWORD"),
        ):
            if not getattr(config.source, name):
                errors.append(f"  - 'source.{name}' is missing ({option} or {env_var})")

    for name, option in (("host", "--target-host"), ("user", "--target-user"),
                         ("password", "--target-password")):
        if not getattr(config.target, name):
            errors.append(f"  - 'target.{name}' is missing ({option}, or set it for the source)")

    if config.timeout <= 0:
        errors.append("  - 'http.timeout' must be positive")
    if len(config.csv_delimiter) != 1:
        errors.append(f"  - CSV delimiter must be a single character, got {config.csv_delimiter!r}")

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
source:
  host: "https://sonar.example.com"
  user: "admin"
  password: "change-me"            # or set SONAR_PASSWORD
  basic_auth_user: ""              # only for servers behind HTTP basic auth
  basic_auth_password: ""
  project: "com.example:my-project"

target:
  # Empty values fall back to the source server.
  # Basic-auth credentials are reused only when the host is the same.
  host: ""
  user: ""
  password: ""                     # or set SONAR_TARGET_PASSWORD
  project: "com.example:my-project-v2"

http:
  timeout: 30
  verify_ssl: true
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template sonar-migrate.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists (to avoid overwriting secrets).
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
