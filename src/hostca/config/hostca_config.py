"""HostCA configuration loader.

Lifecycle::

    config = HostcaConfig(config_file="/etc/hostca/hostca.yaml")
    config.settings.ca.ssldir            # typed access
    config.get("logging.audit.file")     # dynamic dot-path

The loaded settings are handed explicitly to the components that need
them; nothing here is a process-wide singleton.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from hostca.config.settings import HostcaSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_MIN_RSA_KEY_SIZE = 2048

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """The config file could not be turned into settings.

    ``errors`` holds one line per problem found.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        lines = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Invalid HostCA configuration:\n{lines}")


# ---------------------------------------------------------------------------
# ${VAR} expansion
# ---------------------------------------------------------------------------


def _expand(value: Any, where: str, missing: list[str]) -> Any:  # noqa: ANN401
    """Return *value* with ``${VAR}`` / ``${VAR:-default}`` strings substituted.

    Mappings and lists are rebuilt recursively.  Variables that are unset
    and have no default are appended to *missing* (by config path) and
    the original string is kept.
    """
    if isinstance(value, dict):
        return {k: _expand(v, f"{where}.{k}" if where else str(k), missing) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v, f"{where}[{i}]", missing) for i, v in enumerate(value)]
    if not isinstance(value, str):
        return value

    match = _ENV_RE.match(value)
    if match is None:
        return value
    name, default = match.groups()
    if name in os.environ:
        return os.environ[name]
    if default is not None:
        return default
    missing.append(f"{where}: environment variable {name} is unset and has no default")
    return value


def _expand_env(data: dict) -> dict:
    missing: list[str] = []
    expanded = _expand(data, "", missing)
    if missing:
        raise ConfigValidationError(missing)
    return expanded


def _read_file(path: Path) -> dict:
    with path.open(encoding="utf-8") as f:
        if path.suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            [f"{path}: top level must be a mapping, got {type(data).__name__}"],
        )
    return data


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class HostcaConfig:
    """Loaded, validated HostCA configuration.

    The JSON schema is bundled at ``config/schema.json``; users supply
    only ``config_file`` (YAML or JSON).  After construction the typed
    settings tree is available at :pyattr:`settings` and the raw dict via
    :pyattr:`data` / :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        self._source = Path(config_file)
        self._data = self._load()
        self._validate_schema()
        self.additional_checks()
        self._settings: HostcaSettings = build_settings(self._data)

    # -- lifecycle ----------------------------------------------------------

    def _load(self) -> dict:
        """Load the config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        return _expand_env(_read_file(self._source))

    def _validate_schema(self) -> None:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
        validator = Draft202012Validator(schema)
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '(root)'}: {err.message}"
            for err in sorted(validator.iter_errors(self._data), key=lambda e: list(e.absolute_path))
        ]
        if errors:
            raise ConfigValidationError(errors)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> HostcaSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    @property
    def source(self) -> Path:
        return self._source

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return the raw value at *dotted* path, or *default*."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:
        """Semantic & cross-field validation, run after schema validation."""
        errors: list[str] = []
        warnings: list[str] = []

        ca = self._data.get("ca") or {}
        logging_cfg = self._data.get("logging") or {}

        # -- CA --
        ca_ttl = ca.get("ca_ttl_days", 1825)
        cert_ttl = ca.get("cert_ttl_days", 1825)
        if cert_ttl > ca_ttl:
            errors.append(
                f"ca.cert_ttl_days ({cert_ttl}) must be <= ca.ca_ttl_days ({ca_ttl})",
            )

        key_type = ca.get("key_type", "rsa")
        if key_type == "rsa":
            key_size = ca.get("key_size", _MIN_RSA_KEY_SIZE)
            if key_size < _MIN_RSA_KEY_SIZE:
                errors.append(
                    f"ca.key_size ({key_size}) must be >= {_MIN_RSA_KEY_SIZE}",
                )
        elif "key_size" in ca:
            warnings.append(
                f"ca.key_size is ignored when ca.key_type is '{key_type}'",
            )

        autosign = ca.get("autosign", False)
        if isinstance(autosign, str) and autosign.strip().lower() not in {"true", "false"}:
            policy_path = Path(autosign)
            if not policy_path.is_absolute():
                errors.append(
                    f"ca.autosign policy file must be an absolute path (got '{autosign}')",
                )
            elif not policy_path.exists():
                warnings.append(
                    f"ca.autosign policy file {autosign} does not exist -- "
                    "no request will be autosigned",
                )

        # -- Logging --
        audit = logging_cfg.get("audit") or {}
        if audit.get("enabled") and not audit.get("file"):
            warnings.append(
                "logging.audit.enabled is true but logging.audit.file is not set -- "
                "audit events go to the console only",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> HostcaSettings:
        """Re-read the config file and return a fresh settings tree."""
        return build_settings(_expand_env(_read_file(self._source)))

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        return f"<HostcaConfig config_file={self._source}>"
