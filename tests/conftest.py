"""Root conftest for the HostCA test suite."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from hostca.config.settings import HostcaSettings, build_settings  # noqa: E402

# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def ssldir(tmp_path: Path) -> Path:
    return tmp_path / "ssl"


@pytest.fixture()
def minimal_config_data(ssldir: Path) -> dict:
    """Return a dict containing the minimum required config fields.

    EC keys keep the crypto fast; RSA is exercised explicitly where it
    matters.
    """
    return {
        "ca": {
            "ssldir": str(ssldir),
            "ca_name": "Test CA",
            "key_type": "ec",
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture()
def make_settings(minimal_config_data: dict):
    """Factory building :class:`HostcaSettings` with per-section overrides.

    ``make_settings(ca={"autosign": True}, auth={"rules_file": "..."})``
    """

    def _make(**sections) -> HostcaSettings:
        data = {key: dict(value) for key, value in minimal_config_data.items()}
        for section, values in sections.items():
            data.setdefault(section, {}).update(values)
        return build_settings(data)

    return _make


@pytest.fixture()
def settings(make_settings) -> HostcaSettings:
    return make_settings()


# ---------------------------------------------------------------------------
# Logger cleanup -- configure_logging() detaches "hostca" from the root
# logger, which would hide records from caplog in later tests.
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_loggers():
    """Restore the ``hostca`` logger tree after every test."""
    yield
    for name in ("hostca", "hostca.security"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
