"""
Manage the process-wide GeoPackage connection.

Reads config from the GPKG_CONFIG env var (default config/geopackage.yml).

Supports ${ENV_VAR} interpolation in YAML string values so that
deployment-specific paths can be injected via environment variables
rather than hard-coded in the config file.
"""

import os
import re

import yaml
from pydantic import BaseModel

from .geopackage import FEATURE_ID_FIELD_NAME, GeoPackage

_geopackage = None

_ENV_RE = re.compile(r"\$\{(\w+)\}")


class GeoPackageSettings(BaseModel):
    """The ``geopackage:`` section of the config file."""

    path: str
    feature_id_field: str = FEATURE_ID_FIELD_NAME
    drop_orphans: bool = True


def _resolve_env_vars(value):
    """Replace ${VAR} placeholders with environment variable values."""
    if isinstance(value, str):
        return _ENV_RE.sub(
            lambda m: os.environ.get(m.group(1), m.group(0)), value
        )
    return value


def load_settings(config_path: str = None) -> GeoPackageSettings:
    """Parse the YAML config file into settings."""
    if config_path is None:
        config_path = os.environ.get("GPKG_CONFIG", "config/geopackage.yml")
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}
    section = config.get("geopackage") or {}
    return GeoPackageSettings(
        **{k: _resolve_env_vars(v) for k, v in section.items()}
    )


def get_geopackage() -> GeoPackage:
    """Singleton GeoPackage instance."""
    global _geopackage
    if _geopackage is None:
        settings = load_settings()
        _geopackage = GeoPackage(
            settings.path,
            feature_id_field=settings.feature_id_field,
            drop_orphans=settings.drop_orphans,
        )
    return _geopackage


def set_geopackage(geopackage):
    """Override the GeoPackage instance (used for testing)."""
    global _geopackage
    _geopackage = geopackage


def reset_geopackage():
    """Reset the singleton GeoPackage (used for testing)."""
    global _geopackage
    _geopackage = None


def get_feature_table(table_name: str):
    """FeatureTable for ``table_name`` in the configured GeoPackage."""
    return get_geopackage().feature_table(table_name)


def list_feature_tables() -> list[str]:
    """List feature tables registered in gpkg_contents."""
    return get_geopackage().feature_table_names()
