"""Utility helpers for resolving project directories."""

from __future__ import annotations

from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def project_root() -> Path:
    """Return the absolute path to the project root directory."""

    return _PROJECT_ROOT


def default_config_path() -> Path:
    """Return the location of the repository ``config.yml``."""

    return _PROJECT_ROOT / "config.yml"
