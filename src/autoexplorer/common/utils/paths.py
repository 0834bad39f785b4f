"""Path helpers for locating package resources."""

from __future__ import annotations

from pathlib import Path


def get_package_root() -> Path:
    """Return the ``autoexplorer`` package directory."""
    return Path(__file__).resolve().parents[2]


def get_prompt_path(name: str) -> str:
    """Return the absolute path to a prompt file by name."""
    return str((get_package_root() / "prompts" / name).resolve())
