"""Version metadata for the StreamRelay connectors.

Import-safe: exposes version identifiers for entrypoint banners and the
startup log without executing side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "StreamRelay Connectors"
VERSION = "v0.3.0-alpha"
BUILD = "2026.10"
LICENSE = "MIT"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "LICENSE",
    "as_dict",
    "as_string",
    "package_version",
]


def as_dict() -> dict[str, str]:
    """Return version metadata as a dictionary."""

    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
        "license": LICENSE,
    }


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"


def package_version() -> str:
    """PEP 440 form of VERSION, as declared in pyproject.toml."""

    core, _, tag = VERSION.lstrip("v").partition("-")
    if tag == "alpha":
        return f"{core}a0"
    if tag == "beta":
        return f"{core}b0"
    return core
