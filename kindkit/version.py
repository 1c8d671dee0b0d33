"""The version of the cluster tooling and its display form."""

from __future__ import annotations

import platform
import sys

# core portion of the version per Semantic Versioning 2.0.0
_VERSION_CORE = "0.16.0"

# base pre-release portion of the version per Semantic Versioning 2.0.0
_VERSION_PRE_RELEASE = "alpha"

# number of commits since the last release; filled in by release builds
_GIT_COMMIT_COUNT = ""

# commit the build was made from; filled in by release builds
_GIT_COMMIT = ""


def truncate(s: str, max_len: int) -> str:
    """Return s cut down to at most max_len characters."""
    if len(s) < max_len:
        return s
    return s[:max_len]


def version() -> str:
    """Return the semantic version of the tool."""
    v = _VERSION_CORE
    if _VERSION_PRE_RELEASE:
        v += "-" + _VERSION_PRE_RELEASE
        if _GIT_COMMIT_COUNT:
            v += "." + _GIT_COMMIT_COUNT
        # build metadata is only added for pre-release versions
        if _GIT_COMMIT:
            v += "+" + truncate(_GIT_COMMIT, 14)
    return v


def display_version() -> str:
    """Return the version with runtime and platform details, as printed to users."""
    return (
        f"kind v{version()} python{platform.python_version()} "
        f"{sys.platform}/{platform.machine()}"
    )