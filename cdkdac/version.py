"""Build and version information for the node."""

from __future__ import annotations

import platform
import sys
from typing import TextIO

VERSION = "v0.1.0"
GIT_REV = "undefined"
GIT_BRANCH = "undefined"
BUILD_DATE = "Fri, 17 Jun 1988 01:58:00 +0200"


def get_version_info() -> str:
    """Return version information as a formatted multi-line string."""
    os_name = platform.system().lower() or sys.platform
    arch = platform.machine().lower() or "unknown"
    lines = [
        f"Version:      {VERSION}",
        f"Git revision: {GIT_REV}",
        f"Git branch:   {GIT_BRANCH}",
        f"Python:       {platform.python_version()}",
        f"Built:        {BUILD_DATE}",
        f"OS/Arch:      {os_name}/{arch}",
    ]
    return "".join(f"{line}\n" for line in lines)


def print_version(stream: TextIO | None = None) -> None:
    """Write the version information to ``stream`` (stdout by default)."""
    (stream if stream is not None else sys.stdout).write(get_version_info())