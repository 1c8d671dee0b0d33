"""The standard trio of input, output and error streams."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import IO


@dataclass
class IOStreams:
    """Named input, output and error streams, handy for embedding and testing."""

    stdin: IO[str]
    stdout: IO[str]
    stderr: IO[str]


def standard_iostreams() -> IOStreams:
    """Return the process's own stdin, stdout and stderr."""
    return IOStreams(stdin=sys.stdin, stdout=sys.stdout, stderr=sys.stderr)