"""Running external commands with captured output and rich errors."""

from __future__ import annotations

import codecs
import contextlib
import io
import os
import shlex
import subprocess
import sys
import threading
from collections.abc import Callable
from functools import partial
from typing import IO, Any, BinaryIO, Protocol

from kindkit.errors import aggregate_concurrent

_CHUNK = 64 * 1024


class _Cmd(Protocol):
    def run(self) -> None: ...

    def set_env(self, *args: str) -> _Cmd: ...

    def set_stdin(self, reader: Any) -> _Cmd: ...

    def set_stdout(self, writer: Any) -> _Cmd: ...

    def set_stderr(self, writer: Any) -> _Cmd: ...


def pretty_command(name: str, *args: str) -> str:
    """Render a command so that it could be pasted into a shell."""
    return " ".join(shlex.quote(part) for part in (name, *args))


class RunError(Exception):
    """A command failed to start or exited unsuccessfully."""

    def __init__(
        self,
        command: list[str],
        output: bytes = b"",
        inner: BaseException | None = None,
    ) -> None:
        self.command = list(command)
        self.output = output
        self.inner = inner
        super().__init__(self.command, output, inner)

    def __str__(self) -> str:
        return f'command "{self.pretty_command()}" failed with error: {self.inner}'

    def pretty_command(self) -> str:
        """The failed command, quoted for a shell."""
        return pretty_command(self.command[0], *self.command[1:])

    def cause(self) -> BaseException:
        """The underlying error, or this error when there is none."""
        return self.inner if self.inner is not None else self


class _Sink:
    """Writes raw bytes to a binary writer, or decoded text to a text writer."""

    def __init__(self, writer: Any) -> None:
        self.writer = writer
        self.decoder = (
            codecs.getincrementaldecoder("utf-8")("replace")
            if isinstance(writer, io.TextIOBase)
            else None
        )

    def write(self, data: bytes) -> None:
        if self.decoder is None:
            self.writer.write(data)
            return
        text = self.decoder.decode(data)
        if text:
            self.writer.write(text)

    def finish(self) -> None:
        if self.decoder is not None:
            tail = self.decoder.decode(b"", final=True)
            if tail:
                self.writer.write(tail)


def _file_descriptor(stream: Any) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _pump_output(
    stream: BinaryIO,
    writer: Any,
    combined: bytearray,
    lock: threading.Lock,
    failures: list[BaseException],
) -> None:
    sink = _Sink(writer) if writer is not None else None
    with stream:
        for chunk in iter(partial(stream.read1, _CHUNK), b""):
            with lock:
                combined.extend(chunk)
            if sink is None:
                continue
            try:
                sink.write(chunk)
            except Exception as exc:  # reported once the command has finished
                with lock:
                    failures.append(exc)
                sink = None  # keep draining so the child never blocks
        if sink is not None:
            try:
                sink.finish()
            except Exception as exc:
                with lock:
                    failures.append(exc)


def _pump_input(
    reader: Any,
    pipe: BinaryIO,
    lock: threading.Lock,
    failures: list[BaseException],
) -> None:
    read = getattr(reader, "read1", None) or reader.read
    try:
        while True:
            data = read(_CHUNK)
            if not data:
                break
            if isinstance(data, str):
                data = data.encode("utf-8")
            pipe.write(data)
    except BrokenPipeError:
        pass
    except Exception as exc:
        with lock:
            failures.append(exc)
    finally:
        with contextlib.suppress(OSError):
            pipe.close()


class LocalCmd:
    """A command run as a local child process."""

    def __init__(self, name: str, *args: str) -> None:
        self.name = name
        self.args = list(args)
        self.env: list[str] | None = None
        self.stdin: Any = None
        self.stdout: Any = None
        self.stderr: Any = None

    def __repr__(self) -> str:
        return f"LocalCmd({pretty_command(self.name, *self.args)!r})"

    def set_env(self, *args: str) -> LocalCmd:
        """Replace the environment with "key=value" entries; none inherits it."""
        self.env = list(args) or None
        return self

    def set_stdin(self, reader: Any) -> LocalCmd:
        self.stdin = reader
        return self

    def set_stdout(self, writer: Any) -> LocalCmd:
        self.stdout = writer
        return self

    def set_stderr(self, writer: Any) -> LocalCmd:
        self.stderr = writer
        return self

    def _environ(self) -> dict[str, str] | None:
        if self.env is None:
            return None
        environ: dict[str, str] = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            environ[key] = value
        return environ

    def run(self) -> None:
        """Run the command to completion, raising RunError if it fails.

        Output always goes to a combined capture, and also to the configured
        stdout and stderr writers.
        """
        argv = [self.name, *self.args]
        combined = bytearray()
        lock = threading.Lock()
        failures: list[BaseException] = []
        shared = self.stdout is self.stderr

        pump_stdin = False
        if self.stdin is None:
            stdin_arg: Any = subprocess.DEVNULL
        else:
            fd = _file_descriptor(self.stdin)
            if fd is not None:
                stdin_arg = fd
            else:
                stdin_arg = subprocess.PIPE
                pump_stdin = True

        try:
            proc = subprocess.Popen(
                argv,
                env=self._environ(),
                stdin=stdin_arg,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if shared else subprocess.PIPE,
            )
        except OSError as exc:
            raise RunError(argv, b"", exc) from exc

        threads: list[threading.Thread] = []

        def spawn(target: Callable[..., None], *args: Any) -> None:
            thread = threading.Thread(target=target, args=args, daemon=True)
            thread.start()
            threads.append(thread)

        spawn(_pump_output, proc.stdout, self.stdout, combined, lock, failures)
        if not shared:
            spawn(_pump_output, proc.stderr, self.stderr, combined, lock, failures)
        if pump_stdin:
            spawn(_pump_input, self.stdin, proc.stdin, lock, failures)

        returncode = proc.wait()
        for thread in threads:
            thread.join()

        output = bytes(combined)
        inner: BaseException
        if returncode != 0:
            inner = subprocess.CalledProcessError(returncode, argv, output=output)
        elif failures:
            inner = failures[0]
        else:
            return
        raise RunError(argv, output, inner) from inner


class LocalCmder:
    """Creates LocalCmd instances."""

    def command(self, name: str, *args: str) -> LocalCmd:
        return LocalCmd(name, *args)


DEFAULT_CMDER = LocalCmder()


def command(name: str, *args: str) -> LocalCmd:
    """Create a command with the default cmder."""
    return DEFAULT_CMDER.command(name, *args)


def run_error_for_error(err: BaseException | None) -> RunError | None:
    """Return the deepest RunError in err's cause chain, or None."""
    found: RunError | None = None
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, RunError):
            found = err
        err = err.__cause__
    return found


def _scan_lines(data: bytes) -> list[str]:
    if not data:
        return []
    lines = data.decode("utf-8", errors="replace").split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


def combined_output_lines(cmd: _Cmd) -> list[str]:
    """Run cmd and return the lines of its stdout and stderr together."""
    buffer = io.BytesIO()
    cmd.set_stdout(buffer)
    cmd.set_stderr(buffer)
    cmd.run()
    return _scan_lines(buffer.getvalue())


def output_lines(cmd: _Cmd) -> list[str]:
    """Run cmd and return the lines of its stdout."""
    return _scan_lines(output(cmd))


def output(cmd: _Cmd) -> bytes:
    """Run cmd and return its stdout."""
    buffer = io.BytesIO()
    cmd.set_stdout(buffer)
    cmd.run()
    return buffer.getvalue()


def inherit_output(cmd: _Cmd) -> _Cmd:
    """Send cmd's output to this process's stdout and stderr."""
    cmd.set_stderr(sys.stderr)
    cmd.set_stdout(sys.stdout)
    return cmd


def run_with_stdout_reader(cmd: _Cmd, reader_func: Callable[[IO[bytes]], object]) -> None:
    """Run cmd while reader_func consumes its stdout through a pipe."""
    read_fd, write_fd = os.pipe()
    reader = open(read_fd, "rb")
    writer = open(write_fd, "wb", buffering=0)
    cmd.set_stdout(writer)

    def consume() -> None:
        with reader:
            reader_func(reader)

    def execute() -> None:
        with writer:
            cmd.run()

    aggregate_concurrent([consume, execute])


def run_with_stdin_writer(cmd: _Cmd, writer_func: Callable[[IO[bytes]], object]) -> None:
    """Run cmd while writer_func feeds its stdin through a pipe."""
    read_fd, write_fd = os.pipe()
    reader = open(read_fd, "rb")
    writer = open(write_fd, "wb")
    cmd.set_stdin(reader)

    def produce() -> None:
        with writer:
            writer_func(writer)

    def execute() -> None:
        with reader:
            cmd.run()

    aggregate_concurrent([produce, execute])