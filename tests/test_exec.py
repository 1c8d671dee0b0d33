import io
import shlex
import subprocess
import sys

import pytest

from kindkit.errors import AggregateError, errors_of, wrap
from kindkit.exec import (
    LocalCmd,
    LocalCmder,
    RunError,
    combined_output_lines,
    command,
    inherit_output,
    output,
    output_lines,
    pretty_command,
    run_error_for_error,
    run_with_stdin_writer,
    run_with_stdout_reader,
)

PY = sys.executable


def py(script):
    return command(PY, "-c", script)


def test_pretty_command_quotes_spaces():
    assert pretty_command("echo", "hello world") == "echo 'hello world'"


@pytest.mark.parametrize(
    "args",
    [
        ["echo"],
        ["echo", ""],
        ["ls", "-la", "/tmp/some dir", "it's", "$HOME", "a;b"],
    ],
)
def test_pretty_command_round_trips_through_shell_split(args):
    assert shlex.split(pretty_command(args[0], *args[1:])) == args


def test_cmder_builds_local_cmd():
    cmd = LocalCmder().command("docker", "ps", "-a")
    assert isinstance(cmd, LocalCmd)
    assert (cmd.name, cmd.args) == ("docker", ["ps", "-a"])


def test_setters_chain_and_return_cmd():
    buffer = io.BytesIO()
    cmd = command("true")
    assert cmd.set_stdout(buffer).set_stderr(buffer) is cmd
    assert cmd.stdout is buffer and cmd.stderr is buffer


def test_output_lines_of_successful_command():
    cmd = py("import sys; sys.stdout.buffer.write(b'x\\r\\ny\\n')")
    assert output_lines(cmd) == ["x", "y"]


def test_output_of_empty_command_is_empty():
    assert output_lines(py("pass")) == []


def test_combined_output_lines_in_order():
    script = (
        "import sys; sys.stdout.write('a\\n'); sys.stdout.flush(); "
        "sys.stderr.write('b\\n'); sys.stderr.flush()"
    )
    assert combined_output_lines(py(script)) == ["a", "b"]


def test_separate_writers_each_receive_their_stream():
    out, err = io.BytesIO(), io.BytesIO()
    script = "import sys; sys.stdout.write('o'); sys.stderr.write('e')"
    py(script).set_stdout(out).set_stderr(err).run()
    assert out.getvalue() == b"o"
    assert err.getvalue() == b"e"


def test_text_writer_receives_decoded_text():
    text = io.StringIO()
    script = "import sys; sys.stdout.buffer.write('h\u00e9llo'.encode('utf-8'))"
    py(script).set_stdout(text).run()
    assert text.getvalue() == "h\u00e9llo"


def test_failure_raises_run_error_with_output():
    err = io.BytesIO()
    script = "import sys; sys.stderr.write('boom'); sys.exit(3)"
    with pytest.raises(RunError) as info:
        py(script).set_stderr(err).run()
    run_error = info.value
    assert b"boom" in run_error.output
    assert err.getvalue() == b"boom"
    assert isinstance(run_error.cause(), subprocess.CalledProcessError)
    assert run_error.cause().returncode == 3
    assert run_error.command[0] == PY


def test_failure_message_names_command():
    with pytest.raises(RunError) as info:
        py("raise SystemExit(1)").run()
    assert str(info.value).startswith(f'command "{pretty_command(PY, "-c", "raise SystemExit(1)")}"')


def test_missing_executable_raises_run_error():
    with pytest.raises(RunError) as info:
        command("kindkit-no-such-program-xyz").run()
    assert isinstance(info.value.cause(), FileNotFoundError)


def test_run_error_str_format():
    err = RunError(["echo", "a b"], b"", ValueError("bad"))
    assert str(err) == "command \"echo 'a b'\" failed with error: bad"
    assert err.pretty_command() == "echo 'a b'"


def test_run_error_cause_without_inner_is_itself():
    err = RunError(["true"])
    assert err.cause() is err


def test_stdin_from_bytes_buffer():
    cmd = py("import sys; sys.stdout.write(sys.stdin.read().upper())")
    cmd.set_stdin(io.BytesIO(b"abc"))
    assert output(cmd) == b"ABC"


def test_stdin_from_real_file(tmp_path):
    source = tmp_path / "input.bin"
    source.write_bytes(b"file contents\n")
    cmd = py("import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())")
    with open(source, "rb") as handle:
        cmd.set_stdin(handle)
        assert output(cmd) == b"file contents\n"


def test_set_env_replaces_environment():
    import os

    entries = ["KINDKIT_TEST_VALUE=marker"]
    if "SYSTEMROOT" in os.environ:
        entries.append(f"SYSTEMROOT={os.environ['SYSTEMROOT']}")
    cmd = py("import os; print(os.environ.get('KINDKIT_TEST_VALUE'))").set_env(*entries)
    assert output_lines(cmd) == ["marker"]
    assert cmd.env == entries


def test_set_env_without_entries_inherits():
    cmd = command("true").set_env()
    assert cmd.env is None


def test_run_error_for_error_through_wrapping():
    run_error = RunError(["false"], b"", ValueError("x"))
    wrapped = wrap(wrap(run_error, "inner"), "outer")
    assert run_error_for_error(wrapped) is run_error
    assert run_error_for_error(run_error) is run_error


def test_run_error_for_error_without_run_error():
    assert run_error_for_error(ValueError("plain")) is None
    assert run_error_for_error(None) is None


def test_inherit_output_uses_process_streams():
    cmd = command("true")
    assert inherit_output(cmd) is cmd
    assert cmd.stdout is sys.stdout
    assert cmd.stderr is sys.stderr


def test_run_with_stdout_reader_streams_output():
    chunks = []
    cmd = py("import sys; sys.stdout.buffer.write(b'streamed')")
    run_with_stdout_reader(cmd, lambda reader: chunks.append(reader.read()))
    assert chunks == [b"streamed"]


def test_run_with_stdout_reader_reports_command_failure():
    with pytest.raises(RunError):
        run_with_stdout_reader(py("raise SystemExit(2)"), lambda reader: reader.read())


def test_run_with_stdout_reader_aggregates_both_failures():
    def failing_reader(reader):
        raise ValueError("reader failed")

    with pytest.raises(AggregateError) as info:
        run_with_stdout_reader(py("raise SystemExit(1)"), failing_reader)
    kinds = sorted(type(err).__name__ for err in errors_of(info.value))
    assert kinds == ["RunError", "ValueError"]


def test_run_with_stdin_writer_feeds_command():
    out = io.BytesIO()
    cmd = py("import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())").set_stdout(out)
    run_with_stdin_writer(cmd, lambda writer: writer.write(b"payload"))
    assert out.getvalue() == b"payload"


def test_run_with_stdin_writer_reports_writer_failure():
    def failing_writer(writer):
        raise KeyError("nope")

    cmd = py("import sys; sys.stdin.read()")
    with pytest.raises(KeyError):
        run_with_stdin_writer(cmd, failing_writer)