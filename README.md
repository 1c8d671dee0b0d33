# kindkit

Building blocks for tools that manage local Kubernetes clusters whose
"nodes" are containers. It needs nothing beyond the standard library.

## Modules

- `kindkit.errors`: error handling helpers.
  - `AggregateError` holds several errors. Its `matches(target)` method checks
    whether any of them is, or was caused by, an exception instance or class.
  - `new_aggregate`, `flatten` and `reduce` build aggregates.
  - `errors_of` returns the errors of the deepest aggregate in a cause chain.
  - `wrap(err, message)` annotates an error and keeps it as the cause.
  - `stack_trace` finds the deepest recorded stack in a cause chain.
  - `until_error_concurrent` runs callables in threads and raises the first
    error that arrives.
  - `aggregate_concurrent` runs callables in threads, waits for all of them,
    and raises the single error or an aggregate of several.
- `kindkit.exec`: running external commands.
  - `LocalCmder.command`, or the shortcut `command`, creates a `LocalCmd`.
    `LocalCmd` has the chainable methods `set_env`, `set_stdin`, `set_stdout`
    and `set_stderr`, and runs with `run`.
  - A failure raises `RunError`. It carries `command`, the combined `output`
    and `inner`, and offers `pretty_command()` and `cause()`.
  - Helpers: `output`, `output_lines`, `combined_output_lines`,
    `inherit_output`, `run_with_stdout_reader`, `run_with_stdin_writer`,
    `pretty_command` and `run_error_for_error`.
- `kindkit.fs`: container-friendly file helpers.
  - `temp_dir` returns a `/private/var/...` path on macOS so that the
    directory can be mounted.
  - `is_abs` treats POSIX paths as absolute on every platform.
  - `copy` copies recursively, keeps modes and follows symlinks.
  - `copy_file` copies a single file.
- `kindkit.iostreams`: the `IOStreams` dataclass (`stdin`, `stdout`, `stderr`)
  and `standard_iostreams()`.
- `kindkit.nodeutils`: the abstract `Node` class. A subclass supplies
  `__str__` (the node name), `role()` and `command(name, *args)`.
  - Role selection: `select_nodes_by_role`, `internal_nodes`,
    `external_load_balancer_node`, `api_server_endpoint_node`,
    `control_plane_nodes`, `bootstrap_control_plane_node` and
    `secondary_control_plane_nodes`.
  - Node operations: `kube_version`, `write_file`, `copy_node_to_node`,
    `load_image_archive`, `image_id`, `image_tags` and `retag_image`.
  - `parse_snapshotter` reads the CRI snapshotter from a containerd TOML
    configuration.
- `kindkit.images`: helpers for loading images into nodes.
  - `sanitize_image` returns the fully qualified form of an image reference.
  - `remove_duplicates` and `check_if_image_retag_required` prepare a load.
  - `docker_image_id` and `save_images` call the `docker` command.
  - `load_image_file` loads an image archive onto a node.
  - `select_nodes` picks nodes by name.
- `kindkit.version`: `version()`, `display_version()` and `truncate`.

## Example

```python
from kindkit.exec import RunError, command, output_lines
from kindkit.images import sanitize_image

print(sanitize_image("ubuntu:18.04"))  # docker.io/library/ubuntu:18.04

try:
    lines = output_lines(command("echo", "hello"))
except RunError as err:
    print(err.pretty_command(), err.output)
```

## What it does not do

There is no command-line program. The package has no functions that create,
delete or list clusters, and it does not write kubeconfig files or collect
cluster logs. It does not include a Docker or Podman backend that discovers
nodes. To use the node and image helpers, implement `Node` for your own
container runtime.