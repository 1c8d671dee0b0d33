"""Helpers for cluster nodes: picking nodes by role and working with files and
images inside them."""

from __future__ import annotations

import io
import json
import posixpath
import tomllib
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, BinaryIO

from kindkit.errors import wrap
from kindkit.exec import output, output_lines

WORKER_ROLE = "worker"
CONTROL_PLANE_ROLE = "control-plane"
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"

_SNAPSHOTTER_ERROR = "failed to detect containerd snapshotter"


class Node(ABC):
    """A cluster node that has a role and can run commands inside itself."""

    @abstractmethod
    def __str__(self) -> str:
        """The node's name."""

    @abstractmethod
    def role(self) -> str:
        """The node's role, such as "control-plane" or "worker"."""

    @abstractmethod
    def command(self, name: str, *args: str) -> Any:
        """Create a command that runs on the node."""


def _dirname(path: str) -> str:
    return posixpath.dirname(path) or "."


def select_nodes_by_role(all_nodes: Iterable[Node], role: str) -> list[Node]:
    """Return the nodes whose role is role, in their original order."""
    return [node for node in all_nodes if node.role() == role]


def internal_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return the Kubernetes nodes, leaving out e.g. an external load balancer."""
    return [
        node
        for node in all_nodes
        if node.role() in (WORKER_ROLE, CONTROL_PLANE_ROLE)
    ]


def external_load_balancer_node(all_nodes: Iterable[Node]) -> Node | None:
    """Return the external load balancer node, or None if there is none."""
    balancers = select_nodes_by_role(all_nodes, EXTERNAL_LOAD_BALANCER_ROLE)
    if not balancers:
        return None
    if len(balancers) > 1:
        raise ValueError(
            f"unexpected number of {EXTERNAL_LOAD_BALANCER_ROLE} nodes {len(balancers)}"
        )
    return balancers[0]


def api_server_endpoint_node(all_nodes: Iterable[Node]) -> Node:
    """Return the node hosting the API server endpoint.

    That is the load balancer if there is one, otherwise the only control
    plane node.
    """
    all_nodes = list(all_nodes)
    try:
        balancer = external_load_balancer_node(all_nodes)
    except Exception as exc:
        raise wrap(exc, "failed to find api-server endpoint node")
    if balancer is not None:
        return balancer
    try:
        control_planes = control_plane_nodes(all_nodes)
    except Exception as exc:
        raise wrap(exc, "failed to find api-server endpoint node")
    if len(control_planes) != 1:
        raise ValueError(
            "expected one control plane node or a load balancer, "
            f"not {len(control_planes)} and none"
        )
    return control_planes[0]


def control_plane_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return the control plane nodes sorted by name; the first is the bootstrap node."""
    return sorted(select_nodes_by_role(all_nodes, CONTROL_PLANE_ROLE), key=str)


def _require_control_planes(all_nodes: Iterable[Node]) -> list[Node]:
    nodes = control_plane_nodes(all_nodes)
    if not nodes:
        raise ValueError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return nodes


def bootstrap_control_plane_node(all_nodes: Iterable[Node]) -> Node:
    """Return the bootstrap control plane node."""
    return _require_control_planes(all_nodes)[0]


def secondary_control_plane_nodes(all_nodes: Iterable[Node]) -> list[Node]:
    """Return every control plane node except the bootstrap one."""
    return _require_control_planes(all_nodes)[1:]


def kube_version(node: Node) -> str:
    """Return the Kubernetes version installed on the node."""
    try:
        lines = output_lines(node.command("cat", "/kind/version"))
    except Exception as exc:
        raise wrap(exc, "failed to get file")
    if len(lines) != 1:
        raise ValueError(f"file should only be one line, got {len(lines)} lines")
    return lines[0]


def write_file(node: Node, dest: str, content: str) -> None:
    """Write content to dest on the node, creating its directory."""
    directory = _dirname(dest)
    try:
        node.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise wrap(exc, f"failed to create directory {directory}")
    node.command("cp", "/dev/stdin", dest).set_stdin(
        io.BytesIO(content.encode("utf-8"))
    ).run()


def copy_node_to_node(a: Node, b: Node, file: str) -> None:
    """Copy file from node a to the same path on node b."""
    directory = _dirname(file)
    try:
        b.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise wrap(exc, f'failed to create directory "{directory}"')
    buffer = io.BytesIO()
    try:
        a.command("cat", file).set_stdout(buffer).run()
    except Exception as exc:
        raise wrap(exc, f'failed to read "{file}" from node')
    buffer.seek(0)
    try:
        b.command("cp", "/dev/stdin", file).set_stdin(buffer).run()
    except Exception as exc:
        raise wrap(exc, f'failed to write "{file}" to node')


def load_image_archive(node: Node, image: BinaryIO) -> None:
    """Import the image archive read from image into the node's containerd."""
    snapshotter = _get_snapshotter(node)
    cmd = node.command(
        "ctr",
        "--namespace=k8s.io",
        "images",
        "import",
        "--digests",
        f"--snapshotter={snapshotter}",
        "-",
    ).set_stdin(image)
    try:
        cmd.run()
    except Exception as exc:
        raise wrap(exc, "failed to load image")


def _get_snapshotter(node: Node) -> str:
    try:
        dump = output(node.command("containerd", "config", "dump"))
    except Exception as exc:
        raise wrap(exc, _SNAPSHOTTER_ERROR)
    return parse_snapshotter(dump.decode("utf-8", errors="replace"))


def parse_snapshotter(config: str) -> str:
    """Return the CRI snapshotter named in a containerd TOML config."""
    try:
        parsed = tomllib.loads(config)
    except tomllib.TOMLDecodeError as exc:
        raise wrap(exc, _SNAPSHOTTER_ERROR)
    value: Any = parsed
    for key in ("plugins", "io.containerd.grpc.v1.cri", "containerd", "snapshotter"):
        if not isinstance(value, dict) or key not in value:
            raise ValueError(_SNAPSHOTTER_ERROR)
        value = value[key]
    if not isinstance(value, str):
        raise ValueError(_SNAPSHOTTER_ERROR)
    return value


def _inspect_image(node: Node, image: str) -> dict[str, Any]:
    buffer = io.BytesIO()
    node.command("crictl", "inspecti", image).set_stdout(buffer).run()
    document = json.loads(buffer.getvalue())
    status = document.get("status") if isinstance(document, dict) else None
    return status if isinstance(status, dict) else {}


def image_id(node: Node, image: str) -> str:
    """Return the ID of the named image on the node ("" if it reports none)."""
    return _inspect_image(node, image).get("id") or ""


def image_tags(node: Node, image_id: str) -> set[str]:
    """Return the repository tags that point at image_id on the node."""
    return set(_inspect_image(node, image_id).get("repoTags") or ())


def retag_image(node: Node, image_id: str, image_name: str) -> None:
    """Tag image_id on the node as image_name, replacing any existing tag."""
    node.command(
        "ctr", "--namespace=k8s.io", "images", "tag", "--force", image_id, image_name
    ).set_stdout(io.BytesIO()).run()