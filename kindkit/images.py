"""Helpers for loading container images from the host into cluster nodes."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from kindkit.errors import wrap
from kindkit.exec import command, output_lines
from kindkit.nodeutils import Node, load_image_archive

TagFetcher = Callable[[Node, str], Iterable[str]]

_DEFAULT_DOMAIN = "docker.io/"
_OFFICIAL_REPO_NAME = "library"


def remove_duplicates(items: Iterable[str]) -> list[str]:
    """Return items without repeats, keeping the first occurrence of each."""
    return list(dict.fromkeys(items))


def sanitize_image(image: str) -> str:
    """Return the fully qualified form of an image reference."""
    name = image
    if "/" not in image:
        name = f"{_OFFICIAL_REPO_NAME}/{image}"
    domain = name.partition("/")[0]
    if not any(c in domain for c in ".:") and domain != "localhost":
        name = _DEFAULT_DOMAIN + name
    if ":" not in name:
        name += ":latest"
    return name


def check_if_image_retag_required(
    node: Node | None,
    image_id: str,
    image_name: str,
    tag_fetcher: TagFetcher,
) -> tuple[bool, bool]:
    """Report whether image_id exists on node and whether it lacks image_name's tag.

    Returns (exists, retag_required). A failing tag lookup counts as absent.
    """
    try:
        tags = set(tag_fetcher(node, image_id))
    except Exception:
        return False, False
    if not tags:
        return False, False
    return True, sanitize_image(image_name) not in tags


def docker_image_id(name: str) -> str:
    """Return the ID of a local docker image."""
    lines = output_lines(command("docker", "image", "inspect", "-f", "{{ .Id }}", name))
    if len(lines) != 1:
        raise ValueError(
            f"Docker image ID should only be one line, got {len(lines)} lines"
        )
    return lines[0]


def save_images(images: Iterable[str], dest: str) -> None:
    """Save the images into a tar archive at dest, as `docker save` does."""
    command("docker", "save", "-o", dest, *images).run()


def load_image_file(image_tar_path: str, node: Node) -> None:
    """Load the image archive at image_tar_path onto node."""
    try:
        archive = open(image_tar_path, "rb")
    except OSError as exc:
        raise wrap(exc, "failed to open image") from exc
    with archive:
        load_image_archive(node, archive)


def select_nodes(node_list: Iterable[Node], names: Iterable[str] | None) -> list[Node]:
    """Pick the nodes named in names, or all nodes when names is empty."""
    node_list = list(node_list)
    names = list(names or ())
    if not names:
        return node_list
    by_name = {str(node): node for node in node_list}
    selected = []
    for name in names:
        if name not in by_name:
            raise ValueError(f'unknown node: "{name}"')
        selected.append(by_name[name])
    return selected