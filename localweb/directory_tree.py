"""
Directory tree generation for the share.

``build_tree`` walks a directory with an explicit stack (no recursion) and
returns DirectoryNode lists; ``render_tree_html`` turns them into the
box-drawing tree shown on the browse page.
"""

import html
import logging
import os
from pathlib import Path
from typing import FrozenSet, List, Literal, Optional, Tuple, Union
from urllib.parse import quote

from pydantic import BaseModel

from share_storage import is_temp_upload

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32
EMPTY_TREE_MESSAGE = "No files or directories found."


class ListingUnavailable(Exception):
    """The starting directory of a listing could not be read"""


class DirectoryNode(BaseModel):
    """One file or directory in a share tree"""
    name: str
    path: str  # relative to the share root, '/' separated
    url: str  # percent-encoded path, usable as a link
    type: Literal["directory", "file"]
    children: Optional[List["DirectoryNode"]] = None


DirectoryNode.model_rebuild()


class DirectoryTreeResponse(BaseModel):
    """Payload of the directory tree API"""
    root: str
    tree: List[DirectoryNode]


# (entries, relative prefix, depth, list to fill, real paths of ancestors)
_Frame = Tuple[List[Tuple[str, str, bool]], str, int, List[DirectoryNode], FrozenSet[str]]


def _sort_key(entry: Tuple[str, str, bool]):
    name, _, is_dir = entry
    return (not is_dir, name.lower(), name)


def _scan(directory: str) -> List[Tuple[str, str, bool]]:
    """List (name, path, is_dir) for a directory, directories first"""
    entries = []
    with os.scandir(directory) as it:
        for entry in it:
            if is_temp_upload(entry.name):
                continue
            try:
                is_dir = entry.is_dir()
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {entry.path}: {e}")
                continue
            entries.append((entry.name, entry.path, is_dir))
    entries.sort(key=_sort_key)
    return entries


def _join(prefix: str, name: str) -> str:
    return f"{prefix}/{name}" if prefix else name


def _display(name: str) -> str:
    """Printable form of an OS name; undecodable bytes become U+FFFD"""
    return os.fsencode(name).decode("utf-8", "replace")


def _url(rel_path: str) -> str:
    # Encode the original bytes so names that are not valid UTF-8 still link
    return quote(os.fsencode(rel_path), safe=b'/')


def build_tree(
    directory: Union[str, Path],
    prefix: str = "",
    max_depth: int = DEFAULT_MAX_DEPTH
) -> List[DirectoryNode]:
    """
    Build the DirectoryNode tree below ``directory``.

    Args:
        directory: Directory to walk
        prefix: Relative path of ``directory`` inside the share root, used
            to build each node's ``path``
        max_depth: Levels to expand; 1 lists only the immediate entries

    Returns:
        Nodes for the entries of ``directory``, directories first and
        alphabetical within each kind

    Raises:
        ListingUnavailable: ``directory`` itself cannot be read
    """
    directory = str(directory)
    prefix = prefix.strip('/')
    try:
        top_entries = _scan(directory)
    except OSError as e:
        raise ListingUnavailable(f"Cannot read directory {directory}: {e.strerror or e}") from e

    tree: List[DirectoryNode] = []
    stack: List[_Frame] = [(top_entries, prefix, 1, tree, frozenset([os.path.realpath(directory)]))]

    while stack:
        entries, rel_prefix, depth, siblings, ancestors = stack.pop()
        for name, full_path, is_dir in entries:
            rel_path = _join(rel_prefix, name)
            fields = dict(name=_display(name), path=_display(rel_path), url=_url(rel_path))
            if not is_dir:
                siblings.append(DirectoryNode(type="file", **fields))
                continue

            node = DirectoryNode(type="directory", children=[], **fields)
            siblings.append(node)
            if depth >= max_depth:
                continue

            real_path = os.path.realpath(full_path)
            if real_path in ancestors:
                logger.warning(f"Not following {full_path}: loops back to {real_path}")
                continue

            try:
                child_entries = _scan(full_path)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {full_path}: {e}")
                continue

            stack.append((child_entries, rel_path, depth + 1, node.children, ancestors | {real_path}))

    return tree


def _render_lines(nodes: List[DirectoryNode], indent: str, lines: List[str]):
    for index, node in enumerate(nodes):
        last = index == len(nodes) - 1
        connector = "└── " if last else "├── "
        label = html.escape(node.name)
        if node.type == "directory":
            link = f'<a class="dir" href="/{node.url}/">{label}/</a>'
        else:
            link = f'<a class="file" href="/{node.url}">{label}</a>'
        lines.append(f"{indent}{connector}{link}")
        if node.children:
            _render_lines(node.children, indent + ("    " if last else "│   "), lines)


def render_tree_html(nodes: List[DirectoryNode]) -> str:
    """Render nodes as a <pre> tree of links, or the empty-listing message"""
    if not nodes:
        return f'<p class="empty">{EMPTY_TREE_MESSAGE}</p>'
    lines: List[str] = []
    _render_lines(nodes, "", lines)
    return '<pre class="tree">' + "\n".join(lines) + "</pre>"
