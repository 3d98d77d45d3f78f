"""Rebuild a directory tree from flat index records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from filestash.models import IndexRecord

_DRIVE = re.compile(r"^[A-Za-z]:$")


@dataclass(slots=True)
class FileNode:
    name: str
    path: str
    record: IndexRecord
    in_index: bool = True

    @property
    def is_directory(self) -> bool:
        return False


@dataclass(slots=True)
class DirectoryNode:
    name: str
    path: str
    in_index: bool = False
    record: Optional[IndexRecord] = None
    children: Dict[str, "TreeNode"] = field(default_factory=dict)

    @property
    def is_directory(self) -> bool:
        return True


TreeNode = Union[FileNode, DirectoryNode]


def split_path(path: str) -> List[str]:
    """Split a path into segments.

    Both separators are accepted. A POSIX root becomes the segment ``/`` and a
    Windows drive such as ``C:`` stays a segment of its own.
    """
    normalized = path.replace("\\", "/")
    segments: List[str] = []
    if normalized.startswith("/"):
        segments.append("/")
    segments.extend(part for part in normalized.split("/") if part)
    if segments and _DRIVE.match(segments[0]):
        segments[0] = segments[0].upper()
    return segments


def _join(parent_key: str | None, segment: str) -> str:
    if parent_key is None:
        return segment
    if parent_key.endswith("/"):
        return parent_key + segment
    return f"{parent_key}/{segment}"


def _normalize(path: str) -> str:
    key: str | None = None
    for segment in split_path(path):
        key = _join(key, segment)
    return key or ""


def _sort_key(node: TreeNode) -> tuple:
    return (not node.is_directory, node.name.casefold(), node.name)


def sorted_nodes(nodes: Iterable[TreeNode]) -> List[TreeNode]:
    """Directories first, then case-insensitive name."""
    return sorted(nodes, key=_sort_key)


def build_tree(records: Iterable[IndexRecord]) -> List[TreeNode]:
    """Build the tree for ``records`` and return its sorted top-level nodes.

    Every path prefix becomes a directory node. Prefixes without a record of
    their own are kept as placeholders with ``in_index=False`` so the tree
    stays connected. The result does not depend on record order.
    """
    records = list(records)
    indexed: Dict[str, IndexRecord] = {}
    for record in records:
        indexed[_normalize(record.full_path)] = record

    # Arena of every node created so far, keyed by normalized path.
    arena: Dict[str, TreeNode] = {}
    roots: Dict[str, TreeNode] = {}

    for record in records:
        segments = split_path(record.full_path)
        if not segments:
            continue

        parent: Optional[DirectoryNode] = None
        key: str | None = None
        for position, segment in enumerate(segments):
            key = _join(key, segment)
            is_last = position == len(segments) - 1
            siblings = roots if parent is None else parent.children
            node = arena.get(key)

            if is_last and not record.is_directory:
                if node is None:
                    node = FileNode(name=segment, path=record.full_path, record=record)
                    arena[key] = node
                    siblings[segment] = node
                elif isinstance(node, DirectoryNode):
                    # Something else was indexed beneath this path.
                    node.record = node.record or record
                    node.in_index = True
                break

            if not isinstance(node, DirectoryNode):
                match = indexed.get(key)
                directory = DirectoryNode(
                    name=segment,
                    path=match.full_path if match is not None else key,
                    in_index=match is not None,
                    record=match,
                )
                if isinstance(node, FileNode):
                    directory.in_index = True
                    directory.record = directory.record or node.record
                arena[key] = directory
                siblings[segment] = directory
                node = directory
            parent = node

    _sort_children(list(roots.values()))
    return sorted_nodes(roots.values())


def _sort_children(nodes: List[TreeNode]) -> None:
    stack = list(nodes)
    while stack:
        node = stack.pop()
        if isinstance(node, DirectoryNode):
            ordered = sorted_nodes(node.children.values())
            node.children = {child.name: child for child in ordered}
            stack.extend(ordered)


def tree_to_dict(node: TreeNode) -> Dict[str, Any]:
    """Serialize a node and its descendants for JSON output."""
    if isinstance(node, FileNode):
        return {
            "type": "file",
            "name": node.name,
            "path": node.path,
            "in_index": node.in_index,
            "record": node.record.to_dict(),
        }
    return {
        "type": "directory",
        "name": node.name,
        "path": node.path,
        "in_index": node.in_index,
        "record": node.record.to_dict() if node.record is not None else None,
        "children": [tree_to_dict(child) for child in node.children.values()],
    }
