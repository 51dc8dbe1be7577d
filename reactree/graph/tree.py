"""
WorkflowTree - Static index over a node tree.

Builds a parent-pointer index once, so that feedback routing can walk
upward from any node with an explicit hop cap instead of searching the
tree recursively. Also hosts structural validation and document loading.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from reactree.errors import WorkflowValidationError
from reactree.graph.node import ConditionalNode, ExitOn, LoopNode, Node

logger = logging.getLogger(__name__)

_NODE_ADAPTER: TypeAdapter[Node] = TypeAdapter(Node)


class WorkflowTree:
    """
    Index over a validated node tree.

    Example:
        tree = WorkflowTree.from_dict({
            "id": "root", "kind": "sequence",
            "children": [{"id": "write_code", "kind": "action"}],
        })
        tree.parent_of("write_code").id  # "root"
    """

    def __init__(self, root: Node, workflow_id: str = "") -> None:
        self.root = root
        self.workflow_id = workflow_id or root.id
        self._nodes: dict[str, Node] = {}
        self._parents: dict[str, str | None] = {}
        duplicates: list[str] = []

        stack: list[tuple[Node, str | None]] = [(root, None)]
        while stack:
            node, parent_id = stack.pop()
            if node.id in self._nodes:
                duplicates.append(node.id)
                continue
            self._nodes[node.id] = node
            self._parents[node.id] = parent_id
            for child in reversed(node.child_nodes()):
                stack.append((child, node.id))

        if duplicates:
            raise WorkflowValidationError(
                [f"Duplicate node id '{node_id}'" for node_id in sorted(set(duplicates))]
            )

    # -------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], workflow_id: str = "") -> WorkflowTree:
        """Build from a plain document; pydantic errors become WorkflowValidationError."""
        try:
            root = _NODE_ADAPTER.validate_python(data)
        except ValidationError as e:
            raise WorkflowValidationError(
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e
        return cls(root, workflow_id=workflow_id)

    @classmethod
    def load(cls, path: Path | str) -> WorkflowTree:
        """Load a workflow document (``{"id", "root", "engine"}`` or a bare root node)."""
        path = Path(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        if "root" in data:
            return cls.from_dict(data["root"], workflow_id=data.get("id", ""))
        return cls.from_dict(data, workflow_id=path.stem)

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def parent_of(self, node_id: str) -> Node | None:
        parent_id = self._parents.get(node_id)
        return self._nodes[parent_id] if parent_id is not None else None

    def ancestors(self, node_id: str, cap: int = 10) -> list[Node]:
        """Nearest-first ancestors of ``node_id``, at most ``cap`` of them."""
        result: list[Node] = []
        seen = {node_id}
        current = self._parents.get(node_id)
        while current is not None and len(result) < cap:
            if current in seen:
                break
            seen.add(current)
            result.append(self._nodes[current])
            current = self._parents.get(current)
        return result

    def find_ancestor(self, node_id: str, target_id: str, cap: int = 10) -> Node | None:
        for ancestor in self.ancestors(node_id, cap):
            if ancestor.id == target_id:
                return ancestor
        return None

    def is_inside_loop(self, node_id: str) -> bool:
        return any(isinstance(a, LoopNode) for a in self.ancestors(node_id, cap=len(self)))

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Return human-readable structural problems (empty list means valid)."""
        problems: list[str] = []
        for node in self._nodes.values():
            if isinstance(node, LoopNode):
                if node.max_iterations is None:
                    problems.append(f"Loop '{node.id}' has no max_iterations")
                elif node.max_iterations <= 0:
                    problems.append(
                        f"Loop '{node.id}' max_iterations must be positive, "
                        f"got {node.max_iterations}"
                    )
                if node.timeout_seconds is not None and node.timeout_seconds <= 0:
                    problems.append(f"Loop '{node.id}' timeout_seconds must be positive")
                if node.condition is None and node.exit_on != ExitOn.MANUAL_BREAK:
                    problems.append(f"Loop '{node.id}' exits on a condition but has none")
                if not node.children:
                    problems.append(f"Loop '{node.id}' has no children")
            elif isinstance(node, ConditionalNode):
                if node.condition is None:
                    problems.append(f"Conditional '{node.id}' has no condition")
                if node.true_branch is None and node.false_branch is None:
                    problems.append(f"Conditional '{node.id}' has no branches")
        return problems

    def ensure_valid(self) -> None:
        problems = self.validate()
        if problems:
            raise WorkflowValidationError(problems)
