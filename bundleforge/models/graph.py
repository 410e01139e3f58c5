"""
Module graph models.

The script bundler resolves the entry module's import graph before handing it
to the script engine. Nodes are resolved files, edges are import relations.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class ModuleKind(str, Enum):
    """Classification of a resolved module."""

    TYPED = "typed"  # .ts / .tsx, type-checked
    PLAIN = "plain"  # .js / .mjs / .jsx, passed through
    GLUE = "glue"  # wasm glue bindings from the staging directory
    EXTERNAL = "external"  # package under node_modules, not traversed
    OTHER = "other"  # json, css, wasm and friends


TYPED_EXTENSIONS = frozenset({".ts", ".tsx", ".mts", ".cts"})
PLAIN_EXTENSIONS = frozenset({".js", ".jsx", ".mjs", ".cjs"})


class ImportEdge(BaseModel):
    """An import relation between two modules."""

    importer: Path
    specifier: str = Field(description="Import specifier as written")
    target: Path
    line: int = 0
    column: int = 0
    dynamic: bool = False


class ModuleNode(BaseModel):
    """A resolved source file."""

    path: Path
    kind: ModuleKind
    package: str | None = Field(default=None, description="Package name for external nodes")


class ModuleGraph(BaseModel):
    """Dependency graph rooted at the entry module."""

    entry: Path
    nodes: dict[Path, ModuleNode] = Field(default_factory=dict)
    edges: list[ImportEdge] = Field(default_factory=list)

    def add_node(self, node: ModuleNode) -> bool:
        """Add a node. Returns False if it was already present."""
        if node.path in self.nodes:
            return False
        self.nodes[node.path] = node
        return True

    def add_edge(self, edge: ImportEdge) -> None:
        self.edges.append(edge)

    def nodes_of_kind(self, *kinds: ModuleKind) -> list[ModuleNode]:
        return [n for n in self.nodes.values() if n.kind in kinds]

    @property
    def typed_files(self) -> list[Path]:
        return sorted(n.path for n in self.nodes_of_kind(ModuleKind.TYPED))

    @property
    def glue_files(self) -> list[Path]:
        return sorted(n.path for n in self.nodes_of_kind(ModuleKind.GLUE))

    def _adjacency(self, include_dynamic: bool = True) -> dict[Path, list[Path]]:
        adjacency: dict[Path, list[Path]] = {p: [] for p in self.nodes}
        for edge in self.edges:
            if include_dynamic or not edge.dynamic:
                adjacency.setdefault(edge.importer, []).append(edge.target)
        return adjacency

    def find_cycles(self) -> list[list[Path]]:
        """Return static import cycles, each as the list of paths on the cycle."""
        adjacency = self._adjacency(include_dynamic=False)
        cycles: list[list[Path]] = []
        # 1 = on the current path, 2 = finished
        state: dict[Path, int] = {}

        for root in sorted(adjacency):
            if root in state:
                continue
            state[root] = 1
            path = [root]
            pending = [iter(adjacency[root])]
            while pending:
                nxt = next(pending[-1], None)
                if nxt is None:
                    pending.pop()
                    state[path.pop()] = 2
                elif nxt not in state:
                    state[nxt] = 1
                    path.append(nxt)
                    pending.append(iter(adjacency.get(nxt, [])))
                elif state[nxt] == 1:
                    cycles.append(path[path.index(nxt):] + [nxt])
        return cycles

    def topological_order(self) -> list[Path]:
        """Dependencies before dependents. Back edges of cycles are ignored."""
        adjacency = self._adjacency()
        order: list[Path] = []
        seen: set[Path] = set()

        for root in [self.entry, *sorted(self.nodes)]:
            if root in seen:
                continue
            seen.add(root)
            stack = [(root, iter(adjacency.get(root, [])))]
            while stack:
                node, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    stack.pop()
                    order.append(node)
                elif dep not in seen:
                    seen.add(dep)
                    stack.append((dep, iter(adjacency.get(dep, []))))
        return order
