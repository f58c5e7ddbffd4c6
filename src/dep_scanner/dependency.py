# In src/dep_scanner/dependency.py
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple


class Registry(Enum):
    """Package registries a dependency can come from."""

    NPM = "npm"
    PYPI = "pypi"


class DependencyType(Enum):
    """How a dependency entered the project."""

    DIRECT = "direct"  # Declared by the scanned manifest
    TRANSITIVE = "transitive"  # Pulled in by another dependency


def make_node_id(registry: Registry, name: str, version: str) -> str:
    """Build the stable "<registry>:<name>@<version>" node id."""
    return f"{registry.value}:{name}@{version}"


def normalize_name(name: str) -> str:
    """PEP 503 name normalization."""
    return re.sub(r"[-_.]+", "-", name).lower()


@dataclass(frozen=True)
class DependencyNode:
    """A unified internal data structure to represent a dependency."""

    id: str
    name: str
    version: str
    registry: Registry
    dependency_type: DependencyType
    dependencies: Tuple[str, ...] = ()

    @property
    def is_direct(self) -> bool:
        return self.dependency_type == DependencyType.DIRECT


@dataclass(frozen=True)
class DependencyGraph:
    """Parsed dependency graph: node id -> node, plus the direct roots."""

    nodes: Mapping[str, DependencyNode] = field(
        default_factory=lambda: MappingProxyType({})
    )
    roots: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.nodes)


class GraphBuilder:
    """
    Mutable accumulator used by the parsers.

    Nothing built here is shared: build() copies the accumulated state into
    a fresh DependencyGraph made of frozen nodes.
    """

    def __init__(self, registry: Registry):
        self.registry = registry
        self._nodes: Dict[str, Dict] = {}
        self._roots: List[str] = []

    def node_id(self, name: str, version: str) -> str:
        return make_node_id(self.registry, name, version)

    def add_node(
        self,
        name: str,
        version: str,
        dependency_type: DependencyType = DependencyType.TRANSITIVE,
    ) -> bool:
        """Add a node; re-adding the same (name, version) is a no-op."""
        node_id = self.node_id(name, version)
        if node_id in self._nodes:
            return False

        self._nodes[node_id] = {
            "name": name,
            "version": version,
            "dependency_type": dependency_type,
            "dependencies": [],
        }
        return True

    def set_dependency_type(
        self, node_id: str, dependency_type: DependencyType
    ) -> None:
        self._nodes[node_id]["dependency_type"] = dependency_type

    def add_edge(self, parent_id: str, child_id: str, require_child: bool = True) -> bool:
        """Record parent -> child once. Returns False if the edge was dropped."""
        parent = self._nodes.get(parent_id)
        if parent is None:
            return False
        if require_child and child_id not in self._nodes:
            return False
        if child_id in parent["dependencies"]:
            return False

        parent["dependencies"].append(child_id)
        return True

    def add_root(self, node_id: str) -> None:
        if node_id not in self._roots:
            self._roots.append(node_id)

    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def children(self, node_id: str) -> List[str]:
        return list(self._nodes[node_id]["dependencies"])

    def build(self) -> DependencyGraph:
        nodes = {
            node_id: DependencyNode(
                id=node_id,
                name=data["name"],
                version=data["version"],
                registry=self.registry,
                dependency_type=data["dependency_type"],
                dependencies=tuple(data["dependencies"]),
            )
            for node_id, data in self._nodes.items()
        }
        return DependencyGraph(
            nodes=MappingProxyType(nodes), roots=tuple(self._roots)
        )
