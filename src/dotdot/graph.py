"""
Repository dependency graph.

Nodes are repository names carrying their ``RepoConfig``; an edge ``dep -> repo``
means ``dep`` has to be handled before ``repo``. Graph values are immutable:
every mutation returns a new ``RepoGraph``.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .config import MemberConfigSource, RepoConfig
from .errors import CycleError

__all__ = [
    "CycleError",
    "RepoGraph",
    "add_repo",
    "empty",
    "from_member_configs",
    "get_dependencies",
    "get_dependents",
    "get_repo",
    "repo_ids",
    "to_layers",
    "topological_sort",
]


@dataclass(frozen=True)
class RepoGraph:
    """Directed dependency graph keyed by repository name."""

    nodes: Mapping[str, RepoConfig] = field(default_factory=dict)
    # dep -> repos that depend on it (outgoing edges)
    dependents: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    # repo -> repos it depends on (incoming edges)
    dependencies: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, repo_id: object) -> bool:
        return repo_id in self.nodes


def empty() -> RepoGraph:
    """Create an empty graph."""
    return RepoGraph()


def add_repo(
    graph: RepoGraph,
    repo_id: str,
    config: RepoConfig,
    dependencies: Iterable[str] = (),
) -> RepoGraph:
    """Return a new graph with ``repo_id`` and its dependency edges added.

    An existing node keeps its payload. Dependencies that are not yet part of
    the graph are inserted with a placeholder payload (empty url) so no edge
    is ever dropped.
    """
    nodes = dict(graph.nodes)
    dependents = dict(graph.dependents)
    incoming = dict(graph.dependencies)

    _insert_if_absent(nodes, dependents, incoming, repo_id, config)

    for dep_id in dependencies:
        _insert_if_absent(nodes, dependents, incoming, dep_id, RepoConfig(url=""))
        if repo_id in dependents[dep_id]:
            continue
        dependents[dep_id] = (*dependents[dep_id], repo_id)
        incoming[repo_id] = (*incoming[repo_id], dep_id)

    return RepoGraph(nodes=nodes, dependents=dependents, dependencies=incoming)


def _insert_if_absent(
    nodes: dict[str, RepoConfig],
    dependents: dict[str, tuple[str, ...]],
    incoming: dict[str, tuple[str, ...]],
    repo_id: str,
    config: RepoConfig,
) -> None:
    if repo_id in nodes:
        return
    nodes[repo_id] = config
    dependents[repo_id] = ()
    incoming[repo_id] = ()


def repo_ids(graph: RepoGraph) -> list[str]:
    """All repository names in insertion order."""
    return list(graph.nodes)


def get_repo(graph: RepoGraph, repo_id: str) -> RepoConfig | None:
    return graph.nodes.get(repo_id)


def get_dependencies(graph: RepoGraph, repo_id: str) -> list[str]:
    """Repositories ``repo_id`` depends on (incoming neighbours)."""
    return list(graph.dependencies.get(repo_id, ()))


def get_dependents(graph: RepoGraph, repo_id: str) -> list[str]:
    """Repositories that depend on ``repo_id`` (outgoing neighbours)."""
    return list(graph.dependents.get(repo_id, ()))


# =============================================================================
# Ordering
# =============================================================================


def topological_sort(graph: RepoGraph) -> list[str]:
    """Order repositories so every dependency precedes its dependents.

    Kahn's algorithm. Among repositories that are ready at the same time the
    lexicographically smallest name goes first, so the result is stable.

    Raises:
        CycleError: if the graph is not acyclic.
    """
    in_degree = {repo_id: len(graph.dependencies[repo_id]) for repo_id in graph.nodes}
    ready = [repo_id for repo_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        current = heapq.heappop(ready)
        order.append(current)
        for dependent in graph.dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(graph.nodes):
        raise CycleError(_find_cycle(graph, unplaced=set(graph.nodes) - set(order)))

    return order


def to_layers(graph: RepoGraph) -> list[list[str]]:
    """Group repositories into layers for parallel execution.

    Each layer holds every not-yet-placed repository whose dependencies all
    sit in earlier layers. Names inside a layer are sorted.

    Raises:
        CycleError: with every repository that could not be placed.
    """
    layers: list[list[str]] = []
    placed: set[str] = set()

    while len(placed) < len(graph.nodes):
        layer = sorted(
            repo_id
            for repo_id in graph.nodes
            if repo_id not in placed
            and all(dep in placed for dep in graph.dependencies[repo_id])
        )
        if not layer:
            remaining = sorted(repo_id for repo_id in graph.nodes if repo_id not in placed)
            raise CycleError(remaining)

        layers.append(layer)
        placed.update(layer)

    return layers


def _find_cycle(graph: RepoGraph, unplaced: set[str]) -> list[str]:
    """Pick the offending repositories for a cycle report.

    Returns the first strongly connected component with more than one member,
    falling back to a self-referencing repository, then to everything that
    could not be ordered.
    """
    for component in _strongly_connected_components(graph):
        if len(component) > 1:
            return sorted(component)

    self_loops = sorted(r for r in graph.nodes if r in graph.dependents[r])
    if self_loops:
        return self_loops[:1]
    return sorted(unplaced)


def _strongly_connected_components(graph: RepoGraph) -> list[list[str]]:
    """Tarjan's algorithm, visiting repositories in lexicographic order."""
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    def visit(node: str) -> None:
        nonlocal counter
        index_of[node] = lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)

        for successor in sorted(graph.dependents[node]):
            if successor not in index_of:
                visit(successor)
                lowlink[node] = min(lowlink[node], lowlink[successor])
            elif successor in on_stack:
                lowlink[node] = min(lowlink[node], index_of[successor])

        if lowlink[node] == index_of[node]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            components.append(component)

    for node in sorted(graph.nodes):
        if node not in index_of:
            visit(node)

    return components


# =============================================================================
# Construction from configs
# =============================================================================


def from_member_configs(configs: list[MemberConfigSource]) -> RepoGraph:
    """Build the graph from member configs.

    Declared dependencies become nodes first (first declaration wins), then
    each member is added with edges from the repositories it depends on.
    """
    graph = empty()

    declared: dict[str, RepoConfig] = {}
    for source in configs:
        for name, dep in source.config.deps.items():
            declared.setdefault(name, RepoConfig(url=dep.url, rev=dep.rev, install=dep.install))

    for name, repo_config in declared.items():
        graph = add_repo(graph, name, repo_config)

    for source in configs:
        existing = get_repo(graph, source.repo_name)
        graph = add_repo(
            graph,
            source.repo_name,
            existing if existing is not None else RepoConfig(url=""),
            list(source.config.deps),
        )

    return graph
