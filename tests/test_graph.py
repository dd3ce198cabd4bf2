"""Tests for the repository dependency graph."""

from pathlib import Path

import pytest

from dotdot import graph as repo_graph
from dotdot.config import MemberConfig, MemberConfigSource, RepoConfig
from dotdot.errors import CycleError


def build(edges: dict[str, list[str]]) -> repo_graph.RepoGraph:
    graph = repo_graph.empty()
    for repo_id, deps in edges.items():
        graph = repo_graph.add_repo(graph, repo_id, RepoConfig(url=f"https://example.com/{repo_id}"), deps)
    return graph


def member(name: str, deps: dict[str, RepoConfig]) -> MemberConfigSource:
    return MemberConfigSource(
        path=Path("/ws") / name / "dotdot.json",
        dir=Path("/ws") / name,
        repo_name=name,
        config=MemberConfig(deps=deps),
    )


def test_empty_graph():
    graph = repo_graph.empty()
    assert len(graph) == 0
    assert repo_graph.topological_sort(graph) == []
    assert repo_graph.to_layers(graph) == []


def test_add_repo_is_immutable():
    graph = repo_graph.empty()
    updated = repo_graph.add_repo(graph, "a", RepoConfig(url="u"))
    assert "a" in updated
    assert "a" not in graph


def test_add_repo_inserts_placeholder_dependencies():
    graph = repo_graph.add_repo(repo_graph.empty(), "app", RepoConfig(url="u"), ["lib"])
    assert repo_graph.repo_ids(graph) == ["app", "lib"]
    assert repo_graph.get_repo(graph, "lib") == RepoConfig(url="")
    assert repo_graph.get_dependencies(graph, "app") == ["lib"]
    assert repo_graph.get_dependents(graph, "lib") == ["app"]


def test_add_repo_keeps_existing_payload_and_dedupes_edges():
    graph = build({"lib": []})
    graph = repo_graph.add_repo(graph, "app", RepoConfig(url="u"), ["lib", "lib"])
    graph = repo_graph.add_repo(graph, "lib", RepoConfig(url="other"))
    assert repo_graph.get_repo(graph, "lib").url == "https://example.com/lib"
    assert repo_graph.get_dependencies(graph, "app") == ["lib"]


def test_unknown_repo_queries():
    graph = build({"a": []})
    assert repo_graph.get_repo(graph, "missing") is None
    assert repo_graph.get_dependencies(graph, "missing") == []


def test_linear_chain():
    graph = build({"a": [], "b": ["a"], "c": ["b"]})
    assert repo_graph.topological_sort(graph) == ["a", "b", "c"]
    assert repo_graph.to_layers(graph) == [["a"], ["b"], ["c"]]


def test_diamond():
    graph = build({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})
    assert repo_graph.topological_sort(graph) == ["a", "b", "c", "d"]
    assert repo_graph.to_layers(graph) == [["a"], ["b", "c"], ["d"]]


def test_independent_repos_are_ordered_by_name():
    graph = build({"zeta": [], "alpha": [], "mid": []})
    assert repo_graph.topological_sort(graph) == ["alpha", "mid", "zeta"]
    assert repo_graph.to_layers(graph) == [["alpha", "mid", "zeta"]]


def test_sort_respects_every_edge():
    graph = build({"web": ["ui", "api"], "ui": ["core"], "api": ["core", "db"], "core": [], "db": []})
    order = repo_graph.topological_sort(graph)
    assert sorted(order) == sorted(repo_graph.repo_ids(graph))
    for repo_id in order:
        for dep in repo_graph.get_dependencies(graph, repo_id):
            assert order.index(dep) < order.index(repo_id)


def test_layers_partition_nodes():
    graph = build({"web": ["ui", "api"], "ui": ["core"], "api": ["core", "db"], "core": [], "db": []})
    layers = repo_graph.to_layers(graph)
    flat = [repo_id for layer in layers for repo_id in layer]
    assert sorted(flat) == sorted(repo_graph.repo_ids(graph))
    layer_of = {repo_id: i for i, layer in enumerate(layers) for repo_id in layer}
    for repo_id in flat:
        for dep in repo_graph.get_dependencies(graph, repo_id):
            assert layer_of[dep] < layer_of[repo_id]
    assert layers == [["core", "db"], ["api", "ui"], ["web"]]


def test_cycle_reports_members():
    graph = build({"a": ["b"], "b": ["a"], "c": []})
    with pytest.raises(CycleError) as exc_info:
        repo_graph.topological_sort(graph)
    assert exc_info.value.cycle == ["a", "b"]
    assert "Circular dependency detected" in exc_info.value.message


def test_cycle_in_layers_reports_unplaced():
    graph = build({"a": ["b"], "b": ["a"], "c": ["a"], "d": []})
    with pytest.raises(CycleError) as exc_info:
        repo_graph.to_layers(graph)
    assert exc_info.value.cycle == ["a", "b", "c"]


def test_self_loop_is_a_cycle():
    graph = build({"a": ["a"]})
    with pytest.raises(CycleError) as exc_info:
        repo_graph.topological_sort(graph)
    assert exc_info.value.cycle == ["a"]


def test_from_member_configs():
    configs = [
        member("app", {"lib": RepoConfig(url="https://example.com/lib", rev="abc")}),
        member("lib", {"core": RepoConfig(url="https://example.com/core")}),
    ]
    graph = repo_graph.from_member_configs(configs)

    assert repo_graph.get_repo(graph, "lib").rev == "abc"
    assert repo_graph.get_repo(graph, "app") == RepoConfig(url="")
    assert repo_graph.topological_sort(graph) == ["core", "lib", "app"]


def test_from_member_configs_first_declaration_wins():
    configs = [
        member("a", {"shared": RepoConfig(url="first")}),
        member("b", {"shared": RepoConfig(url="second")}),
    ]
    graph = repo_graph.from_member_configs(configs)
    assert repo_graph.get_repo(graph, "shared").url == "first"


@pytest.mark.parametrize("operation", [repo_graph.topological_sort, repo_graph.to_layers])
def test_three_node_cycle(operation):
    graph = build({"a": ["c"], "b": ["a"], "c": ["b"], "d": []})
    with pytest.raises(CycleError) as exc_info:
        operation(graph)
    cycle = exc_info.value.cycle
    assert cycle == ["a", "b", "c"]
    for repo_id in cycle:
        assert set(repo_graph.get_dependents(graph, repo_id)) & set(cycle)
