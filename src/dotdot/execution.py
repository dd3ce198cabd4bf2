"""
Run an operation over many repositories.

Four modes: ``sequential`` and ``parallel`` work on a plain item list,
``topo`` and ``topo-parallel`` follow the dependency graph. Results always
come back in the order the items were visited.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from . import graph as repo_graph
from .graph import RepoGraph

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ExecutionMode(StrEnum):
    """How an operation is scheduled across repositories."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    TOPO = "topo"  # dependency order, one at a time
    TOPO_PARALLEL = "topo-parallel"  # dependency layers, parallel within a layer

    @property
    def is_topological(self) -> bool:
        return self in (ExecutionMode.TOPO, ExecutionMode.TOPO_PARALLEL)


@dataclass
class OperationResult:
    """Outcome of one per-repository operation."""

    name: str
    status: str
    message: str = ""
    diverged: bool = False

    @property
    def success(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "diverged": self.diverged,
        }


def build_summary(results: Sequence[OperationResult], status_labels: dict[str, str]) -> str:
    """Summarize results as e.g. ``"2 cloned, 1 skipped"``, in label order."""
    parts = []
    for status, label in status_labels.items():
        count = sum(1 for r in results if r.status == status)
        if count > 0:
            parts.append(f"{count} {label}")
    return ", ".join(parts) if parts else "nothing to do"


def execute_sequential(items: Sequence[T], fn: Callable[[T], R]) -> list[R]:
    """Run ``fn`` over ``items`` one at a time, in order."""
    return [fn(item) for item in items]


def execute_parallel(
    items: Sequence[T], fn: Callable[[T], R], max_parallel: int | None = None
) -> list[R]:
    """Run ``fn`` over ``items`` concurrently; results keep input order.

    ``max_parallel`` bounds the number of workers (None = one per item).
    Every item is allowed to finish before an exception from ``fn`` is
    re-raised.
    """
    if not items:
        return []
    workers = min(max_parallel, len(items)) if max_parallel else len(items)
    if workers <= 1:
        return execute_sequential(items, fn)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(fn, item) for item in items]
    # Executor shutdown waited for every future.
    return [future.result() for future in futures]


def execute_for_all(
    items: Sequence[T],
    fn: Callable[[T], R],
    mode: ExecutionMode = ExecutionMode.PARALLEL,
    max_parallel: int | None = None,
) -> list[R]:
    """Run ``fn`` for every item in sequential or parallel mode.

    Topological modes need a graph; use ``execute_topo_for_all`` for those.
    """
    mode = ExecutionMode(mode)
    if mode == ExecutionMode.SEQUENTIAL:
        return execute_sequential(items, fn)
    if mode == ExecutionMode.PARALLEL:
        return execute_parallel(items, fn, max_parallel)
    raise ValueError(f"Execution mode '{mode}' requires a dependency graph")


def execute_topo_for_all(
    items: Sequence[tuple[str, Any]],
    fn: Callable[[tuple[str, Any]], R],
    graph: RepoGraph,
    mode: ExecutionMode = ExecutionMode.TOPO,
    max_parallel: int | None = None,
) -> list[R]:
    """Run ``fn`` for ``(id, data)`` items following the dependency graph.

    Graph ids without a matching item are skipped; items whose id is not in
    the graph are not run. Each id is expected at most once in ``items``; for
    duplicates only the first is used. In ``topo-parallel`` mode no item of a
    layer starts before every item of the previous layer has finished.

    Non-topological modes fall through to ``execute_for_all``.

    Raises:
        CycleError: before any item runs, if the graph has a cycle.
    """
    mode = ExecutionMode(mode)
    if not mode.is_topological:
        return execute_for_all(items, fn, mode, max_parallel)

    by_id: dict[str, tuple[str, Any]] = {}
    for item in items:
        by_id.setdefault(item[0], item)

    if mode == ExecutionMode.TOPO:
        order = repo_graph.topological_sort(graph)
        logger.debug("Topological order: %s", order)
        return [fn(by_id[repo_id]) for repo_id in order if repo_id in by_id]

    layers = repo_graph.to_layers(graph)
    results: list[R] = []
    for index, layer in enumerate(layers):
        layer_items = [by_id[repo_id] for repo_id in layer if repo_id in by_id]
        logger.debug("Layer %d: %s", index, [item[0] for item in layer_items])
        results.extend(execute_parallel(layer_items, fn, max_parallel))
    return results
