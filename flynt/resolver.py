"""Dependency resolver: picks the next batch of runnable nodes."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from flynt.models import TaskNode


@dataclass
class Resolution:
    """Outcome of one readiness pass.

    Exactly one of three cases holds: `ready` is non-empty, `done` is set
    (nothing non-terminal left), or `deadlocked` is set (non-terminal nodes
    remain but none of them can run).
    """

    ready: list[TaskNode] = field(default_factory=list)
    pending: list[TaskNode] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return not self.pending

    @property
    def deadlocked(self) -> bool:
        return bool(self.pending) and not self.ready


def ready(nodes: Iterable[TaskNode], completed_ids: Collection[str]) -> list[TaskNode]:
    """Non-terminal nodes whose dependencies are all in `completed_ids`.

    Ordered by descending priority; equal priorities keep input order
    (sorted() is stable), so pass nodes in plan order.
    """
    candidates = [
        n for n in nodes
        if not n.is_terminal and all(dep in completed_ids for dep in n.dependencies)
    ]
    return sorted(candidates, key=lambda n: -n.priority)


def resolve(
    nodes: Iterable[TaskNode],
    completed_ids: Collection[str],
    exclude: Collection[str] = (),
) -> Resolution:
    """Like ready(), but tells "nothing left" apart from a deadlock.

    Ids in `exclude` are never returned as ready but still count as pending.
    """
    pending = [n for n in nodes if not n.is_terminal]
    batch = [n for n in ready(pending, completed_ids) if n.id not in exclude]
    return Resolution(ready=batch, pending=pending)


def find_cycle(nodes: Iterable[TaskNode]) -> list[str] | None:
    """Return one dependency cycle as a path of ids (first id repeated at the end).

    Iterative DFS, so chains of any length are safe.
    """
    graph = {n.id: list(n.dependencies) for n in nodes}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node_id: WHITE for node_id in graph}

    for start in graph:
        if color[start] != WHITE:
            continue
        color[start] = GREY
        path = [start]
        frames = [iter(graph[start])]
        while frames:
            for dep in frames[-1]:
                if dep not in graph:
                    continue
                if color[dep] == GREY:
                    return path[path.index(dep):] + [dep]
                if color[dep] == WHITE:
                    color[dep] = GREY
                    path.append(dep)
                    frames.append(iter(graph[dep]))
                    break
            else:
                color[path.pop()] = BLACK
                frames.pop()
    return None
