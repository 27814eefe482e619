"""RunStore: the single writer for a run's state.

Every mutation goes through a method here and carries the generation token
of the run that issued it. When a newer run has started (or the run was
cancelled), writes from the old generation are dropped, so late results
from a superseded run never touch the current state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from flynt.config import DEFAULT_ENABLED_TOOLS
from flynt.events import EventLog
from flynt.models import (
    ROOT_ID, LogEntry, NodeStatus, RunState, RunStatus, TaskNode, make_root,
)

logger = logging.getLogger(__name__)

_NODE_FIELDS = {"output", "error", "tokens", "cost", "children", "description"}
_RUN_FIELDS = {"status", "project_objective", "is_processing", "is_paused", "active_node_id", "finished_at"}


class RunStore:
    """Owns the current RunState and the execution log."""

    def __init__(self, event_log: EventLog | None = None, enabled_tools: list[str] | None = None):
        self.events = event_log or EventLog()
        tools = DEFAULT_ENABLED_TOOLS if enabled_tools is None else enabled_tools
        self._state = RunState(enabled_tools=list(tools))
        self._state.add(make_root())
        self.events.reset(self._state.logs)

    # -- generations ---------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._state.generation

    def is_current(self, generation: int) -> bool:
        return generation == self._state.generation

    def reset(self, objective: str) -> int:
        """Replace the run state wholesale for a new run. Returns its generation."""
        generation = self._state.generation + 1
        self._state = RunState(
            generation=generation,
            objective=objective,
            enabled_tools=list(self._state.enabled_tools),
            started_at=time.time(),
        )
        self._state.add(make_root(objective))
        self.events.reset(self._state.logs)
        logger.info(f"Run {self._state.run_id} (generation {generation}) reset: {objective[:80]}")
        return generation

    def invalidate(self) -> int:
        """Orphan the current run's writers without discarding its state."""
        self._state.generation += 1
        return self._state.generation

    # -- reads ---------------------------------------------------------------

    @property
    def objective(self) -> str:
        return self._state.objective

    @property
    def project_objective(self) -> str:
        return self._state.project_objective or self._state.objective

    @property
    def status(self) -> RunStatus:
        return self._state.status

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    @property
    def is_paused(self) -> bool:
        return self._state.is_paused

    @property
    def enabled_tools(self) -> list[str]:
        return list(self._state.enabled_tools)

    def node(self, node_id: str) -> TaskNode | None:
        """Live node for reading. Mutate only through transition()/update_node()."""
        return self._state.get(node_id)

    def subtasks(self) -> list[TaskNode]:
        return self._state.subtasks()

    def snapshot(self) -> dict:
        """Deep, JSON-ready copy of the whole run state."""
        return self._state.to_dict()

    # -- writes --------------------------------------------------------------

    def _stale(self, generation: int, what: str) -> bool:
        if generation != self._state.generation:
            logger.debug(f"Dropping stale write ({what}) from generation {generation}")
            return True
        return False

    def add_nodes(self, generation: int, nodes: Iterable[TaskNode]) -> bool:
        if self._stale(generation, "add_nodes"):
            return False
        root = self._state.get(ROOT_ID)
        for node in nodes:
            node.parent = ROOT_ID
            self._state.add(node)
            root.children.append(node.id)
        return True

    def transition(self, generation: int, node_id: str, status: NodeStatus, **fields) -> bool:
        """Move a node along the state machine and set result fields with it."""
        if self._stale(generation, f"{node_id} -> {status.value}"):
            return False
        node = self._state.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node: {node_id}")
        node.transition(status)
        self._apply_node_fields(node, fields)
        return True

    def update_node(self, generation: int, node_id: str, **fields) -> bool:
        if self._stale(generation, f"update {node_id}"):
            return False
        node = self._state.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node: {node_id}")
        self._apply_node_fields(node, fields)
        return True

    def add_usage(self, generation: int, tokens: int | None, cost: float | None) -> bool:
        if self._stale(generation, "usage"):
            return False
        if tokens:
            self._state.total_tokens += tokens
        if cost:
            self._state.total_cost += cost
        return True

    def update(self, generation: int, **fields) -> bool:
        """Set run-level flags (status, is_processing, is_paused, active_node_id)."""
        if self._stale(generation, f"run {sorted(fields)}"):
            return False
        for key, value in fields.items():
            if key not in _RUN_FIELDS:
                raise AttributeError(f"Not a writable run field: {key}")
            setattr(self._state, key, value)
        return True

    def log(
        self,
        generation: int,
        agent_name: str,
        message: str,
        level: str = "info",
        agent_id: str = "system",
    ) -> LogEntry | None:
        if self._stale(generation, "log"):
            return None
        return self.events.emit(
            LogEntry(agent_name=agent_name, message=message, level=level, agent_id=agent_id)
        )

    def set_tool(self, name: str, enabled: bool) -> list[str]:
        """Enable or disable a tool. Not generation-bound: it is a user setting."""
        tools = self._state.enabled_tools
        if enabled and name not in tools:
            tools.append(name)
        elif not enabled and name in tools:
            tools.remove(name)
        return list(tools)

    @staticmethod
    def _apply_node_fields(node: TaskNode, fields: dict):
        for key, value in fields.items():
            if key not in _NODE_FIELDS:
                raise AttributeError(f"Not a writable node field: {key}")
            setattr(node, key, value)
