"""Scheduler: drives a run's task graph to completion, one node at a time."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from flynt.config import (
    APPROVAL_THRESHOLD,
    APPROVAL_TIMEOUT,
    EXECUTOR_TIMEOUT,
    FAILED_DEPENDENCY_POLICY,
    TASK_DELAY,
)
from flynt.models import ExecutionResult, NodeStatus, RunStatus, TaskNode
from flynt.resolver import Resolution, find_cycle, resolve

if TYPE_CHECKING:
    from flynt.executor import AgentExecutor
    from flynt.state import RunStore

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ("proceed", "block")


class RunCancelled(Exception):
    """The run this scheduler belongs to has been superseded or cancelled."""


@dataclass
class SchedulerConfig:
    approval_threshold: int | None = APPROVAL_THRESHOLD  # None disables approval gates
    approval_timeout: float | None = APPROVAL_TIMEOUT  # None waits forever
    task_delay: float = TASK_DELAY
    executor_timeout: float | None = EXECUTOR_TIMEOUT
    failed_dependency_policy: str = FAILED_DEPENDENCY_POLICY  # proceed | block

    def __post_init__(self):
        if self.failed_dependency_policy not in FAILURE_POLICIES:
            raise ValueError(
                f"failed_dependency_policy must be one of {FAILURE_POLICIES}, "
                f"got {self.failed_dependency_policy!r}"
            )

    def needs_approval(self, node: TaskNode) -> bool:
        return self.approval_threshold is not None and node.priority >= self.approval_threshold


class Scheduler:
    """Runs ready nodes in priority order through the AgentExecutor.

    Nodes execute sequentially so the cumulative context and the usage
    totals are updated in dispatch order. All state changes go through the
    RunStore under this run's generation; a rejected write means the run is
    gone and the loop stops.
    """

    def __init__(
        self,
        store: "RunStore",
        generation: int,
        executor: "AgentExecutor",
        config: SchedulerConfig | None = None,
        pause_gate: asyncio.Event | None = None,
    ):
        self._store = store
        self.generation = generation
        self._executor = executor
        self.config = config or SchedulerConfig()
        if pause_gate is None:
            pause_gate = asyncio.Event()
            pause_gate.set()
        self._pause_gate = pause_gate  # set = running, cleared = paused
        self._approvals: dict[str, asyncio.Event] = {}
        self._approved: set[str] = set()
        self.dispatched: list[str] = []

    # -- approvals -----------------------------------------------------------

    def approve(self, node_id: str) -> bool:
        """Release a node held at the approval gate."""
        event = self._approvals.get(node_id)
        if event is None or node_id in self._approved:
            return False
        self._approved.add(node_id)
        event.set()
        return True

    def awaiting_approval(self) -> list[str]:
        return [nid for nid in self._approvals if nid not in self._approved]

    # -- main loop -----------------------------------------------------------

    async def run(self) -> RunStatus:
        """Execute every subtask. Returns COMPLETED, or BLOCKED on deadlock.

        Raises RunCancelled when the run is superseded mid-flight.
        """
        completed_ids: set[str] = set()
        deferred: set[str] = set()
        remaining = [n.id for n in self._store.subtasks()]
        context = f"Project: {self._store.project_objective}\n"

        logger.info(f"Scheduler starting with {len(remaining)} node(s)")

        while remaining:
            await self._checkpoint()

            resolution = resolve(self._nodes(remaining), completed_ids, exclude=deferred - self._approved)
            if resolution.deadlocked:
                self._report_deadlock(resolution)
                return RunStatus.BLOCKED
            if resolution.done:
                break

            for node in resolution.ready:
                if node.id not in remaining:
                    continue

                if self.config.needs_approval(node) and node.id not in self._approved:
                    if not await self._await_approval(node):
                        deferred.add(node.id)
                        continue

                await self._checkpoint()
                context = await self._execute(node, context)
                remaining.remove(node.id)

                if node.status == NodeStatus.COMPLETED or self.config.failed_dependency_policy == "proceed":
                    completed_ids.add(node.id)
                else:
                    for doomed in self._cascade_failure(node.id, remaining):
                        remaining.remove(doomed)

                if self.config.task_delay > 0:
                    await asyncio.sleep(self.config.task_delay)
                await self._checkpoint()

        return RunStatus.COMPLETED

    # -- steps ---------------------------------------------------------------

    async def _await_approval(self, node: TaskNode) -> bool:
        """Hold the node in WAITING until approved. False if the wait timed out."""
        if node.status == NodeStatus.IDLE:
            self._require(self._store.transition(self.generation, node.id, NodeStatus.WAITING))
            self._require(self._store.log(
                self.generation,
                node.agent_type.value,
                f"Awaiting approval for critical task '{node.id}' (P{node.priority})",
                "warning",
                agent_id=node.id,
            ))
            logger.info(f"Node {node.id} waiting for approval")

        event = self._approvals.setdefault(node.id, asyncio.Event())
        if self.config.approval_timeout is None:
            await event.wait()
            return True
        try:
            await asyncio.wait_for(event.wait(), timeout=self.config.approval_timeout)
        except TimeoutError:
            self._require(self._store.log(
                self.generation,
                node.agent_type.value,
                f"No approval for '{node.id}' after {self.config.approval_timeout:g}s, deferring",
                "warning",
                agent_id=node.id,
            ))
            return False
        return True

    async def _execute(self, node: TaskNode, context: str) -> str:
        """Run one node to a terminal state. Returns the updated context."""
        name = node.agent_type.value
        self._require(self._store.transition(self.generation, node.id, NodeStatus.EXECUTING))
        self._require(self._store.update(self.generation, active_node_id=node.id))
        self._require(self._store.log(self.generation, name, f"Deploying: {node.description}", agent_id=node.id))
        self.dispatched.append(node.id)

        try:
            raw = await self._invoke(node, context)
        except Exception as e:
            if isinstance(e, TimeoutError) and self.config.executor_timeout is not None:
                reason = f"Timed out after {self.config.executor_timeout:g}s"
            else:
                reason = str(e) or type(e).__name__
            logger.error(f"Node {node.id} failed: {reason}", exc_info=True)
            await self._checkpoint()
            self._require(self._store.transition(self.generation, node.id, NodeStatus.FAILED, error=reason))
            self._require(self._store.log(self.generation, name, f"Critical fault: {reason}", "error", agent_id=node.id))
            return context

        result = self._normalize(raw)
        # Results are held while paused
        await self._checkpoint()
        self._require(self._store.transition(
            self.generation,
            node.id,
            NodeStatus.COMPLETED,
            output=result.output,
            tokens=result.tokens,
            cost=result.cost,
        ))
        self._require(self._store.add_usage(self.generation, result.tokens, result.cost))
        self._require(self._store.log(self.generation, name, "Task converged.", "success", agent_id=node.id))
        logger.info(f"Node {node.id} completed")
        return context + f"\n[{name} Result]: {result.output}"

    async def _invoke(self, node: TaskNode, context: str):
        call = self._executor.run(
            node.agent_type.value,
            node.description,
            context,
            self._store.enabled_tools,
        )
        if self.config.executor_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self.config.executor_timeout)

    def _cascade_failure(self, failed_id: str, remaining: list[str]) -> list[str]:
        """Fail every transitive dependent of `failed_id` (block policy)."""
        doomed: list[tuple[str, str]] = []
        frontier = [failed_id]
        while frontier:
            current = frontier.pop()
            for node in self._nodes(remaining):
                if node.is_terminal or current not in node.dependencies:
                    continue
                if any(node.id == d for d, _ in doomed):
                    continue
                doomed.append((node.id, current))
                frontier.append(node.id)

        for node_id, cause in doomed:
            node = self._store.node(node_id)
            reason = f"dependency {cause} failed"
            self._require(self._store.transition(self.generation, node_id, NodeStatus.FAILED, error=reason))
            self._require(self._store.log(
                self.generation, node.agent_type.value, f"Skipped: {reason}", "warning", agent_id=node_id
            ))
        return [node_id for node_id, _ in doomed]

    def _report_deadlock(self, resolution: Resolution):
        stuck = [n.id for n in resolution.pending]
        message = f"Dependency deadlock detected: {len(stuck)} node(s) cannot run ({', '.join(stuck)})."
        cycle = find_cycle(resolution.pending)
        if cycle:
            message += f" Cycle: {' -> '.join(cycle)}."
        waiting = [n.id for n in resolution.pending if n.status == NodeStatus.WAITING]
        if waiting:
            message += f" Awaiting approval: {', '.join(waiting)}."
        message += " Halting execution."
        logger.error(message)
        self._require(self._store.log(self.generation, "System", message, "error"))

    # -- helpers -------------------------------------------------------------

    async def _checkpoint(self):
        """Suspend while paused; stop if the run was superseded."""
        if not self._pause_gate.is_set():
            logger.debug("Scheduler paused")
            await self._pause_gate.wait()
        if not self._store.is_current(self.generation):
            raise RunCancelled()

    def _nodes(self, ids: list[str]) -> list[TaskNode]:
        return [self._store.node(nid) for nid in ids]

    def _require(self, written):
        if written is False or written is None:
            raise RunCancelled()

    @staticmethod
    def _normalize(raw) -> ExecutionResult:
        if isinstance(raw, ExecutionResult):
            return raw
        return ExecutionResult(output="" if raw is None else str(raw))
