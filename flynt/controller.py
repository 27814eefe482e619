"""RunController: owns a run's lifecycle and exposes it to observers."""

from __future__ import annotations

import asyncio
import logging
import time

from flynt.events import EventLog
from flynt.executor import AgentExecutor
from flynt.models import ROOT_ID, NodeStatus, RunStatus
from flynt.plan import PlanValidationError, build_nodes, validate_plan
from flynt.planner import PlannerService
from flynt.scheduler import RunCancelled, Scheduler, SchedulerConfig
from flynt.state import RunStore

logger = logging.getLogger(__name__)


class RunController:
    """Top-level orchestration for one objective at a time.

    Commands (start, pause, resume, approve, cancel) are the only way to
    change a run from outside; observe() returns a detached snapshot.
    """

    def __init__(
        self,
        planner: PlannerService,
        executor: AgentExecutor,
        config: SchedulerConfig | None = None,
        event_log: EventLog | None = None,
        enabled_tools: list[str] | None = None,
    ):
        self.planner = planner
        self.executor = executor
        self.config = config or SchedulerConfig()
        self.store = RunStore(event_log=event_log, enabled_tools=enabled_tools)
        self._pause_gate = asyncio.Event()
        self._pause_gate.set()
        self._task: asyncio.Task | None = None
        self._scheduler: Scheduler | None = None

    @property
    def events(self) -> EventLog:
        return self.store.events

    @property
    def is_processing(self) -> bool:
        return self.store.is_processing

    # -- commands ------------------------------------------------------------

    async def start(self, objective: str, supersede: bool = False) -> bool:
        """Plan and execute `objective` in the background.

        Returns False (and logs why) when the objective is empty or another
        run is active and `supersede` is not set. With `supersede`, the
        active run is cancelled and its late results are discarded.
        """
        objective = (objective or "").strip()
        if not objective:
            self.store.log(self.store.generation, "System", "Objective is empty, nothing to plan.", "warning")
            return False

        if self.store.is_processing:
            if not supersede:
                logger.warning("Refusing to start: a run is already in progress")
                self.store.log(
                    self.store.generation, "System", "A run is already in progress. Ignoring new objective.", "error"
                )
                return False
            logger.info("Superseding the active run")
            self._abandon()

        generation = self.store.reset(objective)
        self._pause_gate = asyncio.Event()
        self._pause_gate.set()
        self._scheduler = None
        self.store.update(generation, status=RunStatus.PLANNING, is_processing=True, active_node_id=ROOT_ID)
        self._task = asyncio.create_task(self._run(generation, objective))
        return True

    def pause(self) -> bool:
        if not self.store.is_processing or self.store.is_paused:
            return False
        generation = self.store.generation
        self._pause_gate.clear()
        self.store.update(generation, is_paused=True)
        self.store.log(generation, "System", "Execution paused.", "warning")
        return True

    def resume(self) -> bool:
        if not self.store.is_processing or not self.store.is_paused:
            return False
        generation = self.store.generation
        self.store.update(generation, is_paused=False)
        self.store.log(generation, "System", "Execution resumed.", "info")
        self._pause_gate.set()
        return True

    def approve(self, node_id: str) -> bool:
        """Release a WAITING node. False if the node isn't waiting for approval."""
        generation = self.store.generation
        node = self.store.node(node_id)
        if (
            not self.store.is_processing
            or node is None
            or node.status != NodeStatus.WAITING
            or self._scheduler is None
            or not self._scheduler.approve(node_id)
        ):
            logger.warning(f"Approval rejected for {node_id}: not awaiting approval")
            self.store.log(generation, "System", f"Cannot approve '{node_id}': not awaiting approval.", "warning")
            return False
        self.store.log(
            generation, node.agent_type.value, f"Approved '{node_id}' for execution.", "success", agent_id=node_id
        )
        return True

    def cancel(self) -> bool:
        """Abort the active run. Its in-flight results are discarded."""
        if not self.store.is_processing:
            return False
        self._abandon()
        generation = self.store.generation
        self.store.update(
            generation,
            status=RunStatus.CANCELLED,
            is_processing=False,
            is_paused=False,
            active_node_id=ROOT_ID,
            finished_at=time.time(),
        )
        self.store.log(generation, "System", "Run cancelled.", "warning")
        return True

    def set_tool(self, name: str, enabled: bool) -> list[str]:
        tools = self.store.set_tool(name, enabled)
        self.store.log(
            self.store.generation, "System", f"Tool '{name}' {'enabled' if enabled else 'disabled'}.", "info"
        )
        return tools

    # -- observation ---------------------------------------------------------

    def observe(self) -> dict:
        """Consistent snapshot of the current run (nodes, logs, flags, totals)."""
        return self.store.snapshot()

    def node(self, node_id: str) -> dict | None:
        node = self.store.node(node_id)
        return node.to_dict() if node else None

    def logs(self, limit: int = 50, offset: int = 0) -> list[dict]:
        return [e.to_dict() for e in self.events.recent(limit=limit, offset=offset)]

    async def wait(self):
        """Block until the active run task finishes (any outcome)."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def run(self, objective: str, supersede: bool = False) -> dict:
        """Start a run, wait for it, return the final snapshot."""
        await self.start(objective, supersede=supersede)
        await self.wait()
        return self.observe()

    # -- internals -----------------------------------------------------------

    def _abandon(self):
        """Orphan the active run: stale its generation, wake it, cancel it."""
        task = self._task
        self.store.invalidate()
        self._pause_gate.set()
        if task is not None and not task.done():
            task.cancel()
        self._task = None
        self._scheduler = None

    async def _run(self, generation: int, objective: str):
        try:
            status = await self._plan_and_execute(generation, objective)
        except RunCancelled:
            logger.info(f"Run generation {generation} was superseded")
            return
        except asyncio.CancelledError:
            logger.info(f"Run generation {generation} cancelled")
            raise
        except Exception as e:
            logger.exception(f"Run generation {generation} crashed")
            self.store.log(generation, "System", f"Run aborted by unexpected error: {e}", "error")
            status = RunStatus.FAILED
        self._finish(generation, status)

    async def _plan_and_execute(self, generation: int, objective: str) -> RunStatus:
        await self._checkpoint(generation)
        self._require(self.store.log(generation, "PlannerAgent", "Initializing Mission Roadmap...", agent_id=ROOT_ID))
        self._require(self.store.transition(generation, ROOT_ID, NodeStatus.THINKING))

        try:
            plan = await self.planner.plan_task(objective)
        except Exception as e:
            logger.error(f"Planner raised: {e}", exc_info=True)
            plan = None
        # The plan is held while paused
        await self._checkpoint(generation)

        if plan is None:
            return self._fail_planning(generation, "Deployment blueprint failed. Check provider health.")

        try:
            validate_plan(plan)
            nodes = build_nodes(plan)
        except PlanValidationError as e:
            logger.warning(f"Plan rejected: {e}")
            return self._fail_planning(generation, f"Blueprint rejected: {e}")

        project = plan.objective or objective
        self._require(self.store.add_nodes(generation, nodes))
        self._require(self.store.transition(
            generation,
            ROOT_ID,
            NodeStatus.COMPLETED,
            output=f"Flynt Project Roadmap:\nObjective: {project}",
        ))
        self._require(self.store.log(
            generation, "PlannerAgent", f"Blueprint convergent: {project}", "success", agent_id=ROOT_ID,
        ))
        self._require(self.store.update(generation, status=RunStatus.RUNNING, project_objective=project))

        scheduler = Scheduler(self.store, generation, self.executor, self.config, self._pause_gate)
        self._scheduler = scheduler
        return await scheduler.run()

    def _fail_planning(self, generation: int, message: str) -> RunStatus:
        self._require(self.store.transition(generation, ROOT_ID, NodeStatus.FAILED, error=message))
        self._require(self.store.log(generation, "PlannerAgent", message, "error", agent_id=ROOT_ID))
        return RunStatus.FAILED

    def _finish(self, generation: int, status: RunStatus):
        updated = self.store.update(
            generation,
            status=status,
            is_processing=False,
            is_paused=False,
            active_node_id=ROOT_ID,
            finished_at=time.time(),
        )
        if not updated:
            return

        snapshot = self.store.snapshot()
        counts = snapshot["metrics"]["by_status"]
        totals = f"Tokens: {snapshot['total_tokens']}, cost: ${snapshot['total_cost']:.4f}"
        if status == RunStatus.COMPLETED:
            level = "warning" if counts["failed"] else "success"
            message = (
                f"Mission converged: {counts['completed']} completed, {counts['failed']} failed. {totals}"
            )
        elif status == RunStatus.BLOCKED:
            level = "error"
            message = f"Mission blocked by unresolved dependencies: {counts['completed']} completed. {totals}"
        else:
            level = "error"
            message = "Mission aborted before execution."
        self.store.log(generation, "System", message, level)
        logger.info(f"Run generation {generation} finished: {status.value}")

    async def _checkpoint(self, generation: int):
        """Suspend while paused; stop if the run was superseded."""
        gate = self._pause_gate
        if not gate.is_set():
            await gate.wait()
        if not self.store.is_current(generation):
            raise RunCancelled()

    @staticmethod
    def _require(written):
        if written is False or written is None:
            raise RunCancelled()
