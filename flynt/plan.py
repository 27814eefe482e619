"""Plan parsing and acceptance checks.

A plan arrives from the planner as loosely-typed JSON. `parse_plan` turns it
into a `Plan`, `validate_plan` rejects graphs the scheduler must never see
(dangling references, cycles, duplicate ids), and `build_nodes` produces the
TaskNodes for a run.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from flynt.models import ROOT_ID, AgentType, Plan, Subtask, TaskNode
from flynt.resolver import find_cycle

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class PlanValidationError(ValueError):
    """The plan cannot be scheduled as given."""


def clamp_priority(value: Any) -> int:
    try:
        priority = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_PRIORITY
    if priority == 0:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def parse_plan(data: str | dict) -> Plan:
    """Build a Plan from planner output (a dict or JSON text, optionally fenced)."""
    if isinstance(data, str):
        text = data.strip()
        match = _FENCE.match(text)
        if match:
            text = match.group(1)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PlanValidationError(f"Plan is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise PlanValidationError("Plan must be a JSON object")

    raw_subtasks = data.get("subtasks")
    if not isinstance(raw_subtasks, list):
        raise PlanValidationError("Plan has no subtasks list")

    subtasks = []
    for i, st in enumerate(raw_subtasks):
        if not isinstance(st, dict) or not st.get("id"):
            raise PlanValidationError(f"Subtask #{i} has no id")
        deps = st.get("dependencies") or []
        if isinstance(deps, str):
            deps = [deps]
        subtasks.append(Subtask(
            id=str(st["id"]),
            agent_type=str(st.get("agentType") or st.get("agent_type") or ""),
            description=str(st.get("description") or ""),
            priority=clamp_priority(st.get("priority")),
            dependencies=[str(d) for d in deps],
        ))

    return Plan(objective=str(data.get("objective") or ""), subtasks=subtasks)


def validate_plan(plan: Plan):
    """Raise PlanValidationError if the plan can't be scheduled."""
    if not plan.subtasks:
        raise PlanValidationError("Plan contains no subtasks")

    seen: set[str] = set()
    for st in plan.subtasks:
        if st.id == ROOT_ID:
            raise PlanValidationError(f"Subtask id '{ROOT_ID}' is reserved")
        if st.id in seen:
            raise PlanValidationError(f"Duplicate subtask id '{st.id}'")
        seen.add(st.id)
        try:
            AgentType.parse(st.agent_type)
        except ValueError as e:
            raise PlanValidationError(f"Subtask '{st.id}': {e}") from e

    for st in plan.subtasks:
        missing = [d for d in st.dependencies if d not in seen]
        if missing:
            raise PlanValidationError(
                f"Subtask '{st.id}' depends on unknown id(s): {', '.join(missing)}"
            )

    cycle = find_cycle(
        TaskNode(id=st.id, dependencies=st.dependencies) for st in plan.subtasks
    )
    if cycle:
        raise PlanValidationError(f"Dependency cycle: {' -> '.join(cycle)}")


def build_nodes(plan: Plan) -> list[TaskNode]:
    """TaskNodes for every subtask, in plan order, parented to the root."""
    nodes = []
    for st in plan.subtasks:
        agent_type = AgentType.parse(st.agent_type)
        # Duplicate dependency entries collapse, first occurrence wins
        deps = list(dict.fromkeys(st.dependencies))
        nodes.append(TaskNode(
            id=st.id,
            agent_type=agent_type,
            label=agent_type.value,
            description=st.description,
            priority=clamp_priority(st.priority),
            dependencies=deps,
            parent=ROOT_ID,
        ))
    logger.debug(f"Built {len(nodes)} nodes from plan: {plan.objective[:60]}")
    return nodes
