"""Core data structures for the Flynt orchestrator."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


ROOT_ID = "flynt-root"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AgentType(str, Enum):
    IDEA = "IdeaAgent"
    PLANNER = "PlannerAgent"
    CODER = "CoderAgent"
    NOTEBOOK = "NotebookAgent"
    DS = "DataScienceAgent"
    ANALYSIS = "DataAnalysisAgent"
    VISUALIZER = "VisualizerAgent"
    MEDIA = "MediaAgent"
    FINETUNING = "FinetuningAgent"

    @classmethod
    def parse(cls, value: str | AgentType) -> AgentType:
        """Accept a member, its value ("CoderAgent") or its name ("CODER")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown agent type: {value!r}")


class NodeStatus(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    THINKING = "thinking"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED)


class RunStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    RUNNING = "running"
    COMPLETED = "completed"
    BLOCKED = "blocked"  # dependency deadlock
    FAILED = "failed"  # planning failure or invalid plan
    CANCELLED = "cancelled"


LOG_LEVELS = ("info", "success", "warning", "error", "thought")

# idle -> failed only happens when a failed dependency cascades (block policy)
_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.IDLE: {NodeStatus.WAITING, NodeStatus.EXECUTING, NodeStatus.THINKING, NodeStatus.FAILED},
    NodeStatus.WAITING: {NodeStatus.EXECUTING},
    NodeStatus.THINKING: {NodeStatus.COMPLETED, NodeStatus.FAILED},
    NodeStatus.EXECUTING: {NodeStatus.COMPLETED, NodeStatus.FAILED},
    NodeStatus.COMPLETED: set(),
    NodeStatus.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a node is moved along an edge the state machine forbids."""


# ---------------------------------------------------------------------------
# Task graph
# ---------------------------------------------------------------------------


@dataclass
class TaskNode:
    """A unit of work in the execution DAG. Links to other nodes are ids."""

    id: str
    agent_type: AgentType = AgentType.PLANNER
    label: str = ""
    description: str = ""
    status: NodeStatus = NodeStatus.IDLE
    priority: int = 5
    dependencies: list[str] = field(default_factory=list)
    output: str | None = None
    error: str | None = None
    tokens: int | None = None
    cost: float | None = None
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_ID

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: NodeStatus):
        """Move to `status`, enforcing the node state machine."""
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Node {self.id}: illegal transition {self.status.value} -> {status.value}"
            )
        self.status = status
        if status in (NodeStatus.THINKING, NodeStatus.EXECUTING):
            self.started_at = time.time()
        elif status.is_terminal:
            self.finished_at = time.time()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent_type": self.agent_type.value,
            "label": self.label,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "output": self.output,
            "error": self.error,
            "tokens": self.tokens,
            "cost": self.cost,
            "parent": self.parent,
            "children": list(self.children),
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def make_root(objective: str = "") -> TaskNode:
    return TaskNode(
        id=ROOT_ID,
        agent_type=AgentType.PLANNER,
        label="Flynt Orchestrator",
        description=objective,
        priority=10,
    )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass
class Subtask:
    id: str
    agent_type: str
    description: str = ""
    priority: int = 5
    dependencies: list[str] = field(default_factory=list)


@dataclass
class Plan:
    objective: str
    subtasks: list[Subtask] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """What an executor produced for one node. Usage fields are optional."""

    output: str
    tokens: int | None = None
    cost: float | None = None


# ---------------------------------------------------------------------------
# Provider responses
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class Citation:
    title: str
    url: str


@dataclass
class ModelResponse:
    text: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    citations: list[Citation] = field(default_factory=list)
    raw: Any = None


# ---------------------------------------------------------------------------
# Execution log
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogEntry:
    agent_name: str
    message: str
    level: str = "info"  # info | success | warning | error | thought
    agent_id: str = "system"
    id: str = field(default_factory=generate_id)
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "message": self.message,
            "level": self.level,
            "ts": self.ts,
        }


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


@dataclass
class RunState:
    run_id: str = field(default_factory=generate_id)
    generation: int = 0
    objective: str = ""
    # Objective as restated by the planner; seeds the shared task context
    project_objective: str = ""
    status: RunStatus = RunStatus.IDLE
    is_processing: bool = False
    is_paused: bool = False
    active_node_id: str | None = None
    total_tokens: int = 0
    total_cost: float = 0.0
    enabled_tools: list[str] = field(default_factory=list)
    nodes: dict[str, TaskNode] = field(default_factory=dict)
    logs: list[LogEntry] = field(default_factory=list)
    started_at: float | None = None
    finished_at: float | None = None

    def add(self, node: TaskNode):
        self.nodes[node.id] = node

    def get(self, node_id: str) -> TaskNode | None:
        return self.nodes.get(node_id)

    def subtasks(self) -> list[TaskNode]:
        """Non-root nodes in arrival order."""
        return [n for n in self.nodes.values() if not n.is_root]

    def metrics(self) -> dict[str, Any]:
        """Dashboard aggregates: status counts and per-agent activity."""
        by_status = {s.value: 0 for s in NodeStatus}
        for node in self.subtasks():
            by_status[node.status.value] += 1
        activity: dict[str, int] = {}
        for entry in self.logs:
            activity[entry.agent_name] = activity.get(entry.agent_name, 0) + 1
        return {
            "node_count": len(self.subtasks()),
            "by_status": by_status,
            "agent_activity": activity,
        }

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "generation": self.generation,
            "objective": self.objective,
            "project_objective": self.project_objective,
            "status": self.status.value,
            "is_processing": self.is_processing,
            "is_paused": self.is_paused,
            "active_node_id": self.active_node_id,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "enabled_tools": list(self.enabled_tools),
            "root_id": ROOT_ID,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "logs": [e.to_dict() for e in self.logs],
            "metrics": self.metrics(),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
