"""Planner: turns an objective into a dependency graph of subtasks."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from flynt.config import DEFAULT_MAX_TOKENS, PLANNER_MODEL
from flynt.models import AgentType, Plan
from flynt.plan import PlanValidationError, parse_plan
from flynt.providers import ModelProvider, create_provider

logger = logging.getLogger(__name__)

WORKER_AGENTS = [t.value for t in AgentType if t is not AgentType.PLANNER]


class PlannerService(ABC):
    """Produces a Plan for an objective, or None when it cannot."""

    @abstractmethod
    async def plan_task(self, objective: str) -> Plan | None:
        """Return a plan, or None on any failure. Callers never retry."""


def build_planner_prompt(objective: str) -> str:
    agents = ", ".join(WORKER_AGENTS)
    return (
        "Act as the Flynt Studio PlannerAgent.\n"
        f'Analyze the user project request: "{objective}".\n'
        "Break this project into a structured sequence of tasks using specialized agents.\n"
        f"Available Agents: {agents}.\n\n"
        "Define dependencies carefully: a subtask's dependency must be the 'id' of another subtask.\n"
        "Dependencies must not form a cycle.\n"
        "Assign P1-P10 priority (P10 highest). Reserve P9-P10 for critical, irreversible steps.\n\n"
        "Respond with JSON of this exact shape:\n"
        '{"objective": "...", "subtasks": [{"id": "init_codebase", "agentType": "CoderAgent", '
        '"description": "...", "priority": 5, "dependencies": []}]}'
    )


class LLMPlanner(PlannerService):
    """PlannerService backed by a chat model."""

    def __init__(self, model: str = PLANNER_MODEL, provider: ModelProvider | None = None):
        self.model = model
        self._provider = provider

    @property
    def provider(self) -> ModelProvider:
        if self._provider is None:
            self._provider = create_provider(self.model)
        return self._provider

    async def plan_task(self, objective: str) -> Plan | None:
        try:
            response = await self.provider.generate(
                messages=[{"role": "user", "content": build_planner_prompt(objective)}],
                system="You are a task planner for a multi-agent studio. Output only JSON.",
                max_tokens=DEFAULT_MAX_TOKENS,
                json_mode=True,
            )
        except Exception as e:
            logger.error(f"Flynt planning failure: {e}", exc_info=True)
            return None

        if not response.text:
            logger.error("Planner returned an empty response")
            return None

        try:
            plan = parse_plan(response.text)
        except PlanValidationError as e:
            logger.error(f"Planner returned an unusable plan: {e}")
            return None

        if not plan.objective:
            plan.objective = objective
        logger.info(f"Planned {len(plan.subtasks)} subtask(s) for: {objective[:80]}")
        return plan
