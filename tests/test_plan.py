"""Test plan parsing and validation."""

import pytest

from flynt.models import ROOT_ID, AgentType
from flynt.plan import PlanValidationError, build_nodes, clamp_priority, parse_plan, validate_plan

from fakes import make_plan


PLAN_JSON = {
    "objective": "Ship a dashboard",
    "subtasks": [
        {"id": "ideate", "agentType": "IdeaAgent", "description": "Brainstorm", "priority": 6, "dependencies": []},
        {"id": "code", "agentType": "CoderAgent", "description": "Write it", "priority": 8,
         "dependencies": ["ideate"]},
    ],
}


def test_parse_plan_from_dict():
    plan = parse_plan(PLAN_JSON)
    assert plan.objective == "Ship a dashboard"
    assert [st.id for st in plan.subtasks] == ["ideate", "code"]
    assert plan.subtasks[1].agent_type == "CoderAgent"
    assert plan.subtasks[1].dependencies == ["ideate"]


def test_parse_plan_from_fenced_json():
    text = '```json\n{"objective": "o", "subtasks": [{"id": "a", "agentType": "MediaAgent"}]}\n```'
    plan = parse_plan(text)
    assert plan.subtasks[0].id == "a"
    assert plan.subtasks[0].priority == 5
    assert plan.subtasks[0].dependencies == []


def test_parse_plan_rejects_garbage():
    with pytest.raises(PlanValidationError):
        parse_plan("not json at all")
    with pytest.raises(PlanValidationError):
        parse_plan({"objective": "no subtasks"})
    with pytest.raises(PlanValidationError):
        parse_plan({"subtasks": [{"agentType": "CoderAgent"}]})
    with pytest.raises(PlanValidationError):
        parse_plan("[1, 2, 3]")


def test_clamp_priority():
    assert clamp_priority(None) == 5
    assert clamp_priority(0) == 5
    assert clamp_priority(15) == 10
    assert clamp_priority(-3) == 1
    assert clamp_priority("7") == 7
    assert clamp_priority(8.6) == 9
    assert clamp_priority("high") == 5


def test_validate_accepts_dag():
    validate_plan(make_plan(("a", 5, []), ("b", 8, ["a"]), ("c", 9, [])))


def test_validate_rejects_empty_plan():
    with pytest.raises(PlanValidationError, match="no subtasks"):
        validate_plan(make_plan())


def test_validate_rejects_duplicate_ids():
    with pytest.raises(PlanValidationError, match="Duplicate"):
        validate_plan(make_plan(("a", 5, []), ("a", 5, [])))


def test_validate_rejects_reserved_root_id():
    with pytest.raises(PlanValidationError, match="reserved"):
        validate_plan(make_plan((ROOT_ID, 5, [])))


def test_validate_rejects_unknown_agent():
    with pytest.raises(PlanValidationError, match="Unknown agent type"):
        validate_plan(make_plan(("a", 5, [], "WizardAgent")))


def test_validate_rejects_dangling_dependency():
    with pytest.raises(PlanValidationError, match="unknown id"):
        validate_plan(make_plan(("a", 5, ["ghost"])))


def test_validate_rejects_cycle():
    with pytest.raises(PlanValidationError, match="cycle"):
        validate_plan(make_plan(("a", 5, ["b"]), ("b", 5, ["a"])))
    with pytest.raises(PlanValidationError, match="cycle"):
        validate_plan(make_plan(("a", 5, ["a"])))


def test_build_nodes():
    nodes = build_nodes(make_plan(("a", 5, [], "IdeaAgent"), ("b", 12, ["a", "a"])))
    assert [n.id for n in nodes] == ["a", "b"]
    assert nodes[0].agent_type is AgentType.IDEA
    assert nodes[0].label == "IdeaAgent"
    assert nodes[1].priority == 10
    assert nodes[1].dependencies == ["a"]
    assert all(n.parent == ROOT_ID for n in nodes)


def test_validate_accepts_long_chain_in_reverse_order():
    rows = [(f"n{i}", 5, [f"n{i - 1}"] if i else []) for i in reversed(range(2000))]
    validate_plan(make_plan(*rows))


def test_non_finite_priority_falls_back_to_default():
    assert clamp_priority(float("inf")) == 5
    assert clamp_priority(float("nan")) == 5
    plan = parse_plan('{"objective": "o", "subtasks": [{"id": "a", "agentType": "CoderAgent", "priority": Infinity}]}')
    assert plan.subtasks[0].priority == 5
