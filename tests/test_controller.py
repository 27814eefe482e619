"""Test the run controller end to end with fake collaborators."""

import asyncio

from flynt.controller import RunController
from flynt.models import ROOT_ID

from fakes import FakeExecutor, FakePlanner, fast_config, make_plan, until

EXAMPLE = make_plan(("a", 5, []), ("b", 8, ["a"]), ("c", 9, []), objective="X")


def node_status(snapshot, node_id):
    return next(n["status"] for n in snapshot["nodes"] if n["id"] == node_id)


def messages(snapshot):
    return [entry["message"] for entry in snapshot["logs"]]


def test_full_run():
    async def scenario():
        executor = FakeExecutor(usage={"a": (10, 0.1), "b": (20, 0.2), "c": (30, 0.3)})
        controller = RunController(FakePlanner(EXAMPLE), executor, config=fast_config(), enabled_tools=[])
        snapshot = await controller.run("Build X")
        return snapshot, executor

    snapshot, executor = asyncio.run(scenario())

    assert snapshot["status"] == "completed"
    assert snapshot["is_processing"] is False
    assert snapshot["active_node_id"] == ROOT_ID
    assert executor.order == ["c", "a", "b"]
    root = snapshot["nodes"][0]
    assert root["id"] == ROOT_ID
    assert root["status"] == "completed"
    assert root["children"] == ["a", "b", "c"]
    assert "Objective: X" in root["output"]
    assert snapshot["total_tokens"] == 60
    assert abs(snapshot["total_cost"] - 0.6) < 1e-9
    assert snapshot["metrics"]["by_status"]["completed"] == 3
    assert messages(snapshot)[0] == "Initializing Mission Roadmap..."
    assert messages(snapshot)[-1].startswith("Mission converged: 3 completed, 0 failed")
    assert snapshot["logs"][-1]["level"] == "success"


def test_planning_failure_marks_root_failed():
    async def scenario():
        executor = FakeExecutor()
        controller = RunController(FakePlanner(None), executor, config=fast_config())
        return await controller.run("Anything"), executor

    snapshot, executor = asyncio.run(scenario())
    assert snapshot["status"] == "failed"
    assert node_status(snapshot, ROOT_ID) == "failed"
    assert executor.calls == []
    assert any(e["level"] == "error" and "blueprint failed" in e["message"] for e in snapshot["logs"])


def test_planner_exception_is_contained():
    async def scenario():
        controller = RunController(FakePlanner(error=RuntimeError("provider down")), FakeExecutor(),
                                   config=fast_config())
        return await controller.run("Anything")

    snapshot = asyncio.run(scenario())
    assert snapshot["status"] == "failed"
    assert snapshot["is_processing"] is False


def test_invalid_plan_is_rejected_before_scheduling():
    async def scenario():
        plan = make_plan(("a", 5, ["b"]), ("b", 5, ["a"]))
        executor = FakeExecutor()
        controller = RunController(FakePlanner(plan), executor, config=fast_config())
        return await controller.run("Cyclic"), executor

    snapshot, executor = asyncio.run(scenario())
    assert snapshot["status"] == "failed"
    assert executor.calls == []
    assert [n["id"] for n in snapshot["nodes"]] == [ROOT_ID]
    assert any("Blueprint rejected" in m and "cycle" in m for m in messages(snapshot))


def test_node_failure_does_not_fail_run():
    async def scenario():
        controller = RunController(FakePlanner(EXAMPLE), FakeExecutor(fail=("c",)), config=fast_config())
        return await controller.run("X")

    snapshot = asyncio.run(scenario())
    assert snapshot["status"] == "completed"
    assert node_status(snapshot, "c") == "failed"
    assert node_status(snapshot, "b") == "completed"
    assert snapshot["logs"][-1]["level"] == "warning"


def test_empty_objective_is_refused():
    async def scenario():
        controller = RunController(FakePlanner(EXAMPLE), FakeExecutor(), config=fast_config())
        return await controller.start("   "), controller.observe()

    started, snapshot = asyncio.run(scenario())
    assert started is False
    assert snapshot["status"] == "idle"


def test_start_while_busy_is_refused():
    async def scenario():
        executor = FakeExecutor(delay=0.05)
        controller = RunController(FakePlanner(EXAMPLE), executor, config=fast_config())
        assert await controller.start("first")
        second = await controller.start("second")
        await controller.wait()
        return second, controller.observe()

    second, snapshot = asyncio.run(scenario())
    assert second is False
    assert snapshot["objective"] == "first"
    assert snapshot["status"] == "completed"
    assert "A run is already in progress. Ignoring new objective." in messages(snapshot)


def test_supersede_discards_prior_run():
    async def scenario():
        slow = FakeExecutor(delay=0.1, usage={"a": (1000, 10.0), "c": (1000, 10.0)})
        controller = RunController(FakePlanner(EXAMPLE), slow, config=fast_config())
        await controller.start("first")
        await until(lambda: controller.store.node("c") is not None
                    and controller.store.node("c").status.value == "executing")

        controller.planner = FakePlanner(make_plan(("z", 5, []), objective="Y"))
        controller.executor = FakeExecutor(usage={"z": (7, 0.07)})
        assert await controller.start("second", supersede=True)
        await controller.wait()
        # Give the orphaned call time to come back
        await asyncio.sleep(0.15)
        return controller.observe()

    snapshot = asyncio.run(scenario())
    assert snapshot["objective"] == "second"
    assert snapshot["status"] == "completed"
    assert [n["id"] for n in snapshot["nodes"]] == [ROOT_ID, "z"]
    assert snapshot["total_tokens"] == 7
    assert all("first" not in m for m in messages(snapshot))


def test_approval_flow():
    async def scenario():
        executor = FakeExecutor()
        controller = RunController(FakePlanner(EXAMPLE), executor, config=fast_config(approval_threshold=9))
        await controller.start("X")
        await until(lambda: controller.store.node("c") is not None
                    and controller.store.node("c").status.value == "waiting")
        await asyncio.sleep(0.05)

        waiting = controller.observe()
        rejected = controller.approve("a")
        unknown = controller.approve("ghost")
        approved = controller.approve("c")
        await controller.wait()
        return waiting, rejected, unknown, approved, controller.observe(), executor

    waiting, rejected, unknown, approved, final, executor = asyncio.run(scenario())
    assert node_status(waiting, "c") == "waiting"
    assert node_status(waiting, "a") == "idle"
    assert waiting["is_processing"] is True
    assert rejected is False
    assert unknown is False
    assert approved is True
    assert final["status"] == "completed"
    assert executor.order == ["c", "a", "b"]
    assert "Approved 'c' for execution." in messages(final)


def test_pause_and_resume():
    async def scenario():
        executor = FakeExecutor(delay=0.05)
        controller = RunController(FakePlanner(EXAMPLE), executor, config=fast_config())
        assert not controller.pause()
        await controller.start("X")
        await until(lambda: controller.store.node("c") is not None
                    and controller.store.node("c").status.value == "executing")

        assert controller.pause()
        assert not controller.pause()
        paused = controller.observe()
        await asyncio.sleep(0.2)
        still_paused = controller.observe()

        assert controller.resume()
        assert not controller.resume()
        await controller.wait()
        return paused, still_paused, controller.observe(), executor

    paused, still_paused, final, executor = asyncio.run(scenario())
    assert paused["is_paused"] is True
    assert [n["status"] for n in still_paused["nodes"]] == [n["status"] for n in paused["nodes"]]
    assert executor.order == ["c", "a", "b"]
    assert final["status"] == "completed"
    assert final["is_paused"] is False
    assert "Execution paused." in messages(final)
    assert "Execution resumed." in messages(final)


def test_cancel():
    async def scenario():
        executor = FakeExecutor(delay=0.1, usage={"c": (100, 1.0)})
        controller = RunController(FakePlanner(EXAMPLE), executor, config=fast_config())
        assert not controller.cancel()
        await controller.start("X")
        await until(lambda: len(executor.calls) == 1)
        assert controller.cancel()
        await asyncio.sleep(0.2)
        return controller.observe(), executor

    snapshot, executor = asyncio.run(scenario())
    assert snapshot["status"] == "cancelled"
    assert snapshot["is_processing"] is False
    assert snapshot["total_tokens"] == 0
    assert len(executor.calls) == 1
    assert messages(snapshot)[-1] == "Run cancelled."


def test_tool_toggle_reaches_executor():
    async def scenario():
        executor = FakeExecutor()
        controller = RunController(FakePlanner(make_plan(("a", 5, []))), executor, config=fast_config(),
                                   enabled_tools=["Google Search"])
        controller.set_tool("Google Search", False)
        controller.set_tool("Vector DB", True)
        await controller.run("X")
        return executor

    executor = asyncio.run(scenario())
    assert executor.calls[0]["enabled_tools"] == ["Vector DB"]


def test_observe_is_a_snapshot():
    async def scenario():
        controller = RunController(FakePlanner(EXAMPLE), FakeExecutor(), config=fast_config())
        snapshot = await controller.run("X")
        snapshot["nodes"].clear()
        return controller.observe()

    assert len(asyncio.run(scenario())["nodes"]) == 4


def test_pause_before_planning_holds_root():
    async def scenario():
        planner = FakePlanner(EXAMPLE, delay=0.05)
        executor = FakeExecutor()
        controller = RunController(planner, executor, config=fast_config())
        await controller.start("X")
        assert controller.pause()
        await asyncio.sleep(0.2)
        paused = controller.observe()

        controller.resume()
        await controller.wait()
        return paused, controller.observe(), planner, executor

    paused, final, planner, executor = asyncio.run(scenario())
    assert node_status(paused, ROOT_ID) == "idle"
    assert [n["id"] for n in paused["nodes"]] == [ROOT_ID]
    assert paused["status"] == "planning"
    assert planner.calls == []
    assert final["status"] == "completed"
    assert executor.order == ["c", "a", "b"]


def test_pause_during_planning_holds_plan():
    async def scenario():
        controller = RunController(FakePlanner(EXAMPLE, delay=0.05), FakeExecutor(), config=fast_config())
        await controller.start("X")
        await until(lambda: controller.store.node(ROOT_ID).status.value == "thinking")
        assert controller.pause()
        await asyncio.sleep(0.2)
        paused = controller.observe()

        controller.resume()
        await controller.wait()
        return paused, controller.observe()

    paused, final = asyncio.run(scenario())
    assert node_status(paused, ROOT_ID) == "thinking"
    assert len(paused["nodes"]) == 1
    assert paused["status"] == "planning"
    assert final["status"] == "completed"


def test_context_starts_from_planned_objective():
    async def scenario():
        executor = FakeExecutor()
        controller = RunController(FakePlanner(make_plan(("a", 5, []), objective="Restated goal")), executor,
                                   config=fast_config())
        snapshot = await controller.run("raw user input")
        return snapshot, executor

    snapshot, executor = asyncio.run(scenario())
    assert executor.calls[0]["context"] == "Project: Restated goal\n"
    assert snapshot["objective"] == "raw user input"
    assert snapshot["project_objective"] == "Restated goal"
