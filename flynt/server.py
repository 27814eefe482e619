"""FastAPI server: observation and control endpoints for the orchestrator."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from flynt.config import EVENT_LOG_FILE, SERVER_HOST, SERVER_PORT
from flynt.controller import RunController
from flynt.events import EventLog
from flynt.executor import LLMAgentExecutor
from flynt.planner import LLMPlanner

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Flynt", version="1.0", description="Multi-agent task-graph orchestrator")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One controller per process, one run at a time
controller = RunController(
    planner=LLMPlanner(),
    executor=LLMAgentExecutor(),
    event_log=EventLog(log_file=EVENT_LOG_FILE),
)


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------


class StartRunRequest(BaseModel):
    objective: str
    supersede: bool = False


class ToolToggleRequest(BaseModel):
    enabled: bool = True


# ---------------------------------------------------------------------------
# Run Lifecycle
# ---------------------------------------------------------------------------


@app.post("/runs")
async def start_run(req: StartRunRequest) -> dict:
    """Submit an objective. 409 while another run is active (unless superseding)."""
    started = await controller.start(req.objective, supersede=req.supersede)
    if not started:
        if not req.objective.strip():
            raise HTTPException(status_code=422, detail="Objective must not be empty")
        raise HTTPException(status_code=409, detail="A run is already in progress")
    logger.info(f"Run started: {req.objective[:80]}")
    return controller.observe()


@app.get("/run")
async def get_run() -> dict:
    """Full snapshot of the current run."""
    return controller.observe()


@app.post("/run/pause")
async def pause_run() -> dict:
    if not controller.pause():
        raise HTTPException(status_code=409, detail="No active, unpaused run")
    return {"status": "paused"}


@app.post("/run/resume")
async def resume_run() -> dict:
    if not controller.resume():
        raise HTTPException(status_code=409, detail="Run is not paused")
    return {"status": "resumed"}


@app.post("/run/cancel")
async def cancel_run() -> dict:
    if not controller.cancel():
        raise HTTPException(status_code=409, detail="No active run")
    return {"status": "cancelled"}


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@app.get("/run/nodes/{node_id}")
async def get_node(node_id: str) -> dict:
    node = controller.node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return node


@app.post("/run/nodes/{node_id}/approve")
async def approve_node(node_id: str) -> dict:
    """Human-in-the-loop gate: let a waiting node execute."""
    if controller.node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    if not controller.approve(node_id):
        raise HTTPException(status_code=409, detail=f"Node {node_id} is not awaiting approval")
    return {"status": "approved", "id": node_id}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@app.get("/tools")
async def list_tools() -> list[str]:
    return controller.observe()["enabled_tools"]


@app.post("/tools/{name}")
async def toggle_tool(name: str, req: ToolToggleRequest) -> list[str]:
    return controller.set_tool(name, req.enabled)


# ---------------------------------------------------------------------------
# Logs (WebSocket + Polling)
# ---------------------------------------------------------------------------


@app.websocket("/run/events")
async def log_stream(websocket: WebSocket):
    """WebSocket stream of execution log entries."""
    await websocket.accept()
    queue = controller.events.subscribe()
    try:
        while True:
            entry = await queue.get()
            await websocket.send_json(entry.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        controller.events.unsubscribe(queue)


@app.get("/run/logs")
async def get_logs(limit: int = 50, offset: int = 0) -> list[dict]:
    """Get recent log entries (polling fallback)."""
    return controller.logs(limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def main():
    """Start the Flynt server."""
    print(f"Starting Flynt server on {SERVER_HOST}:{SERVER_PORT}")
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT, log_level="info")


if __name__ == "__main__":
    main()
