"""Configuration loading and defaults.

Reads from config.toml at the project root, with environment variable overrides.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from dotenv import load_dotenv

# Look for .env in the package's parent directory (project root)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")
load_dotenv()  # also check cwd

# ---------------------------------------------------------------------------
# Load config.toml
# ---------------------------------------------------------------------------

_toml_path = _project_root / "config.toml"
_cfg: dict = {}
if _toml_path.exists():
    with open(_toml_path, "rb") as f:
        _cfg = tomllib.load(f)

_server = _cfg.get("server", {})
_planner = _cfg.get("planner", {})
_scheduler = _cfg.get("scheduler", {})


def _disabled(value) -> bool:
    return value is None or str(value).strip().lower() in ("", "none", "off")


def _optional_float(value) -> float | None:
    """Parse a float where 0, empty or "none" mean disabled."""
    if _disabled(value):
        return None
    value = float(value)
    return value if value > 0 else None


def _optional_int(value) -> int | None:
    """Parse an int where 0, empty or "none" mean disabled."""
    if _disabled(value):
        return None
    value = int(value)
    return value if value > 0 else None


# ---------------------------------------------------------------------------
# Provider API keys (env-only, never in toml)
# ---------------------------------------------------------------------------

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

PLANNER_MODEL = os.getenv("FLYNT_PLANNER_MODEL", _planner.get("model", "anthropic/claude-sonnet-4-5"))
EXECUTOR_MODEL = os.getenv("FLYNT_EXECUTOR_MODEL", _planner.get("executor_model", "anthropic/claude-haiku-4-5"))
# Used instead of EXECUTOR_MODEL when web search is among the enabled tools
SEARCH_MODEL = os.getenv("FLYNT_SEARCH_MODEL", _planner.get("search_model", "anthropic/claude-sonnet-4-5"))
DEFAULT_TEMPERATURE = float(os.getenv("FLYNT_TEMPERATURE", _planner.get("temperature", 0.7)))
DEFAULT_MAX_TOKENS = int(os.getenv("FLYNT_MAX_TOKENS", _planner.get("max_tokens", 4096)))
NATIVE_SEARCH_MAX_USES = int(os.getenv("FLYNT_SEARCH_MAX_USES", _planner.get("max_native_uses", 5)))

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "anthropic/claude-sonnet-4-5": (3.0, 15.0),
    "anthropic/claude-opus-4-6": (15.0, 75.0),
    "anthropic/claude-haiku-4-5": (1.0, 5.0),
    "openai/gpt-4o": (2.5, 10.0),
    "openai/gpt-4.1": (2.0, 8.0),
    "openai/o3-mini": (1.1, 4.4),
}

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

# Nodes with priority >= this need human approval before executing (disabled = no gates)
APPROVAL_THRESHOLD = _optional_int(os.getenv("FLYNT_APPROVAL_THRESHOLD", _scheduler.get("approval_threshold", 9)))
# Seconds to wait for an approval before deferring the node (disabled = wait forever)
APPROVAL_TIMEOUT = _optional_float(os.getenv("FLYNT_APPROVAL_TIMEOUT", _scheduler.get("approval_timeout")))
# Pacing between dispatched nodes
TASK_DELAY = float(os.getenv("FLYNT_TASK_DELAY", _scheduler.get("task_delay", 0.8)))
EXECUTOR_TIMEOUT = _optional_float(os.getenv("FLYNT_EXECUTOR_TIMEOUT", _scheduler.get("executor_timeout")))
# proceed | block
FAILED_DEPENDENCY_POLICY = os.getenv(
    "FLYNT_FAILED_DEPENDENCY_POLICY", _scheduler.get("failed_dependency_policy", "proceed")
)

DEFAULT_ENABLED_TOOLS = ["Google Search", "Code Interpreter"]

# Append-only JSONL copy of the execution log (unset = memory only)
_event_log = os.getenv("FLYNT_EVENT_LOG", _scheduler.get("event_log", ""))
EVENT_LOG_FILE = Path(_event_log) if _event_log else None

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

SERVER_HOST = os.getenv("FLYNT_HOST", _server.get("host", "0.0.0.0"))
SERVER_PORT = int(os.getenv("FLYNT_PORT", _server.get("port", 8000)))
