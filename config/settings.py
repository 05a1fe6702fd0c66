"""Central configuration loader for the Zero-to-One Roadmap backend."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent
SCHEMAS_DIR = PROJECT_ROOT / "config" / "schemas"
DATA_DIR = Path(os.getenv("ROADMAP_DATA_DIR", str(PROJECT_ROOT / "data")))

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Schema file paths
PROJECT_STATE_SCHEMA = SCHEMAS_DIR / "project_state.schema.json"

# Project goal limits
GOAL_MIN_LENGTH = 5
GOAL_MAX_LENGTH = 500

# State change notifications
EVENT_HISTORY_LIMIT = int(os.getenv("EVENT_HISTORY_LIMIT", "200"))
SSE_POLL_SECONDS = float(os.getenv("SSE_POLL_SECONDS", "1.0"))
SSE_MAX_IDLE_CYCLES = int(os.getenv("SSE_MAX_IDLE_CYCLES", "600"))

# LLM configuration (substep generation)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "2000"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.3"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))
LLM_ENABLED = os.getenv("LLM_ENABLED", "true").lower() in ("true", "1", "yes")
