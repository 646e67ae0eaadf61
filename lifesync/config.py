"""LifeSync Backend Configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default

# Project root (one level up from lifesync/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Database
DB_BACKEND = os.getenv("LIFESYNC_DB_BACKEND", "sqlite")
DATA_DIR = Path(os.getenv("LIFESYNC_DATA_DIR", str(PROJECT_ROOT / "data")))
STATE_PATH = Path(os.getenv("LIFESYNC_STATE_PATH", str(DATA_DIR / "sync_state.json")))

# Reasoning service (local Ollama)
OLLAMA_URL = os.getenv("LIFESYNC_OLLAMA_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("LIFESYNC_OLLAMA_MODEL", "mistral")
REASONING_AVAILABILITY_TIMEOUT_MS = _env_int("LIFESYNC_REASONING_AVAILABILITY_TIMEOUT_MS", 5000)
REASONING_DEFAULT_TIMEOUT_MS = _env_int("LIFESYNC_REASONING_DEFAULT_TIMEOUT_MS", 30000)

# Layer 2: smart connections
CONNECTIONS_BATCH_SIZE = _env_int("LIFESYNC_CONNECTIONS_BATCH_SIZE", 20)
CONNECTIONS_TIMEOUT_MS = _env_int("LIFESYNC_CONNECTIONS_TIMEOUT_MS", 15000)
CONNECTIONS_REASONING_FLOOR = _env_float("LIFESYNC_CONNECTIONS_REASONING_FLOOR", 0.3)
CONNECTIONS_ACCEPT_FLOOR = _env_float("LIFESYNC_CONNECTIONS_ACCEPT_FLOOR", 0.4)
CONNECTIONS_SINGLE_ASPECT_CONFIDENCE = _env_float("LIFESYNC_CONNECTIONS_SINGLE_ASPECT_CONFIDENCE", 0.6)
CONNECTIONS_KEYWORD_BASE = _env_float("LIFESYNC_CONNECTIONS_KEYWORD_BASE", 0.5)
CONNECTIONS_KEYWORD_STEP = _env_float("LIFESYNC_CONNECTIONS_KEYWORD_STEP", 0.1)
CONNECTIONS_KEYWORD_CAP = _env_float("LIFESYNC_CONNECTIONS_KEYWORD_CAP", 0.8)
CONNECTIONS_ASPECT_ONLY_CONFIDENCE = _env_float("LIFESYNC_CONNECTIONS_ASPECT_ONLY_CONFIDENCE", 0.4)

# Layer 3: coherence audit
COHERENCE_BATCH_SIZE = _env_int("LIFESYNC_COHERENCE_BATCH_SIZE", 10)
COHERENCE_TIMEOUT_MS = _env_int("LIFESYNC_COHERENCE_TIMEOUT_MS", 20000)
COHERENCE_FEEDBACK_TIMEOUT_MS = _env_int("LIFESYNC_COHERENCE_FEEDBACK_TIMEOUT_MS", 10000)
COHERENCE_ALIGNMENT_FLOOR = _env_float("LIFESYNC_COHERENCE_ALIGNMENT_FLOOR", 0.4)
COHERENCE_WARNING_FLOOR = _env_float("LIFESYNC_COHERENCE_WARNING_FLOOR", 0.3)

# Orchestration
RUN_HISTORY_LIMIT = _env_int("LIFESYNC_RUN_HISTORY_LIMIT", 5)
BACKGROUND_STARTUP_DELAY_SECONDS = _env_int("LIFESYNC_BACKGROUND_STARTUP_DELAY_SECONDS", 5)
SCHEDULER_ENABLED = _env_bool("LIFESYNC_SCHEDULER_ENABLED", True)

# Observability
OTEL_ENABLED = _env_bool("LIFESYNC_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("LIFESYNC_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("LIFESYNC_OTEL_SERVICE_NAME", "lifesync-backend")
PROM_PORT = _env_int("LIFESYNC_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("LIFESYNC_HOST", "0.0.0.0")
PORT = int(os.getenv("LIFESYNC_PORT", "8000"))

# CORS
FRONTEND_ORIGIN = os.getenv("LIFESYNC_FRONTEND_ORIGIN", "http://localhost:3000")
