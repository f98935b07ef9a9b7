import logging
import os

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name, "1" if default else "0").strip().lower()
    return v in ("1", "true", "yes", "on")


# Timeouts (seconds) applied by the orchestrator around every collaborator call
GENERATION_TIMEOUT_SECONDS = _env_float("GENERATION_TIMEOUT_SECONDS", 30.0)
ANALYZE_TIMEOUT_SECONDS = _env_float("ANALYZE_TIMEOUT_SECONDS", 60.0)
TRANSCRIBE_TIMEOUT_SECONDS = _env_float("TRANSCRIBE_TIMEOUT_SECONDS", 15.0)
SYNTHESIS_TIMEOUT_SECONDS = _env_float("SYNTHESIS_TIMEOUT_SECONDS", 20.0)
# Provider-level HTTP timeout
AI_HTTP_TIMEOUT_SECONDS = _env_float("AI_HTTP_TIMEOUT_SECONDS", 30.0)

# Interview flow
AUTO_ADVANCE_SECONDS = _env_float("AUTO_ADVANCE_SECONDS", 5.0)
DEFAULT_TOPIC_COUNT = _env_int("DEFAULT_TOPIC_COUNT", 3)
DEFAULT_TOPIC_SECONDS = _env_int("DEFAULT_TOPIC_SECONDS", 180)
MAX_TOPICS = _env_int("MAX_TOPICS", 5)
TICK_INTERVAL_SECONDS = _env_float("TICK_INTERVAL_SECONDS", 0.25)

# Prompt context caps (characters)
DOCUMENT_CHAR_LIMIT = _env_int("DOCUMENT_CHAR_LIMIT", 16000)
EXCERPT_CHAR_LIMIT = _env_int("EXCERPT_CHAR_LIMIT", 14000)
STT_CONTEXT_CHAR_LIMIT = _env_int("STT_CONTEXT_CHAR_LIMIT", 200)

# Audio captured below this size is treated as silence without calling STT
MIN_AUDIO_BYTES = _env_int("MIN_AUDIO_BYTES", 1000)

FRONT_ORIGINS = [
    o.strip().rstrip("/")
    for o in _env_str("FRONT_ORIGIN", "http://localhost:3010").split(",")
    if o.strip()
]

# Verbose provider payload logging
AI_DEBUG_LOGS = _env_bool("AI_DEBUG_LOGS", False)


def get_logger(name: str) -> logging.Logger:
    """Return an application logger that emits under Uvicorn.

    Honors LOG_LEVEL (default INFO), attaches a StreamHandler if none is present
    and disables propagation to avoid duplicate lines with Uvicorn root handlers.
    """
    logger = logging.getLogger(name)
    lvl = getattr(logging, _env_str("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logger.setLevel(lvl)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setLevel(lvl)
        h.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(h)
    logger.propagate = False
    return logger
