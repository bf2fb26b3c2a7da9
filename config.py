import os
import logging
from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)


def _int_setting(name, default, minimum=1):
    """Read an integer env var, falling back to the default on bad or too-small input."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} must be at least {minimum}, got {value}, using {default}")
        return default
    return value


AI_INTEGRATIONS_OPENAI_API_KEY = os.environ.get("AI_INTEGRATIONS_OPENAI_API_KEY")
AI_INTEGRATIONS_OPENAI_BASE_URL = os.environ.get("AI_INTEGRATIONS_OPENAI_BASE_URL")
MATERIAL_MODEL = os.environ.get("MATERIAL_MODEL", "gpt-5")
MAX_COMPLETION_TOKENS = _int_setting("MAX_COMPLETION_TOKENS", 4000)

BULK_LIMIT = _int_setting("BULK_LIMIT", 25)
BULK_WORKERS = _int_setting("BULK_WORKERS", 4)
HISTORY_LIMIT = _int_setting("HISTORY_LIMIT", 10)

SECRET_KEY = os.environ.get("SECRET_KEY", "dev-material-directory")
CHART_DIR = os.environ.get("CHART_DIR", os.path.join("static", "charts"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
