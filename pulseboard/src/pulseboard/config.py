import os
import logging
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "dashboard.yaml"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
)

def load_env_file(path: str = ".env"):
    """
    Load environment variables from a .env file into os.environ.
    Existing variables always win over the file.
    """
    p = Path(path)
    if not p.exists():
        return

    try:
        with open(p) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, val = line.split('=', 1)
                    key = key.strip()
                    val = val.strip().strip('"').strip("'")
                    if key not in os.environ:
                        os.environ[key] = val
    except OSError as e:
        logger.warning(f"Failed to load .env: {e}")

# Load on import
load_env_file()

def get_finnhub_key() -> Optional[str]:
    """Finnhub API key, or None when unset or still the template value."""
    key = os.environ.get("FINNHUB_API_KEY")
    if not key or key == "your_key_here":
        return None
    return key

def get_config_path() -> str:
    """Path of the dashboard YAML file (PULSEBOARD_CONFIG overrides)."""
    return os.environ.get("PULSEBOARD_CONFIG") or DEFAULT_CONFIG_PATH

def get_user_agent() -> str:
    return os.environ.get("PULSEBOARD_USER_AGENT") or DEFAULT_USER_AGENT

def get_cors_origins() -> List[str]:
    """Origins allowed to call the JSON endpoints (comma-separated env var)."""
    raw = os.environ.get("PULSEBOARD_CORS_ORIGINS", "http://localhost:3000")
    return [o.strip() for o in raw.split(",") if o.strip()]
