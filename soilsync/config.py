"""Runtime configuration for the SoilSync API.

Values are read once from the environment (``.env`` is honoured through
python-dotenv) and handed to the services explicitly.
"""
import os
from typing import List, Optional

from pydantic import BaseModel, Field

BASE_DIR = os.path.dirname(__file__)
DEFAULT_DB_PATH = os.path.join(BASE_DIR, "data.db")


def parse_api_keys(raw: Optional[str]) -> List[str]:
    """Split a comma/newline separated key list.

    Only the first whitespace-delimited token per line is kept so accidental
    comments next to a key do not leak into requests.
    """
    keys: List[str] = []
    for chunk in (raw or "").replace(",", "\n").splitlines():
        token = chunk.strip()
        if not token:
            continue
        keys.append(token.split()[0].strip())
    return keys


class Settings(BaseModel):
    api_keys: List[str] = Field(default_factory=list)
    model: str = "gemini-2.5-flash"
    max_output_tokens: int = 4096
    timeout: float = 60.0
    demo_delay: float = 2.0
    db_path: str = DEFAULT_DB_PATH
    history_limit: int = 20
    camera_index: int = 0
    session_ttl: float = 12 * 60 * 60
    max_sessions: int = 1000

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_keys)

    @classmethod
    def from_env(cls) -> "Settings":
        raw_keys = os.getenv("GEMINI_API_KEYS", "") or os.getenv("GEMINI_API_KEY", "")
        return cls(
            api_keys=parse_api_keys(raw_keys),
            model=os.getenv("SOILSYNC_MODEL", "gemini-2.5-flash"),
            max_output_tokens=int(os.getenv("SOILSYNC_MAX_OUTPUT_TOKENS", "4096")),
            timeout=float(os.getenv("SOILSYNC_TIMEOUT", "60")),
            demo_delay=float(os.getenv("SOILSYNC_DEMO_DELAY", "2.0")),
            db_path=os.getenv("SOILSYNC_DB_PATH") or DEFAULT_DB_PATH,
            history_limit=int(os.getenv("SOILSYNC_HISTORY_LIMIT", "20")),
            camera_index=int(os.getenv("SOILSYNC_CAMERA_INDEX", "0")),
            session_ttl=float(os.getenv("SOILSYNC_SESSION_TTL", str(12 * 60 * 60))),
            max_sessions=int(os.getenv("SOILSYNC_MAX_SESSIONS", "1000")),
        )
