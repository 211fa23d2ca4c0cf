"""
Configuration module for the chat service.
Loads environment variables and provides centralized config access.
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache

# ============================================================
# Centralized Data Paths
# ============================================================
# All user data lives under <project>/data/ for easy backup/deletion.
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite key-value store holding each user's conversations/folders/settings
SQLITE_DB_PATH = DATA_DIR / "perplexsearch.db"


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.

    These are deployment knobs. Per-user preferences (active model,
    credentials, instructions) live in models.settings.AppSettings and
    travel with the user's data.
    """

    # ============================================================
    # Provider Endpoints
    # ============================================================
    perplexity_base_url: str = "https://api.perplexity.ai"
    openai_base_url: str = "https://api.openai.com/v1"
    # Point this at a proxy when the direct endpoint is blocked
    anthropic_base_url: str = "https://api.anthropic.com"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    ollama_base_url: str = "http://localhost:11434"

    # ============================================================
    # Completion Behaviour
    # ============================================================
    default_model: str = "sonar"
    title_model: str = "sonar"
    request_timeout: float = 120.0
    # Veo operations have no overall deadline; only the poll cadence is set
    video_poll_interval: float = 5.0
    max_active_streams: int = 1

    # ============================================================
    # Persistence
    # ============================================================
    user_id: str = "local"
    sqlite_db_path: str = str(SQLITE_DB_PATH)
    # 0 means "coalesce writes within the current event-loop turn"
    local_save_delay: float = 0.0
    remote_save_delay: float = 2.0

    # Firebase Realtime Database root, e.g. https://<project>-default-rtdb.firebaseio.com
    cloud_store_url: Optional[str] = None
    cloud_store_auth: Optional[str] = None

    # ============================================================
    # Encryption for API Keys at rest
    # ============================================================
    encryption_key: str = "your-32-byte-encryption-key-here"

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse the comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()
