from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Literal


class Settings(BaseSettings):
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    # "memory" keeps rooms in-process (local dev, tests); "firestore" is production
    room_store: Literal["firestore", "memory"] = "firestore"
    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    # ── Game rules ───────────────────────────────────────────────────────────
    room_code_length: int = 6
    room_code_attempts: int = 5
    min_players: int = 2
    max_rounds: int = 10
    max_name_length: int = 20
    max_word_length: int = 40

    # ── Abandoned room cleanup ───────────────────────────────────────────────
    room_ttl_hours: float = 24.0
    room_cleanup_interval_seconds: int = 900

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
