"""App config via env vars"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Root for blobs, sidecars, staging dir and the index database
    STORE_DIR: str = "./store"

    # Empty means sqlite+aiosqlite under STORE_DIR
    INDEX_DATABASE_URL: str = ""

    # Leading bytes inspected for media type detection
    SNIFF_BYTES: int = 512

    # Read size when streaming blobs back to clients
    CHUNK_SIZE: int = 64 * 1024

    LOG_LEVEL: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": True, "env_file": ".env"}

    @property
    def index_database_url(self) -> str:
        if self.INDEX_DATABASE_URL:
            return self.INDEX_DATABASE_URL
        return f"sqlite+aiosqlite:///{Path(self.STORE_DIR) / 'index.db'}"


settings = Settings()
