from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Notesearch settings.

    All values are loaded from environment variables.
    A .env file in the working directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Text index ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./notesearch.db"

    # --- Embeddings (optional; semantic search is disabled without them) ---
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_SERVICE_URL: str = ""  # Local embedding service, takes precedence over OpenAI

    # --- Ranking ---
    SEARCH_PARAMS: dict[str, float] = {}  # JSON overrides for DEFAULT_SEARCH_PARAMS

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the aiosqlite driver."""
        url = self.DATABASE_URL
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
