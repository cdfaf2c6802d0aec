from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Server
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 10100

    # Storage backend: memory | postgres | datastore
    STORAGE_TYPE: str = "memory"

    # Postgres
    DATABASE_URL: Optional[str] = None
    DB_PASSWORD: Optional[str] = None

    # Cloud Datastore
    GCP_PROJECT_ID: Optional[str] = None

    # Per-operation storage timeouts (seconds)
    ADD_QUERY_TIMEOUT: float = 1.0
    GET_QUERY_TIMEOUT: float = 1.0
    COUNT_QUERY_TIMEOUT: float = 1.0

    # Association caps
    MAX_USER_ENTITIES: int = 16
    MAX_ENTITY_USERS: int = 256

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def database_url_with_password(self) -> Optional[str]:
        """DATABASE_URL with DB_PASSWORD appended as a URL-encoded query argument, if set."""
        url = self.DATABASE_URL
        if not url or not self.DB_PASSWORD:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}password={quote_plus(self.DB_PASSWORD)}"


settings = Settings()

