"""
Runtime settings for the marketplace API.

Values come from the process environment, optionally seeded from a local
``.env`` file. ``get_settings`` caches the result for the life of the process.
"""

import os
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    DATABASE_USERNAME: str = ""
    DATABASE_PASSWORD: str = ""
    DATABASE_HOST: str = "cluster0.mongodb.net"
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "ServiceMarketplace"
    DATABASE_TIMEOUT_MS: int = Field(5000, gt=0)
    ACCESS_TOKEN_SECRET: str = "dev_secret_change_me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60 * 24, gt=0)
    ENVIRONMENT: str = "development"
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:5174"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def mongo_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        user = quote_plus(self.DATABASE_USERNAME)
        password = quote_plus(self.DATABASE_PASSWORD)
        return f"mongodb+srv://{user}:{password}@{self.DATABASE_HOST}/?retryWrites=true&w=majority"


def load_settings(*, load_env: bool = True) -> Settings:
    """Build settings from `.env` and the process environment."""

    if load_env:
        load_dotenv()

    try:
        return Settings.model_validate(dict(os.environ))
    except ValidationError as exc:
        raise RuntimeError(f"Invalid environment configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
