from typing import Annotated, List, Optional
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator, model_validator
from urllib.parse import quote_plus
from enum import Enum
import json


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    PROJECT_NAME: str = "Oonjai Notifications"
    API_V1_STR: str = "/api/v1"

    # Database (shared with the Oonjai product database)
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: str = "oonjai"
    SQLALCHEMY_DATABASE_URI: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Timezone used for user-facing schedules
    DEFAULT_TIMEZONE: str = "Asia/Bangkok"

    LOG_LEVEL: str = "INFO"

    # API keys guarding the HTTP trigger endpoints
    VALID_API_KEYS: Annotated[List[str], NoDecode] = []
    REQUIRE_API_KEY: bool = True

    @field_validator("VALID_API_KEYS", mode="before")
    @classmethod
    def _parse_api_keys(cls, v):
        # Accept a JSON list or a comma-separated string
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [key.strip() for key in v.split(",") if key.strip()]
        return v

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        # Derive SQLALCHEMY_DATABASE_URI if not provided
        if not self.SQLALCHEMY_DATABASE_URI:
            safe_user = quote_plus(self.POSTGRES_USER)
            if self.POSTGRES_PASSWORD:
                safe_password = quote_plus(self.POSTGRES_PASSWORD)
                self.SQLALCHEMY_DATABASE_URI = (
                    f"postgresql://{safe_user}:{safe_password}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                )
            else:
                self.SQLALCHEMY_DATABASE_URI = (
                    f"postgresql://{safe_user}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                )
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
