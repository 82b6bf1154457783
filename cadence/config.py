"""Settings via pydantic-settings with CADENCE_ env prefix.

DB connection fields use validation_alias to read from the same unprefixed
env vars (DB_PASSWORD, DB_PORT, etc.) that docker-compose uses, so a single
.env file drives both the container and the Python app.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CADENCE_", env_file=".env")

    # DB connection: unprefixed aliases match docker-compose env vars
    db_host: str = Field("localhost", validation_alias="DB_HOST")
    db_port: int = Field(5432, validation_alias="DB_PORT")
    db_user: str = Field("cadence", validation_alias="DB_USER")
    db_password: str = Field("cadence_dev_password", validation_alias="DB_PASSWORD")
    db_name: str = Field("cadence", validation_alias="DB_NAME")
    # Full SQLAlchemy URL; overrides the DB_* fields when set
    database_url: str = ""

    db_pool_size: int = 10
    db_max_overflow: int = 5
    log_level: str = "info"

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")

    # Assistant identity
    assistant_name: str = "Cadence"
    assistant_description: str = "a personal assistant that manages schedules, tasks and reminders"

    # LLM
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 4096

    # Turn loop
    max_rounds: int = 10  # Max model rounds per turn
    round_timeout: float = 120.0  # seconds of provider wait per round, 0 disables
    history_limit: int = 50  # stored messages replayed to the model
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Remote tool execution service (in-process registry when unset)
    tool_service_url: str = ""
    tool_service_timeout: int = 30  # seconds

    @model_validator(mode="after")
    def _validate_rounds(self) -> "Settings":
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        if self.round_timeout < 0:
            raise ValueError("round_timeout must be >= 0")
        return self

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
