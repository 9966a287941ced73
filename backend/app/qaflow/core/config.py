from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QAFLOW_", env_file=".env", extra="ignore")

    ENV: str = Field(default="dev")
    DB_URL: str = Field(default="sqlite:///./qaflow.db")

    # Remote AI pipeline service
    PIPELINE_API_BASE_URL: str = Field(default="http://localhost:8000")
    PIPELINE_API_TIMEOUT: float = Field(default=120.0, gt=0)

    ACTIVITY_LOG_ENABLED: bool = Field(default=True)
    DEFAULT_TARGET_URL: str = Field(default="https://app.example.com")

    LOG_DIR: str = Field(default="logs")
    LOG_LEVEL: str = Field(default="INFO")

settings = Settings()
