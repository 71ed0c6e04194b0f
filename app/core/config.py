from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Upstream reporting engine; report name is appended as the last path segment
    REPORTS_API_URL: str = "http://localhost:8080/services/reports"
    REPORTS_API_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Literal body the reporting engine sends when it cannot locate a report
    REPORT_NOT_FOUND_SENTINEL: str = "Report not found"
    DEFAULT_GROUP_LABEL: str = "Group"

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
