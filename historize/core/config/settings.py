"""
Runtime settings gathered from the environment.
"""

import os

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """
    Process-wide settings.

    Attributes:
        db_host: Database host (DB_HOST)
        db_port: Database port (DB_PORT)
        db_name: Database name (DB_NAME)
        db_user: Database user (DB_USER)
        db_password: Database password (DB_PASSWORD)
        log_level: Log level (LOG_LEVEL)
        log_format: "json" or "text" (LOG_FORMAT)
        metrics_port: Port for the Prometheus endpoint (METRICS_PORT), None disables it
    """

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "datawarehouse"
    db_user: str = "pipeline"
    db_password: str | None = None
    log_level: str = "INFO"
    log_format: str = Field("json", pattern="^(json|text)$")
    metrics_port: int | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        values = {
            "db_host": os.getenv("DB_HOST"),
            "db_port": os.getenv("DB_PORT"),
            "db_name": os.getenv("DB_NAME"),
            "db_user": os.getenv("DB_USER"),
            "db_password": os.getenv("DB_PASSWORD"),
            "log_level": os.getenv("LOG_LEVEL"),
            "log_format": os.getenv("LOG_FORMAT"),
            "metrics_port": os.getenv("METRICS_PORT"),
        }
        return cls(**{key: value for key, value in values.items() if value})
