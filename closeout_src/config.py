"""Configuration management for the encounter closeout engine."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = Path(__file__).parent.parent / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


class Config:
    """Application configuration."""

    # --- Clinic REST API ---
    API_BASE_URL: str | None = os.getenv("API_BASE_URL")
    API_TOKEN: str | None = os.getenv("API_TOKEN")
    # The web client used a 10 second axios timeout
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "10"))

    # --- Local store ---
    CLINIC_DB_PATH: str = os.getenv(
        "CLINIC_DB_PATH",
        str(Path.home() / ".clinic" / "closeout.db"),
    )

    # --- Stored representations ---
    FREQUENCY_SEPARATOR: str = os.getenv("FREQUENCY_SEPARATOR", ";")
    MEDICATION_TIME_SEPARATOR: str = os.getenv("MEDICATION_TIME_SEPARATOR", ";")

    # --- Defaults applied during closeout ---
    CUSTOM_REGIMEN_NAME_PREFIX: str = os.getenv(
        "CUSTOM_REGIMEN_NAME_PREFIX", "Custom Regimen"
    )
    ARV_DEFAULT_RESULT_NAME: str = os.getenv(
        "ARV_DEFAULT_RESULT_NAME", "Kết quả điều trị ARV"
    )

    # --- Logging ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_api_configured(cls) -> bool:
        """Check if the clinic REST API is configured."""
        return bool(cls.API_BASE_URL)


config = Config()
