"""Application settings and environment configuration."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
PROJECT_ROOT = Path(__file__).parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # Anthropic
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    default_model: str = os.getenv("HCC_MODEL", "claude-sonnet-4-5-20250929")
    generation_temperature: float = float(os.getenv("HCC_TEMPERATURE", "0.3"))
    generation_max_tokens: int = int(os.getenv("HCC_MAX_TOKENS", "8192"))
    generation_timeout_seconds: float = float(os.getenv("HCC_GENERATION_TIMEOUT", "120"))

    # LangSmith
    langsmith_api_key: str = os.getenv("LANGSMITH_API_KEY", "")
    langsmith_tracing: bool = os.getenv("LANGSMITH_TRACING", "false").lower() == "true"
    langsmith_project: str = os.getenv("LANGSMITH_PROJECT", "hcc-pipeline")

    # Persistence
    # Checkpoint database and exported job outputs live here.
    data_dir: str = os.getenv("HCC_DATA_DIR", str(PROJECT_ROOT / "data"))

    log_level: str = os.getenv("HCC_LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Configure LangSmith environment variables."""
        if self.langsmith_api_key:
            os.environ["LANGSMITH_API_KEY"] = self.langsmith_api_key
            os.environ["LANGSMITH_TRACING"] = str(self.langsmith_tracing).lower()
            os.environ["LANGSMITH_PROJECT"] = self.langsmith_project

    def validate(self) -> list[str]:
        """Validate required settings are present."""
        errors = []
        if not self.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY is not set")
        return errors


# Global settings instance
settings = Settings()
