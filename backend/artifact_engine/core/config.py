"""Application configuration."""
from pydantic_settings import BaseSettings
from pydantic import computed_field
from typing import Dict, Optional
from pathlib import Path

# Load .env file automatically using python-dotenv
from dotenv import load_dotenv

# Load .env file from project root (backend directory)
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


DEFAULT_SYSTEM_PROMPTS: Dict[str, str] = {
    "text": (
        "You are a writing assistant. Write the requested document in Markdown. "
        "Return only the document body."
    ),
    "sheet": (
        "You are a spreadsheet assistant. Produce the requested sheet as CSV "
        "with a header row. Return only the CSV."
    ),
    "code": (
        "You are a Python code generator. Produce complete, runnable Python code "
        "with clear structure. Return only the code, without Markdown fences."
    ),
    "diagram": (
        "You are a Mermaid diagram generator. The first line must declare the "
        "diagram type. Return only the Mermaid source, without Markdown fences."
    ),
}

LINE_RANGE_PROMPT_SUFFIX = (
    "You are updating lines {start}-{end} of the existing content. "
    "Return only the replacement lines for that range, nothing before or after it."
)

SUGGESTIONS_SYSTEM_PROMPT = (
    "You are a writing assistant. Given a document, offer at most {max_suggestions} "
    "suggestions that improve it. Each suggestion must replace a full sentence of the "
    "document, never a single word. Reply with one JSON object per line and nothing "
    "else. Each object has the keys originalText (the exact sentence from the document), "
    "suggestedText (its replacement) and description (the reason for the change)."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    # Supabase PostgreSQL connection string (optional)
    # Format: postgresql+psycopg://postgres:<password>@db.<project>.supabase.co:5432/postgres
    supabase_db_url: Optional[str] = None

    @computed_field
    @property
    def database_url(self) -> str:
        """Get database URL, preferring Supabase if available."""
        if self.supabase_db_url:
            return self.supabase_db_url
        return "sqlite:///./artifact_engine.db"

    @computed_field
    @property
    def is_postgresql(self) -> bool:
        """Check if using PostgreSQL (Supabase)."""
        return self.supabase_db_url is not None

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite (local fallback)."""
        return not self.is_postgresql

    # Model producer (any OpenAI-compatible chat completions endpoint)
    llm_base_url: str = "https://api.openai.com"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 120.0
    llm_max_concurrency: int = 3  # Max concurrent streaming calls sharing one key

    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # Engine settings
    artifact_test_mode: bool = False  # Use the simulated producer instead of a real model
    version_assign_max_attempts: int = 5  # Unique-conflict re-runs of the version allocation
    default_system_prompts: Dict[str, str] = DEFAULT_SYSTEM_PROMPTS
    max_suggestions: int = 5  # Suggestions kept per suggest operation

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Project metadata
    project_name: str = "Artifact Engine"
    project_version: str = "1.0.0"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "env_file_encoding": "utf-8",
        "extra": "ignore"  # Ignore extra fields from environment (like DATABASE_URL)
    }

    @property
    def has_llm_key(self) -> bool:
        """Check if a model API key is configured."""
        return self.llm_api_key is not None and len(self.llm_api_key.strip()) > 0

    @property
    def use_simulated_producer(self) -> bool:
        """Simulated generation is used in test mode or when no key is set."""
        return self.artifact_test_mode or not self.has_llm_key


# Global settings instance
settings = Settings()
