import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the environment."""

    openai_api_key: Optional[str]
    openai_model: str
    openai_timeout_seconds: float
    openai_max_retries: int
    openai_max_tokens: int

    result_store_backend: str
    database_url: str
    supabase_url: Optional[str]
    supabase_service_key: Optional[str]
    supabase_reviews_table: str

    workspace_root: str
    git_executable: str
    clone_timeout_seconds: float

    github_webhook_secret: Optional[str]
    github_token: Optional[str]
    github_org: Optional[str]
    github_api_url: str

    default_grading_instructions: Optional[str]
    notion_api_key: Optional[str]
    notion_instructions_page_id: Optional[str]

    log_level: str
    cors_origins: str


def get_database_url() -> str:
    """Get database URL from environment variables."""
    # Try PostgreSQL first
    postgres_url = os.getenv("DATABASE_URL")
    if postgres_url:
        return postgres_url

    # Fallback to SQLite for development
    return os.getenv("SQLITE_URL", "sqlite:///./grading.db")


def load_settings() -> Settings:
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_timeout_seconds=_env_float("OPENAI_TIMEOUT_SECONDS", 60.0),
        openai_max_retries=_env_int("OPENAI_MAX_RETRIES", 0),
        openai_max_tokens=_env_int("OPENAI_MAX_TOKENS", 1500),
        result_store_backend=os.getenv("RESULT_STORE_BACKEND", "sqlalchemy").strip().lower(),
        database_url=get_database_url(),
        supabase_url=os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"),
        supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        supabase_reviews_table=os.getenv("SUPABASE_REVIEWS_TABLE", "reviews"),
        workspace_root=os.getenv(
            "WORKSPACE_ROOT", os.path.join(tempfile.gettempdir(), "grading-workspaces")
        ),
        git_executable=os.getenv("GIT_EXECUTABLE", "git"),
        clone_timeout_seconds=_env_float("CLONE_TIMEOUT_SECONDS", 120.0),
        github_webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET") or None,
        github_token=os.getenv("GITHUB_TOKEN") or None,
        github_org=os.getenv("GITHUB_ORG") or None,
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        default_grading_instructions=os.getenv("DEFAULT_GRADING_INSTRUCTIONS") or None,
        notion_api_key=os.getenv("NOTION_API_KEY") or None,
        notion_instructions_page_id=os.getenv("NOTION_INSTRUCTIONS_PAGE_ID") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=os.getenv("CORS_ORIGINS", "*"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
