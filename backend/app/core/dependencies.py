"""
FastAPI dependency providers. Tests swap these out through
``app.dependency_overrides``.
"""
import logging
from functools import lru_cache
from typing import Optional

from app.agents.grading_agent import CodeReviewAgent
from app.core.config import get_settings
from app.services.github_service import GitHubService
from app.services.grading_service import GradingService
from app.services.instructions_provider import (
    InstructionsProvider,
    NotionInstructionsProvider,
    StaticInstructionsProvider,
)
from app.services.result_store import (
    InMemoryResultStore,
    ResultStore,
    SqlAlchemyResultStore,
    SupabaseResultStore,
)
from app.services.workspace_manager import WorkspaceManager

logger = logging.getLogger(__name__)


def build_result_store(backend: str) -> ResultStore:
    settings = get_settings()
    if backend == "memory":
        return InMemoryResultStore()
    if backend == "supabase":
        from app.core.supabase_client import get_supabase_client

        return SupabaseResultStore(get_supabase_client(), table=settings.supabase_reviews_table)
    if backend == "sqlalchemy":
        from app.core.database import get_engine, get_session_local

        engine = get_engine(settings.database_url)
        return SqlAlchemyResultStore(get_session_local(engine), engine=engine)
    raise ValueError(f"Unknown RESULT_STORE_BACKEND: {backend!r}")


@lru_cache(maxsize=1)
def get_result_store() -> ResultStore:
    backend = get_settings().result_store_backend
    logger.info("Using %s result store", backend)
    return build_result_store(backend)


@lru_cache(maxsize=1)
def get_grading_service() -> GradingService:
    settings = get_settings()
    return GradingService(
        store=get_result_store(),
        workspaces=WorkspaceManager(
            settings.workspace_root,
            git_executable=settings.git_executable,
            clone_timeout=settings.clone_timeout_seconds,
        ),
        scorer=CodeReviewAgent(model=settings.openai_model, max_tokens=settings.openai_max_tokens),
    )


@lru_cache(maxsize=1)
def get_instructions_provider() -> InstructionsProvider:
    settings = get_settings()
    if settings.notion_api_key and settings.notion_instructions_page_id:
        return NotionInstructionsProvider(settings.notion_api_key, settings.notion_instructions_page_id)
    return StaticInstructionsProvider(settings.default_grading_instructions)


def get_github_service() -> Optional[GitHubService]:
    settings = get_settings()
    if not settings.github_org:
        return None
    return GitHubService(settings.github_org, token=settings.github_token,
                         api_url=settings.github_api_url)
