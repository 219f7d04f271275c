from openai import AsyncOpenAI

from app.core.config import get_settings


def get_openai_client() -> AsyncOpenAI:
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY not set in environment.")
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout_seconds,
        max_retries=settings.openai_max_retries,
    )


def get_default_gpt_model() -> str:
    """Get the GPT model used for code review"""
    # gpt-4o-mini is the most cost-effective for grading
    return get_settings().openai_model
