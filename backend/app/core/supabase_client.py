"""
Supabase configuration for the review store
"""
from supabase import create_client, Client

from app.core.config import get_settings


def get_supabase_client() -> Client:
    """Get Supabase client with service role key"""
    settings = get_settings()
    if not settings.supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    if not settings.supabase_service_key:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

    return create_client(settings.supabase_url, settings.supabase_service_key)
