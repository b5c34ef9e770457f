"""
Supabase client for knowledge-graph persistence

The tutor runs without Supabase; graphs then live in process memory only.
"""
import os
from typing import Optional, Tuple

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None


def _credentials() -> Tuple[Optional[str], Optional[str]]:
    # Service role key: the backend writes every session's graph
    return os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_SERVICE_KEY")


def supabase_configured() -> bool:
    url, key = _credentials()
    return bool(url and key)


def get_supabase_client() -> Client:
    """
    Get or create the Supabase client singleton.

    Raises:
        ValueError: if SUPABASE_URL or SUPABASE_SERVICE_KEY is missing
    """
    global _supabase_client

    if _supabase_client is None:
        url, key = _credentials()
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")
        _supabase_client = create_client(url, key)

    return _supabase_client
