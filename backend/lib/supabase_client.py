"""
Shared Supabase client for the lesson API.

The API runs with the service-role key, so every query it makes must filter
by owner itself (see SupabaseSessionStore).
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Return the process-wide Supabase client, creating it on first use."""
    global _client

    if _client is None:
        url = os.getenv("SUPABASE_URL")
        service_key = os.getenv("SUPABASE_SERVICE_KEY")
        if not url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _client = create_client(url, service_key)
        logger.info(f"💾 [Supabase] Client created for {url}")

    return _client
