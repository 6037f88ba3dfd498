"""Shared Supabase client for the job store, token ledger and edge functions.

Built on first use from ``Settings`` with the service-role key, since the
engine writes job rows and calls the ledger RPCs on the owner's behalf.
"""

from supabase import create_client, Client
from jobsync.config import settings

_client: Client | None = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "Job sync needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY "
                "to reach the jobs table"
            )
        _client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return _client


def reset_supabase() -> None:
    """Forget the cached client, e.g. after the settings changed."""
    global _client
    _client = None
