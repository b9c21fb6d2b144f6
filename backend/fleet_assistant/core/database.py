"""
Environment loading and the optional Supabase client.

Tenant integration settings and credentials can be kept in Supabase tables
(`tenant_integrations`, `integration_credentials`). Without SUPABASE_URL and
SUPABASE_SERVICE_KEY the service runs on in-memory stores only.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)

ENV_PATH = Path(__file__).resolve().parents[3] / ".env"


def load_environment(env_path: Path = ENV_PATH) -> bool:
    """Load variables from a .env file at the repository root, if present."""
    if not env_path.exists():
        return False
    load_dotenv(env_path)
    logger.info("env_loaded", env_path=str(env_path))
    return True


def get_supabase_client() -> Optional[Client]:
    """Create a Supabase client, or return None when it is not configured."""
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY")

    if not supabase_url or not supabase_key:
        logger.info("supabase_not_configured")
        return None

    if not supabase_url.startswith("http"):
        logger.error(
            "supabase_url_invalid",
            url=supabase_url,
            message="Should start with http:// or https://",
        )
        return None

    try:
        client = create_client(supabase_url, supabase_key)
    except Exception as e:
        logger.error(
            "supabase_client_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return None

    logger.info("supabase_client_created", url_prefix=supabase_url[:30])
    return client
