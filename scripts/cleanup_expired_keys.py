"""
Remove expired API keys from storage.

Expired keys already fail authentication; this pass just reclaims the
rows. The API runs the same pass periodically unless
EXPIRED_KEY_CLEANUP_INTERVAL_SECONDS=0.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from agencyhub.config import settings
from agencyhub.core.database import db_manager
from agencyhub.core.logging_config import setup_logging
from agencyhub.features.api_keys.dependencies import build_auth_components


async def cleanup() -> int:
    setup_logging()
    db_manager.init()

    try:
        components = build_auth_components(settings, db_manager.session_factory)
        removed = await components.service.cleanup_expired()
    finally:
        await db_manager.close()

    print(f"Removed {removed} expired API keys")
    return removed


if __name__ == "__main__":
    asyncio.run(cleanup())
