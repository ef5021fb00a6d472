from __future__ import annotations

import logging

from .auth import ensure_dev_fallback_user
from .services.achievements import ensure_catalogue
from .settings import Settings, load_settings
from .storage import Storage

logger = logging.getLogger(__name__)


def ensure_seed_data(storage: Storage, settings: Settings) -> None:
    """
    Insert static reference data.

    The achievement catalogue always; the development fallback user only when
    that identity is enabled.
    """
    ensure_catalogue(storage)
    logger.info("ensure_seed_data: achievement catalogue present.")
    if settings.dev_fallback_user:
        ensure_dev_fallback_user(storage)
        logger.info("ensure_seed_data: development fallback user present.")


if __name__ == "__main__":
    from .db import get_session
    from .storage import DatabaseStorage

    logging.basicConfig(level="INFO")
    settings = load_settings()
    for session in get_session(settings.database_url):
        ensure_seed_data(DatabaseStorage(session), settings)
