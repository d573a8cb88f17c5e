"""Process-wide service instances handed to the routers through ``Depends``.

Each provider is built once, on first use, from :func:`get_settings`.
Tests replace them with ``app.dependency_overrides``.
"""

import logging
from functools import lru_cache

from bookpress.config import get_settings
from bookpress.models.page import Credential
from bookpress.services.bookmarks import InMemoryBookmarkRegistrar
from bookpress.services.credentials import CredentialPool, JsonCredentialStore
from bookpress.services.images import TelegraphImageUploader
from bookpress.services.jobs import BookJobs
from bookpress.services.linker import PageLinker
from bookpress.services.pipeline import BookProcessor
from bookpress.services.publisher import PublisherClient
from bookpress.services.telegraph import TelegraphProvider

logger = logging.getLogger(__name__)


@lru_cache
def get_registrar() -> InMemoryBookmarkRegistrar:
    return InMemoryBookmarkRegistrar()


@lru_cache
def get_jobs() -> BookJobs:
    return BookJobs()


@lru_cache
def get_processor() -> BookProcessor:
    settings = get_settings()

    store = JsonCredentialStore(settings.credential_file)
    pool = CredentialPool(store.load_all())
    if settings.access_token:
        pool.add(Credential(settings.access_token))
    logger.info("Credential pool ready with %d credentials", len(pool))

    provider = TelegraphProvider(
        api_url=settings.telegraph_api_url,
        author_name=settings.author_name,
        short_name=settings.short_name,
    )
    publisher = PublisherClient.from_settings(settings, provider, pool, store)
    linker = PageLinker(publisher, settings.bookmark_url_template, settings.bot_username)
    return BookProcessor.from_settings(
        settings,
        publisher,
        linker,
        get_registrar(),
        TelegraphImageUploader(settings.telegraph_upload_url),
    )
