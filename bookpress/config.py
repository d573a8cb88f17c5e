"""Runtime settings read from ``BOOKPRESS_*`` environment variables."""

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

_ENV_PREFIX = "BOOKPRESS_"


class Settings(BaseModel):
    # Pagination
    chars_per_page: int = Field(default=3000, ge=1)
    min_page_chars: int = Field(default=800, ge=0)

    # Publishing provider
    telegraph_api_url: str = "https://api.telegra.ph"
    telegraph_upload_url: str = "https://telegra.ph/upload"
    author_name: str = "bookpress"
    short_name: str = "reader"
    access_token: Optional[str] = None
    credential_file: str = "data/telegraph_tokens.json"

    # Rate limiting / retries
    rate_limit_wait_threshold: float = 30.0
    cooldown_margin: float = 2.0
    max_publish_attempts: int = Field(default=10, ge=1)
    transient_retries: int = Field(default=3, ge=0)
    transient_retry_delay: float = 1.0
    edit_cooldown_wait_limit: float = 60.0

    # Bookmarks
    bot_username: str = "bookpress_bot"
    bookmark_url_template: str = "https://t.me/{bot_username}?start={token}"

    # Caller surface
    admin_ids: List[str] = Field(default_factory=list)
    max_upload_bytes: int = 50 * 1024 * 1024

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from *environ* (defaults to ``os.environ``).

        Only variables that are present override the defaults; ``ADMIN_IDS``
        is a comma-separated list.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(_ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name == "admin_ids":
                values[name] = [part.strip() for part in raw.split(",") if part.strip()]
            else:
                values[name] = raw
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
