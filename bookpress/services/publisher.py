"""Rate-limit-aware page publishing over a shared pool of credentials.

``create_page`` runs a small state machine driven by the provider's
classified responses::

    PENDING ──select credential──▶ PUBLISHING ──ok──▶ DONE
       ▲                              │
       │◀──── short wait: sleep ──────┤ rate limited ─▶ RATE_LIMITED
       │◀──── long wait: cooldown ────┘
       │                              │ transient: retry after a fixed delay
       └──────────────────────────────┘ failed / out of attempts ─▶ EXHAUSTED

No lock is held while waiting on the network or sleeping; the pool only
locks around its own bookkeeping.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from bookpress.config import Settings
from bookpress.errors import CredentialExhausted, EditError, PublishError
from bookpress.models.content import ElementNode
from bookpress.models.page import Credential, PublishedPage
from bookpress.services.credentials import CredentialPool, CredentialStore
from bookpress.services.telegraph import Outcome, ProviderResponse

logger = logging.getLogger(__name__)


class Provider(Protocol):
    async def create_account(self) -> Optional[Credential]:
        ...

    async def create_page(self, credential: Credential, title: str, blocks: List[ElementNode]) -> ProviderResponse:
        ...

    async def edit_page(
        self, credential: Credential, path: str, title: str, blocks: List[ElementNode]
    ) -> ProviderResponse:
        ...


class PublishState(str, Enum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    RATE_LIMITED = "rate_limited"
    EXHAUSTED = "exhausted"
    DONE = "done"


class PublisherClient:
    def __init__(
        self,
        provider: Provider,
        pool: CredentialPool,
        store: Optional[CredentialStore] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        wait_threshold: float = 30.0,
        cooldown_margin: float = 2.0,
        max_attempts: int = 10,
        transient_retries: int = 3,
        transient_retry_delay: float = 1.0,
        edit_wait_limit: float = 60.0,
    ):
        self.provider = provider
        self.pool = pool
        self.store = store
        self._sleep = sleep
        self.wait_threshold = wait_threshold
        self.cooldown_margin = cooldown_margin
        self.max_attempts = max_attempts
        self.transient_retries = transient_retries
        self.transient_retry_delay = transient_retry_delay
        self.edit_wait_limit = edit_wait_limit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: Provider,
        pool: CredentialPool,
        store: Optional[CredentialStore] = None,
    ) -> "PublisherClient":
        return cls(
            provider,
            pool,
            store,
            wait_threshold=settings.rate_limit_wait_threshold,
            cooldown_margin=settings.cooldown_margin,
            max_attempts=settings.max_publish_attempts,
            transient_retries=settings.transient_retries,
            transient_retry_delay=settings.transient_retry_delay,
            edit_wait_limit=settings.edit_cooldown_wait_limit,
        )

    async def create_page(self, title: str, blocks: List[ElementNode]) -> PublishedPage:
        """Publish a new page and return it.

        Raises:
            CredentialExhausted: every credential is cooling down and no new
                account could be created.
            PublishError: the provider rejected the page, or retries ran out.
        """
        state = PublishState.PENDING
        credential: Optional[Credential] = None
        response: Optional[ProviderResponse] = None
        attempts = 0
        transient_failures = 0
        last_error = ""

        while True:
            if state is PublishState.PENDING:
                if attempts >= self.max_attempts:
                    last_error = f"gave up after {attempts} attempts ({last_error})"
                    state = PublishState.EXHAUSTED
                    continue
                credential = await self._select_credential()
                attempts += 1
                state = PublishState.PUBLISHING

            elif state is PublishState.PUBLISHING:
                response = await self.provider.create_page(credential, title, blocks)
                if response.outcome is Outcome.OK:
                    state = PublishState.DONE
                elif response.outcome is Outcome.RATE_LIMITED:
                    state = PublishState.RATE_LIMITED
                elif response.outcome is Outcome.TRANSIENT:
                    last_error = response.error
                    transient_failures += 1
                    if transient_failures > self.transient_retries:
                        state = PublishState.EXHAUSTED
                    else:
                        logger.warning(
                            "Publisher: transient error for %r (%s) – retry %d/%d",
                            title, response.error, transient_failures, self.transient_retries,
                        )
                        await self._sleep(self.transient_retry_delay)
                        state = PublishState.PENDING
                else:
                    last_error = response.error
                    state = PublishState.EXHAUSTED

            elif state is PublishState.RATE_LIMITED:
                wait = response.wait_seconds
                last_error = response.error
                if wait < self.wait_threshold:
                    logger.info("Publisher: %s rate limited, waiting %ss", credential.label, wait)
                    await self._sleep(wait)
                else:
                    self.pool.mark_cooldown(credential, wait + self.cooldown_margin)
                    logger.warning(
                        "Publisher: %s cooling down for %ss – switching credential", credential.label, wait
                    )
                state = PublishState.PENDING

            elif state is PublishState.EXHAUSTED:
                raise PublishError(f"Cannot publish {title!r}: {last_error}")

            else:  # DONE
                path = response.payload.get("path")
                url = response.payload.get("url")
                if not path or not url:
                    raise PublishError(f"Provider returned no page address for {title!r}")
                logger.info("Publisher: published %r → %s", title, url)
                return PublishedPage(path=path, url=url, title=title, blocks=list(blocks), credential=credential)

    async def edit_page(
        self, path: str, title: str, blocks: List[ElementNode], credential: Credential
    ) -> None:
        """Replace the content of page *path* using the credential that created it.

        Raises:
            EditError: the credential stays in cooldown too long, the provider
                rate-limits the edit, or the edit fails.
        """
        remaining = self.pool.cooldown_remaining(credential)
        if remaining > 0:
            if remaining > self.edit_wait_limit:
                raise EditError(
                    f"Credential {credential.label} is cooling down for {remaining:.0f}s – edit of {path} abandoned"
                )
            logger.info("Publisher: waiting %.0fs for %s before editing %s", remaining, credential.label, path)
            await self._sleep(remaining)

        transient_failures = 0
        while True:
            response = await self.provider.edit_page(credential, path, title, blocks)
            if response.outcome is Outcome.OK:
                return
            if response.outcome is Outcome.RATE_LIMITED:
                self.pool.mark_cooldown(credential, response.wait_seconds + self.cooldown_margin)
                raise EditError(f"Edit of {path} rate limited ({response.error})")
            if response.outcome is Outcome.TRANSIENT and transient_failures < self.transient_retries:
                transient_failures += 1
                await self._sleep(self.transient_retry_delay)
                continue
            raise EditError(f"Edit of {path} failed: {response.error}")

    async def _select_credential(self) -> Credential:
        credential = self.pool.acquire()
        if credential is not None:
            return credential

        logger.info("Publisher: no usable credential among %d – creating an account", len(self.pool))
        credential = await self.provider.create_account()
        if credential is None:
            raise CredentialExhausted("Every credential is cooling down and account creation failed")
        self.pool.add(credential)
        if self.store is not None:
            try:
                self.store.append(credential)
            except OSError as exc:
                logger.error("Publisher: cannot persist credential %s – %s", credential.label, exc)
        logger.info("Publisher: created account %s (pool size %d)", credential.label, len(self.pool))
        return credential
