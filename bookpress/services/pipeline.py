"""processArchive: EPUB bytes in, ordered list of published page URLs out.

Chapters are read in spine order and paginated across chapter boundaries.
Each page is published as soon as the paginator closes it, and the page
before it is back-patched with a footer once its successor's URL exists.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from bookpress.config import Settings
from bookpress.errors import CredentialExhausted, ParseError, PublishError, ResourceError
from bookpress.models.page import PageDraft, PublishedPage
from bookpress.services.archive_loader import load_archive
from bookpress.services.bookmarks import BookmarkRegistrar
from bookpress.services.extractor import ImagePublisher, extract_blocks
from bookpress.services.linker import PageLinker
from bookpress.services.paginator import DEFAULT_BUDGET, DEFAULT_MIN_LENGTH, Paginator
from bookpress.services.publisher import PublisherClient

logger = logging.getLogger(__name__)


def page_title(book_title: str, sequence: int, is_last: bool = False) -> str:
    title = f"{book_title} ({sequence})"
    return f"{title} - End" if is_last else title


@dataclass
class _BookRun:
    """Publishing state of one book: produced URLs and the page awaiting its footer."""

    title: str
    urls: List[str] = field(default_factory=list)
    pending: Optional[PublishedPage] = None
    pending_token: Optional[str] = None
    aborted: bool = False


class BookProcessor:
    def __init__(
        self,
        publisher: PublisherClient,
        linker: PageLinker,
        registrar: BookmarkRegistrar,
        image_publisher: ImagePublisher,
        budget: int = DEFAULT_BUDGET,
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        self.publisher = publisher
        self.linker = linker
        self.registrar = registrar
        self.image_publisher = image_publisher
        self.budget = budget
        self.min_length = min_length

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        publisher: PublisherClient,
        linker: PageLinker,
        registrar: BookmarkRegistrar,
        image_publisher: ImagePublisher,
    ) -> "BookProcessor":
        return cls(
            publisher,
            linker,
            registrar,
            image_publisher,
            budget=settings.chars_per_page,
            min_length=settings.min_page_chars,
        )

    async def process_archive(self, data: bytes, title_hint: str = "") -> List[str]:
        """Publish the book in *data* and return its page URLs in reading order.

        An empty list means nothing could be published; a short list means
        some chapters or pages were dropped (each drop is logged).
        """
        try:
            archive = load_archive(data, title_hint)
        except ParseError as exc:
            logger.error("Pipeline: cannot read %r – %s", title_hint, exc)
            return []

        logger.info(
            "Pipeline: processing %r (%d documents%s)",
            archive.title, len(archive.spine), ", salvaged" if archive.salvaged else "",
        )
        run = _BookRun(title=archive.title)
        paginator = Paginator(self.budget, self.min_length)
        image_cache = {}

        for resource in archive.documents():
            try:
                blocks = await extract_blocks(resource, archive, self.image_publisher, image_cache)
            except ResourceError as exc:
                logger.warning("Pipeline: skipping %s – %s", resource.path, exc)
                continue
            for block in blocks:
                draft = paginator.add(block)
                if draft is not None:
                    await self._publish(run, draft)
                    if run.aborted:
                        return await self._finish(run)

        last = paginator.finish()
        if last is not None:
            await self._publish(run, last)
        return await self._finish(run)

    async def _publish(self, run: _BookRun, draft: PageDraft) -> None:
        title = page_title(run.title, draft.sequence, draft.is_last)
        try:
            page = await self.publisher.create_page(title, draft.blocks)
        except CredentialExhausted as exc:
            logger.error("Pipeline: stopping %r at page %d – %s", run.title, draft.sequence, exc)
            run.aborted = True
            return
        except PublishError as exc:
            logger.warning("Pipeline: dropping page %r – %s", title, exc)
            return

        run.urls.append(page.url)
        token = self.registrar.issue_token(run.title, title, page.url)
        if run.pending is not None:
            await self.linker.link(run.pending, page.url, run.pending_token)

        if draft.is_last:
            await self.linker.link(page, None, token, is_last=True)
            run.pending, run.pending_token = None, None
        else:
            run.pending, run.pending_token = page, token

    async def _finish(self, run: _BookRun) -> List[str]:
        # The final draft was dropped or the book stopped early: the last
        # reachable page still gets its bookmark link.
        if run.pending is not None:
            await self.linker.link(run.pending, None, run.pending_token, is_last=not run.aborted)
            run.pending, run.pending_token = None, None
        logger.info("Pipeline: %r published as %d pages", run.title, len(run.urls))
        return run.urls
