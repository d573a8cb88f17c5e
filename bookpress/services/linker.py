"""Back-patch navigation footers into pages that are already published."""

import logging
from typing import List, Optional

from bookpress.errors import EditError
from bookpress.models.content import ElementNode, TextNode
from bookpress.models.page import PublishedPage
from bookpress.services.publisher import PublisherClient

logger = logging.getLogger(__name__)

NEXT_LABEL = "👉 Next page"
BOOKMARK_LABEL = "🔖 Save bookmark"
END_LABEL = "🏁 The End"
SEPARATOR = "   |   "


class PageLinker:
    def __init__(
        self,
        publisher: PublisherClient,
        bookmark_url_template: str = "https://t.me/{bot_username}?start={token}",
        bot_username: str = "bookpress_bot",
    ):
        self.publisher = publisher
        self.bookmark_url_template = bookmark_url_template
        self.bot_username = bot_username

    def bookmark_url(self, token: str) -> str:
        return self.bookmark_url_template.format(bot_username=self.bot_username, token=token)

    def footer(self, next_url: Optional[str], token: Optional[str], is_last: bool = False) -> List[ElementNode]:
        """Build the footer blocks: a rule, then one line of links.

        The next-page link only appears when *next_url* exists; the last
        page gets an end marker in its place.
        """
        items: List[ElementNode] = []
        if is_last:
            items.append(ElementNode("b", [TextNode(END_LABEL)]))
        elif next_url:
            items.append(ElementNode("a", [TextNode(NEXT_LABEL)], {"href": next_url}))
        if token:
            items.append(ElementNode("a", [TextNode(BOOKMARK_LABEL)], {"href": self.bookmark_url(token)}))

        line: List = []
        for item in items:
            if line:
                line.append(TextNode(SEPARATOR))
            line.append(item)

        blocks = [ElementNode("hr")]
        if line:
            blocks.append(ElementNode("p", line))
        return blocks

    async def link(
        self,
        page: PublishedPage,
        next_url: Optional[str],
        token: Optional[str],
        is_last: bool = False,
    ) -> bool:
        """Append the footer to *page* with the credential that created it.

        Returns False when the edit was abandoned; the page then keeps its
        original content and simply has no forward link.
        """
        blocks = page.blocks + self.footer(next_url, token, is_last)
        try:
            await self.publisher.edit_page(page.path, page.title, blocks, page.credential)
        except EditError as exc:
            logger.warning("Linker: footer for %s abandoned – %s", page.url, exc)
            return False
        page.blocks = blocks
        logger.debug("Linker: linked %s → %s", page.url, next_url or "end")
        return True
