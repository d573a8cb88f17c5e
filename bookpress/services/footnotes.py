"""Footnote inlining.

Publishing splits a book across many pages, so a link to a note at the end
of a chapter would point nowhere.  Each footnote reference is replaced by
the note itself, rendered inline as ``(note: ...)``, and short note bodies
are removed from their original position.

Detection is a fixed, ordered list of strategies; the first one that
matches an anchor and yields text wins.  Add a strategy to support another
e-book vendor's footnote convention.
"""

import logging
import re
from typing import Dict, List, Optional, Set

from bs4 import BeautifulSoup, NavigableString, Tag

logger = logging.getLogger(__name__)

NOTE_TEMPLATE = "(note: {})"

_CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\uac00-\ud7af]")
_NUMERIC_LABEL_RE = re.compile(r"^\[?\d+\]?$")
_FOOTNOTE_CLASSES = {"duokan-footnote", "epub-footnote", "footnote-link", "noteref"}
_FOOTNOTE_TEXT_ATTR = "zy-footnote"

# Alt text longer than this is treated as an image-based note
_MIN_ALT_LENGTH = 5
# Note bodies shorter than this are removed once inlined
_MAX_REMOVABLE_NOTE = 500


class FootnoteContext:
    """Per-document lookups shared by the strategies."""

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self._positions: Dict[int, int] = {
            id(tag): index for index, tag in enumerate(soup.find_all(True))
        }

    def position(self, tag: Tag) -> int:
        return self._positions.get(id(tag), -1)

    def find_target(self, fragment: str) -> Optional[Tag]:
        if not fragment:
            return None
        target = self.soup.find(id=fragment) or self.soup.find(attrs={"name": fragment})
        # An empty or numbered anchor marks the note; the note is its parent block
        if target is not None and target.name == "a" and target.parent is not None:
            if target.parent.name not in ("body", "[document]"):
                target = target.parent
        return target


def _anchor_ids(anchor: Tag) -> Set[str]:
    """Ids carried by *anchor* and its ancestors."""
    ids = {anchor.get("id")} if anchor.get("id") else set()
    for parent in anchor.parents:
        if isinstance(parent, Tag) and parent.get("id"):
            ids.add(parent["id"])
    return ids


def _fragment(href: str) -> Optional[str]:
    return href[1:] if href and href.startswith("#") else None


class ImageAltStrategy:
    """Vendor notes drawn as an icon whose alt text holds the note."""

    def matches(self, anchor: Tag, ctx: FootnoteContext) -> bool:
        img = anchor.find("img")
        if img is None:
            return False
        alt = (img.get("alt") or "").strip()
        return len(alt) > _MIN_ALT_LENGTH or bool(_CJK_RE.search(alt))

    def extract(self, anchor: Tag, ctx: FootnoteContext) -> Optional[str]:
        return anchor.find("img").get("alt", "").strip()


class ImageAttributeStrategy:
    """Vendor notes drawn as an icon carrying the note in a custom attribute."""

    def matches(self, anchor: Tag, ctx: FootnoteContext) -> bool:
        img = anchor.find("img")
        return img is not None and img.has_attr(_FOOTNOTE_TEXT_ATTR)

    def extract(self, anchor: Tag, ctx: FootnoteContext) -> Optional[str]:
        return anchor.find("img")[_FOOTNOTE_TEXT_ATTR].strip()


class FragmentStrategy:
    """Classic notes: an in-document link to the note body."""

    def matches(self, anchor: Tag, ctx: FootnoteContext) -> bool:
        if _fragment(anchor.get("href", "")) is None:
            return False
        classes = set(anchor.get("class") or [])
        if classes & _FOOTNOTE_CLASSES or anchor.get("epub:type") == "noteref":
            return True
        return bool(_NUMERIC_LABEL_RE.match(anchor.get_text(strip=True)))

    def extract(self, anchor: Tag, ctx: FootnoteContext) -> Optional[str]:
        target = ctx.find_target(_fragment(anchor["href"]))
        if target is None or target is anchor or any(node is anchor for node in target.descendants):
            return None

        own_ids = _anchor_ids(anchor)
        if self._is_backlink(anchor, target, own_ids, ctx):
            return None

        text = self._note_text(target, own_ids)
        if not text:
            return None
        if target.name == "li" or len(text) < _MAX_REMOVABLE_NOTE:
            target.decompose()
        return text

    @staticmethod
    def _is_backlink(anchor: Tag, target: Tag, own_ids: Set[str], ctx: FootnoteContext) -> bool:
        """True when *anchor* sits in a note body and points back at its reference."""
        if ctx.position(target) >= ctx.position(anchor):
            return False
        links = [target] if target.name == "a" else []
        links.extend(target.find_all("a", href=True))
        return any(_fragment(link.get("href", "")) in own_ids for link in links)

    @staticmethod
    def _note_text(target: Tag, own_ids: Set[str]) -> str:
        parts: List[str] = []
        for string in target.find_all(string=True):
            link = string.find_parent("a")
            # Skip the note's own "back to text" link
            if link is not None and _fragment(link.get("href", "")) in own_ids:
                continue
            parts.append(str(string))
        return re.sub(r"\s+", " ", "".join(parts)).strip()


DEFAULT_STRATEGIES = (ImageAltStrategy(), ImageAttributeStrategy(), FragmentStrategy())


def inline_footnotes(soup: BeautifulSoup, strategies=DEFAULT_STRATEGIES) -> int:
    """Replace every footnote reference in *soup* with its note text.

    Anchors are visited in reverse document order, so removing a note body
    never disturbs an anchor that has not been visited yet.

    Returns:
        The number of notes inlined.
    """
    ctx = FootnoteContext(soup)
    inlined = 0
    for anchor in reversed(soup.find_all("a")):
        if anchor.decomposed or anchor.parent is None:
            continue
        note = None
        for strategy in strategies:
            if strategy.matches(anchor, ctx):
                note = strategy.extract(anchor, ctx)
                if note:
                    break
        if not note:
            continue

        replacement = NavigableString(NOTE_TEMPLATE.format(note))
        if anchor.parent.name == "sup":
            anchor.parent.replace_with(replacement)
        else:
            anchor.replace_with(replacement)
        inlined += 1
        logger.debug("Footnote inlined: %.20s", note)
    return inlined
