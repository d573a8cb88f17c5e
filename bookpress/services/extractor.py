"""Turn one content document into an ordered list of page blocks."""

import logging
import mimetypes
import posixpath
import re
from typing import Dict, Iterable, Iterator, List, Optional, Protocol

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from bookpress.errors import ResourceError
from bookpress.models.archive import Archive, ContentResource
from bookpress.models.content import ElementNode, ImageNode, TextNode, iter_nodes, text_of
from bookpress.services.archive_loader import resolve_href
from bookpress.services.footnotes import inline_footnotes
from bookpress.services.sanitizer import has_visible_content, sanitize, strip_graphics

logger = logging.getLogger(__name__)

# Elements that become top-level page blocks
BLOCK_TAGS = {
    "p",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "blockquote",
    "ul",
    "ol",
    "pre",
    "figure",
    "hr",
}

# Inline elements kept (under their canonical name) inside a block
_KEPT_INLINE = {"a", "b", "strong", "i", "em", "u", "s", "code", "li", "figcaption"}
_INLINE_ALIASES = {"strike": "s", "del": "s", "ins": "u", "tt": "code", "kbd": "code", "samp": "code"}

# Inline-level elements that join a loose text run outside any block
_RUN_TAGS = {
    "a", "abbr", "b", "big", "cite", "code", "del", "em", "font", "i", "img", "ins",
    "kbd", "mark", "q", "s", "samp", "small", "span", "strike", "strong", "sub",
    "sup", "tt", "u",
}

# Elements without children that still carry meaning
_VOID_TAGS = {"br", "hr"}

# Nesting deeper than this inside a block is flattened to its text
MAX_INLINE_DEPTH = 32

_EXTERNAL_LINK_RE = re.compile(r"^(https?://|mailto:)", re.IGNORECASE)
_REMOTE_IMAGE_RE = re.compile(r"^https?://", re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_CJK_PUNCT_RE = re.compile(r"\s+([。，、；：？！])")
_SPACE_BETWEEN_CJK_RE = re.compile(r"(?<=[\u4e00-\u9fa5])\s+(?=[\u4e00-\u9fa5])")

_DEFAULT_IMAGE_TYPE = "image/jpeg"


class ImagePublisher(Protocol):
    async def upload(self, data: bytes, content_type: str) -> Optional[str]:
        ...


def clean_text(text: str) -> str:
    """Collapse whitespace and drop the spaces CJK typesetting does not use."""
    text = _WHITESPACE_RE.sub(" ", text)
    text = _SPACE_BEFORE_CJK_PUNCT_RE.sub(r"\1", text)
    return _SPACE_BETWEEN_CJK_RE.sub("", text)


async def extract_blocks(
    resource: ContentResource,
    archive: Archive,
    image_publisher: ImagePublisher,
    image_cache: Dict[str, str],
) -> List[ElementNode]:
    """Extract the page blocks of *resource*, in document order.

    Images are uploaded through *image_publisher*; *image_cache* maps a
    resolved archive path to its hosted URL and is shared across the book.

    Raises:
        ResourceError: if the document cannot be processed.
    """
    try:
        soup = sanitize(resource.data)
        if not has_visible_content(soup):
            logger.debug("Extractor: %s has no visible content – skipping", resource.path)
            return []
        inline_footnotes(soup)
        strip_graphics(soup)
        _unwrap_internal_links(soup)
    except Exception as exc:
        raise ResourceError(f"Cannot parse {resource.path}: {exc}") from exc

    await _resolve_images(soup, resource.path, archive, image_publisher, image_cache)

    try:
        return flatten(soup.body or soup)
    except Exception as exc:
        raise ResourceError(f"Cannot flatten {resource.path}: {exc}") from exc


def _unwrap_internal_links(soup: BeautifulSoup) -> None:
    """Keep only absolute http(s)/mailto links; internal references lose their anchor."""
    for anchor in soup.find_all("a"):
        href = (anchor.get("href") or "").strip()
        if not _EXTERNAL_LINK_RE.match(href):
            anchor.unwrap()


async def _resolve_images(
    soup: BeautifulSoup,
    resource_path: str,
    archive: Archive,
    image_publisher: ImagePublisher,
    image_cache: Dict[str, str],
) -> None:
    base_dir = posixpath.dirname(resource_path)
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if _REMOTE_IMAGE_RE.match(src):
            continue
        if not src or src.startswith("data:"):
            img.decompose()
            continue

        ref = resolve_href(base_dir, src)
        cached = image_cache.get(ref)
        if cached:
            img["src"] = cached
            continue

        image_res = archive.get(ref)
        if image_res is None:
            logger.debug("Extractor: image %s not found in archive", ref)
            img.decompose()
            continue

        try:
            url = await image_publisher.upload(image_res.data, _image_content_type(image_res))
        except Exception as exc:
            logger.warning("Extractor: image upload raised for %s – removing it: %s", ref, exc)
            img.decompose()
            continue
        if not url:
            logger.warning("Extractor: image upload failed for %s – removing it", ref)
            img.decompose()
            continue
        image_cache[ref] = url
        img["src"] = url


def _image_content_type(resource: ContentResource) -> str:
    if resource.media_type.startswith("image/"):
        return resource.media_type
    guessed, _ = mimetypes.guess_type(resource.path)
    return guessed or _DEFAULT_IMAGE_TYPE


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------

def flatten(root: Tag) -> List[ElementNode]:
    """Flatten *root* into top-level page blocks.

    Recognised block elements become blocks; loose inline content between
    them is wrapped in synthetic paragraphs, and a ``<br>`` outside any
    block only separates paragraphs.  The walk uses an explicit stack so
    pathologically deep markup cannot exhaust the interpreter stack.
    """
    blocks: List[ElementNode] = []
    run: List = []

    def flush() -> None:
        if run:
            block = build_block("p", list(run))
            if block is not None:
                blocks.append(block)
            run.clear()

    stack: List[Iterator] = [iter(root.children)]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            flush()
            continue
        if isinstance(child, NavigableString):
            if not isinstance(child, PreformattedString):
                run.append(child)
            continue
        if not isinstance(child, Tag):
            continue

        if child.name in BLOCK_TAGS:
            flush()
            block = build_block(child.name, child.children)
            if block is not None:
                blocks.append(block)
        elif child.name == "br":
            flush()
        elif child.name in _RUN_TAGS:
            run.append(child)
        else:
            flush()
            stack.append(iter(child.children))
    return blocks


class _Frame:
    __slots__ = ("children", "node", "owner", "pre", "depth", "break_after")

    def __init__(self, children, node, owner=None, pre=False, depth=0, break_after=False):
        self.children = children
        self.node = node  # ElementNode receiving converted children
        self.owner = owner  # parent ElementNode when *node* was created for this frame
        self.pre = pre
        self.depth = depth
        self.break_after = break_after


def build_block(tag_name: str, contents: Iterable) -> Optional[ElementNode]:
    """Convert the markup in *contents* into a block named *tag_name*.

    Returns *None* when nothing visible survives.
    """
    block = ElementNode(tag_name)
    if tag_name == "hr":
        return block

    stack = [_Frame(iter(contents), block, pre=tag_name == "pre")]
    while stack:
        frame = stack[-1]
        child = next(frame.children, None)
        if child is None:
            stack.pop()
            _close_frame(frame)
            continue

        if isinstance(child, NavigableString):
            if isinstance(child, PreformattedString):
                continue
            text = str(child) if frame.pre else clean_text(str(child))
            if text:
                frame.node.children.append(TextNode(text))
            continue
        if not isinstance(child, Tag):
            continue

        name = child.name
        if name == "img":
            if child.get("src"):
                frame.node.children.append(ImageNode(child["src"]))
            continue
        if name == "br":
            frame.node.children.append(ElementNode("br"))
            continue
        if name == "hr":
            continue

        pre = frame.pre or name == "pre"
        canonical = _INLINE_ALIASES.get(name, name)
        if canonical in _KEPT_INLINE and frame.depth < MAX_INLINE_DEPTH:
            attrs = {"href": child["href"]} if canonical == "a" and child.get("href") else {}
            node = ElementNode(canonical, attrs=attrs)
            frame.node.children.append(node)
            stack.append(_Frame(iter(child.children), node, owner=frame.node, pre=pre, depth=frame.depth + 1))
        else:
            # Unwrapped: nested blocks still end with a line break
            stack.append(
                _Frame(iter(child.children), frame.node, pre=pre, depth=frame.depth, break_after=name in BLOCK_TAGS)
            )

    _trim(block)
    if not text_of(block).strip() and not any(isinstance(n, ImageNode) for n in iter_nodes(block)):
        return None
    return block


def _close_frame(frame: _Frame) -> None:
    node = frame.node
    if frame.owner is not None:
        while node.children and _is_line_break(node.children[-1]):
            node.children.pop()
        if not node.children and node.tag not in _VOID_TAGS:
            siblings = frame.owner.children
            if siblings and siblings[-1] is node:
                siblings.pop()
        return
    if frame.break_after and node.children:
        last = node.children[-1]
        if not _is_line_break(last):
            node.children.append(ElementNode("br"))


def _trim(block: ElementNode) -> None:
    """Strip leading/trailing whitespace and line breaks from a block."""
    children = block.children
    if block.tag == "pre":
        return
    while children and _is_blank(children[0]):
        children.pop(0)
    while children and _is_blank(children[-1]):
        children.pop()
    if children and isinstance(children[0], TextNode):
        children[0].text = children[0].text.lstrip()
    if children and isinstance(children[-1], TextNode):
        children[-1].text = children[-1].text.rstrip()


def _is_blank(node) -> bool:
    if isinstance(node, TextNode):
        return not node.text.strip()
    return _is_line_break(node)


def _is_line_break(node) -> bool:
    return isinstance(node, ElementNode) and node.tag == "br"

