import re
import warnings
from typing import Union

from bs4 import BeautifulSoup, Comment, Tag, XMLParsedAsHTMLWarning

# Matches `display:none` or `visibility:hidden` in inline style attributes
_HIDDEN_STYLE_RE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE
)

# Tags whose entire subtree should be removed (non-content / metadata / scripting)
_REMOVE_TAGS = {
    "head",
    "title",
    "script",
    "style",
    "noscript",
    "iframe",
    "frame",
    "object",
    "embed",
    "applet",
    "link",
    "meta",
    "template",
}

# Vector / canvas graphics: they count as content for the blank-page check,
# but cannot be published and are stripped afterwards.
_GRAPHIC_TAGS = {"svg", "canvas"}

# Attribute names an <image> inside an <svg> may use for its source
_SVG_HREF_ATTRS = ("xlink:href", "href", "src")


def sanitize(markup: Union[str, bytes]) -> BeautifulSoup:
    """Remove non-content elements from *markup* and return the cleaned tree.

    Elements hidden through inline CSS and comments are dropped as well.
    Attributes are left alone: footnote detection still needs the classes,
    and the extractor only carries over link and image targets.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(markup, "lxml")

    for tag in soup.find_all(_REMOVE_TAGS):
        tag.decompose()

    # Remove HTML comment nodes (may contain conversion-tool notes)
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        if not isinstance(tag, Tag) or tag.decomposed:
            continue
        inline_style = tag.get("style", "")
        if inline_style and _HIDDEN_STYLE_RE.search(inline_style):
            tag.decompose()

    return soup


def has_visible_content(soup: BeautifulSoup) -> bool:
    """Return True when *soup* has visible text, an image, or vector graphics."""
    if soup.get_text(strip=True):
        return True
    return soup.find(["img", "image", *_GRAPHIC_TAGS]) is not None


def strip_graphics(soup: BeautifulSoup) -> None:
    """Replace image-only ``<svg>`` wrappers with ``<img>`` and drop other graphics."""
    for svg in soup.find_all("svg"):
        if svg.decomposed:
            continue
        image = svg.find(["image", "img"])
        href = None
        if image is not None:
            href = next((image.get(attr) for attr in _SVG_HREF_ATTRS if image.get(attr)), None)
        if href:
            img = soup.new_tag("img", src=href)
            svg.replace_with(img)
        else:
            svg.decompose()
    for tag in soup.find_all(_GRAPHIC_TAGS):
        tag.decompose()

