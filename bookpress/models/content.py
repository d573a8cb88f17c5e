"""Content tree produced by the extractor and consumed by the paginator.

A page block is an :class:`ElementNode` whose children are inline content:
:class:`TextNode`, :class:`ImageNode` or nested inline :class:`ElementNode`.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Union

# Every non-text block contributes at least this much to a page's length
MIN_BLOCK_LENGTH = 20


@dataclass
class TextNode:
    text: str


@dataclass
class ImageNode:
    src: str


@dataclass
class ElementNode:
    tag: str
    children: List["ContentNode"] = field(default_factory=list)
    attrs: Dict[str, str] = field(default_factory=dict)


ContentNode = Union[ElementNode, TextNode, ImageNode]


def iter_nodes(root: ContentNode) -> Iterator[ContentNode]:
    """Yield *root* and all of its descendants depth-first, in document order."""
    stack: List[ContentNode] = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, ElementNode):
            stack.extend(reversed(node.children))


def text_of(root: ContentNode) -> str:
    return "".join(node.text for node in iter_nodes(root) if isinstance(node, TextNode))


def estimate_length(block: ElementNode) -> int:
    """Return the pagination weight of *block*: its text length, floored at 20."""
    length = sum(len(node.text) for node in iter_nodes(block) if isinstance(node, TextNode))
    return length or MIN_BLOCK_LENGTH
