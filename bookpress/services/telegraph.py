"""HTTP client for the Telegraph publishing API.

Responses are classified, never raised: the publisher decides what to do
with a rate limit or a failure.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

import httpx

from bookpress.models.content import ContentNode, ElementNode, ImageNode, TextNode
from bookpress.models.page import Credential

logger = logging.getLogger(__name__)

TIMEOUT = 15  # seconds

_FLOOD_WAIT_RE = re.compile(r"FLOOD_WAIT_(\d+)")
# Wait assumed when a rate-limit response does not say how long
_DEFAULT_FLOOD_WAIT = 5

# Tags the provider renders; anything else is unwrapped
_ALLOWED_TAGS = {
    "a", "aside", "b", "blockquote", "br", "code", "em", "figcaption", "figure",
    "h3", "h4", "hr", "i", "img", "li", "ol", "p", "pre", "s", "strong", "u", "ul",
}
_TAG_MAP = {"h1": "h3", "h2": "h3", "h5": "h4", "h6": "h4"}

WireNode = Union[str, Dict[str, Any]]


class Outcome(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FAILED = "failed"


class ProviderResponse(NamedTuple):
    outcome: Outcome
    result: Optional[Dict[str, Any]] = None
    wait_seconds: float = 0.0
    error: str = ""

    @property
    def payload(self) -> Dict[str, Any]:
        """The ``result`` object of the response, empty when there is none."""
        return self.result if isinstance(self.result, dict) else {}


def parse_flood_wait(error: str) -> Optional[int]:
    """Return the wait in seconds for a ``FLOOD_WAIT_<n>`` error, else *None*."""
    if not error or not error.startswith("FLOOD_WAIT"):
        return None
    match = _FLOOD_WAIT_RE.search(error)
    return int(match.group(1)) if match else _DEFAULT_FLOOD_WAIT


def to_wire(blocks: List[ElementNode]) -> List[WireNode]:
    """Convert page blocks into the provider's JSON node format."""
    nodes: List[WireNode] = []
    for block in blocks:
        if block.tag == "p" and block.children and all(isinstance(c, ImageNode) for c in block.children):
            block = ElementNode("figure", block.children)
        nodes.extend(_node_to_wire(block))
    return nodes


def _node_to_wire(node: ContentNode) -> List[WireNode]:
    if isinstance(node, TextNode):
        return [node.text] if node.text else []
    if isinstance(node, ImageNode):
        return [{"tag": "img", "attrs": {"src": node.src}}]

    children: List[WireNode] = []
    for child in node.children:
        children.extend(_node_to_wire(child))

    tag = _TAG_MAP.get(node.tag, node.tag)
    if tag not in _ALLOWED_TAGS:
        return children
    wire: Dict[str, Any] = {"tag": tag}
    if node.attrs:
        wire["attrs"] = dict(node.attrs)
    if children:
        wire["children"] = children
    return [wire]


class TelegraphProvider:
    """Remote publishing provider: accounts, page creation and page edits."""

    def __init__(
        self,
        api_url: str = "https://api.telegra.ph",
        author_name: str = "bookpress",
        short_name: str = "reader",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.author_name = author_name
        self.short_name = short_name
        self.timeout = timeout
        self._transport = transport

    async def create_account(self) -> Optional[Credential]:
        response = await self._call(
            "createAccount",
            {"short_name": self.short_name, "author_name": self.author_name},
        )
        token = response.payload.get("access_token") if response.outcome == Outcome.OK else None
        if not token:
            logger.error("Telegraph: account creation failed – %s", response.error or response.outcome.value)
            return None
        return Credential(token)

    async def create_page(
        self, credential: Credential, title: str, blocks: List[ElementNode]
    ) -> ProviderResponse:
        return await self._call(
            "createPage",
            {
                "access_token": credential.access_token,
                "title": title,
                "author_name": self.author_name,
                "content": json.dumps(to_wire(blocks), ensure_ascii=False),
                "return_content": "false",
            },
        )

    async def edit_page(
        self, credential: Credential, path: str, title: str, blocks: List[ElementNode]
    ) -> ProviderResponse:
        return await self._call(
            f"editPage/{path}",
            {
                "access_token": credential.access_token,
                "title": title,
                "author_name": self.author_name,
                "content": json.dumps(to_wire(blocks), ensure_ascii=False),
                "return_content": "false",
            },
        )

    async def _call(self, method: str, payload: Dict[str, str]) -> ProviderResponse:
        url = f"{self.api_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, data=payload)
        except httpx.HTTPError as exc:
            logger.warning("Telegraph: %s request error – %s", method, exc)
            return ProviderResponse(Outcome.TRANSIENT, error=str(exc))

        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after", "")
            wait = int(retry_after) if retry_after.isdigit() else _DEFAULT_FLOOD_WAIT
            return ProviderResponse(Outcome.RATE_LIMITED, wait_seconds=wait, error="HTTP 429")
        if resp.status_code >= 500:
            return ProviderResponse(Outcome.TRANSIENT, error=f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return ProviderResponse(Outcome.TRANSIENT, error=f"invalid JSON (HTTP {resp.status_code})")

        if body.get("ok"):
            return ProviderResponse(Outcome.OK, result=body.get("result"))

        error = str(body.get("error", ""))
        wait = parse_flood_wait(error)
        if wait is not None:
            return ProviderResponse(Outcome.RATE_LIMITED, wait_seconds=wait, error=error)
        return ProviderResponse(Outcome.FAILED, error=error or f"HTTP {resp.status_code}")
