from dataclasses import dataclass, field
from typing import List, NamedTuple

from bookpress.models.content import ElementNode


class Credential(NamedTuple):
    """Opaque secret authorising publish calls for one provider account."""

    access_token: str

    @property
    def label(self) -> str:
        """Short, log-safe prefix of the secret."""
        return self.access_token[:8] + "..."

    def __repr__(self) -> str:
        return f"Credential({self.label})"


@dataclass
class PageDraft:
    """Blocks accumulated for one page; frozen by the paginator once closed."""

    sequence: int
    blocks: List[ElementNode] = field(default_factory=list)
    length: int = 0
    is_last: bool = False


@dataclass
class PublishedPage:
    path: str  # provider-side page id
    url: str
    title: str
    blocks: List[ElementNode]
    credential: Credential
