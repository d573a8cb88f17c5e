"""Bookmark tokens: short opaque ids pointing at one published page."""

import uuid
from threading import Lock
from typing import Dict, Optional, Protocol

from bookpress.models.bookmark import BookmarkInfo

TOKEN_PREFIX = "bm_"


class BookmarkRegistrar(Protocol):
    def issue_token(self, book_name: str, page_title: str, url: str) -> str:
        ...

    def resolve(self, token: str) -> Optional[BookmarkInfo]:
        ...


class InMemoryBookmarkRegistrar:
    """Registrar keeping tokens in process memory."""

    def __init__(self):
        self._lock = Lock()
        self._tokens: Dict[str, BookmarkInfo] = {}

    def issue_token(self, book_name: str, page_title: str, url: str) -> str:
        info = BookmarkInfo(book_name=book_name, page_title=page_title, url=url)
        with self._lock:
            token = _new_token()
            while token in self._tokens:
                token = _new_token()
            self._tokens[token] = info
        return token

    def resolve(self, token: str) -> Optional[BookmarkInfo]:
        with self._lock:
            return self._tokens.get(token)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


def _new_token() -> str:
    return TOKEN_PREFIX + uuid.uuid4().hex[:8]
