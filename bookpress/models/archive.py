from typing import Dict, Iterator, NamedTuple, Optional, Tuple

# Media types treated as readable content documents
DOCUMENT_MEDIA_TYPES = {
    "application/xhtml+xml",
    "text/html",
    "application/xml",
}


class ContentResource(NamedTuple):
    path: str  # archive-relative, normalised (no leading slash)
    data: bytes
    media_type: str

    @property
    def is_document(self) -> bool:
        return self.media_type in DOCUMENT_MEDIA_TYPES


class Archive(NamedTuple):
    """A loaded e-book package.

    ``resources`` holds every manifest item in manifest order; ``spine``
    lists the paths of the content documents in reading order.
    """

    title: str
    resources: Tuple[ContentResource, ...]
    spine: Tuple[str, ...]
    salvaged: bool = False

    def get(self, path: str) -> Optional[ContentResource]:
        for res in self.resources:
            if res.path == path:
                return res
        return None

    def documents(self) -> Iterator[ContentResource]:
        """Yield the content documents in reading order."""
        by_path: Dict[str, ContentResource] = {res.path: res for res in self.resources}
        for path in self.spine:
            res = by_path.get(path)
            if res is not None and res.is_document:
                yield res
