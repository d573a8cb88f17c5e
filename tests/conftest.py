"""Shared fixtures: in-memory EPUB packages and a scripted publishing provider."""

import io
import struct
import zipfile
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from bookpress.models.page import Credential
from bookpress.services.telegraph import Outcome, ProviderResponse

_CONTAINER = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""

_CHAPTER = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>{name}</title><style>p {{ color: red; }}</style></head>
<body>{body}</body>
</html>"""


def build_epub(
    chapters: Sequence[Tuple[str, str]],
    title: Optional[str] = "Test Book",
    images: Optional[Dict[str, bytes]] = None,
    spine: Optional[Sequence[str]] = None,
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    """Build an EPUB whose chapters live in ``OEBPS/Text/<name>``.

    *chapters* is a list of ``(file name, body markup)``; *images* maps a
    file name under ``OEBPS/Images/`` to its bytes; *spine* reorders the
    reading order by chapter file name.
    """
    images = images or {}
    manifest: List[str] = []
    for index, (name, _body) in enumerate(chapters):
        manifest.append(f'<item id="ch{index}" href="Text/{name}" media-type="application/xhtml+xml"/>')
    for index, name in enumerate(images):
        manifest.append(f'<item id="img{index}" href="Images/{name}" media-type="image/png"/>')

    ids = {name: f"ch{index}" for index, (name, _body) in enumerate(chapters)}
    order = spine if spine is not None else [name for name, _body in chapters]
    itemrefs = "".join(f'<itemref idref="{ids[name]}"/>' for name in order)
    title_tag = f"<dc:title>{title}</dc:title>" if title else ""
    opf = f"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">{title_tag}</metadata>
  <manifest>{"".join(manifest)}</manifest>
  <spine>{itemrefs}</spine>
</package>"""

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", _CONTAINER, compress_type=zipfile.ZIP_DEFLATED)
        zf.writestr("OEBPS/content.opf", opf, compress_type=zipfile.ZIP_DEFLATED)
        for name, body in chapters:
            zf.writestr(f"OEBPS/Text/{name}", _CHAPTER.format(name=name, body=body), compress_type=compression)
        for name, data in images.items():
            zf.writestr(f"OEBPS/Images/{name}", data, compress_type=zipfile.ZIP_STORED)
    return buffer.getvalue()


def entry_data_span(data: bytes, name: str) -> Tuple[int, int]:
    """Return ``(start, end)`` of the compressed bytes of entry *name* in *data*."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(name)
    name_len, extra_len = struct.unpack("<HH", data[info.header_offset + 26 : info.header_offset + 30])
    start = info.header_offset + 30 + name_len + extra_len
    return start, start + info.compress_size


class ScriptedProvider:
    """Provider double replaying queued responses and recording every call."""

    def __init__(self, create_responses=(), edit_responses=(), new_accounts=()):
        self.create_responses = list(create_responses)
        self.edit_responses = list(edit_responses)
        self.new_accounts = list(new_accounts)
        self.created: List[Tuple[Credential, str]] = []
        self.edits: List[Tuple[Credential, str, str, list]] = []
        self.accounts_requested = 0

    async def create_account(self) -> Optional[Credential]:
        self.accounts_requested += 1
        return self.new_accounts.pop(0) if self.new_accounts else None

    async def create_page(self, credential, title, blocks) -> ProviderResponse:
        self.created.append((credential, title))
        if self.create_responses:
            return self.create_responses.pop(0)
        number = len(self.created)
        return ok_page(f"page-{number}")

    async def edit_page(self, credential, path, title, blocks) -> ProviderResponse:
        self.edits.append((credential, path, title, list(blocks)))
        if self.edit_responses:
            return self.edit_responses.pop(0)
        return ProviderResponse(Outcome.OK, result={"path": path})


def ok_page(path: str) -> ProviderResponse:
    return ProviderResponse(Outcome.OK, result={"path": path, "url": f"https://telegra.ph/{path}"})


def rate_limited(seconds: float) -> ProviderResponse:
    return ProviderResponse(Outcome.RATE_LIMITED, wait_seconds=seconds, error=f"FLOOD_WAIT_{int(seconds)}")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that advances a :class:`FakeClock`."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


@pytest.fixture
def make_epub():
    return build_epub


@pytest.fixture
def data_span():
    return entry_data_span
