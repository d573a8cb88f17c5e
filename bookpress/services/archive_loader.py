"""EPUB package loading, with best-effort salvage of damaged archives.

The primary path reads the package through :mod:`zipfile`.  When the
archive is structurally damaged (bad central directory, CRC mismatch,
corrupt deflate stream, missing package document) the loader rebuilds a
fresh, valid zip from whatever entries can still be read and parses that
instead.  A single corrupted chapter therefore costs that chapter, not the
whole book.
"""

import io
import logging
import posixpath
import re
import struct
import zipfile
import zlib
from typing import Iterator, List, Optional, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup

from bookpress.errors import ParseError
from bookpress.models.archive import Archive, ContentResource

logger = logging.getLogger(__name__)

_CONTAINER_PATH = "META-INF/container.xml"
_MIMETYPE_NAME = "mimetype"
_LOCAL_HEADER_SIG = b"PK\x03\x04"
# signature, version, flags, method, mtime, mdate, crc32, csize, usize, name_len, extra_len
_LOCAL_HEADER = struct.Struct("<4s5H3L2H")
_READ_CHUNK = 64 * 1024

# Flag bits of the local file header
_FLAG_ENCRYPTED = 0x1
_FLAG_DATA_DESCRIPTOR = 0x8
_FLAG_UTF8 = 0x800

# Everything zipfile / zlib raise for a damaged archive or entry
_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    NotImplementedError,
    RuntimeError,
    # Negative seek when bytes are missing before the central directory
    ValueError,
)
_PACKAGE_ERRORS = _READ_ERRORS + (KeyError,)

_DEFAULT_TITLE = "Untitled"

SalvagedEntry = Tuple[str, bytes]


def load_archive(data: bytes, title_hint: str = "") -> Archive:
    """Parse *data* as an EPUB package, salvaging it if it is damaged.

    Raises:
        ParseError: if the package cannot be parsed even after salvage.
    """
    try:
        return _parse_package(data, title_hint)
    except _PACKAGE_ERRORS as exc:
        logger.warning("Archive: structural failure (%s) – attempting salvage", exc)

    repaired = salvage(data)
    try:
        archive = _parse_package(repaired, title_hint)
    except _PACKAGE_ERRORS as exc:
        raise ParseError(f"Archive is unreadable even after salvage: {exc}") from exc

    logger.info("Archive: salvaged %d resources for %r", len(archive.resources), archive.title)
    return archive._replace(salvaged=True)


# ---------------------------------------------------------------------------
# Package parsing
# ---------------------------------------------------------------------------

def _parse_package(data: bytes, title_hint: str) -> Archive:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = set(zf.namelist())
        opf_path = _find_opf_path(zf, names)
        opf = BeautifulSoup(zf.read(opf_path), "xml")
        opf_dir = posixpath.dirname(opf_path)

        resources: List[ContentResource] = []
        ids: dict = {}
        for item in opf.find_all("item"):
            href = item.get("href")
            if not href:
                continue
            path = resolve_href(opf_dir, href)
            if path not in names:
                logger.debug("Archive: manifest item %s is missing from the package", path)
                continue
            media_type = item.get("media-type") or "application/octet-stream"
            resources.append(ContentResource(path, zf.read(path), media_type))
            if item.get("id"):
                ids[item["id"]] = path

    spine = tuple(ids[ref["idref"]] for ref in opf.find_all("itemref") if ref.get("idref") in ids)
    if not spine:
        # No usable spine: fall back to manifest order for content documents
        spine = tuple(res.path for res in resources if res.is_document)

    return Archive(
        title=_resolve_title(opf, title_hint),
        resources=tuple(resources),
        spine=spine,
    )


def _find_opf_path(zf: zipfile.ZipFile, names: set) -> str:
    if _CONTAINER_PATH in names:
        container = BeautifulSoup(zf.read(_CONTAINER_PATH), "xml")
        rootfile = container.find("rootfile")
        if rootfile is not None and rootfile.get("full-path") in names:
            return rootfile["full-path"]
    # Damaged or missing container: take the first package document we can find
    for name in sorted(names):
        if name.lower().endswith(".opf"):
            return name
    raise ValueError("Cannot locate the package document (.opf)")


def _resolve_title(opf: BeautifulSoup, title_hint: str) -> str:
    title_tag = opf.find("title")
    if title_tag is not None:
        title = re.sub(r"\s+", " ", title_tag.get_text()).strip()
        if title:
            return title
    hint = posixpath.basename(title_hint or "")
    if hint.lower().endswith(".epub"):
        hint = hint[: -len(".epub")]
    return hint.strip() or _DEFAULT_TITLE


def resolve_href(base_dir: str, href: str) -> str:
    """Resolve a percent-encoded *href* against *base_dir* inside the archive.

    ``Text/../Images/a%20b.jpg`` resolved from ``OEBPS`` → ``OEBPS/Images/a b.jpg``.
    """
    href = unquote(href.split("#", 1)[0])
    joined = posixpath.join(base_dir, href) if base_dir else href
    return posixpath.normpath(joined).lstrip("/")


# ---------------------------------------------------------------------------
# Salvage
# ---------------------------------------------------------------------------

def salvage(data: bytes) -> bytes:
    """Rebuild a structurally valid zip from the readable entries of *data*.

    Entries are enumerated through the central directory when it is intact,
    otherwise by scanning local file headers sequentially.  When the
    directory is readable but some entries cannot be opened through it
    (bytes missing mid-archive shift their offsets), the header scan fills
    in the missing names.  An entry whose data fails to decompress partway
    is kept up to the failure point; an entry that cannot be read either
    way is dropped.
    """
    indexed = _salvage_indexed(data)
    if indexed is None:
        logger.warning("Archive: central directory unreadable – scanning local headers")
        return _rebuild(list(_salvage_streamed(data)))

    entries, dropped = indexed
    has_package = any(name.lower().endswith(".opf") for name, _content in entries)
    if dropped or not has_package:
        logger.warning(
            "Archive: %d entries unreachable from the central directory – scanning local headers",
            dropped,
        )
        known = {name for name, _content in entries}
        for name, content in _salvage_streamed(data):
            if name not in known:
                entries.append((name, content))
                known.add(name)
    return _rebuild(entries)


def _salvage_indexed(data: bytes) -> Optional[Tuple[List[SalvagedEntry], int]]:
    """Read entries through the central directory.

    Returns the readable entries and the number dropped, or *None* when the
    directory itself cannot be read.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except _READ_ERRORS:
        return None

    entries: List[SalvagedEntry] = []
    dropped = 0
    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            try:
                handle = zf.open(info)
            except _READ_ERRORS as exc:
                logger.warning("Archive: dropping unreadable entry %s – %s", info.filename, exc)
                dropped += 1
                continue

            chunks: List[bytes] = []
            with handle:
                while True:
                    try:
                        chunk = handle.read(_READ_CHUNK)
                    except _READ_ERRORS as exc:
                        logger.warning(
                            "Archive: entry %s truncated after %d bytes – %s",
                            info.filename,
                            sum(len(c) for c in chunks),
                            exc,
                        )
                        break
                    if not chunk:
                        break
                    chunks.append(chunk)
            entries.append((info.filename, b"".join(chunks)))
    return entries, dropped


def _salvage_streamed(data: bytes) -> Iterator[SalvagedEntry]:
    pos = data.find(_LOCAL_HEADER_SIG)
    while pos != -1:
        entry, next_pos = _read_local_entry(data, pos)
        if entry is not None:
            yield entry
        pos = data.find(_LOCAL_HEADER_SIG, max(next_pos, pos + len(_LOCAL_HEADER_SIG)))


def _read_local_entry(data: bytes, offset: int) -> Tuple[Optional[SalvagedEntry], int]:
    """Decode the local entry starting at *offset*.

    Returns the entry (or *None* when it has to be dropped) and the offset
    from which scanning should resume.
    """
    header = data[offset : offset + _LOCAL_HEADER.size]
    if len(header) < _LOCAL_HEADER.size:
        logger.warning("Archive: truncated local header at offset %d – dropping", offset)
        return None, len(data)

    (_sig, _version, flags, method, _mtime, _mdate, _crc, csize, _usize, name_len, extra_len) = (
        _LOCAL_HEADER.unpack(header)
    )
    name_start = offset + _LOCAL_HEADER.size
    raw_name = data[name_start : name_start + name_len]
    name = raw_name.decode("utf-8" if flags & _FLAG_UTF8 else "cp437", errors="replace")
    data_start = name_start + name_len + extra_len

    if not name or name.endswith("/"):
        return None, data_start
    if flags & _FLAG_ENCRYPTED:
        logger.warning("Archive: dropping encrypted entry %s", name)
        return None, data_start

    size_known = csize > 0 and not flags & _FLAG_DATA_DESCRIPTOR
    if method == zipfile.ZIP_STORED:
        if size_known:
            end = data_start + csize
            if end < len(data) and data[end : end + 2] != b"PK":
                # Declared size overruns the next record: bytes are missing
                following = data.find(_LOCAL_HEADER_SIG, data_start)
                if following != -1 and following < end:
                    logger.warning("Archive: stored entry %s is short – keeping what remains", name)
                    end = following
        else:
            end = data.find(_LOCAL_HEADER_SIG, data_start)
            end = len(data) if end == -1 else end
        content = data[data_start:end]
        if end > len(data):
            logger.warning("Archive: stored entry %s truncated at %d bytes", name, len(content))
        return (name, content), min(end, len(data))

    if method == zipfile.ZIP_DEFLATED:
        limit = data_start + csize if size_known else len(data)
        content, consumed = _inflate_partial(name, data[data_start:limit])
        return (name, content), data_start + consumed

    logger.warning("Archive: dropping entry %s with unsupported compression %d", name, method)
    return None, data_start


def _inflate_partial(name: str, payload: bytes) -> Tuple[bytes, int]:
    """Inflate a raw deflate *payload*, keeping whatever decodes before an error."""
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    out: List[bytes] = []
    fed = 0
    for start in range(0, len(payload), _READ_CHUNK):
        chunk = payload[start : start + _READ_CHUNK]
        try:
            out.append(inflater.decompress(chunk))
        except zlib.error as exc:
            logger.warning("Archive: entry %s truncated – %s", name, exc)
            return b"".join(out), fed
        fed += len(chunk)
        if inflater.eof:
            return b"".join(out), fed - len(inflater.unused_data)

    try:
        out.append(inflater.flush())
    except zlib.error as exc:
        logger.warning("Archive: entry %s truncated – %s", name, exc)
    if not inflater.eof:
        logger.warning("Archive: entry %s ends mid-stream – keeping %d bytes", name, sum(map(len, out)))
    return b"".join(out), fed


def _rebuild(entries: List[SalvagedEntry]) -> bytes:
    buffer = io.BytesIO()
    written: set = set()
    with zipfile.ZipFile(buffer, "w") as out:
        # The mimetype entry must come first and be stored uncompressed
        for name, content in entries:
            if name == _MIMETYPE_NAME:
                out.writestr(name, content, compress_type=zipfile.ZIP_STORED)
                written.add(name)
                break
        for name, content in entries:
            if name in written:
                continue
            out.writestr(name, content, compress_type=zipfile.ZIP_DEFLATED)
            written.add(name)
    logger.info("Archive: rebuilt package with %d entries", len(written))
    return buffer.getvalue()
