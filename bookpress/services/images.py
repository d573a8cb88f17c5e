"""Image hosting for pictures embedded in a book."""

import logging
import mimetypes
from typing import Optional
from urllib.parse import urljoin

import httpx

logger = logging.getLogger(__name__)

TIMEOUT = 30  # seconds
MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MB, the provider's upload limit


class TelegraphImageUploader:
    """Upload images to the provider's file host and return their public URL."""

    def __init__(
        self,
        upload_url: str = "https://telegra.ph/upload",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.upload_url = upload_url
        self._transport = transport

    async def upload(self, data: bytes, content_type: str) -> Optional[str]:
        """Return the hosted URL for *data*, or *None* if the upload failed."""
        if len(data) > MAX_IMAGE_SIZE:
            logger.warning("Images: skipping %d-byte image over the upload limit", len(data))
            return None

        extension = mimetypes.guess_extension(content_type) or ".jpg"
        files = {"file": (f"image{extension}", data, content_type)}
        try:
            async with httpx.AsyncClient(timeout=TIMEOUT, transport=self._transport) as client:
                resp = await client.post(self.upload_url, files=files)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Images: upload failed – %s", exc)
            return None

        if isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get("src"):
            return urljoin(self.upload_url, body[0]["src"])
        logger.warning("Images: unexpected upload response %r", body)
        return None
