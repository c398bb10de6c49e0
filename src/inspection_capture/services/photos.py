"""Signed links for viewing stored report photos."""

import asyncio
import logging
import re
from dataclasses import dataclass

from inspection_capture.services.uploads import PhotoStorage

logger = logging.getLogger(__name__)

_PUBLIC_URL = re.compile(r"storage/v1/object/public/([^/]+)/(.+)$")


@dataclass
class PhotoLinkService:
    """Turns stored paths or legacy public URLs into short-lived signed URLs."""

    storage: PhotoStorage
    ttl_seconds: int = 600

    async def signed_url(self, path_or_url: str | None) -> str:
        """Return a signed URL, or an empty string when none can be made."""
        if not path_or_url:
            return ""
        bucket: str | None = None
        path = path_or_url
        if path_or_url.startswith("http"):
            match = _PUBLIC_URL.search(path_or_url)
            if match is None:
                return ""
            bucket, path = match.group(1), match.group(2)
        try:
            return await asyncio.to_thread(
                self.storage.create_signed_url, bucket, path, self.ttl_seconds
            )
        except Exception:
            logger.warning("Could not sign %s", path, exc_info=True)
            return ""

    async def signed_urls(self, paths: list[str]) -> list[str]:
        """Sign several paths, dropping any that fail."""
        urls = await asyncio.gather(*(self.signed_url(path) for path in paths))
        return [url for url in urls if url]
