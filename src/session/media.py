"""Remote media loading for outbound media messages."""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from src.session.errors import MediaFetchError

logger = logging.getLogger(__name__)

_DEFAULT_MAX_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class MessageMedia:
    """Media ready to hand to the protocol client, base64 encoded."""

    mimetype: str
    data: str
    filename: str | None = None
    filesize: int | None = None


class HttpMediaLoader:
    """Downloads media referenced by URL.

    The MIME type comes from the response's Content-Type header. With
    ``unsafe_mime`` the loader falls back to guessing from the URL path,
    then to ``application/octet-stream``.
    """

    def __init__(
        self,
        max_bytes: int = _DEFAULT_MAX_BYTES,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._transport = transport

    async def from_url(
        self,
        url: str,
        filename: str | None = None,
        unsafe_mime: bool = False,
    ) -> MessageMedia:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, follow_redirects=True,
            ) as client:
                async with client.stream("GET", url, timeout=self._timeout) as resp:
                    if resp.status_code >= 400:
                        raise MediaFetchError(
                            f"Failed to fetch media from {url}: HTTP {resp.status_code}",
                        )
                    self._check_declared_length(url, resp.headers)
                    content = await self._read_capped(url, resp)
                    headers = resp.headers
        except httpx.HTTPError as exc:
            raise MediaFetchError(f"Failed to fetch media from {url}: {exc}") from exc

        mimetype = headers.get("content-type", "").split(";")[0].strip()
        if not mimetype:
            if not unsafe_mime:
                raise MediaFetchError("Unable to determine MIME type using URL")
            mimetype = (
                mimetypes.guess_type(urlparse(url).path)[0]
                or "application/octet-stream"
            )

        logger.debug("Fetched %d bytes of %s from %s", len(content), mimetype, url)
        return MessageMedia(
            mimetype=mimetype,
            data=base64.b64encode(content).decode("ascii"),
            filename=filename,
            filesize=len(content),
        )

    def _check_declared_length(self, url: str, headers: httpx.Headers) -> None:
        declared = headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > self._max_bytes:
            raise MediaFetchError(f"Media at {url} exceeds {self._max_bytes} bytes")

    async def _read_capped(self, url: str, resp: httpx.Response) -> bytes:
        # Stop reading as soon as the running total passes the cap.
        buf = bytearray()
        async for chunk in resp.aiter_bytes():
            buf.extend(chunk)
            if len(buf) > self._max_bytes:
                raise MediaFetchError(f"Media at {url} exceeds {self._max_bytes} bytes")
        return bytes(buf)
