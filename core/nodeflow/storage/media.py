"""
Media helpers - mime/extension mapping, image downsizing, and loaders that
turn URLs and local files into variables.
"""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image

from nodeflow.errors import VariableError
from nodeflow.storage.variables import generate_valid_variable_name, validate_variable_name

if TYPE_CHECKING:
    from nodeflow.schemas.storage_item import StorageItem
    from nodeflow.storage.manager import StorageManager

logger = logging.getLogger(__name__)

MIME_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogv": "video/ogg",
    ".mov": "video/quicktime",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
    ".html": "text/html",
    ".json": "application/json",
    ".csv": "text/csv",
}

# first extension wins for mimes with several spellings
EXTENSION_BY_MIME: dict[str, str] = {}
for _ext, _mime in MIME_BY_EXTENSION.items():
    EXTENSION_BY_MIME.setdefault(_mime, _ext)


def mime_from_extension(extension: str) -> str:
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return MIME_BY_EXTENSION.get(ext, "application/octet-stream")


def file_name_from_url(url: str) -> str:
    """Last path segment of a URL, or "" when the path ends in a slash."""
    path = unquote(urlparse(url).path)
    return path.rsplit("/", 1)[-1]


def extract_file_extension(url: str, content_type: str = "") -> str:
    """Extension (with dot) from the URL's file name, else from Content-Type."""
    file_name = file_name_from_url(url)
    if "." in file_name:
        return "." + file_name.rsplit(".", 1)[-1].lower()
    mime = content_type.split(";")[0].strip().lower()
    return EXTENSION_BY_MIME.get(mime, "")


def downsize_image(
    data: bytes,
    max_width: int = 1920,
    max_height: int = 1080,
    quality: int = 80,
) -> tuple[bytes, str] | None:
    """
    Re-encode an image as JPEG that fits within max_width x max_height.

    Returns (bytes, mime) when re-encoding produced something smaller, None
    when the payload is not a readable image or did not shrink.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.thumbnail((max_width, max_height))
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=quality, optimize=True)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"⚠ Image downsizing failed, keeping original: {e}")
        return None

    resized = out.getvalue()
    if len(resized) >= len(data):
        return None
    logger.info(f"✓ Downsized image {len(data)} → {len(resized)} bytes")
    return resized, "image/jpeg"


class MediaLoader:
    """
    Loads remote and local files into the variable namespace.

    The httpx client is injected so hosts can share connection pools and
    tests can pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        storage: StorageManager,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.storage = storage
        self._client = client
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _resolve_name(self, requested: str | None, fallback: str) -> str:
        existing = set(self.storage.names())
        if requested and requested.strip():
            try:
                name = validate_variable_name(requested)
            except VariableError:
                logger.warning(f"⚠ Invalid variable name '{requested}', sanitizing")
                return generate_valid_variable_name(requested, existing)
            if name in existing:
                raise VariableError(f"Variable '{name}' already exists", name=name)
            return name
        return generate_valid_variable_name(fallback, existing)

    async def fetch_bytes(self, url: str) -> tuple[bytes, str]:
        """GET a URL and return (body, content type)."""
        response = await self._get_client().get(url)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type

    async def load_from_url(
        self,
        url: str,
        name: str | None = None,
        description: str | None = None,
    ) -> StorageItem:
        """Download a URL into a new variable typed from its Content-Type."""
        try:
            body, content_type = await self.fetch_bytes(url)
        except httpx.HTTPError as e:
            logger.error(f"✗ Failed to load {url}: {e}")
            raise

        extension = extract_file_extension(url, content_type)
        mime = content_type or mime_from_extension(extension)
        var_type = self.storage.types.detect_from_mime(mime, extension)
        file_name = file_name_from_url(url) or f"download{extension}"

        value: Any = body
        if var_type == "string":
            value = body.decode("utf-8", errors="replace")

        final_name = self._resolve_name(name, file_name)
        item = await self.storage.create_item(
            final_name,
            var_type,
            value,
            description=description or f"Loaded from {url}",
            mime_type=mime,
            original_name=file_name,
            metadata={"source_url": url, "mime_type": mime, "file_name": file_name},
        )
        logger.info(f"✓ Loaded {url} into '{final_name}' ({var_type}, {len(body)} bytes)")
        return item

    async def load_from_file(
        self,
        path: Path | str,
        name: str | None = None,
        description: str | None = None,
    ) -> StorageItem:
        """Read a local file into a new variable typed from its extension."""
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        mime = mime_from_extension(path.suffix)
        var_type = self.storage.types.detect_file_type(path.name, mime)

        final_name = self._resolve_name(name, path.stem)
        item = await self.storage.create_item(
            final_name,
            var_type,
            data,
            description=description or f"Uploaded {path.name}",
            mime_type=mime,
            original_name=path.name,
            metadata={"file_name": path.name, "mime_type": mime},
        )
        logger.info(f"✓ Uploaded {path.name} into '{final_name}' ({var_type})")
        return item
