"""``generate_image`` tool: DALL-E image generation plus WebP compression.

The generated image is re-encoded as WebP with decreasing quality until it
fits ``max_image_bytes``, since MCP clients struggle with large images.
"""
from __future__ import annotations
import asyncio
import base64
import io
from typing import Any, Dict, Optional

import httpx
from mcp.types import CallToolResult, ImageContent, TextContent
from PIL import Image, UnidentifiedImageError

from ..core.config_loader import DEFAULT_API_BASE, Settings
from ..core.errors import ConfigError, ToolExecutionError
from ..core.logging import get_logger
from ..core.tool_base import ToolBase

logger = get_logger("imagetools.tools.image_generation")

START_QUALITY = 80
QUALITY_STEP = 5
MIN_QUALITY = 10


def compress_image(data: bytes, max_bytes: int, start_quality: int = START_QUALITY) -> bytes:
    """Re-encode ``data`` as WebP, lowering quality until it fits ``max_bytes``.

    Stops once the output fits or quality drops to ``MIN_QUALITY``; the last
    encoding is returned either way.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = src if src.mode in ("RGB", "RGBA") else src.convert("RGBA" if "A" in src.getbands() else "RGB")
            quality = start_quality
            while True:
                buf = io.BytesIO()
                img.save(buf, format="WEBP", quality=quality)
                out = buf.getvalue()
                quality -= QUALITY_STEP
                if len(out) <= max_bytes or quality <= MIN_QUALITY:
                    return out
    except (UnidentifiedImageError, OSError) as e:
        raise ToolExecutionError(f"Process image failed: {e}") from e


def _api_error_message(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 401:
            return "Invalid API key"
        if status == 429:
            return "Usage limit exceeded"
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if body.get("message"):
                return str(body["message"])
    return str(exc)


class ImageGenerationTool(ToolBase):
    name = "generate_image"
    description = "Generate an image given a prompt by openai dall-e-3 model."
    input_schema = {
        "type": "object",
        "properties": {
            "prompt": {
                "type": "string",
                "description": "The prompt to generate an image from",
            },
        },
        "required": ["prompt"],
    }

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = DEFAULT_API_BASE,
        model: str = "dall-e-3",
        size: str = "1024x1024",
        max_image_bytes: int = 5 * 1024,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.api_base = api_base
        self.model = model
        self.size = size
        self.max_image_bytes = max_image_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "ImageGenerationTool":
        return cls(
            api_key=settings.openai_api_key,
            api_base=settings.openai_api_base,
            model=settings.image_model,
            size=settings.image_size,
            max_image_bytes=settings.max_image_bytes,
            client=client,
        )

    async def generate(self, prompt: str) -> str:
        """Request one image and return its URL."""
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY environment variable is required")
        payload = {"prompt": prompt, "model": self.model, "n": 1, "size": self.size}
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        logger.info("Start generate... model=%s size=%s", self.model, self.size)
        resp = await self._client.post(self.api_base, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json().get("data") or []
        url = data[0].get("url") if data and isinstance(data[0], dict) else None
        if not url:
            raise ToolExecutionError("No image found")
        return url

    async def fetch_and_compress(self, url: str) -> str:
        """Download ``url`` and return the compressed WebP as base64."""
        logger.info("Get image from %s", url)
        resp = await self._client.get(url)
        resp.raise_for_status()
        webp = await asyncio.to_thread(compress_image, resp.content, self.max_image_bytes)
        logger.info("Process image success. bytes=%d", len(webp))
        return base64.b64encode(webp).decode("ascii")

    async def call(self, arguments: Dict[str, Any]) -> CallToolResult:
        prompt = arguments.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ToolExecutionError("prompt must be a non-empty string")
        try:
            url = await self.generate(prompt)
            b64 = await self.fetch_and_compress(url)
        except httpx.HTTPError as e:
            logger.warning("image api call failed: %s", e)
            return CallToolResult(
                content=[TextContent(type="text", text=f"Dalle API error: {_api_error_message(e)}")],
                isError=True,
            )
        return CallToolResult(
            content=[
                TextContent(type="text", text=url),
                ImageContent(type="image", data=b64, mimeType="image/webp"),
            ]
        )

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ImageGenerationTool", "compress_image"]
