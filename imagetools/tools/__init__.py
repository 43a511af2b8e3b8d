"""Tools served by the imagetools MCP server."""

from .image_generation import ImageGenerationTool, compress_image  # noqa: F401

__all__ = ["ImageGenerationTool", "compress_image"]
