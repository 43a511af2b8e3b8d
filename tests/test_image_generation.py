import asyncio
import base64
import io
import json
import random

import httpx
import pytest
from PIL import Image

from imagetools.core.config_loader import Settings
from imagetools.core.errors import ConfigError, ToolExecutionError
from imagetools.tools.image_generation import ImageGenerationTool, compress_image

API = "https://images.test/v1/images/generations"
IMAGE_URL = "https://cdn.test/img.png"


def png_bytes(size=(64, 64), noisy=False):
    img = Image.new("RGB", size, (200, 30, 30))
    if noisy:
        rnd = random.Random(0)
        img.putdata([(rnd.randrange(256), rnd.randrange(256), rnd.randrange(256)) for _ in range(size[0] * size[1])])
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def is_webp(data):
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def test_compress_image_outputs_webp():
    out = compress_image(png_bytes(), max_bytes=5 * 1024)
    assert is_webp(out)
    assert len(out) <= 5 * 1024
    with Image.open(io.BytesIO(out)) as img:
        assert img.size == (64, 64)


def test_compress_image_gives_up_at_min_quality():
    # Noise does not compress below 1 byte; the last encoding is still returned.
    out = compress_image(png_bytes((128, 128), noisy=True), max_bytes=1)
    assert is_webp(out)
    assert len(out) > 1


def test_compress_image_converts_palette_images():
    img = Image.new("P", (32, 32))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    assert is_webp(compress_image(buf.getvalue(), max_bytes=5 * 1024))


def test_compress_image_rejects_garbage():
    with pytest.raises(ToolExecutionError):
        compress_image(b"definitely not an image", max_bytes=1024)


def make_tool(handler, api_key="sk-test"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ImageGenerationTool(api_key=api_key, api_base=API, client=client)


def run_call(tool, arguments):
    async def scenario():
        try:
            return await tool.call(arguments)
        finally:
            await tool._client.aclose()

    return asyncio.run(scenario())


def test_generate_image_success():
    seen = {}

    def handler(request: httpx.Request):
        if request.method == "POST":
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"url": IMAGE_URL}]})
        assert str(request.url) == IMAGE_URL
        return httpx.Response(200, content=png_bytes())

    result = run_call(make_tool(handler), {"prompt": "a red square"})
    assert not result.isError
    text, image = result.content
    assert text.type == "text" and text.text == IMAGE_URL
    assert image.type == "image" and image.mimeType == "image/webp"
    assert is_webp(base64.b64decode(image.data))
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"prompt": "a red square", "model": "dall-e-3", "n": 1, "size": "1024x1024"}


@pytest.mark.parametrize(
    "status,body,message",
    [
        (401, {}, "Dalle API error: Invalid API key"),
        (429, {}, "Dalle API error: Usage limit exceeded"),
        (400, {"error": {"message": "Your prompt was rejected"}}, "Dalle API error: Your prompt was rejected"),
    ],
)
def test_api_errors_become_error_results(status, body, message):
    def handler(request):
        return httpx.Response(status, json=body)

    result = run_call(make_tool(handler), {"prompt": "x"})
    assert result.isError
    assert result.content[0].text == message


def test_missing_image_url():
    def handler(request):
        return httpx.Response(200, json={"data": []})

    with pytest.raises(ToolExecutionError, match="No image found"):
        run_call(make_tool(handler), {"prompt": "x"})


def test_missing_api_key():
    def handler(request):  # pragma: no cover - never reached
        return httpx.Response(500)

    with pytest.raises(ConfigError):
        run_call(make_tool(handler, api_key=None), {"prompt": "x"})


def test_empty_prompt_rejected():
    with pytest.raises(ToolExecutionError):
        run_call(make_tool(lambda request: httpx.Response(500)), {"prompt": "  "})


def test_from_settings_and_tool_listing():
    settings = Settings(openai_api_key="k", image_model="dall-e-2", image_size="512x512", max_image_bytes=2048)
    tool = ImageGenerationTool.from_settings(settings, client=httpx.AsyncClient())
    assert (tool.api_key, tool.model, tool.size, tool.max_image_bytes) == ("k", "dall-e-2", "512x512", 2048)
    listed = tool.to_tool()
    assert listed.name == "generate_image"
    assert listed.inputSchema["required"] == ["prompt"]
    assert tool.required_arguments == ["prompt"]
