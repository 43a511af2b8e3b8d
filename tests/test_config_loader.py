from pathlib import Path

import pytest

from imagetools.core.config_loader import ConfigError, Settings, load_settings


def test_defaults():
    s = load_settings(env={})
    assert s == Settings()
    assert s.port == 3000
    assert s.redis_url == "redis://redis:6379"
    assert (s.sse_path, s.messages_path) == ("/sse", "/messages")


def test_env_overrides():
    s = load_settings(env={
        "PORT": "8080",
        "REDIS_URL": "rediss://cache:6380/1",
        "OPENAI_API_KEY": "sk-x",
        "IMAGETOOLS_PING_INTERVAL": "0",
        "IMAGETOOLS_MAX_IMAGE_BYTES": "10240",
    })
    assert s.port == 8080
    assert s.redis_url == "rediss://cache:6380/1"
    assert s.openai_api_key == "sk-x"
    assert s.ping_interval == 0.0
    assert s.max_image_bytes == 10240


def test_yaml_then_env(tmp_path: Path):
    cfg = tmp_path / "imagetools.yaml"
    cfg.write_text("port: 4000\nsse_path: events/\nmessages_path: rpc\nimage_size: 512x512\n")
    s = load_settings(str(cfg), env={"PORT": "4001"})
    assert s.port == 4001
    assert s.sse_path == "/events"
    assert s.messages_path == "/rpc"
    assert s.image_size == "512x512"


@pytest.mark.parametrize(
    "text",
    [
        "port: 0\n",
        "port: abc\n",
        "redis_url: http://redis:6379\n",
        "ping_interval: -1\n",
        "max_image_bytes: 0\n",
        "sse_path: /same\nmessages_path: /same\n",
        "colour: blue\n",
        "- a\n- b\n",
    ],
)
def test_invalid_settings(tmp_path: Path, text):
    cfg = tmp_path / "imagetools.yaml"
    cfg.write_text(text)
    with pytest.raises(ConfigError):
        load_settings(str(cfg), env={})


def test_missing_file():
    with pytest.raises(ConfigError):
        load_settings("/nonexistent/imagetools.yaml", env={})
