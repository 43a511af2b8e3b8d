import logging

from imagetools.core.logging import configure_logging, get_logger, summarize_for_log


def test_file_logging_creation(monkeypatch, tmp_path):
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("IMAGETOOLS_LOG_DIR", str(log_dir))
    monkeypatch.setenv("IMAGETOOLS_LOG_LEVEL", "DEBUG")
    logger = get_logger("imagetools.core.test")
    logger.debug("test debug line")
    logger.info("info line")
    file_path = log_dir / "imagetools.log"
    assert file_path.exists()
    content = file_path.read_text(encoding="utf-8")
    assert "test debug line" in content
    assert "info line" in content


def test_configure_logging_applies_to_existing_loggers(tmp_path):
    logger = get_logger("imagetools.core.test_configure")
    configure_logging(log_dir=str(tmp_path), level="warning")
    assert logger.level == logging.WARNING
    assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    logger.warning("configured line")
    assert "configured line" in (tmp_path / "imagetools.log").read_text(encoding="utf-8")


def test_summarize_for_log_hides_payloads():
    big = "x" * 1000
    s = summarize_for_log({"data": big, "mimeType": "image/webp"})
    assert s["type"] == "dict"
    assert s["keys"] == ["data", "mimeType"]
    assert big not in str(s)
    assert summarize_for_log(b"abc") == {"type": "bytes", "len": 3}
    assert summarize_for_log(3) == 3
