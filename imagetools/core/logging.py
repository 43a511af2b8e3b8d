"""Lightweight logging setup for the transport and tool server.

Users can override log level with IMAGETOOLS_LOG_LEVEL env var.

Also includes a helper to safely summarize protocol payloads (which may carry
base64 image data) for logging without dumping full payloads to the logs.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional


def _summarize_sequence(seq: Any, max_items: int, level: int, max_level: int) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "type": type(seq).__name__,
        "len": len(seq) if hasattr(seq, "__len__") else None,
    }
    if level >= max_level:
        return out
    items = list(seq)[:max_items]
    out["preview_types"] = [type(x).__name__ for x in items]
    prev_vals = []
    for x in items:
        s = str(x)
        if len(s) > 120:
            s = s[:117] + "..."
        prev_vals.append(s)
    out["preview"] = prev_vals
    return out


def summarize_for_log(obj: Any, *, max_items: int = 8, max_level: int = 2) -> Any:
    """Return a compact, JSON-serializable summary suitable for logging.

    - pydantic models: summarized through their dumped dict
    - Dict: show size, keys (truncated), and value types (not full values)
    - List/Tuple/Set: show length and a short preview of types/values
    - str: length and truncated preview
    - bytes/bytearray: length
    - Other scalars: returned directly; anything else becomes its type name
    """
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return {"type": "str", "len": len(obj), "preview": (obj if len(obj) <= 200 else obj[:197] + "...")}
    if isinstance(obj, (bytes, bytearray)):
        return {"type": type(obj).__name__, "len": len(obj)}

    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        summary = summarize_for_log(dump(by_alias=True, exclude_none=True), max_items=max_items, max_level=max_level)
        if isinstance(summary, dict):
            summary["model"] = type(obj).__name__
        return summary

    if isinstance(obj, dict):
        out: Dict[str, Any] = {"type": "dict", "len": len(obj)}
        keys = list(obj.keys())[:max_items]
        out["keys"] = [str(k) for k in keys]
        if max_level > 0:
            out["value_types"] = {str(k): type(obj[k]).__name__ for k in keys}
        return out

    if isinstance(obj, (list, tuple, set)):
        return _summarize_sequence(obj, max_items=max_items, level=0, max_level=max_level)

    return {"type": type(obj).__name__}


LOG_LEVEL = os.getenv("IMAGETOOLS_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_loggers: List[logging.Logger] = []


def _file_handler(log_dir: str) -> logging.Handler:
    p = Path(log_dir)
    p.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(p / "imagetools.log", encoding="utf-8")
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    return fh


def get_logger(name: str = "imagetools") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(stream_handler)
        # Optional file handler if IMAGETOOLS_LOG_DIR is set
        log_dir = os.getenv("IMAGETOOLS_LOG_DIR")
        if log_dir:
            logger.addHandler(_file_handler(log_dir))
        logger.setLevel(os.getenv("IMAGETOOLS_LOG_LEVEL", LOG_LEVEL).upper())
        logger.propagate = False
        _loggers.append(logger)
    return logger


def configure_logging(log_dir: Optional[str] = None, level: Optional[str] = None):
    """Apply a log directory and/or level to every logger made by get_logger.

    Loggers are created at import time, so the CLI calls this once its
    arguments are parsed.
    """
    for logger in _loggers:
        if level:
            logger.setLevel(level.upper())
        if log_dir and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            logger.addHandler(_file_handler(log_dir))


core_logger = get_logger("imagetools.core")

__all__ = ["get_logger", "configure_logging", "core_logger", "summarize_for_log"]
