"""CLI entrypoint for the imagetools MCP server."""
from __future__ import annotations
import argparse

import uvicorn
from dotenv import load_dotenv

from .core.config_loader import load_settings
from .core.logging import configure_logging
from .mcp_server import ImageToolsServer, create_app


def build_parser():
    p = argparse.ArgumentParser(prog="imagetools-mcp", description="Imagetools MCP Server (SSE over Redis)")
    sub = p.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Start MCP server")
    serve.add_argument("--host", help="Bind address (default: HOST env or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Port (default: PORT env or 3000)")
    serve.add_argument("--redis-url", help="Broker URL (default: REDIS_URL env or redis://redis:6379)")
    serve.add_argument("--config", help="Path to a YAML settings file")
    serve.add_argument("--env-file", help="Load environment variables from this file instead of ./.env")
    serve.add_argument(
        "--log-dir",
        help="Directory to write log file (imagetools.log). If not set, only stdout is used.",
    )
    serve.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "serve":
        parser.print_help()
        return 1
    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv()
    configure_logging(log_dir=args.log_dir, level=args.log_level)
    settings = load_settings(args.config)
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.redis_url:
        settings.redis_url = args.redis_url
    app = create_app(settings)
    config = uvicorn.Config(app, host=settings.host, port=settings.port)
    ImageToolsServer(config, app.state.sessions).run()
    return 0


if __name__ == "__main__":  # pragma: no cover
    main()
