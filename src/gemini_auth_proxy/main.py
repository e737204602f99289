# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Gemini Auth Proxy - Main entry point.

This module handles:
- CLI argument parsing
- .env loading
- Logging configuration
- Application startup

The actual FastAPI application is created via app_factory.create_app().
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9876


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gemini Auth Proxy Server")
    parser.add_argument(
        "--host", type=str, default=DEFAULT_HOST, help="Host to bind the server to."
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help="Port to run the server on.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (defaults to LOG_LEVEL or INFO).",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for proxy.log and proxy_debug.log (defaults to ./logs).",
    )
    return parser.parse_args(argv)


class EngineDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("gemini_auth")


def configure_logging(log_dir: Path, console_level: str = "INFO") -> None:
    """Colored console output plus info and engine-debug log files."""
    import colorlog

    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    formatter = colorlog.ColoredFormatter(
        "%(log_color)s%(message)s",
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )
    console_handler.setFormatter(formatter)

    # File handlers
    info_file_handler = logging.FileHandler(log_dir / "proxy.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    debug_file_handler = logging.FileHandler(log_dir / "proxy_debug.log", encoding="utf-8")
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    debug_file_handler.addFilter(EngineDebugFilter())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(debug_file_handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def print_banner(console, host: str, port: int) -> None:
    from gemini_auth.config import ProxySettings
    from gemini_auth.error_handler import mask_secret

    settings = ProxySettings.from_env()
    if settings.proxy_api_key:
        key_display = f"[green]✓[/green] {mask_secret(settings.proxy_api_key)}"
    else:
        key_display = "[yellow]✗ Not Set[/yellow] (open access)"

    console.print("━" * 70)
    console.print(f"Starting Gemini Auth Proxy on [bold]http://{host}:{port}[/bold]")
    console.print(f"Credentials: {settings.credentials_path}")
    console.print(f"Project: {settings.project_override or 'auto-discover'}")
    console.print(f"Proxy API Key: {key_display}")
    console.print(f"Gemini API base for clients: http://{host}:{port}")
    console.print("━" * 70)


def run(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    # Load environment variables
    from dotenv import load_dotenv

    _root_dir = Path.cwd()
    load_dotenv(_root_dir / ".env")

    from rich.console import Console

    _console = Console()
    print_banner(_console, args.host, args.port)

    log_level = args.log_level or os.getenv("LOG_LEVEL", "INFO")
    configure_logging(args.log_dir or (_root_dir / "logs"), log_level)

    with _console.status("[dim]Initializing proxy core...", spinner="dots"):
        import uvicorn

        from gemini_auth_proxy.app_factory import create_app

        app = create_app()

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    run()
