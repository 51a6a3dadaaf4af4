from __future__ import annotations

import asyncio
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

import httpx

from .config.settings import Settings, load_settings
from .discovery import discover_servers, fetch_configured_devices
from .imaging.pipeline import process_image_bytes
from .imaging.stretch import calculate_histogram
from .server import configure_logging, run_server

logger = logging.getLogger(__name__)

_SERVE_LOG_HANDLER_FLAG = "_alpaca_dashboard_serve_handler"


def _configure_serve_logging(settings: Settings) -> None:
    """Persist ``alpaca-dashboard serve`` logs to a rotating file."""

    try:
        log_dir = settings.state_directory / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "alpaca-dashboard.log"
    except OSError as exc:
        logger.warning("cli.serve.logfile_init_failed error=%s", exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if getattr(handler, _SERVE_LOG_HANDLER_FLAG, False):
            return

    handler = RotatingFileHandler(
        log_path,
        maxBytes=5_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    setattr(handler, _SERVE_LOG_HANDLER_FLAG, True)
    root_logger.addHandler(handler)
    logger.info("cli.serve.logfile_enabled path=%s", log_path)


def decode_command(
    path: str,
    *,
    bayer_pattern: Optional[str] = None,
    width: int = 0,
    height: int = 0,
    histogram_bins: int = 0,
) -> dict:
    """Decode an ImageBytes file and return its statistics."""
    buffer = Path(path).read_bytes()
    image = process_image_bytes(buffer, width, height, bayer_pattern)
    result = image.summary()
    if histogram_bins:
        result["histogram"] = calculate_histogram(image, histogram_bins)
    return result


async def discover_command(settings: Settings, *, timeout: Optional[float], list_devices: bool) -> list[dict]:
    servers = await discover_servers(settings, timeout=timeout)
    results = []
    for server in servers:
        entry = server.to_dict()
        if list_devices:
            try:
                configs = await fetch_configured_devices(server, timeout=settings.client_timeout_seconds)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("cli.discover.devices_failed server=%s error=%s", server.key, exc)
                entry["devices"] = None
            else:
                entry["devices"] = [config.model_dump() for config in configs]
        results.append(entry)
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for the dashboard server and its offline tools."""
    import argparse

    logging.basicConfig(level=logging.INFO)
    configure_logging()

    parser = argparse.ArgumentParser(description="Alpaca device dashboard")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the dashboard API server")
    serve_parser.add_argument(
        "--config",
        type=str,
        help="Path to a settings YAML file to load in addition to environment variables.",
    )
    serve_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use simulated devices even when an Alpaca endpoint is configured.",
    )

    decode_parser = subparsers.add_parser("decode", help="Decode an ImageBytes file and print its statistics")
    decode_parser.add_argument("file", type=str, help="Path to an application/imagebytes payload")
    decode_parser.add_argument(
        "--bayer",
        type=str,
        default=None,
        help="Bayer pattern to debayer with (RGGB, BGGR, GRBG or GBRG).",
    )
    decode_parser.add_argument("--width", type=int, default=0, help="Width for rank-1 buffers.")
    decode_parser.add_argument("--height", type=int, default=0, help="Height for rank-1 buffers.")
    decode_parser.add_argument(
        "--histogram",
        type=int,
        default=0,
        metavar="BINS",
        help="Include a histogram with this many bins.",
    )

    discover_parser = subparsers.add_parser("discover", help="Find Alpaca servers on the local network")
    discover_parser.add_argument(
        "--config",
        type=str,
        help="Path to a settings YAML file to load in addition to environment variables.",
    )
    discover_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for replies (defaults to the configured discovery timeout).",
    )
    discover_parser.add_argument(
        "--devices",
        action="store_true",
        help="Also list the configured devices of every server found.",
    )

    args = parser.parse_args(argv)

    if args.command == "decode":
        try:
            result = decode_command(
                args.file,
                bayer_pattern=args.bayer,
                width=args.width,
                height=args.height,
                histogram_bins=args.histogram,
            )
        except (OSError, ValueError) as exc:
            logger.error("cli.decode.failed file=%s error=%s", args.file, exc)
            return 1
        print(json.dumps(result, indent=2))
        return 0

    if args.command == "discover":
        settings = load_settings(config_path=args.config)
        servers = asyncio.run(discover_command(settings, timeout=args.timeout, list_devices=args.devices))
        print(json.dumps(servers, indent=2))
        return 0

    # default to server mode
    config_path: Optional[str] = getattr(args, "config", None)
    settings = load_settings(config_path=config_path)
    if getattr(args, "simulate", False):
        settings.force_simulation = True
    _configure_serve_logging(settings)
    asyncio.run(run_server(settings))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
