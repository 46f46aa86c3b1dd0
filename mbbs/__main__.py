"""
MBBS Entry Point

Usage:
    python -m mbbs start            # Run the bridge
    python -m mbbs discover         # List nearby BLE radios
    python -m mbbs dump FILE        # Pretty-print an archive file
    python -m mbbs stats            # Show stored usage statistics
    python -m mbbs config --show    # Configuration helpers
"""

import argparse
import asyncio
import json
import logging
import logging.handlers
import sys
from pathlib import Path

from . import __version__


def setup_logging(level: str, log_file: str | None = None, max_size_mb: int = 10, backup_count: int = 3):
    """Configure logging for the application."""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        ))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mbbs",
        description="MBBS - Meshtastic to Telegram bridge"
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"MBBS {__version__}"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=Path("config.toml"),
        help="Path to configuration file (default: config.toml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config, INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("start", help="Start the bridge")
    subparsers.add_parser("discover", help="Discover BLE radios")

    dump_parser = subparsers.add_parser("dump", help="Dump and pretty-print an archive file")
    dump_parser.add_argument("file", type=Path, help="Path to the archive file")

    subparsers.add_parser("stats", help="Show stored usage statistics")

    config_parser = subparsers.add_parser("config", help="Configuration helpers")
    config_parser.add_argument("--show", action="store_true", help="Show current config")
    config_parser.add_argument("--validate", action="store_true", help="Validate config")
    config_parser.add_argument("--init", action="store_true", help="Write a default config file")

    return parser


def cmd_start(config, logger) -> int:
    from .core.bridge import start

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        return 1

    logger.info(f"Starting MBBS v{__version__}")
    start(config)
    return 0


def cmd_discover(config, logger) -> int:
    from .errors import ConnectError
    from .mesh.transport import MeshtasticTransport

    transport = MeshtasticTransport("ble")
    try:
        devices = asyncio.run(transport.discover(config.meshtastic.discover_timeout_seconds))
    except ConnectError as e:
        logger.error(str(e))
        return 1

    for device in devices:
        logger.info(f"Found BLE device: name={device.name!r} mac={device.address}")
    if not devices:
        logger.info("No BLE devices found")
    return 0


def cmd_dump(path: Path, logger) -> int:
    from .db.archive import read_archive
    from .utils.formatting import format_node_id

    try:
        for envelope in read_archive(path):
            record = envelope.to_dict()
            record["fromId"] = format_node_id(envelope.from_num)
            record["toId"] = format_node_id(envelope.to_num)
            if "decoded" in record:
                record["decoded"]["portname"] = envelope.body.port_name
            print(json.dumps(record, indent=2))
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        return 1
    return 0


def cmd_stats(config) -> int:
    from .db.storage import Storage

    storage = Storage.load(Path(config.storage.path))
    storage.print_stats()
    return 0


def cmd_config(args, config, logger) -> int:
    from .config import create_default_config

    if args.init:
        if args.config.exists():
            logger.error(f"{args.config} already exists")
            return 1
        create_default_config(args.config)
        logger.info(f"Wrote default config to {args.config}")
        return 0

    if args.validate:
        errors = config.validate()
        for error in errors:
            print(f"ERROR: {error}")
        if not errors:
            print("Configuration is valid")
        return 1 if errors else 0

    # --show is the default
    import toml
    data = config._to_dict()
    if data["telegram"]["bot_token"]:
        data["telegram"]["bot_token"] = "********"
    print(toml.dumps(data))
    return 0


def main():
    """Main entry point for MBBS."""
    parser = build_parser()
    args = parser.parse_args()

    from .config import load_config, tomllib
    try:
        config = load_config(args.config)
    except (tomllib.TOMLDecodeError, TypeError, OSError) as e:
        print(f"Invalid configuration {args.config}: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        config.logging.max_size_mb,
        config.logging.backup_count,
    )
    logger = logging.getLogger("mbbs")

    try:
        if args.command == "discover":
            sys.exit(cmd_discover(config, logger))
        elif args.command == "dump":
            sys.exit(cmd_dump(args.file, logger))
        elif args.command == "stats":
            sys.exit(cmd_stats(config))
        elif args.command == "config":
            sys.exit(cmd_config(args, config, logger))
        else:
            # Default: run the bridge
            sys.exit(cmd_start(config, logger))
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
