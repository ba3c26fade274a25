"""
Badge Relay - Entry point.

Listens for HTTP requests to badge apps in the GNOME Shell dock and relays
them to D-Bus as signals.
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from badge_relay.core import (
    ConfigError,
    LoggerRelayLog,
    Settings,
    logfmt_formatter,
)
from badge_relay.server import RelayService, create_app

__all__ = ["main"]

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="badge-relay",
        description="Listens for HTTP requests to badge apps in the Gnome Shell"
        " dock and relays the requests to dbus",
    )
    parser.add_argument(
        "--port", type=int, help="port to start http->dbus relay service on"
    )
    parser.add_argument(
        "--host", help="host interface to start http->dbus relay service on"
    )
    parser.add_argument("--dest", help="dbus destination")
    parser.add_argument("--field-path", help="dbus path")
    parser.add_argument(
        "--field-interface", help="dbus interface name (excluding method name)"
    )
    parser.add_argument(
        "--field-member", help="dbus method name (excluding interface name)"
    )
    parser.add_argument("--log-level", default="INFO", help="logging level")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Merge defaults, GSBADGE_* environment variables and command-line flags."""
    overrides = {
        name: value
        for name in Settings.model_fields
        if (value := getattr(args, name, None)) is not None
    }
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e


async def serve(settings: Settings) -> None:
    """Build the relay and serve it until shutdown.

    Raises:
        ConfigError: If the configuration is invalid or D-Bus is unreachable.
    """
    import uvicorn

    relay = await RelayService.create(
        settings.relay_config(),
        log=LoggerRelayLog(logging.getLogger("badge_relay.relay")),
    )

    logger.info(f"Starting http -> DBus relay on {relay.listen_addr}")
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(relay),
            host=relay.config.host,
            port=relay.config.port,
            log_config=None,
        )
    )
    await server.serve()


def configure_logging(level: str) -> None:
    """Send all log records to stderr as logfmt lines."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logfmt_formatter())
    logging.basicConfig(level=level.upper(), handlers=[handler])


def main(argv: list[str] | None = None) -> None:
    """Run the relay."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        asyncio.run(serve(load_settings(args)))
    except ConfigError as e:
        print(f"error creating http -> DBus relay: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
