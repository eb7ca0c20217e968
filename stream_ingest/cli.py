"""CLI entry point for the stream connector."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import threading
from typing import List, Optional

from common.config import get_settings
from common.logging_config import configure_logging

from .channels import default_channel_descriptors, load_channel_descriptors
from .connector import StreamConnector
from .core.errors import StreamIngestError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stream_ingest", description="Construction stream connector")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="connect all channels and dispatch until interrupted")
    run.add_argument("--channels-file", default=None, help="JSON file with channel descriptors")
    run.add_argument("--api-port", type=int, default=None, help="serve the observability API on this port")
    run.add_argument("--log-level", default=None)

    channels = sub.add_parser("channels", help="print the configured channels and exit")
    channels.add_argument("--channels-file", default=None)
    channels.add_argument("--log-level", default=None)
    return p


def _cmd_channels(args: argparse.Namespace) -> int:
    path = args.channels_file or get_settings().channels_file
    descriptors = load_channel_descriptors(path) if path else default_channel_descriptors()
    for d in descriptors:
        print(json.dumps(d.to_channel().to_dict()))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.channels_file:
        settings = dataclasses.replace(settings, channels_file=args.channels_file)

    connector = StreamConnector.from_settings(settings)
    connector.initialize()

    api_port = args.api_port or settings.api_port
    stop = threading.Event()
    try:
        if api_port:
            import uvicorn

            from .api import create_app

            logger.info("[CLI] Serving API on port %d", api_port)
            uvicorn.run(create_app(connector), host="0.0.0.0", port=api_port, log_level="warning")
        else:
            logger.info("[CLI] Stream connector running, Ctrl+C to stop")
            while not stop.wait(60.0):
                logger.info("[CLI] %s", connector.get_statistics().to_dict())
    except KeyboardInterrupt:
        logger.info("[CLI] Interrupted")
    finally:
        connector.shutdown()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level or get_settings().log_level)

    try:
        if args.command == "channels":
            return _cmd_channels(args)
        return _cmd_run(args)
    except StreamIngestError as e:
        logger.error("[CLI] %s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
