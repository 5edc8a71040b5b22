#!/usr/bin/env python3
"""Live traffic replayer entry point.

    cat access_log | python main.py --host http://canary:8080 --lag 5
    tail -f access_log | python main.py --host http://a --host http://b --load 0.1
    python main.py --file /var/log/httpd/access_log --maxrate 50
"""

import argparse
import asyncio
import logging
import signal
import sys

from replayer.config import ConfigError, load_config, load_yaml_config
from replayer.scheduler import ReplayScheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replay API requests from a live access log against other hosts"
    )
    parser.add_argument(
        "--host", dest="hosts", action="append", default=None,
        help="Host to forward requests to; repeat for round-robin (default: http://localhost)",
    )
    parser.add_argument("--path", default=None,
                        help="Path prefix to rewrite the matched API prefix to")
    parser.add_argument("--key", default=None,
                        help="API key; outgoing api_key parameters are rewritten to it")
    parser.add_argument("--lag", type=int, default=None,
                        help="Wait at least N seconds before forwarding requests (default: 0)")
    parser.add_argument("--load", type=float, default=None,
                        help="Load multiplier, e.g. 0.1 forwards 10%% of requests (default: 1)")
    parser.add_argument("--maxrate", type=int, default=None,
                        help="Maximum requests forwarded per second, 0 for no cap (default: 200)")
    parser.add_argument("--cert", default=None,
                        help="Client certificate (.pem) to present when forwarding")
    parser.add_argument("--limit", type=int, default=None,
                        help="Stop after this many requests have been received for replay")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Quit after this many seconds of input inactivity (default: 10)")
    parser.add_argument("--match", dest="match_prefix", default=None,
                        help="API path prefix to look for (default: /nitro/api)")
    parser.add_argument("--exclude", dest="exclude_marker", default=None,
                        help="Skip lines containing this marker (default: /nitro/api/v1/)")
    parser.add_argument("--file", dest="input_file", default=None,
                        help="Tail this log file instead of reading stdin")
    parser.add_argument("--from-start", action="store_true",
                        help="With --file, replay the existing file contents first")
    parser.add_argument("--request-timeout", type=float, default=None,
                        help="Per-request timeout in seconds (default: none)")
    parser.add_argument("--insecure", action="store_true",
                        help="Do not verify destination TLS certificates")
    parser.add_argument("--config", default=None,
                        help="Path to YAML file with option defaults")
    parser.add_argument("--log-level", default=None,
                        help="DEBUG shows every replayed request (default: INFO)")
    return parser


def setup_logging(level: str):
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    # keep DEBUG output to one line per replay
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run(config) -> dict:
    scheduler = ReplayScheduler(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, scheduler.stop)
    return await scheduler.run()


def main(argv: list[str] | None = None) -> int:
    parser = build_cli_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigError as e:
        parser.error(str(e))

    setup_logging(config.log_level)
    if args.config:
        logger.info("Loaded YAML config from %s", args.config)
    asyncio.run(run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
