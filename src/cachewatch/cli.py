import argparse

from cachewatch.config import Config
from cachewatch.logging import LOG_FORMATS


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="cachewatch",
        description="Cache hit-rate anomaly monitor for AI CLI gateway traffic",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address to expose metrics on (default: :9186)",
    )
    parser.add_argument(
        "--events.file",
        dest="events_file",
        default="-",
        help="JSON lines file with gateway events, - for stdin (default: -)",
    )
    parser.add_argument(
        "--notice.timeout",
        dest="notice_timeout",
        type=float,
        default=5.0,
        help="Timeout in seconds for delivering a notice (default: 5)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=LOG_FORMATS,
        help="Log output format (default: console)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.events_file = args.events_file
    config.notice_timeout = args.notice_timeout
    config.log_level = args.log_level
    config.log_format = args.log_format
    return config
