import asyncio
import signal
import sys
from typing import TextIO

import structlog
from prometheus_client import start_http_server

from cachewatch.cli import parse_args
from cachewatch.config import Config
from cachewatch.dispatcher import AlertDispatcher
from cachewatch.feed import EventFeed
from cachewatch.flag_store import FileFlagStore, FlagStore, MemoryFlagStore
from cachewatch.logging import setup_logging
from cachewatch.metrics import MonitorMetrics
from cachewatch.monitor import CacheAnomalyMonitor
from cachewatch.normalizer import DenominatorPolicy
from cachewatch.notifier.base import NoticeSender
from cachewatch.notifier.log import LogNoticeSender
from cachewatch.notifier.webhook import WebhookNoticeSender

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _build_sender(config: "Config") -> "NoticeSender":
    if config.webhook_enabled:
        logger.info("notice_sender_enabled", sender="webhook")
        return WebhookNoticeSender(config.webhook_url, timeout=config.notice_timeout)

    logger.info("notice_sender_enabled", sender="log")
    return LogNoticeSender()


def _build_flag_store(config: "Config") -> "FlagStore":
    if config.state_file:
        return FileFlagStore(config.state_file)

    # without a state file the monitor is simply on for this process
    return MemoryFlagStore(enabled=True)


def _open_events(path: "str") -> "TextIO":
    if path == "-":
        return sys.stdin
    return open(path, encoding="utf-8")


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    metrics = MonitorMetrics()
    sender = _build_sender(config)
    dispatcher = AlertDispatcher(
        sender, metrics, send_timeout_seconds=config.notice_timeout
    )
    monitor = CacheAnomalyMonitor(
        dispatcher,
        metrics,
        _build_flag_store(config),
        policy=DenominatorPolicy(frozenset(config.subtract_cache_read_clis)),
        supported_clis=config.supported_clis,
    )

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    stream = _open_events(config.events_file)

    async def _run() -> "None":
        feed = EventFeed(stream, monitor, metrics)
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the feed
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, feed.stop)

        monitor.start()
        try:
            await feed.run()
        finally:
            logger.info("shutting_down")
            monitor.stop()
            await dispatcher.drain()
            dispatcher.close(timeout=config.notice_timeout)
            await sender.close()
            logger.info("shutdown_complete")

    try:
        asyncio.run(_run())
    finally:
        if stream is not sys.stdin:
            stream.close()


if __name__ == "__main__":
    main()
