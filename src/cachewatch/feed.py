import asyncio
import concurrent.futures
import json
import threading
from typing import TextIO

import structlog

from cachewatch.events import parse_event
from cachewatch.metrics import MonitorMetrics
from cachewatch.models import RequestStartEvent
from cachewatch.monitor import CacheAnomalyMonitor

logger = structlog.get_logger()

# lines buffered ahead of the monitor before the reader waits
_QUEUE_SIZE = 1024


def _post(
    loop: "asyncio.AbstractEventLoop",
    queue: "asyncio.Queue[str]",
    line: "str",
) -> "bool":
    """
    hands a line to the feed loop from the reader thread, waiting
    while the queue is full. Returns False once the loop is gone.
    """
    if loop.is_closed():
        return False
    try:
        asyncio.run_coroutine_threadsafe(queue.put(line), loop).result()
    except (RuntimeError, concurrent.futures.CancelledError):
        return False
    return True


class EventFeed:
    """
    EventFeed reads gateway events as JSON lines from a stream and
    hands them to the monitor. Reading happens on a daemon thread so
    the event loop stays free for notice delivery. The loop runs until
    the stream is exhausted or stop() is called.
    """

    def __init__(
        self,
        stream: "TextIO",
        monitor: "CacheAnomalyMonitor",
        metrics: "MonitorMetrics",
    ) -> "None":
        self._stream = stream
        self._monitor = monitor
        self._metrics = metrics
        self._lines: "int" = 0
        self._stop_event: "asyncio.Event" = asyncio.Event()

    @property
    def lines_read(self) -> "int":
        return self._lines

    def stop(self) -> "None":
        """
        signals the feed loop to stop after the current line.
        """
        self._stop_event.set()

    async def run(self) -> "None":
        logger.info("event_feed_start")
        if not self._stop_event.is_set():
            await self._consume()
        logger.info("event_feed_end", lines=self._lines)

    async def _consume(self) -> "None":
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[str]" = asyncio.Queue(maxsize=_QUEUE_SIZE)
        # a daemon thread, so a reader parked on an idle pipe never
        # holds up interpreter or event loop shutdown
        reader = threading.Thread(
            target=self._read_lines,
            args=(loop, queue),
            name="cachewatch-feed",
            daemon=True,
        )
        reader.start()

        while not self._stop_event.is_set():
            read = asyncio.ensure_future(queue.get())
            stopped = asyncio.ensure_future(self._stop_event.wait())
            done, _ = await asyncio.wait(
                {read, stopped},
                return_when=asyncio.FIRST_COMPLETED,
            )
            stopped.cancel()

            if read not in done:
                read.cancel()
                break

            line = read.result()
            # the reader posts "" once the stream is exhausted
            if not line:
                logger.info("event_feed_eof")
                break

            self.handle_line(line)

    def _read_lines(
        self,
        loop: "asyncio.AbstractEventLoop",
        queue: "asyncio.Queue[str]",
    ) -> "None":
        try:
            for line in iter(self._stream.readline, ""):
                if not _post(loop, queue, line):
                    return
        except (OSError, ValueError) as e:
            logger.warning("event_feed_read_failed", error=str(e))
        _post(loop, queue, "")

    def handle_line(self, line: "str") -> "None":
        line = line.strip()
        if not line:
            return
        self._lines += 1

        try:
            event = parse_event(json.loads(line))
        except (ValueError, OverflowError, RecursionError) as e:
            logger.warning("event_feed_malformed_line", line=self._lines, error=str(e))
            self._metrics.inc_ingest_error("parse")
            return

        if isinstance(event, RequestStartEvent):
            self._monitor.ingest_request_start(event)
        else:
            self._monitor.ingest_request_completion(event)
