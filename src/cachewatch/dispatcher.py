import asyncio
import concurrent.futures
import math
import threading

import structlog

from cachewatch.evaluator import Anomaly
from cachewatch.metrics import MonitorMetrics
from cachewatch.models import Notice
from cachewatch.normalizer import MINUTE_MS
from cachewatch.notifier.base import NoticeSender

logger = structlog.get_logger()

ALERT_DEDUP_MS = 15 * MINUTE_MS
_DEFAULT_SEND_TIMEOUT_SECONDS = 5.0


def format_pct(value: "float") -> "str":
    if not math.isfinite(value):
        return "-"
    return f"{value * 100:.2f}%"


def format_ratio(value: "float") -> "str":
    if not math.isfinite(value):
        return "-"
    return f"{value:.2f}x"


def build_alert_notice(anomaly: "Anomaly") -> "Notice":
    """
    formats the warning notice for one anomalous group.
    """
    group, row = anomaly.group, anomaly.row
    observe, baseline = row.observe, row.baseline

    if row.cold_start:
        window_label = f"Cold start ({row.observe_minutes}m)"
    else:
        window_label = f"Recent ({row.observe_minutes}m)"

    body = "\n".join(
        [
            f"CLI: {group.key.cli_key}",
            f"Provider: {group.provider_name} (#{group.key.provider_id})",
            f"Model: {group.key.model}",
            (
                f"{window_label}: hit rate {format_pct(row.observe_hit_rate)}"
                f" · read tokens {observe.cache_read_tokens}"
                f" · create tokens {observe.cache_create_tokens}"
                f" · denominator tokens {observe.denom_tokens}"
                f" · successful requests {observe.success_requests}"
            ),
            (
                f"Create share {format_pct(observe.create_share)}"
                f" · create/read {format_ratio(observe.create_read_ratio)}"
            ),
            (
                f"Baseline (45m): hit rate {format_pct(row.baseline_hit_rate)}"
                f" · denominator tokens {baseline.denom_tokens}"
                f" · successful requests {baseline.success_requests}"
            ),
        ]
    )
    return Notice(level="warning", title=f"Cache anomaly ({anomaly.reason})", body=body)


class AlertDispatcher:
    """
    AlertDispatcher turns anomalies into notices, suppressing
    repeats of the same group within the dedup window, and
    delivers notices through a NoticeSender on a best-effort basis.
    """

    def __init__(
        self,
        sender: "NoticeSender",
        metrics: "MonitorMetrics",
        send_timeout_seconds: "float" = _DEFAULT_SEND_TIMEOUT_SECONDS,
        dedup_ms: "int" = ALERT_DEDUP_MS,
    ) -> "None":
        self._sender = sender
        self._metrics = metrics
        self._timeout = send_timeout_seconds
        self._dedup_ms = dedup_ms
        self._pending: "set[asyncio.Task[bool]]" = set()
        # background loop for callers outside any event loop
        self._lock: "threading.Lock" = threading.Lock()
        self._loop: "asyncio.AbstractEventLoop | None" = None
        self._thread: "threading.Thread | None" = None
        self._background: "set[concurrent.futures.Future[bool]]" = set()

    def prepare_alert(self, anomaly: "Anomaly", now_ms: "int") -> "Notice | None":
        """
        returns the notice for an anomaly, or None when the group
        already alerted within the dedup window. Marks the group
        as alerted.
        """
        group, row = anomaly.group, anomaly.row
        last_alert_at = group.last_alert_at_ms or 0
        if now_ms - last_alert_at < self._dedup_ms:
            logger.debug(
                "alert_suppressed",
                group=str(group.key),
                reason=anomaly.reason,
                last_alert_at_ms=last_alert_at,
            )
            self._metrics.inc_alert_suppressed()
            return None

        group.last_alert_at_ms = now_ms
        notice = build_alert_notice(anomaly)

        logger.warning(
            "cache_anomaly",
            reason=anomaly.reason,
            cold_start=row.cold_start,
            observe_minutes=row.observe_minutes,
            cli_key=group.key.cli_key,
            provider_id=group.key.provider_id,
            provider_name=group.provider_name,
            model=group.key.model,
            baseline=row.baseline.as_dict(),
            recent=row.recent.as_dict(),
            observe=row.observe.as_dict(),
            baseline_hit_rate=row.baseline_hit_rate,
            recent_hit_rate=row.recent_hit_rate,
            observe_hit_rate=row.observe_hit_rate,
            observe_create_share=row.observe.create_share,
            observe_create_read_ratio=row.observe.create_read_ratio,
        )
        self._metrics.inc_alert(anomaly.reason)
        return notice

    def deliver(self, notice: "Notice") -> "None":
        """
        sends a notice without making the caller wait for it. Inside a
        running event loop the send becomes a task on that loop. Plain
        threads hand it to the dispatcher's own background loop, which
        is reused so senders holding loop-bound clients keep working.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver_in_background(notice)
            return

        task = loop.create_task(self._safe_send(notice))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> "None":
        """
        waits for all sends scheduled on the running loop to finish.
        """
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def flush(self, timeout: "float | None" = None) -> "None":
        """
        blocks until background sends queued so far have finished.
        """
        with self._lock:
            futures = list(self._background)
        if futures:
            concurrent.futures.wait(futures, timeout=timeout)

    def close(self, timeout: "float | None" = None) -> "None":
        """
        flushes background sends and stops the background loop.
        """
        self.flush(timeout)
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None or thread is None:
            return

        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        if not thread.is_alive():
            loop.close()

    def _deliver_in_background(self, notice: "Notice") -> "None":
        future = asyncio.run_coroutine_threadsafe(
            self._safe_send(notice), self._background_loop()
        )
        with self._lock:
            self._background.add(future)
        future.add_done_callback(self._forget_background)

    def _forget_background(self, future: "concurrent.futures.Future[bool]") -> "None":
        with self._lock:
            self._background.discard(future)

    def _background_loop(self) -> "asyncio.AbstractEventLoop":
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=loop.run_forever,
                    name="cachewatch-notices",
                    daemon=True,
                )
                thread.start()
                self._loop, self._thread = loop, thread
            return self._loop

    async def _safe_send(self, notice: "Notice") -> "bool":
        try:
            ok = await asyncio.wait_for(
                self._sender.send(notice.level, notice.title, notice.body),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.error(
                "notice_send_timeout",
                sender=self._sender.name,
                title=notice.title,
                timeout=self._timeout,
            )
            self._metrics.inc_notice_failure(notice.level)
            return False
        except Exception:
            logger.exception(
                "notice_send_failed",
                sender=self._sender.name,
                title=notice.title,
            )
            self._metrics.inc_notice_failure(notice.level)
            return False

        if not ok:
            logger.error(
                "notice_not_delivered",
                sender=self._sender.name,
                title=notice.title,
            )
            self._metrics.inc_notice_failure(notice.level)
        return ok
