import threading
import time
from typing import Callable, Iterable

import structlog

from cachewatch.correlator import TRACE_MODEL_TTL_MS
from cachewatch.dispatcher import AlertDispatcher
from cachewatch.evaluator import EVAL_INTERVAL_MS, Evaluator, SelfCheckFailure
from cachewatch.flag_store import FlagStore
from cachewatch.metrics import MonitorMetrics
from cachewatch.models import (
    GroupKey,
    Notice,
    RequestCompletionEvent,
    RequestStartEvent,
)
from cachewatch.normalizer import (
    UNKNOWN,
    DenominatorPolicy,
    extract_sample,
    is_success,
    normalize_model_name,
    normalize_provider_id,
    pick_final_attempt,
)
from cachewatch.state import GroupState, MonitorState

logger = structlog.get_logger()

DEFAULT_SUPPORTED_CLIS: "frozenset[str]" = frozenset({"claude", "codex"})
SELF_CHECK_NOTICE_COOLDOWN_MS = 10_000


def wall_clock_ms() -> "int":
    return int(time.time() * 1000)


class CacheAnomalyMonitor:
    """
    CacheAnomalyMonitor is the long-lived service behind the cache
    hit-rate anomaly feature. It owns the MonitorState, ingests
    gateway events, evaluates at most once per EVAL_INTERVAL_MS
    (piggy-backed on ingestion) and hands alerts to the dispatcher.

    Ingestion never raises: the monitor instruments a pipeline it
    must not break. A failed self-check disables the whole feature.
    """

    def __init__(
        self,
        dispatcher: "AlertDispatcher",
        metrics: "MonitorMetrics",
        flag_store: "FlagStore",
        policy: "DenominatorPolicy | None" = None,
        supported_clis: "Iterable[str]" = DEFAULT_SUPPORTED_CLIS,
        evaluator: "Evaluator | None" = None,
        clock: "Callable[[], int]" = wall_clock_ms,
    ) -> "None":
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._flag_store = flag_store
        self._policy = policy or DenominatorPolicy()
        self._supported_clis = frozenset(supported_clis)
        self._evaluator = evaluator or Evaluator()
        self._clock = clock
        self._lock: "threading.Lock" = threading.Lock()
        self._state = MonitorState()
        # flag writes happen outside _lock, ordered by sequence number
        self._persist_lock: "threading.Lock" = threading.Lock()
        self._flag_seq = 0
        self._persisted_seq = 0
        self._flag_write: "tuple[bool, int] | None" = None

    @property
    def enabled(self) -> "bool":
        with self._lock:
            return self._state.enabled

    @property
    def enabled_at_ms(self) -> "int":
        with self._lock:
            return self._state.enabled_at_ms

    @property
    def group_count(self) -> "int":
        with self._lock:
            return len(self._state.groups)

    def start(self) -> "None":
        """
        loads the persisted flag and arms the monitor accordingly.
        """
        enabled = self._flag_store.load()
        with self._lock:
            self._apply_enabled_locked(enabled, self._clock())
        logger.info("monitor_started", enabled=enabled)

    def stop(self) -> "None":
        """
        drops all in-memory statistics. The persisted flag is left
        untouched so the next start() resumes the user's choice.
        """
        with self._lock:
            self._apply_enabled_locked(False, self._clock())
        logger.info("monitor_stopped")

    def set_enabled(self, enabled: "bool") -> "None":
        """
        toggles the monitor. Any actual change resets all state;
        enabling also arms the cold-start window.
        """
        normalized = enabled is True
        with self._lock:
            if self._state.enabled == normalized:
                return
            self._apply_enabled_locked(normalized, self._clock())
            self._queue_flag_write_locked(normalized)
            flag_write = self._take_flag_write_locked()
        self._persist_flag(flag_write)
        logger.info("monitor_toggled", enabled=normalized)

    def ingest_request_start(self, event: "RequestStartEvent") -> "None":
        try:
            with self._lock:
                self._ingest_start_locked(event, self._clock())
        except Exception:
            logger.exception(
                "ingest_request_start_error",
                trace_id=getattr(event, "trace_id", None),
            )
            self._metrics.inc_ingest_error("request_start")

    def ingest_request_completion(self, event: "RequestCompletionEvent") -> "None":
        try:
            with self._lock:
                notices = self._ingest_completion_locked(event, self._clock())
                flag_write = self._take_flag_write_locked()
            self._persist_flag(flag_write)
            self._deliver(notices)
        except Exception:
            logger.exception(
                "ingest_request_completion_error",
                trace_id=getattr(event, "trace_id", None),
            )
            self._metrics.inc_ingest_error("request_completion")

    def maybe_evaluate(self) -> "None":
        """
        runs an evaluation cycle if the interval has elapsed.
        """
        with self._lock:
            notices = self._maybe_evaluate_locked(self._clock())
            flag_write = self._take_flag_write_locked()
        self._persist_flag(flag_write)
        self._deliver(notices)

    def _deliver(self, notices: "list[Notice]") -> "None":
        for notice in notices:
            self._dispatcher.deliver(notice)

    def _ingest_start_locked(
        self,
        event: "RequestStartEvent",
        now_ms: "int",
    ) -> "None":
        if not self._state.enabled:
            return
        if not event.trace_id:
            return
        if event.cli_key not in self._supported_clis:
            return

        model = normalize_model_name(event.requested_model)
        self._state.traces.record(event.trace_id, model, now_ms)

    def _drop(self, reason: "str", event: "RequestCompletionEvent") -> "list[Notice]":
        logger.debug(
            "sample_dropped",
            reason=reason,
            trace_id=event.trace_id,
            cli_key=event.cli_key,
        )
        self._metrics.inc_dropped(reason)
        return []

    def _ingest_completion_locked(
        self,
        event: "RequestCompletionEvent",
        now_ms: "int",
    ) -> "list[Notice]":
        state = self._state
        if not state.enabled:
            return []
        if not event.trace_id:
            return self._drop("missing_trace_id", event)
        if event.cli_key not in self._supported_clis:
            return self._drop("unsupported_cli", event)
        if not is_success(event):
            return self._drop("not_success", event)

        evicted = state.traces.evict_before(now_ms - TRACE_MODEL_TTL_MS)
        if evicted:
            logger.debug("trace_models_evicted", count=evicted)

        attempt = pick_final_attempt(event.attempts)
        if attempt is None:
            return self._drop("no_attempt", event)

        provider_id = normalize_provider_id(attempt.provider_id)
        if provider_id is None:
            return self._drop("invalid_provider", event)

        provider_name = (attempt.provider_name or "").strip() or UNKNOWN
        model = state.traces.take(event.trace_id) or UNKNOWN

        sample = extract_sample(self._policy, event, now_ms)
        if sample is None:
            return self._drop("zero_denominator", event)

        key = GroupKey(cli_key=event.cli_key, provider_id=provider_id, model=model)
        group = state.groups.get(key)
        if group is None:
            group = GroupState(
                key=key,
                provider_name=provider_name,
                last_seen_minute=sample.minute,
            )
            state.groups[key] = group
            logger.debug("group_created", group=str(key))
        else:
            group.provider_name = provider_name

        group.record(sample)
        self._metrics.inc_sample(event.cli_key)
        self._metrics.set_tracked_groups(len(state.groups))

        return self._maybe_evaluate_locked(now_ms)

    def _maybe_evaluate_locked(self, now_ms: "int") -> "list[Notice]":
        state = self._state
        if not state.enabled:
            return []
        if now_ms - state.last_eval_ms < EVAL_INTERVAL_MS:
            return []
        state.last_eval_ms = now_ms

        cycle_start = time.monotonic()
        result = self._evaluator.evaluate(state.groups, now_ms, state.enabled_at_ms)
        self._metrics.observe_evaluation_duration(time.monotonic() - cycle_start)

        if result.evicted:
            logger.debug("groups_evicted", count=result.evicted)
        self._metrics.set_tracked_groups(len(state.groups))

        if result.self_check_failure is not None:
            return self._disable_due_to_self_check_locked(
                now_ms, result.self_check_failure
            )

        notices: "list[Notice]" = []
        for anomaly in result.anomalies:
            notice = self._dispatcher.prepare_alert(anomaly, now_ms)
            if notice is not None:
                notices.append(notice)

        logger.debug(
            "evaluation_done",
            groups=len(result.rows),
            anomalies=len(result.anomalies),
            alerts=len(notices),
            cold_start=result.windows.cold_start,
        )
        return notices

    def _disable_due_to_self_check_locked(
        self,
        now_ms: "int",
        failure: "SelfCheckFailure",
    ) -> "list[Notice]":
        """
        force-disables the monitor after the ring aggregates disagreed
        with the raw samples. The error notice is rate limited so a
        misbehaving build cannot flood the user.
        """
        state = self._state
        self._metrics.inc_self_check_failure()
        logger.error("self_check_failed_monitor_disabled", **failure.details())

        notices: "list[Notice]" = []
        if now_ms - state.last_self_check_failure_ms >= SELF_CHECK_NOTICE_COOLDOWN_MS:
            state.last_self_check_failure_ms = now_ms
            notices.append(
                Notice(
                    level="error",
                    title="Cache anomaly monitor disabled",
                    body=(
                        "The rolling window self-check failed (likely a bug in the "
                        "statistics code), so monitoring was turned off. "
                        "See the logs for details."
                    ),
                )
            )

        self._apply_enabled_locked(False, now_ms)
        self._queue_flag_write_locked(False)
        return notices

    def _apply_enabled_locked(self, enabled: "bool", now_ms: "int") -> "None":
        self._state.reset()
        self._state.enabled = enabled
        self._state.enabled_at_ms = now_ms if enabled else 0
        self._metrics.set_enabled(enabled)
        self._metrics.set_tracked_groups(0)

    def _queue_flag_write_locked(self, enabled: "bool") -> "None":
        self._flag_seq += 1
        self._flag_write = (enabled, self._flag_seq)

    def _take_flag_write_locked(self) -> "tuple[bool, int] | None":
        flag_write, self._flag_write = self._flag_write, None
        return flag_write

    def _persist_flag(self, flag_write: "tuple[bool, int] | None") -> "None":
        """
        saves a queued flag change. Runs without the state lock so disk
        I/O never stalls ingestion; a write older than one already
        saved is skipped.
        """
        if flag_write is None:
            return
        enabled, seq = flag_write
        with self._persist_lock:
            if seq < self._persisted_seq:
                return
            self._persisted_seq = seq
            try:
                self._flag_store.save(enabled)
            except OSError:
                logger.exception("flag_store_save_failed", enabled=enabled)
