from typing import Callable, Iterator

import pytest
from prometheus_client import CollectorRegistry

from cachewatch.dispatcher import AlertDispatcher
from cachewatch.flag_store import MemoryFlagStore
from cachewatch.metrics import MonitorMetrics
from cachewatch.models import (
    GatewayAttempt,
    Notice,
    NoticeLevel,
    RequestCompletionEvent,
    RequestStartEvent,
)
from cachewatch.monitor import CacheAnomalyMonitor

MINUTE_MS = 60_000
# minute aligned start time
T0 = 28_333_334 * MINUTE_MS


class FakeClock:
    """
    manually advanced millisecond clock.
    """

    def __init__(self, now_ms: "int" = T0) -> "None":
        self.now_ms = now_ms

    def __call__(self) -> "int":
        return self.now_ms

    def advance(self, minutes: "int" = 0, ms: "int" = 0) -> "None":
        self.now_ms += minutes * MINUTE_MS + ms


class RecordingSender:
    """
    NoticeSender that keeps every notice it is asked to send.
    """

    def __init__(self, result: "bool" = True) -> "None":
        self.sent: "list[Notice]" = []
        self.result = result

    @property
    def name(self) -> "str":
        return "recording"

    async def send(
        self,
        level: "NoticeLevel",
        title: "str",
        body: "str",
    ) -> "bool":
        self.sent.append(Notice(level=level, title=title, body=body))
        return self.result

    async def close(self) -> "None":
        pass


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def metrics(registry: "CollectorRegistry") -> "MonitorMetrics":
    return MonitorMetrics(registry=registry)


@pytest.fixture()
def clock() -> "FakeClock":
    return FakeClock()


@pytest.fixture()
def sender() -> "RecordingSender":
    return RecordingSender()


@pytest.fixture()
def flag_store() -> "MemoryFlagStore":
    return MemoryFlagStore(enabled=True)


@pytest.fixture()
def dispatcher(
    sender: "RecordingSender",
    metrics: "MonitorMetrics",
) -> "Iterator[AlertDispatcher]":
    """
    dispatcher whose background notice loop is stopped after the test.
    Call flush() before looking at what a sync caller sent.
    """
    dispatcher = AlertDispatcher(sender, metrics)
    yield dispatcher
    dispatcher.close(timeout=5)


@pytest.fixture()
def monitor(
    dispatcher: "AlertDispatcher",
    metrics: "MonitorMetrics",
    flag_store: "MemoryFlagStore",
    clock: "FakeClock",
) -> "CacheAnomalyMonitor":
    """
    started monitor, enabled at T0.
    """
    mon = CacheAnomalyMonitor(dispatcher, metrics, flag_store, clock=clock)
    mon.start()
    return mon


@pytest.fixture()
def make_completion() -> "Callable[..., RequestCompletionEvent]":
    def _make(
        trace_id: "str" = "trace-1",
        cli_key: "str" = "claude",
        provider_id: "object" = 1,
        provider_name: "str" = "relay-a",
        status: "int | None" = 200,
        error_code: "str | None" = None,
        input_tokens: "object" = 0,
        cache_read: "object" = 0,
        cache_create: "object" = 0,
        **extra: "object",
    ) -> "RequestCompletionEvent":
        return RequestCompletionEvent(
            trace_id=trace_id,
            cli_key=cli_key,
            status=status,
            error_code=error_code,
            attempts=(
                GatewayAttempt(
                    provider_id=provider_id,
                    provider_name=provider_name,
                    outcome="success",
                    status=status,
                ),
            ),
            input_tokens=input_tokens,
            cache_read_input_tokens=cache_read,
            cache_creation_input_tokens=cache_create,
            **extra,
        )

    return _make


@pytest.fixture()
def make_start() -> "Callable[..., RequestStartEvent]":
    def _make(
        trace_id: "str" = "trace-1",
        cli_key: "str" = "claude",
        requested_model: "object" = "claude-sonnet-4",
    ) -> "RequestStartEvent":
        return RequestStartEvent(
            trace_id=trace_id,
            cli_key=cli_key,
            requested_model=requested_model,
        )

    return _make
