from dataclasses import dataclass, field

from cachewatch.correlator import TraceModelCorrelator
from cachewatch.models import GroupKey, Sample
from cachewatch.retention import SAMPLE_RETENTION_MINUTES, SampleBuffer
from cachewatch.ring import MinuteRing


@dataclass(slots=True)
class GroupState:
    """
    GroupState holds the rolling statistics of one
    (cli, provider, model) group.
    """

    key: "GroupKey"
    # display name of the provider, last seen wins
    provider_name: "str"
    last_seen_minute: "int"
    ring: "MinuteRing" = field(default_factory=MinuteRing)
    samples: "SampleBuffer" = field(default_factory=SampleBuffer)
    last_alert_at_ms: "int | None" = None

    def record(self, sample: "Sample") -> "None":
        self.last_seen_minute = sample.minute
        self.ring.add(sample)
        self.samples.append(sample)
        self.samples.prune(sample.minute - SAMPLE_RETENTION_MINUTES)


@dataclass(slots=True)
class MonitorState:
    """
    MonitorState is everything the monitor knows. It is owned by a
    single CacheAnomalyMonitor and guarded by its lock.
    """

    enabled: "bool" = False
    # 0 when disabled
    enabled_at_ms: "int" = 0
    groups: "dict[GroupKey, GroupState]" = field(default_factory=dict)
    traces: "TraceModelCorrelator" = field(default_factory=TraceModelCorrelator)
    last_eval_ms: "int" = 0
    # survives reset() so a failure storm cannot bypass the cooldown
    last_self_check_failure_ms: "int" = 0

    def reset(self) -> "None":
        self.groups.clear()
        self.traces.clear()
        self.last_eval_ms = 0
        self.enabled_at_ms = 0
