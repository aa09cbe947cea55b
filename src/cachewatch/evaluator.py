from dataclasses import dataclass, field

import structlog

from cachewatch.models import GroupKey, WindowSums
from cachewatch.normalizer import MINUTE_MS, minute_of
from cachewatch.retention import SAMPLE_RETENTION_MINUTES
from cachewatch.ring import WINDOW_MINUTES
from cachewatch.rules import GroupEval, Thresholds, should_alert
from cachewatch.state import GroupState

logger = structlog.get_logger()

BASELINE_MINUTES = 45
RECENT_MINUTES = 15
COLD_START_MINUTES = 10
COLD_START_WINDOW_MS = COLD_START_MINUTES * MINUTE_MS
EVAL_INTERVAL_MS = 60_000
# number of busiest groups audited per cycle
SELF_CHECK_GROUPS = 20


@dataclass(frozen=True, slots=True)
class Windows:
    """
    Windows holds the inclusive minute ranges used by one
    evaluation cycle.
    """

    minute_now: "int"
    baseline: "tuple[int, int]"
    recent: "tuple[int, int]"
    observe: "tuple[int, int]"
    observe_minutes: "int"
    cold_start: "bool"


def compute_windows(now_ms: "int", enabled_at_ms: "int") -> "Windows":
    """
    computes baseline, recent and observe windows. During the first
    COLD_START_MINUTES after enabling, the observe window grows one
    minute at a time instead of spanning the full recent window.
    """
    minute_now = minute_of(now_ms)
    baseline = (
        minute_now - (BASELINE_MINUTES + RECENT_MINUTES - 1),
        minute_now - RECENT_MINUTES,
    )
    recent = (minute_now - (RECENT_MINUTES - 1), minute_now)

    cold_start = enabled_at_ms > 0 and now_ms - enabled_at_ms < COLD_START_WINDOW_MS
    if cold_start:
        observe_minutes = min(
            COLD_START_MINUTES, (now_ms - enabled_at_ms) // MINUTE_MS + 1
        )
    else:
        observe_minutes = RECENT_MINUTES

    return Windows(
        minute_now=minute_now,
        baseline=baseline,
        recent=recent,
        observe=(minute_now - (observe_minutes - 1), minute_now),
        observe_minutes=observe_minutes,
        cold_start=cold_start,
    )


@dataclass(slots=True)
class SelfCheckFailure:
    group: "GroupState"
    ring: "dict[str, WindowSums]"
    slow: "dict[str, WindowSums]"

    def details(self) -> "dict[str, object]":
        return {
            "group": str(self.group.key),
            "provider_name": self.group.provider_name,
            "ring": {k: v.as_dict() for k, v in self.ring.items()},
            "slow": {k: v.as_dict() for k, v in self.slow.items()},
        }


@dataclass(slots=True)
class Anomaly:
    group: "GroupState"
    row: "GroupEval"
    reason: "str"


@dataclass(slots=True)
class EvaluationResult:
    windows: "Windows"
    rows: "list[tuple[GroupState, GroupEval]]" = field(default_factory=list)
    anomalies: "list[Anomaly]" = field(default_factory=list)
    evicted: "int" = 0
    self_check_failure: "SelfCheckFailure | None" = None


class Evaluator:
    """
    Evaluator computes the windows of every tracked group,
    audits the busiest groups against their raw samples and
    applies the anomaly rules.

    It does not decide whether an anomaly is notified: dedup
    belongs to the dispatcher.
    """

    def __init__(
        self,
        thresholds: "Thresholds | None" = None,
        self_check_groups: "int" = SELF_CHECK_GROUPS,
    ) -> "None":
        self._thresholds = thresholds or Thresholds()
        self._self_check_groups = self_check_groups

    def evaluate(
        self,
        groups: "dict[GroupKey, GroupState]",
        now_ms: "int",
        enabled_at_ms: "int",
    ) -> "EvaluationResult":
        """
        evaluates all groups in place. Groups unseen for longer than
        the ring window are evicted from the given mapping.
        """
        windows = compute_windows(now_ms, enabled_at_ms)
        result = EvaluationResult(windows=windows)

        # evict groups whose data has fully left the ring
        stale = [
            key
            for key, group in groups.items()
            if group.last_seen_minute < windows.minute_now - WINDOW_MINUTES
        ]
        for key in stale:
            del groups[key]
        result.evicted = len(stale)

        for group in groups.values():
            result.rows.append((group, self._evaluate_group(group, windows)))

        failure = self._self_check(result.rows, windows)
        if failure is not None:
            # wrong arithmetic must never produce alerts
            result.self_check_failure = failure
            return result

        for group, row in result.rows:
            reason = should_alert(row, self._thresholds)
            if reason is not None:
                result.anomalies.append(Anomaly(group=group, row=row, reason=reason))

        return result

    @staticmethod
    def _evaluate_group(group: "GroupState", windows: "Windows") -> "GroupEval":
        baseline = group.ring.sum_range(*windows.baseline)
        recent = group.ring.sum_range(*windows.recent)
        if windows.cold_start:
            observe = group.ring.sum_range(*windows.observe)
        else:
            observe = recent

        return GroupEval(
            baseline=baseline,
            recent=recent,
            observe=observe,
            observe_minutes=windows.observe_minutes,
            cold_start=windows.cold_start,
        )

    def _self_check(
        self,
        rows: "list[tuple[GroupState, GroupEval]]",
        windows: "Windows",
    ) -> "SelfCheckFailure | None":
        """
        recomputes the window sums of the busiest groups from their raw
        samples and compares them with the ring aggregates. Returns the
        first mismatch found.
        """
        busiest = sorted(rows, key=lambda r: r[1].total_denom_tokens, reverse=True)
        min_keep = windows.minute_now - SAMPLE_RETENTION_MINUTES

        for group, row in busiest[: self._self_check_groups]:
            group.samples.prune(min_keep)

            slow_baseline = group.samples.sum_range(*windows.baseline)
            slow_recent = group.samples.sum_range(*windows.recent)
            if windows.cold_start:
                slow_observe = group.samples.sum_range(*windows.observe)
            else:
                slow_observe = slow_recent

            if (
                row.baseline != slow_baseline
                or row.recent != slow_recent
                or row.observe != slow_observe
            ):
                return SelfCheckFailure(
                    group=group,
                    ring={
                        "baseline": row.baseline,
                        "recent": row.recent,
                        "observe": row.observe,
                    },
                    slow={
                        "baseline": slow_baseline,
                        "recent": slow_recent,
                        "observe": slow_observe,
                    },
                )

        logger.debug(
            "self_check_passed",
            audited=min(len(busiest), self._self_check_groups),
        )
        return None
