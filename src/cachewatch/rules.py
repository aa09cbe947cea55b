import math
from dataclasses import dataclass

from cachewatch.models import WindowSums

REASON_CREATE_WITHOUT_READ = "cache creation but zero reads"
REASON_CREATE_SHARE_HIGH = "cache-create share abnormally high"
REASON_CREATE_READ_IMBALANCE = "cache creation far exceeds reads"
REASON_HIT_RATE_CLIFF = "hit-rate cliff"


@dataclass(frozen=True)
class Thresholds:
    # relative drop gate
    baseline_denom_tokens_min: "int" = 10_000
    recent_denom_tokens_min: "int" = 3_000
    baseline_success_requests_min: "int" = 30
    recent_success_requests_min: "int" = 10
    baseline_hit_rate_min: "float" = 0.05
    drop_ratio_max: "float" = 0.25
    drop_abs_min: "float" = 0.05
    # absolute rules gate during cold start
    cold_denom_tokens_min: "int" = 2_000
    cold_success_requests_min: "int" = 5
    # absolute rules
    create_share_min: "float" = 0.9
    create_read_imbalance_min: "float" = 3.0


@dataclass(slots=True)
class GroupEval:
    """
    GroupEval is the per-cycle view of one group: the three
    window sums and the hit rates derived from them.
    """

    baseline: "WindowSums"
    recent: "WindowSums"
    observe: "WindowSums"
    observe_minutes: "int"
    cold_start: "bool"

    @property
    def baseline_hit_rate(self) -> "float":
        return self.baseline.hit_rate

    @property
    def recent_hit_rate(self) -> "float":
        return self.recent.hit_rate

    @property
    def observe_hit_rate(self) -> "float":
        return self.observe.hit_rate

    @property
    def total_denom_tokens(self) -> "int":
        return self.baseline.denom_tokens + self.recent.denom_tokens


def _passes_volume_gate(row: "GroupEval", thresholds: "Thresholds") -> "bool":
    if row.cold_start:
        denom_min = thresholds.cold_denom_tokens_min
        success_min = thresholds.cold_success_requests_min
    else:
        denom_min = thresholds.recent_denom_tokens_min
        success_min = thresholds.recent_success_requests_min

    return (
        row.observe.denom_tokens >= denom_min
        and row.observe.success_requests >= success_min
    )


def _is_hit_rate_cliff(row: "GroupEval", thresholds: "Thresholds") -> "bool":
    baseline, recent = row.baseline, row.recent
    if baseline.denom_tokens < thresholds.baseline_denom_tokens_min:
        return False
    if recent.denom_tokens < thresholds.recent_denom_tokens_min:
        return False
    if baseline.success_requests < thresholds.baseline_success_requests_min:
        return False
    if recent.success_requests < thresholds.recent_success_requests_min:
        return False

    baseline_rate = row.baseline_hit_rate
    recent_rate = row.recent_hit_rate
    if not math.isfinite(baseline_rate):
        return False
    if baseline_rate < thresholds.baseline_hit_rate_min:
        return False
    if not math.isfinite(recent_rate):
        return False

    ratio = recent_rate / baseline_rate
    abs_drop = baseline_rate - recent_rate
    return ratio <= thresholds.drop_ratio_max and abs_drop >= thresholds.drop_abs_min


def should_alert(row: "GroupEval", thresholds: "Thresholds") -> "str | None":
    """
    returns the reason of the first matching anomaly rule,
    or None when the group looks healthy.

    The absolute rules look at the observe window only and are
    skipped below the volume gate. The hit-rate cliff compares
    recent against baseline and has its own gate.
    """
    observe = row.observe

    if _passes_volume_gate(row, thresholds):
        if observe.cache_read_tokens == 0 and observe.cache_create_tokens > 0:
            return REASON_CREATE_WITHOUT_READ

        create_share = observe.create_share
        if math.isfinite(create_share) and create_share >= thresholds.create_share_min:
            return REASON_CREATE_SHARE_HIGH

        ratio = observe.create_read_ratio
        if math.isfinite(ratio) and ratio >= thresholds.create_read_imbalance_min:
            return REASON_CREATE_READ_IMBALANCE

    if _is_hit_rate_cliff(row, thresholds):
        return REASON_HIT_RATE_CLIFF

    return None
