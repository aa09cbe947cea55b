from dataclasses import dataclass

from cachewatch.models import Sample, WindowSums

WINDOW_MINUTES = 60

# tag of a slot that never held data, below any real minute
_EMPTY_MINUTE = -(2**63)


@dataclass(slots=True)
class MinuteBucket:
    """
    MinuteBucket is a versioned ring slot: it carries the
    minute its counters belong to.
    """

    minute: "int" = _EMPTY_MINUTE
    denom_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    cache_create_tokens: "int" = 0
    success_requests: "int" = 0

    def reset(self, minute: "int") -> "None":
        self.minute = minute
        self.denom_tokens = 0
        self.cache_read_tokens = 0
        self.cache_create_tokens = 0
        self.success_requests = 0


class MinuteRing:
    """
    MinuteRing keeps per-minute aggregates of the last
    WINDOW_MINUTES minutes in a fixed circular array.

    A slot whose tag differs from the incoming minute is stale
    (it belongs to a minute one or more laps ago) and is reset
    before accumulating, so inserts stay O(1) without a sweep.
    """

    def __init__(self, size: "int" = WINDOW_MINUTES) -> "None":
        self._buckets: "list[MinuteBucket]" = [MinuteBucket() for _ in range(size)]

    @property
    def buckets(self) -> "list[MinuteBucket]":
        return self._buckets

    def add(self, sample: "Sample") -> "None":
        # python's modulo is non-negative for a positive divisor
        bucket = self._buckets[sample.minute % len(self._buckets)]
        if bucket.minute != sample.minute:
            bucket.reset(sample.minute)

        bucket.denom_tokens += sample.denom_tokens
        bucket.cache_read_tokens += sample.cache_read_tokens
        bucket.cache_create_tokens += sample.cache_create_tokens
        bucket.success_requests += sample.success_request

    def sum_range(self, min_start: "int", min_end: "int") -> "WindowSums":
        """
        sums every slot tagged with a minute inside the
        inclusive range [min_start, min_end].
        """
        out = WindowSums()
        for bucket in self._buckets:
            if bucket.minute < min_start or bucket.minute > min_end:
                continue
            out.denom_tokens += bucket.denom_tokens
            out.cache_read_tokens += bucket.cache_read_tokens
            out.cache_create_tokens += bucket.cache_create_tokens
            out.success_requests += bucket.success_requests
        return out
