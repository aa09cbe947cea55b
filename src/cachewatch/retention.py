from collections import deque
from typing import Iterator

from cachewatch.models import Sample, WindowSums

SAMPLE_RETENTION_MINUTES = 75


class SampleBuffer:
    """
    SampleBuffer retains the raw samples of a group in arrival
    order. It is only read by the self-check, which recomputes
    window sums the slow way to audit the ring aggregates.
    """

    __slots__ = ("_samples",)

    def __init__(self) -> "None":
        self._samples: "deque[Sample]" = deque()

    def __len__(self) -> "int":
        return len(self._samples)

    def __iter__(self) -> "Iterator[Sample]":
        return iter(self._samples)

    def append(self, sample: "Sample") -> "None":
        self._samples.append(sample)

    def prune(self, min_minute: "int") -> "int":
        """
        drops samples older than min_minute (inclusive bound kept).
        Returns the number of dropped samples.
        """
        dropped = 0
        while self._samples and self._samples[0].minute < min_minute:
            self._samples.popleft()
            dropped += 1
        return dropped

    def sum_range(self, min_start: "int", min_end: "int") -> "WindowSums":
        out = WindowSums()
        for s in self._samples:
            if s.minute < min_start or s.minute > min_end:
                continue
            out.denom_tokens += s.denom_tokens
            out.cache_read_tokens += s.cache_read_tokens
            out.cache_create_tokens += s.cache_create_tokens
            out.success_requests += s.success_request
        return out
