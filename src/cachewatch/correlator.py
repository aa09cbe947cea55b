import threading
from dataclasses import dataclass

# keep unmatched request starts for 10 minutes
TRACE_MODEL_TTL_MS = 10 * 60_000


@dataclass(slots=True)
class _TraceEntry:
    model: "str"
    seen_at_ms: "int"


class TraceModelCorrelator:
    """
    TraceModelCorrelator: Is a thread-safe map joining a request's
    start event (which knows the requested model) with its
    completion event (which knows the tokens and provider).

    Entries are consumed once by take(). Starts that never complete
    are removed via evict_before() to prevent unbounded memory growth.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._entries: "dict[str, _TraceEntry]" = {}

    def __len__(self) -> "int":
        with self._lock:
            return len(self._entries)

    def record(self, trace_id: "str", model: "str", now_ms: "int") -> "None":
        """
        remembers the requested model of an in-flight trace.
        """
        with self._lock:
            self._entries[trace_id] = _TraceEntry(model=model, seen_at_ms=now_ms)

    def take(self, trace_id: "str") -> "str | None":
        """
        returns and forgets the model recorded for trace_id, or None
        when the start event was never seen (or already evicted).
        """
        with self._lock:
            entry = self._entries.pop(trace_id, None)
        if entry is None:
            return None
        return entry.model

    def evict_before(self, cutoff_ms: "int") -> "int":
        """
        removes all entries seen before cutoff_ms.
        Returns the number of evicted entries.
        """
        with self._lock:
            to_remove = [
                k for k, entry in self._entries.items() if entry.seen_at_ms < cutoff_ms
            ]
            for k in to_remove:
                del self._entries[k]
            return len(to_remove)

    def clear(self) -> "None":
        with self._lock:
            self._entries.clear()
