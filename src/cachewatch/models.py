import math
from dataclasses import dataclass, field
from typing import Literal

NoticeLevel = Literal["warning", "error"]


@dataclass(frozen=True, slots=True)
class Sample:
    """
    Sample is the normalized observation for one
    successful request.
    """

    # wall-clock minute index (ms // 60000)
    minute: "int"
    denom_tokens: "int"
    cache_read_tokens: "int"
    cache_create_tokens: "int"
    # unix timestamp in ms at ingestion
    ts_ms: "int" = 0
    success_request: "int" = 1


@dataclass(slots=True)
class WindowSums:
    """
    WindowSums holds the aggregated counters of a
    range of minutes.
    """

    denom_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    cache_create_tokens: "int" = 0
    success_requests: "int" = 0

    @property
    def hit_rate(self) -> "float":
        if self.denom_tokens <= 0:
            return math.nan
        return self.cache_read_tokens / self.denom_tokens

    @property
    def create_share(self) -> "float":
        if self.denom_tokens <= 0:
            return math.nan
        return self.cache_create_tokens / self.denom_tokens

    @property
    def create_read_ratio(self) -> "float":
        if self.cache_read_tokens <= 0:
            return math.nan
        return self.cache_create_tokens / self.cache_read_tokens

    def as_dict(self) -> "dict[str, int]":
        return {
            "denom_tokens": self.denom_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_create_tokens": self.cache_create_tokens,
            "success_requests": self.success_requests,
        }


@dataclass(frozen=True, slots=True)
class GroupKey:
    """
    GroupKey identifies the unit of isolation for
    statistics: one (cli, provider, model) triple.
    """

    cli_key: "str"
    provider_id: "int"
    model: "str" = "Unknown"

    def __str__(self) -> "str":
        return f"{self.cli_key}:{self.provider_id}:{self.model}"


@dataclass(frozen=True, slots=True)
class GatewayAttempt:
    """
    GatewayAttempt is one upstream provider attempt
    made while serving a request.
    """

    provider_id: "object"
    provider_name: "str" = ""
    outcome: "str" = ""
    status: "int | None" = None


@dataclass(frozen=True, slots=True)
class RequestStartEvent:
    trace_id: "str"
    cli_key: "str"
    requested_model: "object" = None


@dataclass(frozen=True, slots=True)
class RequestCompletionEvent:
    """
    RequestCompletionEvent carries the terminal state of a
    request. Token fields are kept raw, normalization
    happens in the normalizer.
    """

    trace_id: "str"
    cli_key: "str"
    status: "int | None" = None
    error_code: "str | None" = None
    attempts: "tuple[GatewayAttempt, ...]" = field(default_factory=tuple)
    input_tokens: "object" = None
    cache_read_input_tokens: "object" = None
    cache_creation_input_tokens: "object" = None
    cache_creation_5m_input_tokens: "object" = None
    cache_creation_1h_input_tokens: "object" = None


@dataclass(frozen=True, slots=True)
class Notice:
    level: "NoticeLevel"
    title: "str"
    body: "str"
