import math
from dataclasses import dataclass
from typing import Sequence

from cachewatch.models import (
    GatewayAttempt,
    RequestCompletionEvent,
    Sample,
)

MINUTE_MS = 60_000
MAX_MODEL_NAME_LENGTH = 200
UNKNOWN = "Unknown"


def minute_of(ts_ms: "int") -> "int":
    return ts_ms // MINUTE_MS


def normalize_token_count(value: "object") -> "int":
    """
    floors a raw token field to a non-negative integer. Missing,
    non-numeric and non-finite values count as zero.
    """
    if value is None or isinstance(value, bool):
        return 0

    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0

    if not math.isfinite(number):
        return 0

    return max(math.floor(number), 0)


def normalize_model_name(value: "object") -> "str":
    if not isinstance(value, str):
        return UNKNOWN

    trimmed = value.strip()
    if not trimmed:
        return UNKNOWN

    return trimmed[:MAX_MODEL_NAME_LENGTH]


def is_success(event: "RequestCompletionEvent") -> "bool":
    status = event.status
    if status is None or isinstance(status, bool):
        return False
    if status < 200 or status >= 300:
        return False
    return not event.error_code


def pick_final_attempt(
    attempts: "Sequence[GatewayAttempt] | None",
) -> "GatewayAttempt | None":
    """
    picks the provider that served the request: the last successful
    attempt, else the last attempt overall.
    """
    if not attempts:
        return None

    for attempt in reversed(attempts):
        if attempt.outcome == "success":
            return attempt

    return attempts[-1]


def normalize_provider_id(value: "object") -> "int | None":
    if value is None or isinstance(value, bool):
        return None

    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None

    if not math.isfinite(number):
        return None

    provider_id = math.floor(number)
    if provider_id < 0:
        return None
    return provider_id


@dataclass(frozen=True)
class DenominatorPolicy:
    """
    DenominatorPolicy decides how the hit-rate denominator is
    derived from a CLI's reported tokens.

    Some upstream APIs already include cache-read tokens in their
    input token count. For the CLIs listed in
    subtract_cache_read_clis the read tokens are taken out of the
    input first so they are not counted twice.
    """

    subtract_cache_read_clis: "frozenset[str]" = frozenset({"codex"})

    def effective_input(
        self,
        cli_key: "str",
        input_tokens: "int",
        cache_read_tokens: "int",
    ) -> "int":
        if cli_key in self.subtract_cache_read_clis:
            return max(input_tokens - cache_read_tokens, 0)
        return input_tokens

    def denominator(
        self,
        cli_key: "str",
        input_tokens: "int",
        cache_read_tokens: "int",
    ) -> "int":
        effective = self.effective_input(cli_key, input_tokens, cache_read_tokens)
        return max(effective + cache_read_tokens, 0)


def cache_create_tokens(event: "RequestCompletionEvent") -> "int":
    """
    prefers the sum of the 5m and 1h creation tiers when either is
    reported, otherwise falls back to the combined field.
    """
    create_5m = normalize_token_count(event.cache_creation_5m_input_tokens)
    create_1h = normalize_token_count(event.cache_creation_1h_input_tokens)
    if create_5m + create_1h > 0:
        return create_5m + create_1h
    return normalize_token_count(event.cache_creation_input_tokens)


def extract_sample(
    policy: "DenominatorPolicy",
    event: "RequestCompletionEvent",
    now_ms: "int",
) -> "Sample | None":
    """
    turns a completion event into a Sample. Returns None for
    failed requests and for samples without a denominator.
    """
    if not is_success(event):
        return None

    input_tokens = normalize_token_count(event.input_tokens)
    cache_read = normalize_token_count(event.cache_read_input_tokens)
    denom = policy.denominator(event.cli_key, input_tokens, cache_read)

    # a zero denominator carries no hit-rate signal
    if denom <= 0:
        return None

    return Sample(
        minute=minute_of(now_ms),
        denom_tokens=denom,
        cache_read_tokens=cache_read,
        cache_create_tokens=cache_create_tokens(event),
        ts_ms=now_ms,
    )
