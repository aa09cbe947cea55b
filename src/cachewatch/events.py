from typing import Any

from cachewatch.models import GatewayAttempt, RequestCompletionEvent, RequestStartEvent

EVENT_REQUEST_START = "request_start"
EVENT_REQUEST_COMPLETION = "request_completion"

GatewayEvent = RequestStartEvent | RequestCompletionEvent


def _optional_str(value: "Any") -> "str | None":
    if value is None:
        return None
    return str(value)


def _optional_status(value: "Any") -> "int | None":
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_attempts(value: "Any") -> "tuple[GatewayAttempt, ...]":
    if not isinstance(value, list):
        return ()

    attempts: "list[GatewayAttempt]" = []
    for item in value:
        if not isinstance(item, dict):
            continue
        attempts.append(
            GatewayAttempt(
                provider_id=item.get("provider_id"),
                provider_name=str(item.get("provider_name") or ""),
                outcome=str(item.get("outcome") or ""),
                status=_optional_status(item.get("status")),
            )
        )
    return tuple(attempts)


def parse_event(payload: "Any") -> "GatewayEvent":
    """
    builds a gateway event from its JSON form. The "type" field
    selects the event kind. Raises ValueError for anything that
    is not a recognizable event.
    """
    if not isinstance(payload, dict):
        raise ValueError("event payload must be an object")

    event_type = payload.get("type")
    trace_id = str(payload.get("trace_id") or "")
    cli_key = str(payload.get("cli_key") or "")

    if event_type == EVENT_REQUEST_START:
        return RequestStartEvent(
            trace_id=trace_id,
            cli_key=cli_key,
            requested_model=payload.get("requested_model"),
        )

    if event_type == EVENT_REQUEST_COMPLETION:
        return RequestCompletionEvent(
            trace_id=trace_id,
            cli_key=cli_key,
            status=_optional_status(payload.get("status")),
            error_code=_optional_str(payload.get("error_code")),
            attempts=_parse_attempts(payload.get("attempts")),
            input_tokens=payload.get("input_tokens"),
            cache_read_input_tokens=payload.get("cache_read_input_tokens"),
            cache_creation_input_tokens=payload.get("cache_creation_input_tokens"),
            cache_creation_5m_input_tokens=payload.get(
                "cache_creation_5m_input_tokens"
            ),
            cache_creation_1h_input_tokens=payload.get(
                "cache_creation_1h_input_tokens"
            ),
        )

    raise ValueError(f"unknown event type: {event_type!r}")
