import os
from dataclasses import dataclass


def _split_csv(value: "str") -> "tuple[str, ...]":
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # path of the JSON lines event stream, "-" for stdin
    events_file: "str" = "-"
    # timeout for a single notice delivery in seconds
    notice_timeout: "float" = 5.0
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    webhook_url: "str" = ""
    state_file: "str" = ""
    supported_clis: "tuple[str, ...]" = ("claude", "codex")
    # CLIs whose input tokens already include cache reads
    subtract_cache_read_clis: "tuple[str, ...]" = ("codex",)

    @classmethod
    def from_env(cls) -> "Config":
        config = cls(
            webhook_url=os.environ.get("CACHEWATCH_WEBHOOK_URL", ""),
            state_file=os.environ.get("CACHEWATCH_STATE_FILE", ""),
        )
        supported = os.environ.get("CACHEWATCH_SUPPORTED_CLIS")
        if supported is not None:
            config.supported_clis = _split_csv(supported)
        subtract = os.environ.get("CACHEWATCH_SUBTRACT_CACHE_READ_CLIS")
        if subtract is not None:
            config.subtract_cache_read_clis = _split_csv(subtract)
        return config

    @property
    def webhook_enabled(self) -> "bool":
        return bool(self.webhook_url)
