import json
import os
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


class FlagStore(Protocol):
    """
    FlagStore persists the monitor's enabled switch.
    """

    def load(self) -> "bool": ...

    def save(self, enabled: "bool") -> "None": ...


class MemoryFlagStore:
    def __init__(self, enabled: "bool" = False) -> "None":
        self.enabled = enabled

    def load(self) -> "bool":
        return self.enabled

    def save(self, enabled: "bool") -> "None":
        self.enabled = enabled


class FileFlagStore:
    """
    FileFlagStore keeps the flag in a small JSON document. A missing
    or unreadable file means disabled.
    """

    def __init__(self, path: "str | Path") -> "None":
        self._path = Path(path)

    @property
    def path(self) -> "Path":
        return self._path

    def load(self) -> "bool":
        if not self._path.exists():
            return False

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("flag_store_unreadable", path=str(self._path))
            return False

        if not isinstance(data, dict):
            logger.warning("flag_store_unreadable", path=str(self._path))
            return False

        return data.get("enabled") is True

    def save(self, enabled: "bool") -> "None":
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # write then rename so a crash never leaves a partial file
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps({"enabled": enabled}), encoding="utf-8")
        os.replace(tmp, self._path)
