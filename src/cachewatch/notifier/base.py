from typing import Protocol

from cachewatch.models import NoticeLevel


class NoticeSender(Protocol):
    """
    NoticeSender stands as the narrow capability the monitor
    needs from a notification transport.

    send() reports delivery with its return value. It may also
    raise; callers treat both as a failed, best-effort delivery.
    """

    @property
    def name(self) -> "str": ...

    async def send(
        self,
        level: "NoticeLevel",
        title: "str",
        body: "str",
    ) -> "bool": ...

    async def close(self) -> "None": ...
