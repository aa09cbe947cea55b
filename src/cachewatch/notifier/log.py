import structlog

from cachewatch.models import NoticeLevel

logger = structlog.get_logger("cachewatch.notice")


class LogNoticeSender:
    """
    LogNoticeSender writes notices to the structured log. Used
    when no webhook is configured.
    """

    @property
    def name(self) -> "str":
        return "log"

    async def close(self) -> "None":
        pass

    async def send(
        self,
        level: "NoticeLevel",
        title: "str",
        body: "str",
    ) -> "bool":
        if level == "error":
            logger.error("notice", title=title, body=body)
        else:
            logger.warning("notice", title=title, body=body)
        return True
