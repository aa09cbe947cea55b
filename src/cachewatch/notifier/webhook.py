import httpx
import structlog

from cachewatch.models import NoticeLevel

logger = structlog.get_logger()


class WebhookNoticeSender:
    """
    WebhookNoticeSender implements the NoticeSender protocol by
    POSTing each notice as JSON to a configured URL.
    """

    def __init__(self, url: "str", timeout: "float" = 5.0) -> "None":
        self._url = url
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> "str":
        return "webhook"

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def send(
        self,
        level: "NoticeLevel",
        title: "str",
        body: "str",
    ) -> "bool":
        resp = await self._client.post(
            self._url,
            json={"level": level, "title": title, "body": body},
        )

        if not resp.is_success:
            logger.warning(
                "webhook_notice_rejected",
                status_code=resp.status_code,
                title=title,
            )
            return False

        logger.debug("webhook_notice_sent", level=level, title=title)
        return True
