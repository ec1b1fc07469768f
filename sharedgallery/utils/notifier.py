from typing import Optional

import httpx

from sharedgallery.core.config import DUPLICATE_WEBHOOK_URL, logger


class NotifierError(Exception):
    """Webhook delivery failed."""


class WebhookNotifier:
    """Posts Discord-style JSON messages ({"embeds": [...]}) to a webhook URL.

    Pacing between calls is the caller's job.
    """

    def __init__(self, url: Optional[str] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = DUPLICATE_WEBHOOK_URL if url is None else url
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def post(self, message: dict) -> None:
        if not self.url:
            logger.warning("Webhook URL not configured; report not sent")
            return
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(self.url, json=message)
        except httpx.HTTPError as ex:
            raise NotifierError(f"webhook request failed: {ex}") from ex
        if r.status_code >= 400:
            raise NotifierError(f"webhook returned {r.status_code}: {r.text[:200]}")
