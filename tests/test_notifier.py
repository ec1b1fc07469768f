import asyncio
import json

import httpx
import pytest

from sharedgallery.utils.notifier import NotifierError, WebhookNotifier

URL = "https://discord.example/api/webhooks/1/abc"


def test_post_sends_the_message_as_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append((str(request.url), json.loads(request.content)))
        return httpx.Response(204)

    notifier = WebhookNotifier(URL, transport=httpx.MockTransport(handler))
    asyncio.run(notifier.post({"embeds": [{"title": "hi"}]}))

    assert received == [(URL, {"embeds": [{"title": "hi"}]})]


def test_error_status_raises():
    notifier = WebhookNotifier(URL, transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))

    with pytest.raises(NotifierError, match="500"):
        asyncio.run(notifier.post({"embeds": []}))


def test_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    notifier = WebhookNotifier(URL, transport=httpx.MockTransport(handler))

    with pytest.raises(NotifierError):
        asyncio.run(notifier.post({"embeds": []}))


def test_missing_url_is_a_no_op():
    calls = []
    notifier = WebhookNotifier("", transport=httpx.MockTransport(lambda r: calls.append(r) or httpx.Response(204)))

    asyncio.run(notifier.post({"embeds": []}))

    assert not notifier.configured
    assert calls == []
