import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from feedpush.errors import ConfigError, DeliveryError
from feedpush.http_client import HTTPClient
from feedpush.publisher import (
    DingTalkNotifier,
    Publisher,
    TelegramNotifier,
    byte_length,
    render_message,
    split_batches,
)

from conftest import make_article


class RecordingNotifier:
    def __init__(self, fail_on=None):
        self.sent = []
        self.fail_on = fail_on

    async def send(self, text):
        if self.fail_on is not None and len(self.sent) == self.fail_on:
            raise RuntimeError("sink said no")
        self.sent.append(text)


def test_render_message_lines():
    articles = [
        make_article("https://a.example/1", title="First", reason="worth reading"),
        make_article("https://a.example/2", title="Second", published_at=None, published="sometime last week"),
    ]
    message = render_message(articles)
    lines = [line for line in message.split("\n") if line]
    assert lines[0].startswith("## ")
    assert "(2 articles)" in lines[0]
    assert lines[1] == "1. [First](https://a.example/1) - worth reading - 2024-06-10"
    assert lines[2] == "2. [Second](https://a.example/2) - sometime last week"


def test_split_returns_single_batch_when_within_limit():
    text = "1. a\n\n2. b\n\n"
    assert split_batches(text, byte_length(text)) == [text]


def test_split_reassembles_exactly_and_respects_limit():
    articles = [make_article(f"https://a.example/{i}", title=f"文章标题 {i}" * 3) for i in range(40)]
    text = render_message(articles)
    batches = split_batches(text, 300)
    assert len(batches) > 1
    assert "".join(batches) == text
    assert all(byte_length(b) <= 300 for b in batches)


def test_split_counts_bytes_not_characters():
    line = "中" * 10 + "\n"  # 31 bytes, 11 characters
    text = line * 3
    batches = split_batches(text, 40)
    assert batches == [line, line, line]


def test_oversized_line_becomes_its_own_batch():
    text = "short\n" + "x" * 100 + "\n" + "tail\n"
    batches = split_batches(text, 20)
    assert batches == ["short\n", "x" * 100 + "\n", "tail\n"]
    assert "".join(batches) == text


def test_split_text_without_trailing_newline():
    text = "aaaa\nbbbb\ncccc"
    batches = split_batches(text, 10)
    assert "".join(batches) == text
    assert all(byte_length(b) <= 10 for b in batches)


def test_publisher_sends_batches_in_order():
    notifier = RecordingNotifier()
    articles = [make_article(f"https://a.example/{i}", title=f"Title {i}") for i in range(30)]
    publisher = Publisher(notifier, max_bytes=200, pause_seconds=0)
    sent = asyncio.run(publisher.publish(articles))
    assert sent == 30
    assert len(notifier.sent) > 1
    assert "".join(notifier.sent) == render_message(articles)


def test_publisher_fails_whole_send_on_any_batch_failure():
    notifier = RecordingNotifier(fail_on=1)
    articles = [make_article(f"https://a.example/{i}", title=f"Title {i}") for i in range(30)]
    publisher = Publisher(notifier, max_bytes=200, pause_seconds=0)
    with pytest.raises(DeliveryError):
        asyncio.run(publisher.publish(articles))


def test_publisher_timeout_is_delivery_error():
    class SlowNotifier:
        async def send(self, text):
            await asyncio.sleep(1)

    publisher = Publisher(SlowNotifier(), timeout=0.05)
    with pytest.raises(DeliveryError):
        asyncio.run(publisher.publish([make_article("https://a.example/1")]))


def test_publisher_with_nothing_to_send():
    notifier = RecordingNotifier()
    assert asyncio.run(Publisher(notifier).publish([])) == 0
    assert notifier.sent == []


def test_dingtalk_signed_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"errcode": 0, "errmsg": "ok"})

    http = HTTPClient(transport=httpx.MockTransport(handler))
    notifier = DingTalkNotifier(http, "https://oapi.dingtalk.example/robot/send?access_token=abc", secret="SEC123")
    asyncio.run(notifier.send("## hi\n\n1. [t](https://x.example) - 2024-06-10\n\n"))

    query = parse_qs(urlparse(seen["url"]).query)
    assert query["access_token"] == ["abc"]
    assert "timestamp" in query and "sign" in query
    assert seen["body"]["msgtype"] == "markdown"
    assert seen["body"]["markdown"]["text"].startswith("## hi")


def test_dingtalk_signature_is_stable():
    sign = DingTalkNotifier.sign("SEC123", "1700000000000")
    assert sign == DingTalkNotifier.sign("SEC123", "1700000000000")
    assert "+" not in sign and "/" not in sign and "=" not in sign


def test_dingtalk_api_error_raises():
    http = HTTPClient(transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"errcode": 310000, "errmsg": "keywords not in content"})
    ))
    notifier = DingTalkNotifier(http, "https://oapi.dingtalk.example/robot/send?access_token=abc")
    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send("hello"))


def test_dingtalk_requires_webhook():
    with pytest.raises(ConfigError):
        DingTalkNotifier(HTTPClient(), None)


class FakeBot:
    def __init__(self, fail_for=None):
        self.messages = []
        self.fail_for = fail_for

    async def send_message(self, chat_id, text, **kwargs):
        if chat_id == self.fail_for:
            raise RuntimeError("chat not found")
        self.messages.append((chat_id, text, kwargs))


def test_telegram_sends_html_to_every_chat():
    bot = FakeBot()
    notifier = TelegramNotifier(bot, ["-100", "-200"])
    asyncio.run(notifier.send("## 📚 News (1 articles)\n\n1. [A <b> & c](https://x.example/a_(b)) - why - 2024-06-10\n\n"))

    assert [m[0] for m in bot.messages] == ["-100", "-200"]
    text = bot.messages[0][1]
    assert text.startswith("<b>📚 News (1 articles)</b>")
    assert '1. <a href="https://x.example/a_(b)">A &lt;b&gt; &amp; c</a> - why - 2024-06-10' in text


def test_telegram_failure_raises_delivery_error():
    notifier = TelegramNotifier(FakeBot(fail_for="-200"), ["-100", "-200"])
    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send("hello"))


def test_telegram_credentials_are_required():
    with pytest.raises(ConfigError):
        TelegramNotifier.from_credentials(None, "-100")
    with pytest.raises(ConfigError):
        TelegramNotifier.from_credentials("123:abc", " , ")
