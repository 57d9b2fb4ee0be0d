import asyncio
import base64
import hashlib
import hmac
import html
import logging
import re
import time
from typing import List, Optional, Protocol
from urllib.parse import quote

import telegram
from telegram.constants import ParseMode

from feedpush.errors import ConfigError, DeliveryError
from feedpush.http_client import HTTPClient
from feedpush.models import Article

logger = logging.getLogger(__name__)

MESSAGE_TITLE = "Tech News Update"

# [title](link) followed by the " - " separator written by render_message
LINK_PATTERN = re.compile(r"\[(.+?)\]\((\S+)\)(?= - )")
HEADING_PATTERN = re.compile(r"^#{1,6}\s+(.*)$")


def format_date(article: Article) -> str:
    if article.published_at is not None:
        return article.published_at.strftime("%Y-%m-%d")
    return article.published


def render_message(articles: List[Article], title: str = MESSAGE_TITLE) -> str:
    """Render articles as a numbered markdown list under a heading."""
    message = f"## 📚 {title} ({len(articles)} articles)\n\n"
    for idx, article in enumerate(articles, 1):
        line = f"{idx}. [{article.title}]({article.link})"
        if article.reason:
            line += f" - {article.reason}"
        line += f" - {format_date(article)}"
        message += f"{line}\n\n"
    return message


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def split_batches(text: str, max_bytes: int) -> List[str]:
    """
    Split a message into batches of at most ``max_bytes`` UTF-8 bytes,
    breaking only between lines. A line longer than the limit on its own is
    sent as an oversized batch rather than cut. Joining the batches gives
    back ``text`` exactly.
    """
    if byte_length(text) <= max_bytes:
        return [text]

    batches: List[str] = []
    current = ""
    current_bytes = 0
    for line in text.splitlines(keepends=True):
        line_bytes = byte_length(line)
        if current and current_bytes + line_bytes > max_bytes:
            batches.append(current)
            current = ""
            current_bytes = 0
        current += line
        current_bytes += line_bytes

    if current:
        batches.append(current)
    return batches


class Notifier(Protocol):
    async def send(self, text: str) -> None:
        ...


class TelegramNotifier:
    def __init__(self, bot: telegram.Bot, chat_ids: List[str]):
        self.bot = bot
        self.chat_ids = chat_ids

    @classmethod
    def from_credentials(cls, token: Optional[str], chat_id_str: Optional[str]) -> "TelegramNotifier":
        """
        TELEGRAM_CHAT_ID can be a single id or a comma-separated list:
        -1001234567890,-1009876543210
        """
        if not token or not chat_id_str:
            raise ConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must both be set")
        chat_ids = [cid.strip() for cid in chat_id_str.split(",") if cid.strip()]
        if not chat_ids:
            raise ConfigError("TELEGRAM_CHAT_ID contains no chat ids")
        return cls(telegram.Bot(token=token), chat_ids)

    @staticmethod
    def to_html(text: str) -> str:
        """Convert the rendered markdown into Telegram's HTML subset."""
        lines = []
        for line in text.split("\n"):
            heading = HEADING_PATTERN.match(line)
            if heading:
                lines.append(f"<b>{html.escape(heading.group(1), quote=False)}</b>")
                continue

            parts = []
            pos = 0
            for match in LINK_PATTERN.finditer(line):
                parts.append(html.escape(line[pos:match.start()], quote=False))
                link_text = html.escape(match.group(1), quote=False)
                url = html.escape(match.group(2))
                parts.append(f'<a href="{url}">{link_text}</a>')
                pos = match.end()
            parts.append(html.escape(line[pos:], quote=False))
            lines.append("".join(parts))
        return "\n".join(lines)

    async def send(self, text: str) -> None:
        message = self.to_html(text)
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=message,
                    parse_mode=ParseMode.HTML,
                    link_preview_options=telegram.LinkPreviewOptions(is_disabled=True),
                )
            except Exception as e:
                raise DeliveryError(f"Telegram send to {chat_id} failed: {e}") from e
            logger.debug(f"Sent batch to Telegram chat {chat_id}")


class DingTalkNotifier:
    def __init__(
        self,
        http_client: HTTPClient,
        webhook: Optional[str],
        secret: Optional[str] = None,
        title: str = MESSAGE_TITLE,
        timeout: float = 10.0,
    ):
        if not webhook:
            raise ConfigError("DINGTALK_WEBHOOK must be set")
        self.http_client = http_client
        self.webhook = webhook
        self.secret = secret
        self.title = title
        self.timeout = timeout

    @staticmethod
    def sign(secret: str, timestamp: str) -> str:
        string_to_sign = f"{timestamp}\n{secret}"
        digest = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        return quote(base64.b64encode(digest).decode("ascii"), safe="")

    def signed_url(self, timestamp: Optional[str] = None) -> str:
        if not self.secret:
            return self.webhook
        timestamp = timestamp or str(int(time.time() * 1000))
        separator = "&" if "?" in self.webhook else "?"
        return f"{self.webhook}{separator}timestamp={timestamp}&sign={self.sign(self.secret, timestamp)}"

    async def send(self, text: str) -> None:
        payload = {
            "msgtype": "markdown",
            "markdown": {"title": self.title, "text": text},
        }
        try:
            data = await self.http_client.post_json(self.signed_url(), payload, timeout=self.timeout)
        except Exception as e:
            raise DeliveryError(f"DingTalk request failed: {e}") from e

        if not isinstance(data, dict) or data.get("errcode") != 0:
            errmsg = data.get("errmsg") if isinstance(data, dict) else data
            raise DeliveryError(f"DingTalk API error: {errmsg}")


class Publisher:
    def __init__(
        self,
        notifier: Notifier,
        max_bytes: int = 20000,
        pause_seconds: float = 1.0,
        timeout: float = 10.0,
    ):
        self.notifier = notifier
        self.max_bytes = max_bytes
        self.pause_seconds = pause_seconds
        self.timeout = timeout

    async def publish(self, articles: List[Article]) -> int:
        """
        Send all articles, one batch at a time. Any failed batch fails the
        whole call with DeliveryError. Returns the number of articles sent.
        """
        if not articles:
            return 0

        batches = split_batches(render_message(articles), self.max_bytes)
        logger.info(f"Publishing {len(articles)} article(s) in {len(batches)} batch(es)")

        for idx, batch in enumerate(batches, 1):
            try:
                await asyncio.wait_for(self.notifier.send(batch), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise DeliveryError(f"Batch {idx}/{len(batches)} timed out after {self.timeout}s")
            except DeliveryError:
                raise
            except Exception as e:
                raise DeliveryError(f"Batch {idx}/{len(batches)} failed: {e}") from e

            logger.info(f"✓ Batch {idx}/{len(batches)} sent")
            # Respect the sink's rate limits between batches
            if idx < len(batches):
                await asyncio.sleep(self.pause_seconds)

        return len(articles)
