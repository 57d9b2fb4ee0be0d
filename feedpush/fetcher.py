import asyncio
import calendar
import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, List, Optional

import feedparser
from bs4 import BeautifulSoup

from feedpush.errors import FetchError
from feedpush.http_client import HTTPClient
from feedpush.models import Article, FeedDescriptor

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 822 or ISO 8601 date string into an aware UTC datetime."""
    if not value:
        return None
    value = value.strip()
    dt = None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def html_to_text(fragment: Optional[str]) -> Optional[str]:
    """Strip markup from a feed summary, collapsing whitespace."""
    if not fragment:
        return None
    soup = BeautifulSoup(fragment, "lxml")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+", " ", text).strip()
    return text or None


class FeedFetcher:
    def __init__(
        self,
        http_client: HTTPClient,
        concurrency: int = 10,
        now_provider: Callable[[], datetime] = utc_now,
    ):
        self.http_client = http_client
        self.concurrency = concurrency
        self.now_provider = now_provider

    async def fetch_all(
        self,
        feeds: List[FeedDescriptor],
        max_items_per_feed: int,
        max_age_days: int,
        per_feed_timeout: float,
    ) -> List[Article]:
        """
        Fetch every feed concurrently and return their articles in the order
        the feeds finish. A failing feed contributes nothing.
        """
        if not feeds:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(feed: FeedDescriptor) -> List[Article]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self.fetch_feed(feed, max_items_per_feed, max_age_days, per_feed_timeout),
                        timeout=per_feed_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.error(f"Fetch failed: {feed.name}: timed out after {per_feed_timeout}s")
                except FetchError as e:
                    logger.error(f"Fetch failed: {e}")
                except Exception as e:
                    logger.error(f"Fetch failed: {FetchError(feed.name, e)}")
                return []

        tasks = [asyncio.ensure_future(run(feed)) for feed in feeds]
        articles: List[Article] = []
        ok = 0
        for finished in asyncio.as_completed(tasks):
            feed_articles = await finished
            if feed_articles:
                ok += 1
            articles.extend(feed_articles)

        logger.info(f"Fetched {len(articles)} article(s) from {ok}/{len(feeds)} feed(s)")
        return articles

    async def fetch_feed(
        self,
        feed: FeedDescriptor,
        max_items: int,
        max_age_days: int,
        timeout: float,
    ) -> List[Article]:
        try:
            content = await self.http_client.fetch(feed.url, timeout=timeout)
        except Exception as e:
            raise FetchError(feed.name, e)

        parsed = feedparser.parse(content)
        if parsed.bozo and not parsed.entries:
            raise FetchError(feed.name, ValueError(f"malformed feed: {parsed.get('bozo_exception')}"))

        return self.parse_entries(feed, parsed.entries, max_items, max_age_days)

    def parse_entries(self, feed: FeedDescriptor, entries, max_items: int, max_age_days: int) -> List[Article]:
        now = self.now_provider()
        oldest = now - timedelta(days=max_age_days)
        articles: List[Article] = []

        for entry in entries:
            link = (entry.get("link") or "").strip()
            if not link:
                continue

            raw_date = entry.get("published") or entry.get("updated") or ""
            published_at = self._entry_datetime(entry, raw_date)
            if not raw_date:
                published_at = now
                raw_date = now.isoformat()

            # Unparsable dates are kept: they count as "now" for the window
            if (published_at or now) < oldest:
                continue

            if len(articles) >= max_items:
                break

            articles.append(Article(
                title=(entry.get("title") or "").strip() or "Untitled",
                link=link,
                published_at=published_at,
                published=raw_date,
                summary=html_to_text(self._entry_summary(entry)),
                source_name=feed.name,
                category=feed.category,
            ))

        return articles

    @staticmethod
    def _entry_datetime(entry, raw_date: str) -> Optional[datetime]:
        for key in ("published_parsed", "updated_parsed"):
            struct = entry.get(key)
            if struct:
                return datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc)
        return parse_date(raw_date)

    @staticmethod
    def _entry_summary(entry) -> Optional[str]:
        summary = entry.get("summary") or entry.get("description")
        if summary:
            return summary
        content = entry.get("content")
        if content:
            return content[0].get("value")
        return None
