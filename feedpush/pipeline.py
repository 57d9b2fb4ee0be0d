import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from feedpush.ai import SemanticFilter
from feedpush.errors import ConfigError, DeliveryError
from feedpush.fetcher import FeedFetcher
from feedpush.keywords import KeywordFilter
from feedpush.language import LanguageFilter
from feedpush.models import Article, FeedDescriptor, KeywordRuleSet, RunResult, RunStats
from feedpush.publisher import Publisher
from feedpush.store import DedupStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOptions:
    max_items_per_feed: int = 10
    max_age_days: int = 7
    per_feed_timeout: float = 10.0


@dataclass(frozen=True)
class RunOptions:
    """Per-run parameters supplied by the scheduler or a request handler."""
    limit: Optional[int] = None
    category: Optional[str] = None
    refresh: bool = False  # Bypass the seen-check
    deliver: bool = True


class Pipeline:
    def __init__(
        self,
        feed_loader: Callable[[], List[FeedDescriptor]],
        fetcher: FeedFetcher,
        store: DedupStore,
        publisher: Optional[Publisher] = None,
        fetch_options: FetchOptions = FetchOptions(),
        keyword_loader: Optional[Callable[[], KeywordRuleSet]] = None,
        language_filter: Optional[LanguageFilter] = None,
        semantic_filter: Optional[SemanticFilter] = None,
        retention_days: int = 7,
    ):
        """
        Args:
            feed_loader: Returns the flattened feed catalog; raises ConfigError
            keyword_loader: Returns keyword rules, or None to skip keyword filtering
            language_filter / semantic_filter: Optional stages, skipped when None
        """
        self.feed_loader = feed_loader
        self.fetcher = fetcher
        self.store = store
        self.publisher = publisher
        self.fetch_options = fetch_options
        self.keyword_loader = keyword_loader
        self.language_filter = language_filter
        self.semantic_filter = semantic_filter
        self.retention_days = retention_days

    async def run(self, options: RunOptions = RunOptions()) -> RunResult:
        stats = RunStats()

        # Config problems abort here, before any state is touched
        try:
            feeds = self.feed_loader()
            keyword_filter = KeywordFilter(self.keyword_loader()) if self.keyword_loader else None
        except ConfigError as e:
            logger.error(f"Configuration error, aborting run: {e}")
            return RunResult(success=False, error=str(e), stats=stats)

        self.store.load()

        # 1. Fetch
        opts = self.fetch_options
        fetched = await self.fetcher.fetch_all(
            feeds, opts.max_items_per_feed, opts.max_age_days, opts.per_feed_timeout
        )
        stats.fetched = len(fetched)

        # 2. Deduplicate against stored links and within this run
        new_articles = self._deduplicate(fetched, skip_seen=not options.refresh)
        stats.new = len(new_articles)
        logger.info(f"Found {len(new_articles)} new article(s) (after deduplication)")

        if not new_articles:
            logger.info("No new articles to process.")
            return self._finish(new_articles, [], stats)

        # 3. Language
        candidates = new_articles
        if self.language_filter:
            candidates = self.language_filter.filter(candidates)
        stats.after_language = len(candidates)
        if not candidates:
            logger.info("No articles left after language filtering, skipping delivery")
            return self._finish(new_articles, [], stats)

        # 4. Keywords
        if keyword_filter:
            candidates = keyword_filter.filter(candidates)
        stats.after_keywords = len(candidates)
        if not candidates:
            logger.info("No articles matched the keyword rules, skipping delivery")
            return self._finish(new_articles, [], stats)

        # 5. Articles without a usable summary are not worth sending
        candidates = [a for a in candidates if a.summary]
        stats.after_summary = len(candidates)
        if not candidates:
            logger.info("No matched article has a summary, skipping delivery")
            return self._finish(new_articles, [], stats)

        # 6. Semantic filter (passthrough on any failure)
        if self.semantic_filter:
            candidates = await self.semantic_filter.filter(candidates)
        stats.after_semantic = len(candidates)
        if not candidates:
            logger.info("AI filter selected nothing, skipping delivery")
            return self._finish(new_articles, [], stats)

        selected = self._apply_options(candidates, options)
        if not selected:
            logger.info(f"No articles in category {options.category!r}")
            return self._finish(new_articles, [], stats)

        # 7. Deliver
        if not options.deliver or self.publisher is None:
            return self._finish(new_articles, selected, stats)

        try:
            stats.delivered = await self.publisher.publish(selected)
        except DeliveryError as e:
            # Only the unsent batch stays unseen so it is retried next run
            logger.error(f"✗ Delivery failed: {e}")
            self._record_filtered_out(new_articles, selected)
            return RunResult(success=False, error=str(e), articles=selected, stats=stats)

        logger.info(f"✅ Delivered {stats.delivered} article(s)")
        return self._finish(new_articles, selected, stats)

    def _deduplicate(self, articles: List[Article], skip_seen: bool = True) -> List[Article]:
        unique: List[Article] = []
        links = set()
        for article in articles:
            if article.link in links:
                continue
            if skip_seen and self.store.has(article.link):
                logger.debug(f"Duplicate article skipped: {article.title}")
                continue
            links.add(article.link)
            unique.append(article)
        return unique

    @staticmethod
    def _apply_options(articles: List[Article], options: RunOptions) -> List[Article]:
        if options.category:
            articles = [a for a in articles if a.category == options.category]
        if options.limit and options.limit > 0:
            articles = articles[:options.limit]
        return articles

    def _record_filtered_out(self, new_articles: List[Article], selected: List[Article]) -> None:
        unsent = {a.link for a in selected}
        for article in new_articles:
            if article.link not in unsent:
                self.store.add(article.link)
        self.store.save()

    def _finish(self, new_articles: List[Article], selected: List[Article], stats: RunStats) -> RunResult:
        """Terminal branch: record every new link, persist, report."""
        # Reset before recording so this run's links survive the cleanup
        self.store.cleanup(self.retention_days)
        for article in new_articles:
            self.store.add(article.link)
        self.store.save()
        return RunResult(success=True, delivered=stats.delivered, articles=selected, stats=stats)
