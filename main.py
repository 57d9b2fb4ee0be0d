import argparse
import asyncio
import logging
import sys
from functools import partial
from typing import Optional

from feedpush.ai import ChatCompletionsClient, GeminiClient, SemanticFilter, read_keyword_guidance
from feedpush.config import Settings, load_settings
from feedpush.errors import FeedPushError
from feedpush.fetcher import FeedFetcher
from feedpush.http_client import HTTPClient
from feedpush.keywords import load_keywords
from feedpush.language import LanguageFilter
from feedpush.opml import load_feeds
from feedpush.pipeline import FetchOptions, Pipeline, RunOptions
from feedpush.publisher import DingTalkNotifier, Publisher, TelegramNotifier, render_message
from feedpush.store import DedupStore

logger = logging.getLogger(__name__)


def build_semantic_filter(settings: Settings, http: HTTPClient) -> Optional[SemanticFilter]:
    if not settings.ai_enabled:
        return None
    if not settings.ai_api_key:
        logger.warning("No AI API key found. AI filtering disabled.")
        return None

    if settings.ai_provider == "openai":
        client = ChatCompletionsClient(
            http,
            api_url=settings.ai_api_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            timeout=settings.ai_timeout,
        )
    else:
        client = GeminiClient(
            settings.ai_api_key,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
        )

    return SemanticFilter(
        client,
        requirement=settings.ai_prompt,
        keywords=read_keyword_guidance(settings.keywords_path),
        timeout=settings.ai_timeout,
    )


def build_publisher(settings: Settings, http: HTTPClient) -> Publisher:
    if settings.notifier == "dingtalk":
        notifier = DingTalkNotifier(
            http,
            settings.dingtalk_webhook,
            settings.dingtalk_secret,
            timeout=settings.send_timeout,
        )
    else:
        notifier = TelegramNotifier.from_credentials(settings.telegram_bot_token, settings.telegram_chat_id)

    return Publisher(
        notifier,
        max_bytes=settings.batch_max_bytes,
        pause_seconds=settings.batch_pause_seconds,
        timeout=settings.send_timeout,
    )


def build_pipeline(settings: Settings, http: HTTPClient, deliver: bool = True) -> Pipeline:
    language_filter = None
    if settings.language_filter_enabled:
        language_filter = LanguageFilter(settings.target_script, keep=settings.language_mode == "keep")

    keyword_loader = partial(load_keywords, settings.keywords_path) if settings.filter_enabled else None

    return Pipeline(
        feed_loader=partial(load_feeds, settings.opml_path),
        fetcher=FeedFetcher(http, concurrency=settings.fetch_concurrency),
        store=DedupStore(settings.cache_path, enabled=settings.database_enabled),
        publisher=build_publisher(settings, http) if deliver else None,
        fetch_options=FetchOptions(
            max_items_per_feed=settings.max_articles_per_feed,
            max_age_days=settings.max_article_age_days,
            per_feed_timeout=settings.request_timeout,
        ),
        keyword_loader=keyword_loader,
        language_filter=language_filter,
        semantic_filter=build_semantic_filter(settings, http),
        retention_days=settings.cache_retention_days,
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Filter RSS feeds and push new articles to a chat sink.")
    parser.add_argument("--dry-run", action="store_true", help="Collect and print articles without sending")
    parser.add_argument("--limit", type=int, default=None, help="Send at most N articles")
    parser.add_argument("--category", default=None, help="Only send articles from this feed category")
    parser.add_argument("--refresh", action="store_true", help="Include articles already seen")
    parser.add_argument("--interval", type=float, default=None, help="Repeat every N minutes")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    return parser.parse_args(argv)


async def run_once(pipeline: Pipeline, options: RunOptions) -> bool:
    result = await pipeline.run(options)
    s = result.stats
    logger.info(
        f"Run summary: fetched={s.fetched} new={s.new} language={s.after_language} "
        f"keywords={s.after_keywords} summary={s.after_summary} ai={s.after_semantic} "
        f"delivered={s.delivered}"
    )
    if not result.success:
        logger.error(f"Run failed: {result.error}")
    elif not options.deliver and result.articles:
        print(render_message(result.articles))
    return result.success


async def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.env_file)
    except FeedPushError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logger.info("Starting feedpush...")

    options = RunOptions(
        limit=args.limit,
        category=args.category,
        refresh=args.refresh,
        deliver=not args.dry_run,
    )
    interval = args.interval if args.interval is not None else settings.run_interval_minutes

    http = HTTPClient()
    try:
        pipeline = build_pipeline(settings, http, deliver=options.deliver)

        if interval <= 0:
            return 0 if await run_once(pipeline, options) else 1

        logger.info(f"⏰ Running every {interval} minute(s)")
        while True:
            # Runs are serialized: the next one starts only after this one ends
            try:
                await run_once(pipeline, options)
            except Exception as e:
                logger.error(f"Run crashed: {e}")
            await asyncio.sleep(interval * 60)
    except FeedPushError as e:
        logger.error(f"Startup failed: {e}")
        return 2
    finally:
        await http.close()


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Stopped.")
