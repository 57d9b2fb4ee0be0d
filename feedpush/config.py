import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from feedpush.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_AI_PROMPT = (
    "Select articles that are genuinely useful to a software engineer: "
    "in-depth technical content, notable releases, security issues and "
    "engineering practice. Skip marketing, event announcements and "
    "recruiting posts."
)

DEFAULT_BATCH_BYTES = {
    "telegram": 4000,  # Telegram caps messages at 4096 characters
    "dingtalk": 20000,
}


@dataclass(frozen=True)
class Settings:
    # Feeds
    opml_path: str = "config/feeds.opml"
    max_articles_per_feed: int = 10
    max_article_age_days: int = 7
    request_timeout: float = 10.0
    fetch_concurrency: int = 10

    # Filters
    filter_enabled: bool = True
    keywords_path: str = "config/keywords.txt"
    language_filter_enabled: bool = True
    target_script: str = "han"
    language_mode: str = "keep"

    # Dedup store
    database_enabled: bool = True
    cache_path: str = "data/cache.db"
    cache_retention_days: int = 7

    # Semantic filter
    ai_enabled: bool = False
    ai_provider: str = "gemini"
    ai_api_key: Optional[str] = None
    ai_api_url: str = "https://api.deepseek.com/chat/completions"
    ai_model: Optional[str] = None
    ai_prompt: str = DEFAULT_AI_PROMPT
    ai_timeout: float = 60.0
    ai_max_tokens: int = 4000
    ai_temperature: float = 0.3

    # Delivery
    notifier: str = "telegram"
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    dingtalk_webhook: Optional[str] = None
    dingtalk_secret: Optional[str] = None
    batch_max_bytes: int = 4000
    batch_pause_seconds: float = 1.0
    send_timeout: float = 10.0

    # Scheduling
    run_interval_minutes: float = 0.0
    log_level: str = "INFO"


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _get_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _get_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment (and a .env file if present).

    This is the only place that reads environment variables; everything
    downstream receives plain values.
    """
    load_dotenv(env_file)

    notifier = _get_str("NOTIFIER", "telegram").lower()
    if notifier not in DEFAULT_BATCH_BYTES:
        raise ConfigError(f"NOTIFIER must be one of {sorted(DEFAULT_BATCH_BYTES)}, got {notifier!r}")

    ai_provider = _get_str("AI_PROVIDER", "gemini").lower()
    if ai_provider not in ("gemini", "openai"):
        raise ConfigError(f"AI_PROVIDER must be 'gemini' or 'openai', got {ai_provider!r}")

    language_mode = _get_str("LANGUAGE_MODE", "keep").lower()
    if language_mode not in ("keep", "drop"):
        raise ConfigError(f"LANGUAGE_MODE must be 'keep' or 'drop', got {language_mode!r}")

    # GEMINI_API_KEY kept for compatibility with existing deployments
    ai_api_key = _get_str("AI_API_KEY", None) or _get_str("GEMINI_API_KEY", None)

    settings = Settings(
        opml_path=_get_str("OPML_PATH", Settings.opml_path),
        max_articles_per_feed=_get_number("MAX_ARTICLES_PER_FEED", Settings.max_articles_per_feed, int),
        max_article_age_days=_get_number("MAX_ARTICLE_AGE_DAYS", Settings.max_article_age_days, int),
        request_timeout=_get_number("REQUEST_TIMEOUT", Settings.request_timeout, float),
        fetch_concurrency=_get_number("FETCH_CONCURRENCY", Settings.fetch_concurrency, int),
        filter_enabled=_get_bool("FILTER_ENABLED", Settings.filter_enabled),
        keywords_path=_get_str("KEYWORDS_PATH", Settings.keywords_path),
        language_filter_enabled=_get_bool("LANGUAGE_FILTER_ENABLED", Settings.language_filter_enabled),
        target_script=_get_str("TARGET_SCRIPT", Settings.target_script).lower(),
        language_mode=language_mode,
        database_enabled=_get_bool("ENABLE_DATABASE", Settings.database_enabled),
        cache_path=_get_str("CACHE_PATH", Settings.cache_path),
        cache_retention_days=_get_number("CACHE_RETENTION_DAYS", Settings.cache_retention_days, int),
        ai_enabled=_get_bool("AI_ENABLED", Settings.ai_enabled),
        ai_provider=ai_provider,
        ai_api_key=ai_api_key,
        ai_api_url=_get_str("AI_API_URL", Settings.ai_api_url),
        ai_model=_get_str("AI_MODEL", None),
        ai_prompt=_get_str("AI_PROMPT", Settings.ai_prompt),
        ai_timeout=_get_number("AI_TIMEOUT", Settings.ai_timeout, float),
        ai_max_tokens=_get_number("AI_MAX_TOKENS", Settings.ai_max_tokens, int),
        ai_temperature=_get_number("AI_TEMPERATURE", Settings.ai_temperature, float),
        notifier=notifier,
        telegram_bot_token=_get_str("TELEGRAM_BOT_TOKEN", None),
        telegram_chat_id=_get_str("TELEGRAM_CHAT_ID", None),
        dingtalk_webhook=_get_str("DINGTALK_WEBHOOK", None),
        dingtalk_secret=_get_str("DINGTALK_SECRET", None),
        batch_max_bytes=_get_number("BATCH_MAX_BYTES", DEFAULT_BATCH_BYTES[notifier], int),
        batch_pause_seconds=_get_number("BATCH_PAUSE_SECONDS", Settings.batch_pause_seconds, float),
        send_timeout=_get_number("SEND_TIMEOUT", Settings.send_timeout, float),
        run_interval_minutes=_get_number("RUN_INTERVAL_MINUTES", Settings.run_interval_minutes, float),
        log_level=_get_str("LOG_LEVEL", Settings.log_level).upper(),
    )

    if settings.max_articles_per_feed <= 0:
        raise ConfigError("MAX_ARTICLES_PER_FEED must be positive")
    if settings.fetch_concurrency <= 0:
        raise ConfigError("FETCH_CONCURRENCY must be positive")
    if settings.batch_max_bytes <= 0:
        raise ConfigError("BATCH_MAX_BYTES must be positive")

    if settings.ai_enabled and not settings.ai_api_key:
        logger.warning("AI_ENABLED is set but no API key found. AI filtering will be disabled.")

    return settings
