import os

import pytest

from feedpush.config import load_settings
from feedpush.errors import ConfigError

ENV_VARS = [
    "OPML_PATH", "MAX_ARTICLES_PER_FEED", "REQUEST_TIMEOUT", "FILTER_ENABLED", "ENABLE_DATABASE",
    "AI_ENABLED", "AI_PROVIDER", "AI_API_KEY", "GEMINI_API_KEY", "NOTIFIER", "BATCH_MAX_BYTES",
    "LANGUAGE_MODE", "TARGET_SCRIPT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # load_dotenv writes straight into os.environ; give each test its own copy
    environ = {k: v for k, v in os.environ.items() if k not in ENV_VARS}
    monkeypatch.setattr(os, "environ", environ)
    # keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = load_settings()
    assert settings.opml_path == "config/feeds.opml"
    assert settings.max_articles_per_feed == 10
    assert settings.notifier == "telegram"
    assert settings.batch_max_bytes == 4000
    assert settings.ai_enabled is False
    assert settings.language_mode == "keep"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MAX_ARTICLES_PER_FEED", "25")
    monkeypatch.setenv("REQUEST_TIMEOUT", "2.5")
    monkeypatch.setenv("FILTER_ENABLED", "false")
    monkeypatch.setenv("NOTIFIER", "DingTalk")
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    settings = load_settings()
    assert settings.max_articles_per_feed == 25
    assert settings.request_timeout == 2.5
    assert settings.filter_enabled is False
    assert settings.notifier == "dingtalk"
    assert settings.batch_max_bytes == 20000
    assert settings.ai_api_key == "g-key"


def test_env_file(tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("OPML_PATH=feeds/mine.opml\nENABLE_DATABASE=no\n")
    settings = load_settings(str(env_file))
    assert settings.opml_path == "feeds/mine.opml"
    assert settings.database_enabled is False


def test_invalid_number(monkeypatch):
    monkeypatch.setenv("MAX_ARTICLES_PER_FEED", "lots")
    with pytest.raises(ConfigError):
        load_settings()


def test_invalid_choices(monkeypatch):
    monkeypatch.setenv("NOTIFIER", "carrier-pigeon")
    with pytest.raises(ConfigError):
        load_settings()
    monkeypatch.setenv("NOTIFIER", "telegram")
    monkeypatch.setenv("LANGUAGE_MODE", "maybe")
    with pytest.raises(ConfigError):
        load_settings()
