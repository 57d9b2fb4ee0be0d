from datetime import datetime, timezone

import pytest

from feedpush.models import Article

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)


def make_article(link: str, title: str = "Untitled", summary="summary", **kwargs) -> Article:
    kwargs.setdefault("published_at", NOW)
    kwargs.setdefault("source_name", "Test Feed")
    return Article(title=title, link=link, summary=summary, **kwargs)


@pytest.fixture
def now():
    return NOW
