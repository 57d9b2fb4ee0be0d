import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from feedpush.errors import ConfigError
from feedpush.models import FeedDescriptor

logger = logging.getLogger(__name__)


def load_feeds(path: str) -> List[FeedDescriptor]:
    """Read an OPML file and flatten it into feed descriptors."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read OPML file {path}: {e}")

    feeds = parse_opml(content)
    logger.info(f"Loaded {len(feeds)} feed(s) from {path}")
    return feeds


def parse_opml(content: str) -> List[FeedDescriptor]:
    """
    Flatten an OPML outline tree depth-first.

    A node carrying ``xmlUrl`` is a feed. Its category comes from the nearest
    enclosing group (the group's ``category`` attribute, else its display
    name), falling back to the node's own ``category`` attribute when it sits
    directly under <body>.
    """
    if not content or not content.strip():
        raise ConfigError("OPML document is empty")

    soup = BeautifulSoup(content, "xml")
    root = soup.find("opml")
    if root is None:
        raise ConfigError("OPML document has no <opml> root element")
    body = root.find("body", recursive=False)
    if body is None:
        raise ConfigError("OPML document has no <body> element")

    feeds: List[FeedDescriptor] = []
    for outline in body.find_all("outline", recursive=False):
        _extract_feeds(outline, feeds, None)
    return feeds


def _display_name(node: Tag) -> Optional[str]:
    return node.get("text") or node.get("title") or None


def _extract_feeds(node: Tag, feeds: List[FeedDescriptor], category: Optional[str]):
    url = node.get("xmlUrl")
    if url:
        feeds.append(FeedDescriptor(
            name=_display_name(node) or "Unknown",
            url=url.strip(),
            category=category or node.get("category") or None,
        ))

    children = node.find_all("outline", recursive=False)
    if children:
        # Nested groups re-scope the category for their subtree
        child_category = node.get("category") or _display_name(node) or category
        for child in children:
            _extract_feeds(child, feeds, child_category)
