import logging
from typing import List

from feedpush.errors import ConfigError
from feedpush.models import Article, KeywordRuleSet, WordGroup

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
EXCLUDE_PREFIX = "!"
REQUIRED_PREFIX = "+"


def load_keywords(path: str) -> KeywordRuleSet:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read keyword file {path}: {e}")
    except UnicodeDecodeError as e:
        raise ConfigError(f"Keyword file {path} is not valid UTF-8: {e}")

    rules = parse_keywords(content)
    logger.info(
        f"Loaded keyword rules from {path}: "
        f"{len(rules.groups)} group(s), {len(rules.exclude_words)} exclude word(s)"
    )
    return rules


def parse_keywords(content: str) -> KeywordRuleSet:
    """
    Parse the line-oriented keyword format.

    Blank lines separate word groups. ``#`` lines are comments and do not
    close a group. ``!word`` excludes globally, ``+word`` is required within
    its group, anything else is an "any" word of its group.
    """
    rules = KeywordRuleSet()
    current = WordGroup()

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line:
            if not current.is_empty:
                rules.groups.append(current)
                current = WordGroup()
            continue

        if line.startswith(COMMENT_PREFIX):
            continue

        if line.startswith(EXCLUDE_PREFIX):
            word = line[1:].strip()
            if word:
                rules.exclude_words.append(word)
            continue

        if line.startswith(REQUIRED_PREFIX):
            word = line[1:].strip()
            if word:
                current.required.append(word)
            continue

        current.any.append(line)

    if not current.is_empty:
        rules.groups.append(current)

    return rules


class KeywordFilter:
    def __init__(self, rules: KeywordRuleSet):
        self.rules = rules
        # Lower-case once; matching is plain substring search
        self._exclude = [w.lower() for w in rules.exclude_words]
        self._groups = [
            ([w.lower() for w in g.required], [w.lower() for w in g.any])
            for g in rules.groups
        ]

    def matches(self, article: Article) -> bool:
        text = f"{article.title or ''} {article.summary or ''}".lower()

        if any(word in text for word in self._exclude):
            return False

        if not self._groups:
            return True

        return any(self._group_matches(text, required, any_words) for required, any_words in self._groups)

    @staticmethod
    def _group_matches(text: str, required: List[str], any_words: List[str]) -> bool:
        if not all(word in text for word in required):
            return False
        return not any_words or any(word in text for word in any_words)

    def filter(self, articles: List[Article]) -> List[Article]:
        kept = [a for a in articles if self.matches(a)]
        total = len(articles)
        rate = (len(kept) / total * 100) if total else 0.0
        logger.info(f"Keyword filter: {len(kept)}/{total} article(s) matched ({rate:.1f}%)")
        return kept
