import logging
import unicodedata
from typing import Dict, List, Tuple

from feedpush.errors import ConfigError
from feedpush.models import Article

logger = logging.getLogger(__name__)

# Share of classifiable characters that must belong to the target script.
# Kept well below a majority so mixed titles ("Rust 1.80 发布") still count.
TARGET_RATIO = 0.30

SCRIPT_RANGES: Dict[str, List[Tuple[int, int]]] = {
    "han": [(0x4E00, 0x9FFF)],
    "kana": [(0x3040, 0x309F), (0x30A0, 0x30FF)],
    "hangul": [(0xAC00, 0xD7AF), (0x1100, 0x11FF)],
    "cyrillic": [(0x0400, 0x04FF)],
    "arabic": [(0x0600, 0x06FF)],
    "latin": [(0x0041, 0x005A), (0x0061, 0x007A), (0x00C0, 0x024F)],
}


def _in_script(char: str, ranges: List[Tuple[int, int]]) -> bool:
    code = ord(char)
    return any(lo <= code <= hi for lo, hi in ranges)


def _is_classifiable(char: str) -> bool:
    # Whitespace and punctuation carry no language signal
    return not char.isspace() and not unicodedata.category(char).startswith("P")


def script_ratio(text: str, script: str) -> float:
    ranges = SCRIPT_RANGES[script]
    total = 0
    hits = 0
    for char in text:
        if not _is_classifiable(char):
            continue
        total += 1
        if _in_script(char, ranges):
            hits += 1
    if total == 0:
        return 0.0
    return hits / total


def is_target_language(article: Article, script: str = "han") -> bool:
    text = f"{article.title or ''} {article.summary or ''}"
    return script_ratio(text, script) > TARGET_RATIO


class LanguageFilter:
    """Keeps (or drops) articles written in a given script."""

    def __init__(self, script: str = "han", keep: bool = True):
        if script not in SCRIPT_RANGES:
            raise ConfigError(f"Unknown script {script!r}, expected one of {sorted(SCRIPT_RANGES)}")
        self.script = script
        self.keep = keep

    def filter(self, articles: List[Article]) -> List[Article]:
        kept = [a for a in articles if is_target_language(a, self.script) == self.keep]
        mode = "kept" if self.keep else "dropped"
        logger.info(
            f"Language filter ({self.script}, target {mode}): "
            f"{len(kept)}/{len(articles)} article(s) pass"
        )
        return kept
