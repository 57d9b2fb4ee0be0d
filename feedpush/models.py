from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime


@dataclass
class FeedDescriptor:
    name: str
    url: str
    category: Optional[str] = None


@dataclass
class Article:
    title: str
    link: str  # Identity key for deduplication
    published_at: Optional[datetime]
    source_name: str  # Feed display name
    published: str = ""  # Raw date string as it appeared in the feed
    summary: Optional[str] = None  # Plain-text snippet
    category: Optional[str] = None
    reason: Optional[str] = None  # Set by the semantic filter only


@dataclass
class WordGroup:
    required: List[str] = field(default_factory=list)  # AND
    any: List[str] = field(default_factory=list)  # OR

    @property
    def is_empty(self) -> bool:
        return not self.required and not self.any


@dataclass
class KeywordRuleSet:
    groups: List[WordGroup] = field(default_factory=list)
    exclude_words: List[str] = field(default_factory=list)


@dataclass
class RunStats:
    fetched: int = 0
    new: int = 0
    after_language: int = 0
    after_keywords: int = 0
    after_summary: int = 0
    after_semantic: int = 0
    delivered: int = 0


@dataclass
class RunResult:
    success: bool
    delivered: int = 0
    error: Optional[str] = None
    articles: List[Article] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)
