import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

import requests

from .errors import PulseboardError, ValidationError
from .models.news import Category, NewsItem, NewsSnapshot
from .providers.rss import FeedSource, fetch_feed, parse_feed
from .settings import NewsSettings

logger = logging.getLogger(__name__)

NEWS_ERROR = "Failed to fetch news"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_category(value: Optional[str]) -> Category:
    """Request parameter to Category; empty means all."""
    if not value:
        return Category.ALL
    try:
        return Category(value.strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown category: {value}",
            details={"allowed": [c.value for c in Category]},
        )


def filter_by_category(
    items: Iterable[NewsItem],
    category: Category,
    *,
    include_uncategorized: bool = False,
) -> List[NewsItem]:
    """
    Items whose derived category matches. Headlines that matched no keyword
    table (Category.ALL) only pass a specific filter when
    `include_uncategorized` is set.
    """
    if category == Category.ALL:
        return list(items)
    allowed = {category, Category.ALL} if include_uncategorized else {category}
    return [item for item in items if item.category in allowed]


def dedupe(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Drop repeated URLs, keeping the first occurrence."""
    seen = set()
    unique = []
    for item in items:
        if item.url in seen:
            continue
        seen.add(item.url)
        unique.append(item)
    return unique


class NewsAggregator:
    """
    Collects headlines from every enabled feed source for a category.

    Feeds are fetched one after another with a fixed pause; a feed that
    fails is logged and skipped. `clock` stamps undated entries and can be
    pinned in tests.
    """

    def __init__(
        self,
        settings: NewsSettings,
        sources: Optional[Sequence[FeedSource]] = None,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        if sources is None:
            sources = [FeedSource(s) for s in settings.sources if s.enabled]
        self.sources = list(sources)
        self.session = session or requests.Session()
        self.clock = clock
        self.sleep = sleep

    def get_news(self, category: Category = Category.ALL) -> List[NewsItem]:
        return self.snapshot(category).news

    def snapshot(self, category: Category = Category.ALL) -> NewsSnapshot:
        category = Category(category)
        items: List[NewsItem] = []
        attempted = 0
        succeeded = 0

        for source in self.sources:
            for url in source.urls_for(category, self.settings.queries):
                if attempted and self.settings.request_delay:
                    self.sleep(self.settings.request_delay)
                attempted += 1
                try:
                    body = fetch_feed(self.session, url, source=source.name, timeout=self.settings.timeout)
                    parsed = parse_feed(
                        body,
                        source.name,
                        max_items=self.settings.max_items_per_feed,
                        now=self.clock(),
                    )
                except PulseboardError as e:
                    logger.warning(f"Skipping {source.name} feed {url}: {e.message}")
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error reading {source.name} feed {url}: {e}")
                    continue
                succeeded += 1
                logger.info(f"Fetched {len(parsed)} items from {source.name}")
                items.extend(parsed)

        if attempted and not succeeded:
            logger.error(f"All {attempted} news feeds failed")
            return NewsSnapshot(news=[], error=NEWS_ERROR)

        items = filter_by_category(
            dedupe(items),
            category,
            include_uncategorized=self.settings.include_uncategorized,
        )
        items.sort(key=lambda item: item.published_at, reverse=True)
        return NewsSnapshot(news=items[: self.settings.max_items])
