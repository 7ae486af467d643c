import logging
from typing import Any, Dict, Optional, Tuple

from .cache.sqlite import SQLiteCache
from .models.news import Category
from .news import NewsAggregator
from .quotes import QuoteAggregator
from .settings import DashboardSettings

logger = logging.getLogger(__name__)

MARKET_KEY = "pulseboard:market"


def news_key(category: Category) -> str:
    return f"pulseboard:news:{category.value}"


class Dashboard:
    """
    What the HTTP endpoints and CLI commands call: both aggregators behind a
    short-lived response cache. Payloads are plain dicts ready for JSON.

    Degraded payloads (those carrying an `error`) are never cached, so the
    next poll retries the providers.
    """

    def __init__(
        self,
        settings: DashboardSettings,
        quotes: Optional[QuoteAggregator] = None,
        news: Optional[NewsAggregator] = None,
        cache: Optional[SQLiteCache] = None,
    ):
        self.settings = settings
        self.quotes = quotes or QuoteAggregator(settings.quotes)
        self.news = news or NewsAggregator(settings.news)
        if cache is None and settings.cache.enabled:
            cache = SQLiteCache(db_path=settings.cache.path)
        self.cache = cache

    def _cached(self, key: str, ttl: int) -> Optional[Dict[str, Any]]:
        if self.cache is None or ttl <= 0:
            return None
        data = self.cache.get(key, max_age=ttl)
        if data is not None:
            logger.info(f"Cache hit: {key}")
        return data

    def _store(self, key: str, payload: Dict[str, Any]):
        if self.cache is not None and not payload.get("error"):
            self.cache.put(key, payload)

    def market(self, force: bool = False) -> Tuple[Dict[str, Any], bool]:
        """(`{"market": [...]}` payload, served from cache)"""
        if not force:
            cached = self._cached(MARKET_KEY, self.settings.cache.quotes_ttl)
            if cached is not None:
                return cached, True

        payload = self.quotes.snapshot().model_dump(mode="json", by_alias=True, exclude_none=True)
        self._store(MARKET_KEY, payload)
        return payload, False

    def headlines(self, category: Category = Category.ALL, force: bool = False) -> Tuple[Dict[str, Any], bool]:
        """(`{"news": [...]}` payload, served from cache)"""
        key = news_key(category)
        if not force:
            cached = self._cached(key, self.settings.cache.news_ttl)
            if cached is not None:
                return cached, True

        payload = self.news.snapshot(category).model_dump(mode="json", by_alias=True, exclude_none=True)
        self._store(key, payload)
        return payload, False
