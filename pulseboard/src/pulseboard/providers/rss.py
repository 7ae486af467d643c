import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote_plus

import feedparser
import requests

from ..classify import classify
from ..config import get_user_agent
from ..errors import ProviderError
from ..models.news import SOURCE_MAX_LENGTH, TITLE_MAX_LENGTH, Category, NewsItem
from ..settings import FeedSourceSettings

logger = logging.getLogger(__name__)


class FeedSource:
    """
    A configured news source and the feed URLs it contributes for a category.

    `rss` sources are topical feeds polled for every category and filtered
    afterwards; `search` sources build one search-feed URL per query.
    """

    def __init__(self, settings: FeedSourceSettings):
        self.settings = settings

    @property
    def name(self) -> str:
        return self.settings.name

    def urls_for(self, category: Category, queries: Dict[Category, List[str]]) -> List[str]:
        if self.settings.kind == "rss":
            return [self.settings.url]
        terms = queries.get(category) or queries.get(Category.ALL) or []
        return [self.settings.url.format(query=quote_plus(term)) for term in terms]

    def __repr__(self) -> str:
        return f"FeedSource({self.settings.name!r}, kind={self.settings.kind!r})"


def fetch_feed(session: requests.Session, url: str, *, source: str, timeout: float = 5.0) -> bytes:
    """Raw feed body; non-200 and transport errors raise ProviderError."""
    try:
        resp = session.get(url, headers={"User-Agent": get_user_agent()}, timeout=timeout)
    except requests.RequestException as e:
        raise ProviderError(f"{source} feed request failed: {e}", provider=source, details={"url": url})

    if resp.status_code != 200:
        raise ProviderError(
            f"{source} feed returned HTTP {resp.status_code}",
            provider=source,
            details={"url": url, "status": resp.status_code},
        )
    return resp.content


def _published_at(entry: Any, now: datetime) -> datetime:
    parsed = entry.get("published_parsed")
    # Reading a missing updated_parsed makes feedparser warn and alias published
    if not parsed and "updated_parsed" in entry:
        parsed = entry["updated_parsed"]
    if not parsed:
        return now
    try:
        # feedparser normalizes every date it understands to UTC
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return now


def _clean(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def parse_feed(
    body: Union[bytes, str],
    source_name: str,
    *,
    max_items: int = 15,
    now: Optional[datetime] = None,
) -> List[NewsItem]:
    """
    Extract news items from an RSS/Atom document.

    Entries without a title or a <link> are dropped (a permalink <guid> alone
    does not count), at most `max_items` are kept,
    and entries without a usable date are stamped with `now`. Parsing the
    same body with the same `now` always gives the same items.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    now = now or datetime.now(timezone.utc)

    # A file object keeps feedparser from treating the body as a URL or path
    feed = feedparser.parse(io.BytesIO(body))
    if feed.bozo and not feed.entries:
        raise ProviderError(
            f"{source_name} feed could not be parsed: {feed.get('bozo_exception')}",
            provider=source_name,
        )

    items: List[NewsItem] = []
    for entry in feed.entries:
        if len(items) >= max_items:
            break

        title = _clean(entry.get("title"))
        # feedparser copies a permalink guid into link when <link> is missing,
        # but only a real <link> element shows up in entry.links
        link = (entry.get("link") or "").strip() if entry.get("links") else ""
        if not title or not link:
            logger.debug(f"Skipping {source_name} entry without title or link")
            continue

        source = entry.get("source") or {}
        name = _clean(source.get("title")) or source_name

        items.append(NewsItem(
            title=title[:TITLE_MAX_LENGTH],
            url=link,
            source=name[:SOURCE_MAX_LENGTH],
            date=_published_at(entry, now),
            category=classify(title),
        ))

    return items
