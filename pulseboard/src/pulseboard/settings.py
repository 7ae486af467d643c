import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .config import get_config_path
from .errors import ValidationError
from .models.news import Category
from .models.quote import FallbackQuote, Instrument, InstrumentCategory

logger = logging.getLogger(__name__)

QUOTE_PROVIDERS = ("finnhub", "yahoo_chart", "yahoo_batch", "yfinance")
FEED_KINDS = ("rss", "search")


class ProviderSettings(BaseModel):
    """One entry of the quote provider chain."""
    model_config = ConfigDict(frozen=True)

    name: str
    # Empty means the provider is tried for every instrument category
    categories: List[InstrumentCategory] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in QUOTE_PROVIDERS:
            raise ValueError(f"unknown quote provider '{v}' (expected one of {', '.join(QUOTE_PROVIDERS)})")
        return v

    def serves(self, instrument: Instrument) -> bool:
        return not self.categories or instrument.category in self.categories


class QuoteSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    providers: List[ProviderSettings]
    instruments: List[Instrument] = Field(min_length=1)
    request_delay: float = Field(0.1, ge=0)
    timeout: float = Field(5.0, gt=0)

    @field_validator("providers", mode="before")
    @classmethod
    def _expand_names(cls, v: Any) -> Any:
        # Allow the short form `providers: [finnhub, yahoo_chart]`
        if isinstance(v, list):
            return [{"name": p} if isinstance(p, str) else p for p in v]
        return v

    @field_validator("instruments")
    @classmethod
    def _unique_labels(cls, v: List[Instrument]) -> List[Instrument]:
        labels = [i.label for i in v]
        dupes = sorted({label for label in labels if labels.count(label) > 1})
        if dupes:
            raise ValueError(f"duplicate instrument labels: {', '.join(dupes)}")
        return v


class FeedSourceSettings(BaseModel):
    """
    A news source. `rss` sources poll one fixed URL for every category;
    `search` sources format `{query}` into the URL once per category query.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    kind: str = "rss"
    url: str
    enabled: bool = True

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, v: str) -> str:
        if v not in FEED_KINDS:
            raise ValueError(f"unknown feed kind '{v}'")
        return v


class NewsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    sources: List[FeedSourceSettings]
    queries: Dict[Category, List[str]] = Field(default_factory=dict)
    max_items: int = Field(20, gt=0)
    max_items_per_feed: int = Field(15, gt=0)
    request_delay: float = Field(0.2, ge=0)
    timeout: float = Field(5.0, gt=0)
    include_uncategorized: bool = False


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    path: str = "pulseboard_cache.db"
    quotes_ttl: int = Field(30, ge=0)
    news_ttl: int = Field(60, ge=0)


class DashboardSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    quotes: QuoteSettings
    news: NewsSettings
    cache: CacheSettings = Field(default_factory=CacheSettings)


def _fallback(value: str, change: str, up: bool) -> FallbackQuote:
    return FallbackQuote(value=value, change=change, up=up)


DEFAULT_INSTRUMENTS = [
    Instrument(label="S&P 500", symbol="^GSPC", category=InstrumentCategory.INDEX,
               symbols={"finnhub": "SPY"}, fallback=_fallback("6,909.51", "+0.70%", True)),
    Instrument(label="纳斯达克", symbol="^IXIC", category=InstrumentCategory.INDEX,
               symbols={"finnhub": "QQQ"}, fallback=_fallback("22,886.07", "+0.90%", True)),
    Instrument(label="道琼斯", symbol="^DJI", category=InstrumentCategory.INDEX,
               symbols={"finnhub": "DIA"}, fallback=_fallback("49,625.97", "+0.50%", True)),
    Instrument(label="黄金", symbol="GC=F", category=InstrumentCategory.COMMODITY,
               fallback=_fallback("$5,080", "+2.10%", True)),
    Instrument(label="原油", symbol="CL=F", category=InstrumentCategory.COMMODITY,
               fallback=_fallback("$78.5", "-0.80%", False)),
    Instrument(label="比特币", symbol="BTC-USD", category=InstrumentCategory.CRYPTO,
               symbols={"finnhub": "BINANCE:BTCUSDT"}, fallback=_fallback("$98,500", "+1.20%", True)),
    Instrument(label="欧元/美元", symbol="EURUSD=X", category=InstrumentCategory.FOREX,
               fallback=_fallback("1.0850", "+0.10%", True)),
]

DEFAULT_PROVIDERS = [
    ProviderSettings(name="yahoo_chart"),
    ProviderSettings(name="yahoo_batch"),
    ProviderSettings(name="finnhub", categories=[InstrumentCategory.INDEX, InstrumentCategory.CRYPTO]),
    ProviderSettings(name="yfinance"),
]

DEFAULT_SOURCES = [
    FeedSourceSettings(name="BBC", url="https://feeds.bbci.co.uk/news/world/rss.xml"),
    FeedSourceSettings(name="Reuters", url="https://feeds.reuters.com/reuters/topNews"),
    FeedSourceSettings(name="NYT", url="https://rss.nytimes.com/services/xml/rss/nyt/Technology.xml"),
    FeedSourceSettings(name="NYT", url="https://rss.nytimes.com/services/xml/rss/nyt/Business.xml"),
    FeedSourceSettings(
        name="Google News",
        kind="search",
        url="https://news.google.com/rss/search?q={query}&hl=en-US&gl=US&ceid=US:en",
        enabled=False,
    ),
]

DEFAULT_QUERIES = {
    Category.ALL: ["breaking news", "top stories today"],
    Category.TECH: ["AI technology", "artificial intelligence news", "tech breaking"],
    Category.FINANCE: ["stock market", "finance economy", "federal reserve"],
    Category.STOCK: ["US stock market", "NASDAQ", "Wall Street today"],
    Category.VC: ["venture capital", "startup funding", "tech funding"],
    Category.GEO: ["geopolitics", "world news", "international"],
    Category.COMMODITY: ["oil gold commodity", "energy prices", "markets"],
}


def default_settings() -> DashboardSettings:
    """Settings reproducing the stock dashboard: seven instruments, four feeds."""
    return DashboardSettings(
        quotes=QuoteSettings(providers=DEFAULT_PROVIDERS, instruments=DEFAULT_INSTRUMENTS),
        news=NewsSettings(sources=DEFAULT_SOURCES, queries=DEFAULT_QUERIES),
    )


def settings_from_dict(data: Dict[str, Any]) -> DashboardSettings:
    """
    Build settings from the `dashboard` mapping of a YAML file.
    Sections (or keys inside them) that are left out keep their defaults.
    """
    defaults = default_settings().model_dump(mode="json")
    merged = {}
    for section in ("quotes", "news", "cache"):
        override = data.get(section) or {}
        if not isinstance(override, dict):
            raise ValidationError(f"'dashboard.{section}' must be a mapping.")
        merged[section] = {**defaults[section], **override}

    queries = (data.get("news") or {}).get("queries")
    if isinstance(queries, dict):
        merged["news"]["queries"] = {**defaults["news"]["queries"], **queries}

    try:
        return DashboardSettings.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid dashboard configuration.",
            details={"errors": [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]},
        )


def load_settings(path: Optional[str] = None) -> DashboardSettings:
    """
    Load dashboard settings from YAML.
    Expected shape:
      dashboard:
        quotes: {providers: [...], instruments: [...]}
        news: {sources: [...], queries: {...}}
        cache: {enabled: true, path: pulseboard_cache.db}

    An explicit path must exist; the default path is optional and falls back
    to the built-in settings.
    """
    explicit = path is not None
    p = Path(path or get_config_path())
    if not p.exists():
        if explicit:
            raise ValidationError(f"Dashboard config not found: {p}")
        logger.info(f"No {p} found, using built-in dashboard settings")
        return default_settings()

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid dashboard YAML: {e}")

    if "dashboard" not in data or not isinstance(data["dashboard"], dict):
        raise ValidationError("Dashboard file must contain a 'dashboard' object.")

    settings = settings_from_dict(data["dashboard"])
    logger.info(
        f"Loaded {len(settings.quotes.instruments)} instruments and "
        f"{len(settings.news.sources)} feed sources from {p}"
    )
    return settings
