import logging
import math
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .errors import ProviderError
from .models.quote import Instrument, InstrumentCategory, MarketSnapshot, Quote, RawQuote
from .providers.base import QuoteSource
from .providers.finnhub import FinnhubQuoteSource
from .providers.yahoo import YahooBatchQuoteSource, YahooChartSource, YFinanceQuoteSource
from .settings import ProviderSettings, QuoteSettings

logger = logging.getLogger(__name__)

FALLBACK_ERROR = "API unavailable, using fallback"

SOURCE_TYPES = {
    "finnhub": FinnhubQuoteSource,
    "yahoo_chart": YahooChartSource,
    "yahoo_batch": YahooBatchQuoteSource,
    "yfinance": YFinanceQuoteSource,
}


def _round(value: float, places: int) -> Decimal:
    # Round the shortest decimal repr, so 1.005 goes to 1.01 like a person would
    return Decimal(repr(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def format_price(price: float, category: InstrumentCategory) -> str:
    """
    Display string for a price:
      forex      1.2346       4 decimals
      crypto     $98,500.25   grouped, at most 2 decimals
      index      6,909.51     grouped, at most 2 decimals
      commodity  $78.5        grouped, at most 2 decimals
    """
    if category == InstrumentCategory.FOREX:
        return f"{_round(price, 4):.4f}"

    text = f"{_round(price, 2):,.2f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if category in (InstrumentCategory.CRYPTO, InstrumentCategory.COMMODITY):
        text = "$" + text
    return text


def format_change(change_percent: float) -> Tuple[str, bool]:
    """Signed percent string and the up flag; zero counts as up."""
    is_up = change_percent >= 0
    sign = "+" if is_up else "-"
    return f"{sign}{_round(abs(change_percent), 2):.2f}%", is_up


def resolve_change(raw: RawQuote) -> float:
    """
    Percent change from the provider, or derived from the previous close.
    A missing or zero previous close fails the provider for this instrument.
    """
    if raw.change_percent is not None and math.isfinite(raw.change_percent):
        return raw.change_percent
    if not raw.previous_close:
        raise ProviderError(f"{raw.provider}: no change or previous close", provider=raw.provider)
    return (raw.price - raw.previous_close) / raw.previous_close * 100


def build_quote(instrument: Instrument, raw: RawQuote) -> Quote:
    if not math.isfinite(raw.price) or raw.price <= 0:
        raise ProviderError(f"{raw.provider}: unusable price {raw.price}", provider=raw.provider)
    change, is_up = format_change(resolve_change(raw))
    return Quote(
        label=instrument.label,
        value=format_price(raw.price, instrument.category),
        change=change,
        up=is_up,
        live=True,
    )


def fallback_quote(instrument: Instrument) -> Quote:
    return Quote(
        label=instrument.label,
        value=instrument.fallback.value,
        change=instrument.fallback.change,
        up=instrument.fallback.up,
        live=False,
    )


def build_quote_sources(
    settings: QuoteSettings,
    session: Optional[requests.Session] = None,
) -> List[Tuple[ProviderSettings, QuoteSource]]:
    """Instantiate the configured provider chain, in priority order."""
    session = session or requests.Session()
    return [
        (provider, SOURCE_TYPES[provider.name](session=session, timeout=settings.timeout))
        for provider in settings.providers
    ]


class QuoteAggregator:
    """
    Quotes every configured instrument through an ordered provider chain.

    Each provider only sees the instruments still unresolved after the
    providers before it. Instruments no provider can price get their static
    fallback entry, so the result always has one Quote per instrument.
    """

    def __init__(
        self,
        settings: QuoteSettings,
        sources: Optional[Sequence[Tuple[ProviderSettings, QuoteSource]]] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.sources = list(sources) if sources is not None else build_quote_sources(settings)
        self.sleep = sleep

    def get_quotes(self) -> List[Quote]:
        return self.snapshot().market

    def snapshot(self) -> MarketSnapshot:
        instruments = self.settings.instruments
        resolved: Dict[str, Quote] = {}

        for provider, source in self.sources:
            pending = [i for i in instruments if i.label not in resolved and provider.serves(i)]
            if not pending:
                continue

            try:
                results = source.fetch_many(pending, delay=self.settings.request_delay, sleep=self.sleep)
            except Exception as e:
                logger.exception(f"Quote provider {provider.name} crashed: {e}")
                continue

            for instrument in pending:
                result = results.get(instrument.label)
                if result is None:
                    continue
                if isinstance(result, ProviderError):
                    logger.warning(f"{instrument.label}: {result.message}")
                    continue
                try:
                    resolved[instrument.label] = build_quote(instrument, result)
                except ProviderError as e:
                    logger.warning(f"{instrument.label}: {e.message}")

            logger.info(f"{provider.name}: quoted {sum(1 for i in pending if i.label in resolved)}/{len(pending)}")

        if not resolved:
            logger.error("Every quote provider failed, serving fallback values")
            return MarketSnapshot(market=[fallback_quote(i) for i in instruments], error=FALLBACK_ERROR)

        quotes = []
        for instrument in instruments:
            if instrument.label in resolved:
                quotes.append(resolved[instrument.label])
            else:
                logger.warning(f"No provider could quote {instrument.label}, using fallback")
                quotes.append(fallback_quote(instrument))
        return MarketSnapshot(market=quotes)
