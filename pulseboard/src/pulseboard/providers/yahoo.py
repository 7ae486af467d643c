import logging
from typing import Any, Callable, Dict, Optional, Sequence
from urllib.parse import quote

import requests
import yfinance as yf

from ..errors import ProviderError
from ..models.quote import Instrument, RawQuote
from .base import BatchQuoteSource, QuoteSource, as_float, get_json

logger = logging.getLogger(__name__)

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
QUOTE_URL = "https://query1.finance.yahoo.com/v7/finance/quote"


def _last_close(result: Dict[str, Any]) -> Optional[float]:
    """Last non-null close of a chart result's first quote series."""
    try:
        closes = result["indicators"]["quote"][0]["close"] or []
    except (KeyError, IndexError, TypeError):
        return None
    for value in reversed(closes):
        price = as_float(value)
        if price is not None:
            return price
    return None


class YahooChartSource(QuoteSource):
    """
    Chart (time-series) endpoint, one request per symbol.

    Price comes from `meta.regularMarketPrice`, or the last close in the
    series when the meta block omits it. No percent change is supplied,
    so the previous close is returned for the aggregator to derive one.
    """

    name = "yahoo_chart"

    def fetch(self, instrument: Instrument) -> RawQuote:
        symbol = instrument.symbol_for(self.name)
        data = get_json(
            self.session,
            CHART_URL.format(symbol=quote(symbol, safe="")),
            provider=self.name,
            params={"interval": "1d", "range": "1d"},
            timeout=self.timeout,
        )

        try:
            result = data["chart"]["result"][0]
            meta = result["meta"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(f"yahoo_chart: no chart result for {symbol}", provider=self.name)

        price = as_float(meta.get("regularMarketPrice"))
        if price is None:
            price = _last_close(result)
        price = self._require_price(symbol, price)

        previous_close = as_float(meta.get("chartPreviousClose"))
        if previous_close is None:
            previous_close = as_float(meta.get("previousClose"))

        return RawQuote(provider=self.name, price=price, previous_close=previous_close)


class YahooBatchQuoteSource(BatchQuoteSource):
    """Batch quote endpoint: every pending symbol in a single request."""

    name = "yahoo_batch"

    def fetch_batch(self, instruments: Sequence[Instrument]) -> Dict[str, RawQuote]:
        by_symbol = {i.symbol_for(self.name): i for i in instruments}
        data = get_json(
            self.session,
            QUOTE_URL,
            provider=self.name,
            params={"symbols": ",".join(by_symbol)},
            timeout=self.timeout,
        )

        try:
            rows = data["quoteResponse"]["result"] or []
        except (KeyError, TypeError):
            raise ProviderError("yahoo_batch: malformed quoteResponse", provider=self.name)

        quotes: Dict[str, RawQuote] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            instrument = by_symbol.get(row.get("symbol"))
            if instrument is None:
                continue
            price = as_float(row.get("regularMarketPrice"))
            if price is None or price <= 0:
                logger.warning(f"yahoo_batch: no price for {row.get('symbol')}")
                continue
            quotes[instrument.label] = RawQuote(
                provider=self.name,
                price=price,
                change_percent=as_float(row.get("regularMarketChangePercent")),
                previous_close=as_float(row.get("regularMarketPreviousClose")),
            )
        return quotes


class YFinanceQuoteSource(QuoteSource):
    """
    Daily history via the yfinance library; the last two closes give the
    price and the previous close.
    """

    name = "yfinance"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        ticker_factory: Callable[[str], Any] = yf.Ticker,
    ):
        super().__init__(session, timeout)
        self.ticker_factory = ticker_factory

    def fetch(self, instrument: Instrument) -> RawQuote:
        symbol = instrument.symbol_for(self.name)
        try:
            df = self.ticker_factory(symbol).history(period="5d", interval="1d", timeout=self.timeout)
        except Exception as e:
            logger.error(f"Failed to fetch history for {symbol}: {e}")
            raise ProviderError(f"yfinance history failed for {symbol}: {e}", provider=self.name)

        if df is None or df.empty or "Close" not in df:
            raise ProviderError(f"yfinance: no price data for {symbol}", provider=self.name)

        closes = df["Close"].dropna()
        if closes.empty:
            raise ProviderError(f"yfinance: no price data for {symbol}", provider=self.name)

        price = self._require_price(symbol, as_float(closes.iloc[-1]))
        previous_close = as_float(closes.iloc[-2]) if len(closes) >= 2 else None
        return RawQuote(provider=self.name, price=price, previous_close=previous_close)
