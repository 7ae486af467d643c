import logging
from typing import Optional

import requests

from ..config import get_finnhub_key
from ..errors import ProviderError
from ..models.quote import Instrument, RawQuote
from .base import QuoteSource, as_float, get_json

logger = logging.getLogger(__name__)

BASE_URL = "https://finnhub.io/api/v1"


class FinnhubQuoteSource(QuoteSource):
    """
    Single-symbol quotes from Finnhub (free tier: 60 calls/minute).
    Reference: https://finnhub.io/docs/api/quote

    Response: {"c": current, "d": change, "dp": percent change,
               "h": high, "l": low, "o": open, "pc": previous close, "t": ts}
    """

    name = "finnhub"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
    ):
        super().__init__(session, timeout)
        self.api_key = api_key if api_key is not None else get_finnhub_key()

    def fetch(self, instrument: Instrument) -> RawQuote:
        if not self.api_key:
            raise ProviderError(
                "FINNHUB_API_KEY is missing or invalid. "
                "Please add it to your .env file.",
                provider=self.name,
            )

        symbol = instrument.symbol_for(self.name)
        data = get_json(
            self.session,
            f"{BASE_URL}/quote",
            provider=self.name,
            params={"symbol": symbol, "token": self.api_key},
            timeout=self.timeout,
        )
        if not isinstance(data, dict):
            raise ProviderError(f"finnhub: unexpected quote payload for {symbol}", provider=self.name)

        price = self._require_price(symbol, as_float(data.get("c")))
        return RawQuote(
            provider=self.name,
            price=price,
            change_percent=as_float(data.get("dp")),
            previous_close=as_float(data.get("pc")),
        )
