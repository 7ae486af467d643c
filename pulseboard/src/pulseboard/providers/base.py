import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence, Union

import requests

from ..config import get_user_agent
from ..errors import ProviderError
from ..models.quote import Instrument, RawQuote

logger = logging.getLogger(__name__)

QuoteResult = Union[RawQuote, ProviderError]


def get_json(
    session: requests.Session,
    url: str,
    *,
    provider: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = 5.0,
) -> Any:
    """
    GET a JSON document. Anything other than a 200 with a JSON body is
    raised as ProviderError so callers can move to the next source.
    """
    logger.debug(f"GET {url} ({provider})")
    try:
        resp = session.get(
            url,
            params=params,
            headers={"User-Agent": get_user_agent()},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise ProviderError(f"{provider} request failed: {e}", provider=provider)

    if resp.status_code != 200:
        raise ProviderError(
            f"{provider} returned HTTP {resp.status_code}",
            provider=provider,
            details={"status": resp.status_code},
        )

    try:
        return resp.json()
    except ValueError as e:
        raise ProviderError(f"{provider} returned invalid JSON: {e}", provider=provider)


def as_float(value: Any) -> Optional[float]:
    """Finite numeric field or None; bools, NaN and junk strings count as missing."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class QuoteSource(ABC):
    """
    One upstream quote provider.

    Subclasses turn a provider-specific response into a RawQuote, raising
    ProviderError for anything unusable. `fetch_many` never raises: each
    instrument maps to either a RawQuote or the error it failed with.
    """

    name: str = ""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    @abstractmethod
    def fetch(self, instrument: Instrument) -> RawQuote:
        """Quote a single instrument."""

    def fetch_many(
        self,
        instruments: Sequence[Instrument],
        *,
        delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, QuoteResult]:
        """Per-instrument requests with a fixed pause between them."""
        results: Dict[str, QuoteResult] = {}
        for i, instrument in enumerate(instruments):
            if i and delay:
                sleep(delay)
            try:
                results[instrument.label] = self.fetch(instrument)
            except ProviderError as e:
                results[instrument.label] = e
        return results

    def _require_price(self, symbol: str, price: Optional[float]) -> float:
        # Finnhub answers unknown symbols with c=0, so zero is missing too
        if price is None or price <= 0:
            raise ProviderError(f"{self.name}: no price for {symbol}", provider=self.name)
        return price


class BatchQuoteSource(QuoteSource):
    """A provider that can quote many symbols in one request."""

    @abstractmethod
    def fetch_batch(self, instruments: Sequence[Instrument]) -> Dict[str, RawQuote]:
        """Quotes keyed by instrument label; missing labels failed."""

    def fetch(self, instrument: Instrument) -> RawQuote:
        quotes = self.fetch_batch([instrument])
        if instrument.label not in quotes:
            raise ProviderError(
                f"{self.name}: {instrument.symbol_for(self.name)} missing from batch response",
                provider=self.name,
            )
        return quotes[instrument.label]

    def fetch_many(
        self,
        instruments: Sequence[Instrument],
        *,
        delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, QuoteResult]:
        if not instruments:
            return {}
        try:
            quotes = self.fetch_batch(instruments)
        except ProviderError as e:
            return {instrument.label: e for instrument in instruments}

        results: Dict[str, QuoteResult] = {}
        for instrument in instruments:
            results[instrument.label] = quotes.get(instrument.label) or ProviderError(
                f"{self.name}: {instrument.symbol_for(self.name)} missing from batch response",
                provider=self.name,
            )
        return results
