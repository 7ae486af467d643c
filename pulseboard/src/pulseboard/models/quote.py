from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class InstrumentCategory(str, Enum):
    INDEX = "index"
    COMMODITY = "commodity"
    CRYPTO = "crypto"
    FOREX = "forex"


class FallbackQuote(BaseModel):
    """Static display values used when no provider can price an instrument."""
    model_config = ConfigDict(frozen=True)

    value: str = "--"
    change: str = "--%"
    up: bool = True


class Instrument(BaseModel):
    """
    A tracked symbol.

    `symbol` is used by every provider unless `symbols` carries an override
    keyed by provider name (e.g. Yahoo wants "^GSPC" where Finnhub wants "SPY").
    """
    model_config = ConfigDict(frozen=True)

    label: str
    symbol: str
    category: InstrumentCategory
    symbols: Dict[str, str] = Field(default_factory=dict)
    fallback: FallbackQuote = Field(default_factory=FallbackQuote)

    def symbol_for(self, provider: str) -> str:
        return self.symbols.get(provider, self.symbol)


class RawQuote(BaseModel):
    """
    Provider output before formatting. At least one of change_percent or
    previous_close is needed to derive a change.
    """
    provider: str
    price: float
    change_percent: Optional[float] = None
    previous_close: Optional[float] = None


class Quote(BaseModel):
    """
    Display record for one instrument.
    Serialized by alias (label/value/change/up) for the dashboard page.
    """
    model_config = ConfigDict(populate_by_name=True)

    label: str
    formatted_value: str = Field(alias="value")
    formatted_change: str = Field(alias="change")
    is_up: bool = Field(alias="up")
    live: bool = False


class MarketSnapshot(BaseModel):
    market: List[Quote]
    error: Optional[str] = None
