import unittest

import pandas as pd
import requests

from fakes import FakeResponse, FakeSession, StaticSource, raw

from pulseboard.errors import ProviderError
from pulseboard.models.quote import FallbackQuote, Instrument, InstrumentCategory
from pulseboard.providers.finnhub import FinnhubQuoteSource
from pulseboard.providers.yahoo import YahooBatchQuoteSource, YahooChartSource, YFinanceQuoteSource
from pulseboard.quotes import (
    FALLBACK_ERROR,
    QuoteAggregator,
    build_quote_sources,
    format_change,
    format_price,
    resolve_change,
)
from pulseboard.settings import ProviderSettings, QuoteSettings

SPX = Instrument(
    label="S&P 500", symbol="^GSPC", category=InstrumentCategory.INDEX,
    symbols={"finnhub": "SPY"},
    fallback=FallbackQuote(value="6,909.51", change="+0.70%", up=True),
)
BTC = Instrument(
    label="比特币", symbol="BTC-USD", category=InstrumentCategory.CRYPTO,
    fallback=FallbackQuote(value="$98,500", change="+1.20%", up=True),
)
EUR = Instrument(
    label="欧元/美元", symbol="EURUSD=X", category=InstrumentCategory.FOREX,
    fallback=FallbackQuote(value="1.0850", change="+0.10%", up=True),
)


def _settings(*providers, delay=0.0):
    return QuoteSettings(
        providers=[p if isinstance(p, ProviderSettings) else ProviderSettings(name=p) for p in providers],
        instruments=[SPX, BTC, EUR],
        request_delay=delay,
    )


class TestFormatting(unittest.TestCase):
    def test_crypto_is_dollar_prefixed_and_grouped(self):
        self.assertEqual(format_price(1234.5, InstrumentCategory.CRYPTO), "$1,234.5")
        self.assertEqual(format_price(98500.256, InstrumentCategory.CRYPTO), "$98,500.26")

    def test_forex_uses_four_decimals(self):
        self.assertEqual(format_price(1.23456, InstrumentCategory.FOREX), "1.2346")
        self.assertEqual(format_price(1.085, InstrumentCategory.FOREX), "1.0850")

    def test_index_has_no_prefix(self):
        self.assertEqual(format_price(6909.514, InstrumentCategory.INDEX), "6,909.51")
        self.assertEqual(format_price(22886.0, InstrumentCategory.INDEX), "22,886")

    def test_commodity_is_dollar_prefixed(self):
        self.assertEqual(format_price(78.5, InstrumentCategory.COMMODITY), "$78.5")
        self.assertEqual(format_price(5080.0, InstrumentCategory.COMMODITY), "$5,080")

    def test_change_sign(self):
        self.assertEqual(format_change(-0.004), ("-0.00%", False))
        self.assertEqual(format_change(0), ("+0.00%", True))
        self.assertEqual(format_change(1.234), ("+1.23%", True))
        self.assertEqual(format_change(-2.5), ("-2.50%", False))

    def test_change_derived_from_previous_close(self):
        self.assertAlmostEqual(resolve_change(raw("p", 110.0, previous_close=100.0)), 10.0)
        self.assertEqual(resolve_change(raw("p", 110.0, change_percent=1.5, previous_close=100.0)), 1.5)

    def test_zero_previous_close_fails_the_provider(self):
        with self.assertRaises(ProviderError):
            resolve_change(raw("p", 110.0, previous_close=0.0))
        with self.assertRaises(ProviderError):
            resolve_change(raw("p", 110.0))


class TestQuoteAggregator(unittest.TestCase):
    def test_falls_through_to_next_provider(self):
        primary = StaticSource("finnhub", {
            BTC.label: raw("finnhub", 98500.5, change_percent=1.0),
            EUR.label: raw("finnhub", 1.23456, change_percent=-0.004),
        })
        secondary = StaticSource("yahoo_chart", {SPX.label: raw("yahoo_chart", 6909.51, previous_close=6861.5)})
        settings = _settings("finnhub", "yahoo_chart")
        agg = QuoteAggregator(settings, [(settings.providers[0], primary), (settings.providers[1], secondary)])

        quotes = agg.get_quotes()

        self.assertEqual([q.label for q in quotes], [SPX.label, BTC.label, EUR.label])
        self.assertEqual(primary.seen, [SPX.label, BTC.label, EUR.label])
        self.assertEqual(secondary.seen, [SPX.label])
        self.assertEqual(quotes[0].formatted_value, "6,909.51")
        self.assertEqual(quotes[0].formatted_change, "+0.70%")
        self.assertTrue(quotes[0].live)
        self.assertEqual(quotes[1].formatted_value, "$98,500.5")
        self.assertEqual(quotes[2].formatted_value, "1.2346")
        self.assertEqual(quotes[2].formatted_change, "-0.00%")
        self.assertFalse(quotes[2].is_up)

    def test_instrument_failing_every_provider_gets_its_fallback(self):
        names = ("finnhub", "yahoo_chart", "yahoo_batch")
        settings = _settings(*names)
        sources = [
            (settings.providers[0], StaticSource(names[0], {BTC.label: raw(names[0], 100.0, change_percent=1.0)})),
            (settings.providers[1], StaticSource(names[1], {EUR.label: raw(names[1], 1.1, change_percent=0.2)})),
            (settings.providers[2], StaticSource(names[2], {})),
        ]
        snapshot = QuoteAggregator(settings, sources).snapshot()

        self.assertIsNone(snapshot.error)
        self.assertEqual(len(snapshot.market), 3)
        self.assertEqual(
            snapshot.market[0].model_dump(by_alias=True),
            {"label": "S&P 500", "value": "6,909.51", "change": "+0.70%", "up": True, "live": False},
        )
        for _, source in sources:
            self.assertIn(SPX.label, source.seen)

    def test_total_failure_returns_static_fallback_set(self):
        settings = _settings("finnhub", "yahoo_chart", "yahoo_batch")
        sources = [(p, StaticSource(p.name, {})) for p in settings.providers]
        snapshot = QuoteAggregator(settings, sources).snapshot()

        self.assertEqual(snapshot.error, FALLBACK_ERROR)
        self.assertEqual([q.label for q in snapshot.market], [SPX.label, BTC.label, EUR.label])
        for quote, instrument in zip(snapshot.market, (SPX, BTC, EUR)):
            self.assertTrue(quote.formatted_value)
            self.assertEqual(quote.formatted_value, instrument.fallback.value)
            self.assertFalse(quote.live)

    def test_zero_previous_close_falls_through(self):
        settings = _settings("yahoo_chart", "yahoo_batch")
        first = StaticSource("yahoo_chart", {SPX.label: raw("yahoo_chart", 6900.0, previous_close=0.0)})
        second = StaticSource("yahoo_batch", {SPX.label: raw("yahoo_batch", 6901.0, change_percent=0.5)})
        quotes = QuoteAggregator(settings, [(settings.providers[0], first), (settings.providers[1], second)]).get_quotes()

        self.assertEqual(quotes[0].formatted_value, "6,901")
        self.assertEqual(quotes[0].formatted_change, "+0.50%")

    def test_provider_category_restriction(self):
        only_index = ProviderSettings(name="finnhub", categories=[InstrumentCategory.INDEX])
        settings = _settings(only_index)
        source = StaticSource("finnhub", {SPX.label: raw("finnhub", 690.0, change_percent=0.1)})
        QuoteAggregator(settings, [(only_index, source)]).get_quotes()

        self.assertEqual(source.seen, [SPX.label])

    def test_delay_between_requests_to_one_provider(self):
        settings = _settings("finnhub", delay=0.1)
        pauses = []
        source = StaticSource("finnhub", {})
        QuoteAggregator(settings, [(settings.providers[0], source)], sleep=pauses.append).get_quotes()

        self.assertEqual(pauses, [0.1, 0.1])

    def test_crashing_provider_does_not_escape(self):
        settings = _settings("finnhub", "yahoo_chart")
        broken = StaticSource("finnhub", {SPX.label: RuntimeError("boom")})
        backup = StaticSource("yahoo_chart", {SPX.label: raw("yahoo_chart", 6909.5, change_percent=0.0)})
        quotes = QuoteAggregator(settings, [(settings.providers[0], broken), (settings.providers[1], backup)]).get_quotes()

        self.assertEqual(quotes[0].formatted_value, "6,909.5")
        self.assertTrue(quotes[0].is_up)


class TestFinnhubQuoteSource(unittest.TestCase):
    def test_parses_quote(self):
        session = FakeSession({"https://finnhub.io/api/v1/quote": FakeResponse(payload={"c": 690.12, "dp": 0.7, "pc": 685.3})})
        quote = FinnhubQuoteSource(session=session, api_key="k").fetch(SPX)

        self.assertEqual(quote.price, 690.12)
        self.assertEqual(quote.change_percent, 0.7)
        self.assertEqual(session.calls[0]["params"], {"symbol": "SPY", "token": "k"})

    def test_zero_price_means_unknown_symbol(self):
        session = FakeSession({"https://finnhub.io": FakeResponse(payload={"c": 0, "dp": None, "pc": 0})})
        with self.assertRaises(ProviderError):
            FinnhubQuoteSource(session=session, api_key="k").fetch(SPX)

    def test_missing_key_fails_without_request(self):
        session = FakeSession()
        with self.assertRaises(ProviderError):
            FinnhubQuoteSource(session=session, api_key="").fetch(SPX)
        self.assertEqual(session.calls, [])

    def test_request_is_bounded_by_timeout(self):
        session = FakeSession({"https://finnhub.io": FakeResponse(payload={"c": 690.12, "dp": 0.7, "pc": 685.3})})
        FinnhubQuoteSource(session=session, timeout=2.5, api_key="k").fetch(SPX)

        self.assertEqual(session.calls[0]["timeout"], 2.5)

    def test_transport_and_status_errors(self):
        for result in (requests.Timeout("slow"), FakeResponse(status_code=429, payload={})):
            session = FakeSession({"https://finnhub.io": result})
            with self.assertRaises(ProviderError):
                FinnhubQuoteSource(session=session, api_key="k").fetch(SPX)


class TestYahooSources(unittest.TestCase):
    def test_chart_meta_price_and_previous_close(self):
        payload = {"chart": {"result": [{"meta": {"regularMarketPrice": 6909.51, "chartPreviousClose": 6861.5}}]}}
        session = FakeSession({"https://query1.finance.yahoo.com/v8/finance/chart/": FakeResponse(payload=payload)})
        quote = YahooChartSource(session=session).fetch(SPX)

        self.assertEqual(quote.price, 6909.51)
        self.assertEqual(quote.previous_close, 6861.5)
        self.assertIsNone(quote.change_percent)
        self.assertTrue(session.calls[0]["url"].endswith("/%5EGSPC"))

    def test_configured_timeout_reaches_every_request(self):
        payload = {"chart": {"result": [{"meta": {"regularMarketPrice": 6909.51, "chartPreviousClose": 6861.5}}]}}
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(payload=payload)})
        settings = QuoteSettings(providers=["yahoo_chart"], instruments=[SPX, BTC], request_delay=0, timeout=1.5)
        sources = build_quote_sources(settings, session=session)

        self.assertEqual([source.timeout for _, source in sources], [1.5])
        QuoteAggregator(settings, sources).get_quotes()
        self.assertEqual([call["timeout"] for call in session.calls], [1.5, 1.5])

    def test_chart_falls_back_to_last_close(self):
        payload = {"chart": {"result": [{
            "meta": {"previousClose": 1.08},
            "indicators": {"quote": [{"close": [1.081, 1.0855, None]}]},
        }]}}
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(payload=payload)})
        quote = YahooChartSource(session=session).fetch(EUR)

        self.assertEqual(quote.price, 1.0855)
        self.assertEqual(quote.previous_close, 1.08)

    def test_chart_without_result_fails(self):
        payload = {"chart": {"result": None, "error": {"code": "Not Found"}}}
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(payload=payload)})
        with self.assertRaises(ProviderError):
            YahooChartSource(session=session).fetch(SPX)

    def test_batch_quotes_all_pending_in_one_request(self):
        payload = {"quoteResponse": {"result": [
            {"symbol": "BTC-USD", "regularMarketPrice": 98500.0, "regularMarketChangePercent": 1.2},
        ]}}
        session = FakeSession({"https://query1.finance.yahoo.com/v7/finance/quote": FakeResponse(payload=payload)})
        results = YahooBatchQuoteSource(session=session).fetch_many([SPX, BTC])

        self.assertEqual(len(session.calls), 1)
        self.assertEqual(session.calls[0]["params"], {"symbols": "^GSPC,BTC-USD"})
        self.assertIsInstance(results[SPX.label], ProviderError)
        self.assertEqual(results[BTC.label].price, 98500.0)

    def test_batch_failure_fails_every_instrument(self):
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(status_code=401, payload={})})
        results = YahooBatchQuoteSource(session=session).fetch_many([SPX, BTC])

        self.assertTrue(all(isinstance(r, ProviderError) for r in results.values()))

    def test_yfinance_history(self):
        class Ticker:
            def __init__(self, symbol):
                self.symbol = symbol

            def history(self, **kwargs):
                return pd.DataFrame({"Close": [100.0, 105.0, float("nan")]})

        quote = YFinanceQuoteSource(ticker_factory=Ticker).fetch(BTC)

        self.assertEqual(quote.price, 105.0)
        self.assertEqual(quote.previous_close, 100.0)

    def test_yfinance_empty_history_fails(self):
        class Ticker:
            def __init__(self, symbol):
                pass

            def history(self, **kwargs):
                return pd.DataFrame()

        with self.assertRaises(ProviderError):
            YFinanceQuoteSource(ticker_factory=Ticker).fetch(BTC)


if __name__ == "__main__":
    unittest.main()
