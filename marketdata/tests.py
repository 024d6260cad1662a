from __future__ import annotations

import io
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import Client, SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from .catalog import fallback_price
from .models import Instrument, Quote
from .providers import CoinGeckoProvider, FinnhubProvider, ProviderPrice
from .services import fetch_prices, fetch_provider_prices, fetch_quote, indicative_price, latest_cached_prices


def _session_returning(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    session = MagicMock()
    session.get.return_value = resp
    return session


class ProviderParsingTests(SimpleTestCase):
    def test_finnhub_quote(self):
        session = _session_returning({"c": 187.44, "d": 1.2, "dp": 0.65})
        quote = FinnhubProvider(api_key="k", session=session).fetch_quote("aapl")
        self.assertEqual(quote, ProviderPrice("AAPL", Decimal("187.44"), Decimal("1.2"), Decimal("0.65")))
        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["params"], {"symbol": "AAPL", "token": "k"})

    def test_finnhub_unknown_symbol(self):
        session = _session_returning({"c": 0, "d": None, "dp": None})
        self.assertIsNone(FinnhubProvider(api_key="k", session=session).fetch_quote("ZZZZ"))

    @override_settings(FINNHUB_API_KEY="")
    def test_finnhub_requires_key(self):
        with patch.dict("os.environ", {"FINNHUB_API_KEY": ""}):
            with self.assertRaises(RuntimeError):
                FinnhubProvider()

    def test_coingecko_quote(self):
        session = _session_returning({"bitcoin": {"usd": 91234.5, "usd_24h_change": -1.5}})
        quote = CoinGeckoProvider(api_key="", session=session).fetch_quote("BTC")
        self.assertEqual(quote.price, Decimal("91234.5"))
        self.assertEqual(quote.percent_change, Decimal("-1.5"))
        _, kwargs = session.get.call_args
        self.assertEqual(kwargs["params"]["ids"], "bitcoin")
        self.assertEqual(kwargs["headers"], {})

    def test_coingecko_unknown_or_empty(self):
        session = _session_returning({})
        provider = CoinGeckoProvider(api_key="demo", session=session)
        self.assertIsNone(provider.fetch_quote("BTC"))
        self.assertIsNone(provider.fetch_quote("NOPE"))


class PriceFetchTests(SimpleTestCase):
    def test_fetch_quote_swallows_provider_errors(self):
        provider = MagicMock()
        provider.fetch_quote.side_effect = requests.ConnectionError("down")
        with patch("marketdata.services.get_provider", return_value=provider):
            self.assertIsNone(fetch_quote("AAPL"))

    @override_settings(PRICE_FETCH_BATCH_SIZE=6, PRICE_FETCH_BATCH_DELAY=0.5)
    @patch("marketdata.services.time.sleep")
    @patch("marketdata.services.fetch_quote")
    def test_batches_of_six_with_delay(self, mock_quote, mock_sleep):
        mock_quote.side_effect = lambda s: ProviderPrice(s, Decimal("1"))
        symbols = [f"S{i}" for i in range(13)] + ["S0"]
        prices = fetch_provider_prices(symbols)
        self.assertEqual(len(prices), 13)
        self.assertEqual(mock_quote.call_count, 13)
        self.assertEqual(mock_sleep.call_count, 2)
        mock_sleep.assert_called_with(0.5)

    @patch("marketdata.services.fetch_provider_prices")
    def test_fetch_prices_falls_back(self, mock_fetch):
        mock_fetch.return_value = {"AAPL": ProviderPrice("AAPL", Decimal("190"))}
        prices = fetch_prices(
            ["AAPL", "MSFT", "BTC", "aapl"],
            fallbacks={"MSFT": Decimal("410.5"), "BTC": Decimal("0")},
        )
        self.assertEqual(
            prices,
            {"AAPL": Decimal("190"), "MSFT": Decimal("410.5"), "BTC": fallback_price("BTC")},
        )


class QuoteCacheTests(TestCase):
    @patch("marketdata.services.fetch_provider_prices")
    def test_refresh_command_stores_quotes(self, mock_fetch):
        mock_fetch.return_value = {
            "AAPL": ProviderPrice("AAPL", Decimal("187.5"), Decimal("1"), Decimal("0.5")),
            "ETH": ProviderPrice("ETH", Decimal("3100")),
        }
        out = io.StringIO()
        call_command("refresh_market_quotes", stdout=out)

        self.assertIn("Stored 2 quote(s).", out.getvalue())
        self.assertIn("Missing:", out.getvalue())
        self.assertEqual(Quote.objects.get(instrument__symbol="ETH").provider_name, "COINGECKO")
        self.assertEqual(latest_cached_prices(["AAPL", "MSFT"]), {"AAPL": Decimal("187.5")})

    def test_latest_quote_wins(self):
        inst = Instrument.objects.create(symbol="AAPL", name="Apple")
        now = timezone.now()
        Quote.objects.create(instrument=inst, as_of=now - timedelta(minutes=5), price=Decimal("100"), provider_name="T")
        Quote.objects.create(instrument=inst, as_of=now, price=Decimal("105"), provider_name="T")
        self.assertEqual(indicative_price("aapl"), Decimal("105"))
        self.assertEqual(indicative_price("MSFT"), fallback_price("MSFT"))


class AssetCatalogViewTests(TestCase):
    def setUp(self):
        User = get_user_model()
        User.objects.create_user(username="u1", password="pw")
        self.client = Client()
        self.client.login(username="u1", password="pw")

    def test_filter_by_type_and_term(self):
        resp = self.client.get(reverse("marketdata:asset_catalog"), {"type": "crypto", "q": "bit"})
        self.assertEqual(resp.status_code, 200)
        symbols = [a["symbol"] for a in resp.json()["assets"]]
        self.assertEqual(symbols, ["BTC"])

    def test_invalid_type(self):
        resp = self.client.get(reverse("marketdata:asset_catalog"), {"type": "bonds"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "INVALID_ASSET_CLASS")
