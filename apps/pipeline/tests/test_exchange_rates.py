"""Tests for the HTTP exchange-rate provider using httpx.MockTransport."""

import httpx
import pytest

from apps.pipeline.adapters.exchange_rates import HttpExchangeRateProvider
from packages.ingestion_engine.errors import PipelineError, TransientError


def provider_for(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpExchangeRateProvider("https://rates.example.com/v4/latest", client=client)


def quotes(request):
    assert request.url.path == "/v4/latest/GBP"
    return httpx.Response(200, json={"base": "GBP", "rates": {"USD": 1.25, "EUR": 1.16, "GBP": 1}})


class TestRates:
    @pytest.mark.asyncio
    async def test_rates_are_inverted_to_settlement_units(self):
        provider = provider_for(quotes)

        rates = await provider.get_rates_batch(["USD", "EUR"], "GBP")

        assert rates["USD"].rate == pytest.approx(0.8)
        assert rates["EUR"].rate == pytest.approx(1 / 1.16)
        assert rates["USD"].base_currency == "GBP"
        assert rates["USD"].target_currency == "USD"
        assert rates["USD"].provider == "rates.example.com"

    @pytest.mark.asyncio
    async def test_batch_is_one_request(self):
        seen = []

        def handler(request):
            seen.append(request)
            return quotes(request)

        await provider_for(handler).get_rates_batch(["USD", "EUR", "JPY"], "GBP")

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unquoted_currency_is_omitted(self):
        rates = await provider_for(quotes).get_rates_batch(["USD", "XYZ"], "GBP")
        assert set(rates) == {"USD"}

    @pytest.mark.asyncio
    async def test_single_rate(self):
        rate = await provider_for(quotes).get_rate("USD", "GBP")
        assert rate.rate == pytest.approx(0.8)

        with pytest.raises(PipelineError, match="No exchange rate quoted for XYZ/GBP"):
            await provider_for(quotes).get_rate("XYZ", "GBP")


class TestFailures:
    @pytest.mark.parametrize("status", [429, 500, 503])
    @pytest.mark.asyncio
    async def test_retryable_status_is_transient(self, status):
        provider = provider_for(lambda request: httpx.Response(status))

        with pytest.raises(TransientError) as exc_info:
            await provider.get_rates_batch(["USD"], "GBP")

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_client_error_is_raised(self):
        provider = provider_for(lambda request: httpx.Response(404))
        with pytest.raises(httpx.HTTPStatusError):
            await provider.get_rates_batch(["USD"], "GBP")

    @pytest.mark.asyncio
    async def test_payload_without_rates(self):
        provider = provider_for(lambda request: httpx.Response(200, json={"error": "unsupported"}))
        with pytest.raises(PipelineError, match="no 'rates'"):
            await provider.get_rates_batch(["USD"], "GBP")


@pytest.mark.asyncio
async def test_context_manager_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(quotes))
    async with HttpExchangeRateProvider("https://rates.example.com/v4/latest/", client=client):
        pass
    assert not client.is_closed
    await client.aclose()
