"""HTTP exchange-rate provider.

``GET {base_url}{BASE}`` returns ``{"rates": {"USD": 1.27, ...}}`` meaning
1 BASE = 1.27 USD. Rates are inverted on the way out so callers always get
"1 foreign unit = r settlement units".
"""

from typing import Dict, Optional, Sequence

import httpx
import structlog

from packages.ingestion_engine.errors import PipelineError, TransientError
from packages.ingestion_engine.models import ExchangeRate, utcnow
from packages.ingestion_engine.ports import ExchangeRatePort

from apps.pipeline.core.retry import RETRYABLE_STATUS_CODES

logger = structlog.get_logger()


class HttpExchangeRateProvider(ExchangeRatePort):
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def provider_name(self) -> str:
        return httpx.URL(self.base_url).host or self.base_url

    async def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRate:
        rates = await self.get_rates_batch([from_currency], to_currency)
        if from_currency not in rates:
            raise PipelineError(f"No exchange rate quoted for {from_currency}/{to_currency}")
        return rates[from_currency]

    async def get_rates_batch(
        self, currencies: Sequence[str], to_currency: str
    ) -> Dict[str, ExchangeRate]:
        quotes = await self._fetch_quotes(to_currency)
        fetched_at = utcnow()
        result: Dict[str, ExchangeRate] = {}
        for currency in currencies:
            quote = quotes.get(currency)
            if not quote or quote <= 0:
                logger.warning("exchange_rate_missing", currency=currency, base=to_currency)
                continue
            result[currency] = ExchangeRate(
                base_currency=to_currency,
                target_currency=currency,
                rate=1.0 / float(quote),
                fetched_at=fetched_at,
                provider=self.provider_name,
            )
        return result

    async def _fetch_quotes(self, base_currency: str) -> Dict[str, float]:
        url = f"{self.base_url}{base_currency}"
        response = await self._client.get(url)
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientError(
                f"Exchange rate provider returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        response.raise_for_status()
        payload = response.json()
        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise PipelineError("Exchange rate provider response has no 'rates' object")
        logger.info("exchange_rates_fetched", base=base_currency, quoted=len(rates))
        return rates

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
