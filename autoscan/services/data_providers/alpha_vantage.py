"""Alpha Vantage company overview adapter (fundamentals)."""

from __future__ import annotations

from typing import Any

import httpx

from autoscan.core.config import Settings, settings as app_settings
from autoscan.core.data_helpers import safe_float
from autoscan.core.exceptions import ExternalServiceError, UpstreamValidationError
from autoscan.core.logging import get_logger
from autoscan.domain.market import Fundamentals


logger = get_logger("services.data_providers.alpha_vantage")

BASE_URL = "https://www.alphavantage.co/query"


class AlphaVantageClient:
    """Fetches the OVERVIEW document, one request per symbol."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AlphaVantageClient":
        s = settings or app_settings
        return cls(s.alpha_vantage_api_key, timeout=s.external_api_timeout)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_fundamentals(self, symbol: str) -> Fundamentals | None:
        """
        Company overview for ``symbol``. None if Alpha Vantage has no data.

        Raises:
            ExternalServiceError: no key, transport failure, or the provider's
                own throttling notice
        """
        if not self.configured:
            raise ExternalServiceError(message="Alpha Vantage API key not configured")

        try:
            response = await self._client.get(
                self._base_url,
                params={"function": "OVERVIEW", "symbol": symbol, "apikey": self._api_key},
            )
            response.raise_for_status()
            data: Any = response.json()
        except httpx.RequestError as exc:
            logger.warning(f"Alpha Vantage request failed for {symbol}: {exc}")
            raise ExternalServiceError(message="Alpha Vantage unavailable") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(f"Alpha Vantage error {exc.response.status_code} for {symbol}")
            raise ExternalServiceError(
                message="Alpha Vantage returned an error",
                details={"status_code": exc.response.status_code},
            ) from exc
        except ValueError as exc:
            raise UpstreamValidationError(message="Alpha Vantage returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise UpstreamValidationError(message="Unexpected Alpha Vantage payload")

        # Throttling and key problems come back as 200 with a notice
        notice = data.get("Note") or data.get("Information") or data.get("Error Message")
        if notice:
            raise ExternalServiceError(
                message="Alpha Vantage refused the request",
                details={"notice": str(notice)[:300]},
            )

        if not data.get("Symbol"):
            return None

        return parse_overview(symbol, data)


def parse_overview(symbol: str, data: dict[str, Any]) -> Fundamentals:
    """Map an OVERVIEW document onto Fundamentals.

    DividendYield is reported as a fraction and stored as percent.
    """
    dividend = safe_float(data.get("DividendYield"))
    return Fundamentals(
        symbol=symbol,
        name=data.get("Name") or None,
        sector=_text(data.get("Sector")),
        industry=_text(data.get("Industry")),
        pe=safe_float(data.get("PERatio")),
        pb=safe_float(data.get("PriceToBookRatio")),
        eps=safe_float(data.get("EPS")),
        market_cap=safe_float(data.get("MarketCapitalization")),
        dividend_yield=dividend * 100 if dividend is not None else None,
        beta=safe_float(data.get("Beta")),
    )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text.lower() not in ("none", "-") else None
