"""Screening profile domain models.

Parameters are a tagged union discriminated by ``kind``. Stored JSON written
by older clients uses camelCase keys (``priceMin``) and has no ``kind``; both
are accepted on load, and saving always writes snake_case with ``kind`` and
``schema_version``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


AssetType = Literal["stock", "call_option", "put_option"]
MacdFilter = Literal["bullish", "bearish", "any"]
Moneyness = Literal["ITM", "ATM", "OTM", "any"]

PARAMETERS_SCHEMA_VERSION = 1


class _Parameters(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    schema_version: Literal[1] = PARAMETERS_SCHEMA_VERSION

    @model_validator(mode="after")
    def _check_ranges(self):
        for name in type(self).model_fields:
            if not name.endswith("_min"):
                continue
            upper = name[: -len("_min")] + "_max"
            if upper not in type(self).model_fields:
                continue
            low, high = getattr(self, name), getattr(self, upper)
            if low is not None and high is not None and low > high:
                raise ValueError(f"{name} ({low}) must not exceed {upper} ({high})")
        return self

    def configured(self) -> dict[str, Any]:
        """Only the filters that are actually set."""
        return self.model_dump(
            exclude_none=True, exclude={"kind", "schema_version"}
        )


class StockParameters(_Parameters):
    """Filters for stock screening. Every filter is optional."""

    kind: Literal["stock"] = "stock"

    # Price and volume (from quote and latest daily bar)
    price_min: float | None = Field(None, ge=0)
    price_max: float | None = Field(None, ge=0)
    day_change_min: float | None = Field(None, description="Percent")
    day_change_max: float | None = Field(None, description="Percent")
    volume_min: float | None = Field(None, ge=0)
    volume_max: float | None = Field(None, ge=0)

    # Fundamentals
    pe_min: float | None = None
    pe_max: float | None = None
    pb_min: float | None = None
    pb_max: float | None = None
    eps_min: float | None = None
    eps_max: float | None = None
    market_cap_min: float | None = Field(None, ge=0)
    market_cap_max: float | None = Field(None, ge=0)
    dividend_yield_min: float | None = Field(None, description="Percent")
    dividend_yield_max: float | None = Field(None, description="Percent")
    debt_to_equity_max: float | None = None
    current_ratio_min: float | None = None
    beta_min: float | None = None
    beta_max: float | None = None
    sectors: list[str] | None = None

    # Technicals
    rsi_min: float | None = Field(None, ge=0, le=100)
    rsi_max: float | None = Field(None, ge=0, le=100)
    macd_signal: MacdFilter | None = None
    sma20_above: bool | None = Field(None, description="Require price above SMA20")
    sma50_above: bool | None = Field(None, description="Require price above SMA50")
    sma200_above: bool | None = Field(None, description="Require price above SMA200")

    @field_validator("sectors")
    @classmethod
    def _empty_sectors_mean_any(cls, v: list[str] | None) -> list[str] | None:
        return v or None

    @property
    def requires_fundamentals(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in (
                "pe_min", "pe_max", "pb_min", "pb_max", "eps_min", "eps_max",
                "market_cap_min", "market_cap_max",
                "dividend_yield_min", "dividend_yield_max",
                "debt_to_equity_max", "current_ratio_min",
                "beta_min", "beta_max", "sectors",
            )
        )

    @property
    def requires_technicals(self) -> bool:
        return (
            self.rsi_min is not None
            or self.rsi_max is not None
            or self.macd_signal not in (None, "any")
            or bool(self.sma20_above or self.sma50_above or self.sma200_above)
        )


class OptionParameters(_Parameters):
    """Filters for option contract screening."""

    kind: Literal["option"] = "option"

    strike_min: float | None = Field(None, gt=0)
    strike_max: float | None = Field(None, gt=0)
    expiration_min_days: int | None = Field(None, ge=0)
    expiration_max_days: int | None = Field(None, ge=0)

    delta_min: float | None = Field(None, ge=-1, le=1)
    delta_max: float | None = Field(None, ge=-1, le=1)
    gamma_min: float | None = None
    gamma_max: float | None = None
    theta_min: float | None = None
    theta_max: float | None = None
    vega_min: float | None = None
    vega_max: float | None = None

    bid_min: float | None = Field(None, ge=0)
    bid_max: float | None = Field(None, ge=0)
    ask_min: float | None = Field(None, ge=0)
    ask_max: float | None = Field(None, ge=0)
    bid_ask_spread_max: float | None = Field(None, ge=0)
    premium_min: float | None = Field(None, ge=0)
    premium_max: float | None = Field(None, ge=0)

    open_interest_min: float | None = Field(None, ge=0)
    volume_min: float | None = Field(None, ge=0)
    volume_oi_ratio_min: float | None = Field(None, ge=0, alias="volumeOIRatioMin")

    moneyness: Moneyness | None = None

    @model_validator(mode="after")
    def _check_expiration_window(self):
        low, high = self.expiration_min_days, self.expiration_max_days
        if low is not None and high is not None and low > high:
            raise ValueError("expiration_min_days must not exceed expiration_max_days")
        return self

    @property
    def requires_snapshots(self) -> bool:
        """Pricing, volume and Greek filters need per-contract snapshots."""
        return any(
            getattr(self, name) is not None
            for name in (
                "delta_min", "delta_max", "gamma_min", "gamma_max",
                "theta_min", "theta_max", "vega_min", "vega_max",
                "bid_min", "bid_max", "ask_min", "ask_max",
                "bid_ask_spread_max", "premium_min", "premium_max",
                "volume_min", "volume_oi_ratio_min",
            )
        )


ProfileParameters = Annotated[
    Union[StockParameters, OptionParameters], Field(discriminator="kind")
]


class ScheduleConfig(BaseModel):
    enabled: bool = False
    interval_minutes: int = Field(default=15, ge=1, le=24 * 60)
    market_hours_only: bool = True


class ScreeningProfile(BaseModel):
    """A named set of screening criteria with optional schedule."""

    id: int | None = None
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    asset_type: AssetType
    parameters: ProfileParameters
    symbols: list[str] | None = Field(
        None, description="Explicit universe; default symbols when empty"
    )
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    auto_execute: bool = False
    max_transaction_amount: Decimal | None = Field(None, gt=0)
    last_run_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _infer_parameter_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        params = data.get("parameters")
        if isinstance(params, dict) and "kind" not in params:
            asset_type = data.get("asset_type")
            kind = "stock" if asset_type == "stock" else "option"
            data = {**data, "parameters": {**params, "kind": kind}}
        return data

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, v: list[str] | None) -> list[str] | None:
        if not v:
            return None
        seen: dict[str, None] = {}
        for s in v:
            s = s.strip().upper()
            if s:
                seen[s] = None
        return list(seen) or None

    @model_validator(mode="after")
    def _kind_matches_asset_type(self):
        expected = "stock" if self.asset_type == "stock" else "option"
        if self.parameters.kind != expected:
            raise ValueError(
                f"{self.asset_type} profile requires {expected} parameters, "
                f"got {self.parameters.kind}"
            )
        return self

    @property
    def option_side(self) -> Literal["call", "put"] | None:
        if self.asset_type == "call_option":
            return "call"
        if self.asset_type == "put_option":
            return "put"
        return None
