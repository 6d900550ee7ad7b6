"""Pre-trade risk checks.

``evaluate`` is a pure function over the intent, the mode's risk settings and
spend/position figures the caller has already loaded. Rules run in a fixed
order and the first violation wins:

1. order value above the per-trade cap (profile cap if set, else global)
2. daily spend limit
3. weekly spend limit
4. maximum open positions (only for symbols not already held or on order)
5. duplicate position (held, or an earlier buy still awaiting its fill)

Sells are exits and always pass; disabled settings pass everything.
"""

from __future__ import annotations

from decimal import Decimal

from autoscan.core.exceptions import RiskViolation
from autoscan.domain.trading import (
    OrderIntent,
    PositionRecord,
    RiskDecision,
    RiskSettings,
)


def order_value(intent: OrderIntent, price: Decimal) -> Decimal:
    """Quantity x price x contract multiplier."""
    return Decimal(intent.quantity) * price * intent.multiplier


def _fmt(amount: Decimal) -> str:
    return f"${amount:,.2f}"


def evaluate(
    intent: OrderIntent,
    settings: RiskSettings,
    *,
    price: Decimal,
    spend_today: Decimal,
    spend_this_week: Decimal,
    open_position_count: int,
    existing_position: PositionRecord | None,
    profile_max_amount: Decimal | None = None,
    pending_buy: bool = False,
) -> RiskDecision:
    value = order_value(intent, price)

    if not settings.enabled:
        return RiskDecision(allowed=True, check="disabled", order_value=value)

    if intent.side == "sell":
        return RiskDecision(allowed=True, check="exit", order_value=value)

    cap = profile_max_amount if profile_max_amount is not None else settings.max_transaction_amount
    if value > cap:
        return RiskDecision(
            allowed=False,
            check="max_transaction",
            order_value=value,
            reason=f"Order value {_fmt(value)} exceeds max transaction amount {_fmt(cap)}",
        )

    if spend_today + value > settings.daily_spend_limit:
        return RiskDecision(
            allowed=False,
            check="daily_limit",
            order_value=value,
            reason=(
                f"Would exceed daily spend limit. Today: {_fmt(spend_today)}, "
                f"order: {_fmt(value)}, limit: {_fmt(settings.daily_spend_limit)}"
            ),
        )

    if spend_this_week + value > settings.weekly_spend_limit:
        return RiskDecision(
            allowed=False,
            check="weekly_limit",
            order_value=value,
            reason=(
                f"Would exceed weekly spend limit. This week: {_fmt(spend_this_week)}, "
                f"order: {_fmt(value)}, limit: {_fmt(settings.weekly_spend_limit)}"
            ),
        )

    held = existing_position is not None or pending_buy

    if not held and open_position_count >= settings.max_positions:
        return RiskDecision(
            allowed=False,
            check="max_positions",
            order_value=value,
            reason=(
                f"Maximum open positions reached ({open_position_count}/"
                f"{settings.max_positions})"
            ),
        )

    if held and not settings.allow_duplicate_positions:
        return RiskDecision(
            allowed=False,
            check="duplicate_position",
            order_value=value,
            reason=(
                f"Position in {intent.symbol} already open or on order "
                "and duplicates are not allowed"
            ),
        )

    return RiskDecision(allowed=True, check="passed", order_value=value)


def enforce(intent: OrderIntent, settings: RiskSettings, **inputs) -> RiskDecision:
    """Same as ``evaluate`` but raises ``RiskViolation`` on rejection."""
    decision = evaluate(intent, settings, **inputs)
    if not decision.allowed:
        raise RiskViolation(
            message=decision.reason,
            details={"check": decision.check, "order_value": str(decision.order_value)},
        )
    return decision
