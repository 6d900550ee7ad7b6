"""Order execution: risk check, submission, status tracking and fill effects.

Flow of ``TradeExecutor.submit``:

1. price the order (limit price, caller-supplied reference, or a governed quote)
2. run the risk gate and the buying power check unless bypassed; a violation
   is stored as a rejected trade
3. submit through the request governor to the current mode's brokerage
4. store the accepted order as pending and book its estimated spend
5. poll the order a few times and apply fills to positions

Fill effects are applied on the filled-quantity delta, so repeated status
reports for the same order never double-count.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from decimal import Decimal

from autoscan.core.data_helpers import money, utcnow
from autoscan.core.exceptions import (
    AppException,
    BrokerRejection,
    NotFoundError,
    RiskViolation,
)
from autoscan.core.logging import get_logger
from autoscan.core.rate_limiter import ALPACA, Priority, RequestGovernor
from autoscan.database import Database
from autoscan.domain.market import BrokerOrder
from autoscan.domain.trading import (
    TERMINAL_TRADE_STATUSES,
    CloseReason,
    OrderIntent,
    RiskSettings,
    TradeRecord,
    TradeStatus,
    TradingMode,
    contract_multiplier,
)
from autoscan.repositories import (
    daily_stats_orm,
    notifications_orm,
    positions_orm,
    risk_settings_orm,
    trades_orm,
)
from autoscan.services import risk_gate
from autoscan.services.data_providers.base import BrokerageProvider, MarketDataProvider
from autoscan.services.trading_mode import TradingModeState


logger = get_logger("services.trade_executor")

_BROKER_STATUS: dict[str, TradeStatus] = {
    "new": "pending",
    "accepted": "pending",
    "pending_new": "pending",
    "accepted_for_bidding": "pending",
    "pending_cancel": "pending",
    "pending_replace": "pending",
    "replaced": "pending",
    "calculated": "pending",
    "stopped": "pending",
    "suspended": "pending",
    "held": "pending",
    "done_for_day": "pending",
    "partially_filled": "partial_fill",
    "filled": "filled",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "expired": "cancelled",
    "rejected": "rejected",
}


def map_broker_status(order: BrokerOrder) -> TradeStatus:
    """Map a brokerage order status onto the local trade status set."""
    status = _BROKER_STATUS.get(order.status.lower())
    if status is None:
        logger.warning(f"Unknown broker status '{order.status}' for order {order.order_id}")
        status = "pending"
    if status == "pending" and order.filled_quantity > 0:
        return "partial_fill"
    return status


class TradeExecutor:
    """Submits orders for the current trading mode and tracks them to completion."""

    def __init__(
        self,
        db: Database,
        governor: RequestGovernor,
        brokers: Callable[[TradingMode], BrokerageProvider],
        market_data: MarketDataProvider,
        mode_state: TradingModeState,
        *,
        poll_attempts: int = 3,
        poll_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        self._db = db
        self._governor = governor
        self._brokers = brokers
        self._market_data = market_data
        self._mode_state = mode_state
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._risk_locks: dict[TradingMode, asyncio.Lock] = {
            "paper": asyncio.Lock(),
            "live": asyncio.Lock(),
        }

    def _today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        intent: OrderIntent,
        *,
        bypass_risk: bool = False,
        close_reason: CloseReason | None = None,
        priority: Priority = "normal",
        position_id: int | None = None,
        profile_max_amount: Decimal | None = None,
    ) -> TradeRecord:
        """
        Risk-check, submit and track one order.

        Returns the stored trade record. Risk and broker rejections come back
        as records with status ``rejected``.

        Risk-checked orders of one mode are serialized from the check until
        the accepted order and its spend are stored, so concurrent buys always
        see each other's spend and open slots.

        Raises:
            AppException: submission failed for a reason other than a broker
                rejection (the attempt is still stored as rejected)
        """
        mode = self._mode_state.mode
        broker = self._brokers(mode)
        if intent.side == "sell" and close_reason is None:
            close_reason = "manual"

        price = await self._estimate_price(intent, priority)
        estimated_value = (
            money(risk_gate.order_value(intent, price)) if price is not None else None
        )

        if bypass_risk:
            record = await self._place(
                mode, broker, intent, estimated_value, close_reason, position_id, priority
            )
        else:
            async with self._risk_locks[mode]:
                try:
                    await self._check_risk(
                        mode, broker, intent, price, profile_max_amount, priority
                    )
                except RiskViolation as e:
                    logger.warning(
                        f"Risk gate rejected {intent.side} {intent.quantity} {intent.symbol} "
                        f"({mode}): {e.message}"
                    )
                    record = await self._record_rejection(
                        mode, intent, e.message, estimated_value, close_reason, position_id
                    )
                    await notifications_orm.create_notification(
                        self._db,
                        "warning",
                        "Trade rejected by risk limits",
                        f"{intent.side.upper()} {intent.quantity} {intent.symbol}: {e.message}",
                    )
                    return record
                record = await self._place(
                    mode, broker, intent, estimated_value, close_reason, position_id, priority
                )

        return await self._await_fill(mode, broker, record, priority)

    async def _place(
        self,
        mode: TradingMode,
        broker: BrokerageProvider,
        intent: OrderIntent,
        estimated_value: Decimal | None,
        close_reason: CloseReason | None,
        position_id: int | None,
        priority: Priority,
    ) -> TradeRecord:
        """Submit to the broker, store the accepted order and book its spend."""
        try:
            order = await self._governor.execute(
                ALPACA, lambda: broker.submit_order(intent), priority=priority
            )
        except BrokerRejection as e:
            logger.warning(f"Broker rejected {intent.side} {intent.symbol} ({mode}): {e.message}")
            return await self._record_rejection(
                mode, intent, e.message, estimated_value, close_reason, position_id
            )
        except Exception as e:
            await self._record_rejection(
                mode, intent, f"Submission failed: {e}", estimated_value, close_reason, position_id
            )
            raise

        now = self._clock()
        async with self._db.transaction() as session:
            row = await trades_orm.add_trade(
                session,
                mode,
                intent,
                status="pending",
                estimated_value=estimated_value,
                broker_order_id=order.order_id,
                close_reason=close_reason if intent.side == "sell" else None,
                position_id=position_id,
                now=now,
            )
            trade_id = row.id
            deltas: dict = {"orders_placed": 1}
            if intent.side == "buy" and estimated_value is not None:
                deltas["total_spent"] = estimated_value
            await daily_stats_orm.increment_in_session(session, mode, now.date(), **deltas)

        logger.info(
            f"Order {order.order_id} accepted ({mode}): {intent.side} {intent.quantity} "
            f"{intent.symbol} {intent.order_type}, est. {estimated_value}"
        )

        return await self._apply_broker_order(mode, trade_id, order)

    async def _estimate_price(self, intent: OrderIntent, priority: Priority) -> Decimal | None:
        if intent.limit_price is not None:
            return intent.limit_price
        if intent.reference_price is not None:
            return intent.reference_price
        if intent.asset_class == "option":
            return None

        quote = await self._governor.execute(
            ALPACA, lambda: self._market_data.get_quote(intent.symbol), priority=priority
        )
        if quote is not None:
            return Decimal(str(quote.price))
        bar = await self._governor.execute(
            ALPACA, lambda: self._market_data.get_bar(intent.symbol), priority=priority
        )
        if bar is not None and bar.close > 0:
            return Decimal(str(bar.close))
        return None

    async def _check_risk(
        self,
        mode: TradingMode,
        broker: BrokerageProvider,
        intent: OrderIntent,
        price: Decimal | None,
        profile_max_amount: Decimal | None,
        priority: Priority,
    ) -> None:
        settings = await risk_settings_orm.get_risk_settings(self._db, mode)
        if price is None:
            if not settings.enabled or intent.side == "sell":
                return
            raise RiskViolation(f"No price available for {intent.symbol} to evaluate risk")

        today = self._today()
        positions = await positions_orm.list_positions(self._db, mode)
        held = {p.symbol for p in positions}
        # Accepted buys that have not filled yet hold a slot too
        on_order = {
            r.symbol
            for r in await trades_orm.list_unsettled(self._db, mode)
            if r.side == "buy" and r.symbol not in held
        }
        decision = risk_gate.enforce(
            intent,
            settings,
            price=price,
            spend_today=await daily_stats_orm.get_spend_today(self._db, mode, today),
            spend_this_week=await daily_stats_orm.get_spend_this_week(self._db, mode, today),
            open_position_count=len(positions) + len(on_order),
            existing_position=next((p for p in positions if p.symbol == intent.symbol), None),
            profile_max_amount=profile_max_amount,
            pending_buy=intent.symbol in on_order,
        )
        if decision.check == "passed":
            await self._check_buying_power(broker, intent, decision.order_value, priority)

    async def _check_buying_power(
        self,
        broker: BrokerageProvider,
        intent: OrderIntent,
        value: Decimal,
        priority: Priority,
    ) -> None:
        """Reject a buy the account cannot pay for. An unreachable account lets it through."""
        try:
            account = await self._governor.execute(ALPACA, broker.get_account, priority=priority)
        except AppException as e:
            logger.warning(
                f"Buying power unknown for {intent.symbol}, not blocking the order: {e.message}"
            )
            return
        if value > account.buying_power:
            raise RiskViolation(
                message=(
                    f"Insufficient buying power. Available: ${account.buying_power:,.2f}, "
                    f"required: ${value:,.2f}"
                ),
                details={"check": "buying_power", "order_value": str(value)},
            )

    async def _record_rejection(
        self,
        mode: TradingMode,
        intent: OrderIntent,
        reason: str,
        estimated_value: Decimal | None,
        close_reason: CloseReason | None,
        position_id: int | None,
    ) -> TradeRecord:
        now = self._clock()
        async with self._db.transaction() as session:
            row = await trades_orm.add_trade(
                session,
                mode,
                intent,
                status="rejected",
                estimated_value=estimated_value,
                rejection_reason=reason,
                close_reason=close_reason if intent.side == "sell" else None,
                position_id=position_id,
                now=now,
            )
            await daily_stats_orm.increment_in_session(
                session, mode, now.date(), orders_rejected=1
            )
            return TradeRecord.model_validate(row)

    # ------------------------------------------------------------------
    # Status tracking
    # ------------------------------------------------------------------

    async def _await_fill(
        self,
        mode: TradingMode,
        broker: BrokerageProvider,
        record: TradeRecord,
        priority: Priority,
    ) -> TradeRecord:
        order_id = record.broker_order_id
        for _ in range(self._poll_attempts):
            if record.is_terminal or order_id is None:
                break
            await self._sleep(self._poll_interval)
            try:
                order = await self._governor.execute(
                    ALPACA, lambda: broker.get_order_status(order_id), priority=priority
                )
            except AppException as e:
                logger.warning(
                    f"Polling order {order_id} failed, leaving it for reconciliation: {e.message}"
                )
                break
            record = await self._apply_broker_order(mode, record.id, order)
        return record

    async def _apply_broker_order(
        self, mode: TradingMode, trade_id: int, order: BrokerOrder
    ) -> TradeRecord:
        """Apply a broker status report to a stored trade and its position."""
        status = map_broker_status(order)
        risk: RiskSettings = await risk_settings_orm.get_risk_settings(self._db, mode)
        now = self._clock()
        closed_position = None

        async with self._db.transaction() as session:
            row = await trades_orm.get_trade_for_update(session, mode, trade_id)
            if row is None:
                raise NotFoundError(f"Trade {trade_id} not found in {mode}")
            previous = row.status
            if previous in TERMINAL_TRADE_STATUSES:
                return TradeRecord.model_validate(row)

            delta = trades_orm.apply_broker_state(
                row,
                status=status,
                filled_quantity=order.filled_quantity,
                filled_price=order.filled_avg_price,
                rejection_reason=order.rejection_reason,
                now=now,
            )
            stats: dict = {}

            if delta > 0:
                fill_price = self._fill_price(row, order)
                if row.side == "buy":
                    _, opened = await positions_orm.apply_buy_fill(
                        session,
                        mode,
                        symbol=row.symbol,
                        asset_class=row.asset_class,
                        quantity=delta,
                        price=fill_price,
                        stop_loss_default=risk.stop_loss_default,
                        take_profit_default=risk.take_profit_default,
                        now=now,
                    )
                    if opened:
                        stats["positions_opened"] = 1
                else:
                    result = await positions_orm.apply_sell_fill(
                        session,
                        mode,
                        symbol=row.symbol,
                        quantity=delta,
                        price=fill_price,
                        close_reason=row.close_reason or "manual",
                        trade_id=row.id,
                        now=now,
                    )
                    if result is not None:
                        stats["realized_pl"] = result.realized_pl
                        if result.closed is not None:
                            stats["positions_closed"] = 1
                            closed_position = result.closed

            if row.status == "filled":
                stats["orders_filled"] = 1
            elif row.status in ("cancelled", "rejected"):
                if row.side == "buy" and row.estimated_value and row.quantity:
                    unfilled = row.quantity - (row.filled_quantity or 0)
                    refund = money(row.estimated_value * unfilled / row.quantity)
                    if refund:
                        stats["total_spent"] = -refund
                if row.side == "sell" and row.position_id is not None:
                    if await positions_orm.revert_to_open_in_session(session, mode, row.position_id):
                        logger.warning(
                            f"Closing order for {row.symbol} ended {row.status}; position reopened"
                        )

            if stats:
                await daily_stats_orm.increment_in_session(session, mode, now.date(), **stats)
            record = TradeRecord.model_validate(row)

        if record.status != previous:
            logger.info(
                f"Trade {record.id} ({record.symbol}) {previous} -> {record.status}, "
                f"filled {record.filled_quantity}/{record.quantity}"
            )
            if record.status == "filled":
                await notifications_orm.create_notification(
                    self._db,
                    "success",
                    "Order filled",
                    f"{record.side.upper()} {record.filled_quantity} {record.symbol} "
                    f"@ {record.filled_price} ({mode})",
                )
        if closed_position is not None:
            logger.info(
                f"Realized {closed_position.realized_pl} on {closed_position.symbol} "
                f"({closed_position.close_reason})"
            )
        return record

    @staticmethod
    def _fill_price(row, order: BrokerOrder) -> Decimal:
        if order.filled_avg_price is not None:
            return order.filled_avg_price
        if row.limit_price is not None:
            return row.limit_price
        if row.estimated_value is not None and row.quantity:
            return row.estimated_value / (row.quantity * contract_multiplier(row.asset_class))
        return Decimal("0")

    async def sync_pending_orders(self) -> list[TradeRecord]:
        """
        Re-poll every unsettled order of the current mode.

        Also reopens positions left in ``closing`` without a live closing
        order. Callers must not run this concurrently with a protective close
        that has marked a position but not yet stored its order.

        Returns:
            Records whose status or filled quantity changed
        """
        mode = self._mode_state.mode
        broker = self._brokers(mode)
        unsettled = await trades_orm.list_unsettled(self._db, mode)
        changed: list[TradeRecord] = []

        for record in unsettled:
            order_id = record.broker_order_id
            try:
                order = await self._governor.execute(
                    ALPACA, lambda: broker.get_order_status(order_id), priority="high"
                )
            except AppException as e:
                logger.warning(f"Could not refresh order {order_id}: {e.message}")
                continue
            updated = await self._apply_broker_order(mode, record.id, order)
            if (updated.status, updated.filled_quantity) != (record.status, record.filled_quantity):
                changed.append(updated)

        live_closes = {
            r.position_id
            for r in await trades_orm.list_unsettled(self._db, mode)
            if r.side == "sell" and r.position_id is not None
        }
        for position in await positions_orm.list_positions(self._db, mode, status="closing"):
            if position.id not in live_closes:
                if await positions_orm.revert_to_open(self._db, mode, position.id):
                    logger.warning(
                        f"Position {position.symbol} was closing without an open order; reopened"
                    )

        return changed
