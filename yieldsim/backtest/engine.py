"""
Backtest Engine — per-tick simulation loop

States: IDLE → RUNNING → {COMPLETED, ABORTED}. A new run may start from any
state except RUNNING.

Per tick (strictly sequential, one tick at a time):
1. Stop signal / max_ticks cap → ABORTED, partial result returned
2. Required-field check → data gap: skip, carry forward the previous value
3. Mark every position to the tick (MarketData.price_for)
4. For each strategy: execute (awaited if asynchronous), apply the cost model,
   apply trades to cash/positions, upsert returned positions
5. Liquidation risk per position → RiskLimitBreached when emergency close is due
6. Publish the tick's events: TradeExecuted..., RebalanceTriggered, RiskLimitBreached...
7. Commit the tick, append total value and tick-over-tick % change

A tick is applied to a working copy of the portfolio and committed only when
every strategy has succeeded and every event was delivered, so a failed tick
(including an observer raising on a bus with raise_on_handler_error) leaves no
partial mutation.

Emergency close only publishes RiskLimitBreached; the engine never creates
a closing trade by itself.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, Sequence

from yieldsim.core.domain.market_data import MarketData
from yieldsim.core.domain.portfolio import Portfolio
from yieldsim.core.domain.position import Position
from yieldsim.core.domain.ids import IdGenerator, SequentialIdGenerator
from yieldsim.core.domain.trade import Trade
from yieldsim.core.domain.value_objects import Amount, Price
from yieldsim.core.errors import ConfigError, DataGapError, SimulationError
from yieldsim.core.math.numerical_safeguards import EPS_QTY, is_zero
from yieldsim.events.bus import DomainEventBus
from yieldsim.events.models import (
    DomainEvent,
    EventFactory,
    RebalanceTriggered,
    RiskLimitBreached,
)
from yieldsim.risk.health import portfolio_health_factor, portfolio_leverage, total_exposure
from yieldsim.risk.liquidation import LiquidationRiskCalculator
from yieldsim.strategy.contract import Strategy, StrategyConfig, StrategyResult

from .config import BacktestConfig
from .metrics import (
    calculate_current_drawdown,
    calculate_max_drawdown,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    calculate_total_return,
    calculate_value_at_risk,
    percentage_change,
)
from .result import BacktestResult, EngineState, PerformanceMetrics

logger = logging.getLogger(__name__)


LIQUIDATION_PROXIMITY_LIMIT = "liquidation_proximity"

StrategyBinding = tuple[Strategy, Optional[StrategyConfig]]


class StopSignal(Protocol):
    """Anything with `is_set()`, e.g. threading.Event or asyncio.Event."""

    def is_set(self) -> bool:
        ...


def position_id_for(strategy_id: str, asset: str) -> str:
    """Id of the position a strategy holds in `asset`."""
    return f"{strategy_id}:{asset}"


# =============================================================================
# RUN STATE
# =============================================================================


@dataclass
class _RunState:
    """Mutable bookkeeping of a single run (committed ticks only)."""

    portfolio: Portfolio
    initial_value: float
    previous_value: float
    trades: list[Trade] = field(default_factory=list)
    historical_values: list[float] = field(default_factory=list)
    historical_returns: list[float] = field(default_factory=list)
    data_gaps: list[int] = field(default_factory=list)
    expected_yields: dict[str, float] = field(default_factory=dict)
    apply_il: bool = False
    consecutive_gaps: int = 0
    last_completed_tick: Optional[int] = None
    rebalance_count: int = 0
    risk_breach_count: int = 0

    def record(self, tick_index: int, value: float) -> None:
        self.historical_returns.append(percentage_change(self.previous_value, value))
        self.historical_values.append(value)
        self.previous_value = value
        self.last_completed_tick = tick_index


@dataclass
class _TickOutcome:
    portfolio: Portfolio
    trades: list[Trade]
    events: list[DomainEvent]
    expected_yields: dict[str, float]


# =============================================================================
# ENGINE
# =============================================================================


class BacktestEngine:
    """
    Replays a market-data series against one or more strategies.

    The engine owns the portfolio of a run exclusively: the caller's initial
    portfolio is copied and never mutated, and strategies receive a copy.
    """

    def __init__(
        self,
        event_bus: Optional[DomainEventBus] = None,
        id_generator: Optional[IdGenerator] = None,
        risk_calculator: Optional[LiquidationRiskCalculator] = None,
    ):
        """
        Args:
            event_bus: Bus the tick events are published to (a private bus if None)
            id_generator: Event id source. When None, every run starts a fresh
                SequentialIdGenerator so repeated runs reproduce the same event ids
            risk_calculator: Liquidation risk calculator; if None one is built per
                run from BacktestConfig.emergency_close_threshold
        """
        self.event_bus = event_bus or DomainEventBus()
        self.id_generator = id_generator
        self.event_factory = EventFactory(id_generator or SequentialIdGenerator())
        self.risk_calculator = risk_calculator
        self._state = EngineState.IDLE
        self.last_result: Optional[BacktestResult] = None

    @property
    def state(self) -> EngineState:
        return self._state

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(
        self,
        strategy: Strategy,
        market_data: Iterable[MarketData],
        initial_portfolio: Portfolio,
        config: Optional[BacktestConfig] = None,
        strategy_config: Optional[StrategyConfig] = None,
        stop_event: Optional[StopSignal] = None,
    ) -> BacktestResult:
        """
        Run a single-strategy backtest to completion.

        Must not be called from a running event loop (use run_async there).

        Returns:
            BacktestResult (status COMPLETED, or ABORTED by stop signal / max_ticks)

        Raises:
            ConfigError: Strategy rejected its config (zero ticks processed)
            SimulationError: Strategy failure or invalid portfolio state at a tick
            DataGapError: Too many consecutive ticks missing required fields
        """
        return asyncio.run(
            self.run_async(strategy, market_data, initial_portfolio, config, strategy_config, stop_event)
        )

    def run_many(
        self,
        bindings: Sequence[StrategyBinding],
        market_data: Iterable[MarketData],
        initial_portfolio: Portfolio,
        config: Optional[BacktestConfig] = None,
        stop_event: Optional[StopSignal] = None,
    ) -> BacktestResult:
        """Run several (strategy, strategy_config) pairs against one portfolio."""
        return asyncio.run(
            self.run_many_async(bindings, market_data, initial_portfolio, config, stop_event)
        )

    async def run_async(
        self,
        strategy: Strategy,
        market_data: Iterable[MarketData],
        initial_portfolio: Portfolio,
        config: Optional[BacktestConfig] = None,
        strategy_config: Optional[StrategyConfig] = None,
        stop_event: Optional[StopSignal] = None,
    ) -> BacktestResult:
        return await self.run_many_async(
            [(strategy, strategy_config)], market_data, initial_portfolio, config, stop_event
        )

    async def run_many_async(
        self,
        bindings: Sequence[StrategyBinding],
        market_data: Iterable[MarketData],
        initial_portfolio: Portfolio,
        config: Optional[BacktestConfig] = None,
        stop_event: Optional[StopSignal] = None,
    ) -> BacktestResult:
        """
        Core loop. Strategies execute sequentially within each tick, in binding order.
        """
        if self._state == EngineState.RUNNING:
            raise SimulationError("engine is already running")

        config = config or BacktestConfig()
        resolved = [(strategy, dict(cfg or {})) for strategy, cfg in bindings]
        risk_calculator = self.risk_calculator or LiquidationRiskCalculator(
            config.emergency_close_threshold
        )

        self._state = EngineState.RUNNING
        self.last_result = None
        self.event_factory = EventFactory(self.id_generator or SequentialIdGenerator())
        try:
            self._validate_bindings(resolved)

            initial_value = initial_portfolio.total_value(config.apply_il).value
            run = _RunState(
                portfolio=initial_portfolio.copy(),
                initial_value=initial_value,
                previous_value=initial_value,
                apply_il=config.apply_il,
            )
            required = self._required_fields(resolved)

            logger.info(
                "Backtest started: strategies=%s portfolio=%s initial_value=%.2f",
                [strategy.id for strategy, _ in resolved],
                initial_portfolio.id,
                initial_value,
            )

            for tick_index, tick in enumerate(market_data):
                if stop_event is not None and stop_event.is_set():
                    return self._stop(run, config, tick_index, "stop signal received")
                if config.max_ticks is not None and tick_index >= config.max_ticks:
                    return self._stop(run, config, tick_index, f"max_ticks cap {config.max_ticks} reached")

                missing = tick.missing_fields(required)
                if missing:
                    self._skip_data_gap(run, config, tick_index, missing)
                    continue
                run.consecutive_gaps = 0

                try:
                    outcome = await self._process_tick(run, resolved, tick, config, risk_calculator)
                    # A failing observer aborts the tick before it is committed
                    self.event_bus.publish_all(outcome.events)
                    self._commit(run, tick_index, outcome)
                except Exception as exc:
                    raise self._fail(run, config, tick_index, exc) from exc

            result = self._build_result(run, config, EngineState.COMPLETED)
            self._state = EngineState.COMPLETED
            self.last_result = result
            logger.info(
                "Backtest completed: ticks=%d final_value=%.2f total_return=%.2f%% "
                "sharpe=%.3f max_drawdown=%.2f%%",
                result.processed_ticks,
                result.metrics.final_value,
                result.metrics.total_return,
                result.metrics.sharpe_ratio,
                result.metrics.max_drawdown,
            )
            return result
        finally:
            if self._state == EngineState.RUNNING:
                self._state = EngineState.ABORTED

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _validate_bindings(self, bindings: list[tuple[Strategy, StrategyConfig]]) -> None:
        """
        Raises:
            ConfigError: No strategies, a non-conforming strategy, or a rejected config
        """
        if not bindings:
            raise ConfigError("at least one strategy is required")

        for strategy, strategy_config in bindings:
            if not isinstance(strategy, Strategy):
                raise ConfigError(f"{strategy!r} does not implement the Strategy contract")
            try:
                accepted = strategy.validate_config(strategy_config)
            except Exception as exc:
                raise ConfigError(f"Strategy {strategy.id!r} failed to validate its config: {exc}") from exc
            if not accepted:
                logger.error("Strategy %r rejected its config: %r", strategy.id, strategy_config)
                raise ConfigError(f"Strategy {strategy.id!r} rejected its config")

    @staticmethod
    def _required_fields(bindings: list[tuple[Strategy, StrategyConfig]]) -> tuple[str, ...]:
        required: list[str] = []
        for strategy, _ in bindings:
            for name in getattr(strategy, "required_fields", ()):
                if name not in required:
                    required.append(name)
        return tuple(required)

    # -------------------------------------------------------------------------
    # Tick processing
    # -------------------------------------------------------------------------

    async def _process_tick(
        self,
        run: _RunState,
        bindings: list[tuple[Strategy, StrategyConfig]],
        tick: MarketData,
        config: BacktestConfig,
        risk_calculator: LiquidationRiskCalculator,
    ) -> _TickOutcome:
        working = run.portfolio.copy()
        working.mark_to_market(tick.price_for)

        expected_yields: dict[str, float] = {}
        if not run.expected_yields:
            for strategy, strategy_config in bindings:
                expected_yields[strategy.id] = strategy.calculate_expected_yield(strategy_config, tick).value

        applied: list[Trade] = []
        trade_events: list[DomainEvent] = []
        rebalance_events: list[DomainEvent] = []

        for strategy, strategy_config in bindings:
            result = await self._execute(strategy, working.copy(), tick, strategy_config)

            for trade in result.trades:
                if config.cost_model is not None:
                    trade = config.cost_model.apply(trade)
                self._apply_trade(working, trade, tick.price_for(trade.asset), config)
                applied.append(trade)
                trade_events.append(self.event_factory.trade_executed(trade, occurred_on=tick.timestamp))

            for position in result.positions:
                working.upsert_position(position.update_price(tick.price_for(position.asset)))

            if result.should_rebalance:
                rebalance_events.append(
                    self.event_factory.rebalance_triggered(
                        strategy.id, result.rebalance_reason, occurred_on=tick.timestamp
                    )
                )

        risk_events = self._evaluate_risk(working, tick, risk_calculator)

        return _TickOutcome(
            portfolio=working,
            trades=applied,
            events=trade_events + rebalance_events + risk_events,
            expected_yields=expected_yields,
        )

    @staticmethod
    async def _execute(
        strategy: Strategy,
        portfolio: Portfolio,
        tick: MarketData,
        strategy_config: StrategyConfig,
    ) -> StrategyResult:
        result = strategy.execute(portfolio, tick, strategy_config)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, StrategyResult):
            raise SimulationError(
                f"Strategy {strategy.id!r} returned {type(result).__name__}, expected StrategyResult"
            )
        return result

    def _apply_trade(
        self,
        portfolio: Portfolio,
        trade: Trade,
        mark_price: Price,
        config: BacktestConfig,
    ) -> None:
        """
        Apply one trade to cash and to the strategy's position in the asset.

        Raises:
            SimulationError: Cash would go negative and that is not allowed
        """
        portfolio.credit(trade.cash_delta())
        if portfolio.cash.is_negative() and not config.allow_negative_cash:
            raise SimulationError(
                f"trade {trade.id} leaves cash at {portfolio.cash.value:.2f} (negative cash not allowed)"
            )

        position_id = position_id_for(trade.strategy_id, trade.asset)
        delta = trade.signed_amount()
        existing = portfolio.get_position(position_id)

        if existing is None:
            portfolio.add_position(
                Position(
                    id=position_id,
                    strategy_id=trade.strategy_id,
                    asset=trade.asset,
                    amount=Amount.create(delta),
                    entry_price=trade.price,
                    current_price=mark_price,
                )
            )
            return

        held = existing.amount.value
        new_amount = held + delta

        if is_zero(new_amount, EPS_QTY):
            portfolio.remove_position(position_id)
        elif held * delta > 0:
            # Same direction: average the entry price
            entry = (held * existing.entry_price.value + delta * trade.price.value) / new_amount
            portfolio.update_position(existing.with_amount(Amount.create(new_amount), Price.create(entry)))
        elif held * new_amount > 0:
            # Reduction keeps the entry price
            portfolio.update_position(existing.with_amount(Amount.create(new_amount)))
        else:
            # Flip: the remainder is a fresh unleveraged entry at the trade price;
            # margin data of the closed side no longer applies
            portfolio.update_position(existing.reopened(Amount.create(new_amount), trade.price))

    def _evaluate_risk(
        self,
        portfolio: Portfolio,
        tick: MarketData,
        risk_calculator: LiquidationRiskCalculator,
    ) -> list[DomainEvent]:
        events: list[DomainEvent] = []
        risks = risk_calculator.assess_portfolio(portfolio, tick.price_for, tick.timestamp)

        for position_id, risk in risks.items():
            if risk.is_placeholder() or not risk_calculator.should_emergency_close(risk):
                continue
            position = portfolio.get_position(position_id)
            logger.warning("Risk limit breached at %s: %s", tick.timestamp.isoformat(), risk)
            events.append(
                self.event_factory.risk_limit_breached(
                    strategy_id=position.strategy_id,
                    limit_type=LIQUIDATION_PROXIMITY_LIMIT,
                    current_value=risk.proximity_to_liquidation,
                    threshold=risk_calculator.emergency_close_threshold,
                    position_id=position_id,
                    occurred_on=tick.timestamp,
                )
            )

        return events

    def _commit(self, run: _RunState, tick_index: int, outcome: _TickOutcome) -> None:
        run.portfolio = outcome.portfolio
        run.trades.extend(outcome.trades)
        run.expected_yields.update(outcome.expected_yields)
        run.rebalance_count += sum(isinstance(e, RebalanceTriggered) for e in outcome.events)
        run.risk_breach_count += sum(isinstance(e, RiskLimitBreached) for e in outcome.events)
        run.record(tick_index, outcome.portfolio.total_value(run.apply_il).value)

    def _skip_data_gap(
        self,
        run: _RunState,
        config: BacktestConfig,
        tick_index: int,
        missing: tuple[str, ...],
    ) -> None:
        """
        Carry the previous value forward (return 0.0) for a tick missing fields.

        Raises:
            DataGapError: Consecutive gaps exceed max_consecutive_data_gaps
        """
        run.consecutive_gaps += 1
        if run.consecutive_gaps > config.max_consecutive_data_gaps:
            self._state = EngineState.ABORTED
            reason = (
                f"{run.consecutive_gaps} consecutive data gaps exceed the maximum of "
                f"{config.max_consecutive_data_gaps} (missing {', '.join(missing)})"
            )
            logger.error("Backtest aborted at tick %d: %s", tick_index, reason)
            partial = self._build_result(run, config, EngineState.ABORTED, reason)
            self.last_result = partial
            raise DataGapError(
                reason,
                tick_index=tick_index,
                missing_fields=missing,
                partial_result=partial,
            )

        logger.warning(
            "Data gap at tick %d: missing %s, carrying forward value %.2f",
            tick_index,
            ", ".join(missing),
            run.previous_value,
        )
        run.data_gaps.append(tick_index)
        run.record(tick_index, run.previous_value)

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def _stop(self, run: _RunState, config: BacktestConfig, tick_index: int, reason: str) -> BacktestResult:
        logger.warning("Backtest stopped before tick %d: %s", tick_index, reason)
        result = self._build_result(run, config, EngineState.ABORTED, reason)
        self._state = EngineState.ABORTED
        self.last_result = result
        return result

    def _fail(
        self,
        run: _RunState,
        config: BacktestConfig,
        tick_index: int,
        exc: Exception,
    ) -> SimulationError:
        reason = exc.reason if isinstance(exc, SimulationError) else f"{type(exc).__name__}: {exc}"
        logger.exception("Backtest aborted at tick %d: %s", tick_index, reason)
        self._state = EngineState.ABORTED
        partial = self._build_result(run, config, EngineState.ABORTED, reason)
        self.last_result = partial
        return SimulationError(reason, tick_index=tick_index, partial_result=partial)

    def _build_result(
        self,
        run: _RunState,
        config: BacktestConfig,
        status: EngineState,
        abort_reason: Optional[str] = None,
    ) -> BacktestResult:
        values = run.historical_values
        returns = run.historical_returns

        metrics = PerformanceMetrics(
            total_return=calculate_total_return(values),
            sharpe_ratio=calculate_sharpe_ratio(returns, config.periods_per_year, config.risk_free_rate),
            max_drawdown=calculate_max_drawdown(values),
            final_value=values[-1] if values else run.initial_value,
            sortino_ratio=calculate_sortino_ratio(returns, config.periods_per_year, config.risk_free_rate),
            current_drawdown=calculate_current_drawdown(values),
            value_at_risk_95=calculate_value_at_risk(returns),
            trade_count=len(run.trades),
            rebalance_count=run.rebalance_count,
            risk_breach_count=run.risk_breach_count,
            total_exposure=total_exposure(run.portfolio, run.apply_il),
            leverage=portfolio_leverage(run.portfolio, run.apply_il),
            health_factor=portfolio_health_factor(run.portfolio),
        )

        return BacktestResult(
            status=status,
            metrics=metrics,
            trades=tuple(run.trades),
            positions=run.portfolio.positions,
            initial_value=run.initial_value,
            historical_values=tuple(values),
            historical_returns=tuple(returns),
            processed_ticks=len(values),
            last_completed_tick=run.last_completed_tick,
            abort_reason=abort_reason,
            data_gaps=tuple(run.data_gaps),
            expected_yields=dict(run.expected_yields),
        )

