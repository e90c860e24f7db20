"""
Tests for BacktestEngine

Covers:
1. End-to-end valuation and history buffers
2. State machine (IDLE → RUNNING → COMPLETED / ABORTED)
3. ConfigError before the first tick
4. SimulationError with tick index, cause and partial result
5. Stop signal and max_ticks cap
6. Data-gap skip / abort policy
7. Trade application (position merge, negative cash, cost model)
8. Event publication order and liquidation-risk breaches
9. Async strategies and multiple strategies per tick
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from yieldsim.backtest import (
    BacktestConfig,
    BacktestEngine,
    CostModel,
    EngineState,
    LIQUIDATION_PROXIMITY_LIMIT,
)
from yieldsim.core.domain import (
    APR,
    IV,
    Amount,
    MarketData,
    Portfolio,
    Position,
    PositionKind,
    PositionSide,
    Price,
    TradeSide,
)
from yieldsim.core.errors import ConfigError, DataGapError, SimulationError
from yieldsim.events import (
    DomainEventBus,
    EventRecorder,
    RebalanceTriggered,
    RiskLimitBreached,
    TradeExecuted,
)
from yieldsim.strategy import BaseStrategy, StrategyResult

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# HELPERS
# =============================================================================


def make_ticks(prices: list[float], iv: list[float | None] | None = None) -> list[MarketData]:
    ticks = []
    for i, price in enumerate(prices):
        tick_iv = None if iv is None or iv[i] is None else IV.create(iv[i])
        ticks.append(MarketData(price=Price.create(price), timestamp=START + timedelta(days=i), iv=tick_iv))
    return ticks


def trade_action(side: TradeSide, amount: float, price: float | None = None, asset: str = "ETH", **result_kwargs):
    """Script step: one trade at `price` (tick price by default)."""

    def action(strategy: BaseStrategy, portfolio: Portfolio, tick: MarketData) -> StrategyResult:
        trade = strategy.create_trade(
            asset,
            side,
            Amount.create(amount),
            Price.create(price) if price is not None else tick.price,
            tick.timestamp,
        )
        return StrategyResult(trades=(trade,), **result_kwargs)

    return action


def buy(amount: float, price: float | None = None, **kwargs):
    return trade_action(TradeSide.BUY, amount, price, **kwargs)


def sell(amount: float, price: float | None = None, **kwargs):
    return trade_action(TradeSide.SELL, amount, price, **kwargs)


def perp_position(liquidation_price: float = 95.0) -> Position:
    return Position(
        id="s1:ETH-PERP",
        strategy_id="s1",
        asset="ETH",
        kind=PositionKind.PERP,
        amount=Amount.create(1.0),
        entry_price=Price.create(100.0),
        current_price=Price.create(100.0),
        leverage=5.0,
        liquidation_price=liquidation_price,
    )


class ScriptedStrategy(BaseStrategy):
    """Runs the script step for the n-th execute call, no-op otherwise."""

    def __init__(
        self,
        script: dict | None = None,
        strategy_id: str = "s1",
        valid: bool = True,
        apr: float = 10.0,
        required_fields: tuple[str, ...] = (),
    ):
        super().__init__(strategy_id, "Scripted")
        self.script = script or {}
        self.valid = valid
        self.apr = apr
        self.required_fields = required_fields
        self.calls = 0
        self.seen_cash: list[float] = []

    def execute(self, portfolio, market_data, config):
        index = self.calls
        self.calls += 1
        self.seen_cash.append(portfolio.cash.value)
        action = self.script.get(index)
        if action is None:
            return StrategyResult.empty()
        return action(self, portfolio, market_data)

    def calculate_expected_yield(self, config, market_data):
        return APR.create(self.apr)

    def validate_config(self, config):
        return self.valid


class AsyncScriptedStrategy(ScriptedStrategy):
    """Same script, awaited."""

    async def execute(self, portfolio, market_data, config):
        await asyncio.sleep(0)
        return super().execute(portfolio, market_data, config)


@pytest.fixture
def portfolio() -> Portfolio:
    return Portfolio("p1", Amount.create(1000.0))


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def engine(recorder: EventRecorder) -> BacktestEngine:
    bus = DomainEventBus()
    bus.subscribe_all(recorder)
    return BacktestEngine(event_bus=bus)


# =============================================================================
# END-TO-END
# =============================================================================


class TestEndToEnd:
    """Two-tick scenario and history buffers"""

    def test_two_tick_buy_and_hold(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        strategy = ScriptedStrategy({0: buy(10, 5.0)})
        result = engine.run(strategy, make_ticks([5.0, 6.0]), portfolio)

        assert result.metrics.final_value == pytest.approx(1000.0 - 50.0 + 60.0)
        assert len(result.historical_values) == 2
        assert len(result.historical_returns) == 2
        assert len(recorder.of_type(TradeExecuted)) == 1
        assert result.status == EngineState.COMPLETED
        assert engine.state == EngineState.COMPLETED
        assert result.is_complete

    def test_history_and_metrics(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        strategy = ScriptedStrategy({0: buy(100, 5.0)})
        result = engine.run(strategy, make_ticks([5.0, 6.0, 4.5, 5.5]), portfolio)

        # cash 500 + 100 ETH
        assert result.historical_values == pytest.approx((1000.0, 1100.0, 950.0, 1050.0))
        assert result.historical_returns == pytest.approx((0.0, 10.0, -100 * 150 / 1100, 100 * 100 / 950))
        assert result.metrics.total_return == pytest.approx(5.0)
        assert result.metrics.max_drawdown == pytest.approx(100 * 150 / 1100)
        assert result.metrics.trade_count == 1
        assert result.processed_ticks == 4
        assert result.last_completed_tick == 3
        assert result.abort_reason is None

    def test_first_return_measured_against_initial_value(self, engine: BacktestEngine) -> None:
        start = Portfolio("p1", Amount.create(1000.0), [
            Position(
                id="s1:ETH",
                strategy_id="s1",
                asset="ETH",
                amount=Amount.create(10.0),
                entry_price=Price.create(100.0),
                current_price=Price.create(100.0),
            )
        ])
        result = engine.run(ScriptedStrategy(), make_ticks([110.0]), start)

        assert result.initial_value == 2000.0
        assert result.historical_values == (2100.0,)
        assert result.historical_returns == pytest.approx((5.0,))

    def test_empty_stream(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = engine.run(ScriptedStrategy(), [], portfolio)

        assert result.status == EngineState.COMPLETED
        assert result.processed_ticks == 0
        assert result.metrics.final_value == 1000.0
        assert result.last_completed_tick is None

    def test_initial_portfolio_not_mutated(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        engine.run(ScriptedStrategy({0: buy(10, 5.0)}), make_ticks([5.0, 6.0]), portfolio)

        assert portfolio.cash.value == 1000.0
        assert len(portfolio) == 0

    def test_strategy_receives_copy(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        def vandal(strategy, view: Portfolio, tick):
            view.debit(Amount.create(999.0))
            return StrategyResult.empty()

        strategy = ScriptedStrategy({0: vandal})
        result = engine.run(strategy, make_ticks([5.0, 5.0]), portfolio)

        assert result.metrics.final_value == 1000.0
        assert strategy.seen_cash == [1000.0, 1000.0]

    def test_expected_yields_recorded(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = engine.run(ScriptedStrategy(apr=12.5), make_ticks([5.0, 6.0]), portfolio)
        assert result.expected_yields == {"s1": 12.5}

    def test_reproducible(self, portfolio: Portfolio) -> None:
        ticks = make_ticks([5.0, 6.0, 5.5, 7.0])
        script = {0: buy(10), 2: sell(4)}

        first = BacktestEngine().run(ScriptedStrategy(script), ticks, portfolio)
        second = BacktestEngine().run(ScriptedStrategy(script), ticks, portfolio)

        assert first == second

    def test_engine_is_restartable(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        ticks = make_ticks([5.0, 6.0])
        first = engine.run(ScriptedStrategy({0: buy(10)}), ticks, portfolio)
        second = engine.run(ScriptedStrategy({0: buy(10)}), ticks, portfolio)

        assert first.historical_values == second.historical_values
        assert engine.last_result is second

    def test_event_ids_repeat_across_runs(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        ticks = make_ticks([5.0, 6.0])

        engine.run(ScriptedStrategy({0: buy(10)}), ticks, portfolio)
        first_ids = [event.event_id for event in recorder.events]
        recorder.clear()
        engine.run(ScriptedStrategy({0: buy(10)}), ticks, portfolio)

        assert first_ids == ["TradeExecuted-000001"]
        assert [event.event_id for event in recorder.events] == first_ids


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class TestConfigErrors:
    """Config validation before the first tick"""

    def test_rejected_config_aborts_with_zero_ticks(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        strategy = ScriptedStrategy(valid=False)

        with pytest.raises(ConfigError):
            engine.run(strategy, make_ticks([5.0, 6.0]), portfolio)

        assert strategy.calls == 0
        assert engine.state == EngineState.ABORTED
        assert engine.last_result is None

    def test_non_strategy_rejected(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        with pytest.raises(ConfigError):
            engine.run(object(), make_ticks([5.0]), portfolio)  # type: ignore[arg-type]

    def test_no_strategies(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        with pytest.raises(ConfigError):
            engine.run_many([], make_ticks([5.0]), portfolio)

    def test_config_passed_to_validation(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        class NeedsLeverage(ScriptedStrategy):
            def validate_config(self, config):
                return config.get("max_leverage", 0) > 0

        with pytest.raises(ConfigError):
            engine.run(NeedsLeverage(), make_ticks([5.0]), portfolio)
        result = engine.run(NeedsLeverage(), make_ticks([5.0]), portfolio, strategy_config={"max_leverage": 3})
        assert result.status == EngineState.COMPLETED

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"periods_per_year": 0},
            {"emergency_close_threshold": 1.5},
            {"max_consecutive_data_gaps": -1},
            {"max_ticks": -1},
        ],
    )
    def test_invalid_backtest_config(self, kwargs: dict) -> None:
        with pytest.raises(ConfigError):
            BacktestConfig(**kwargs)

    def test_invalid_cost_model(self) -> None:
        with pytest.raises(ConfigError):
            CostModel(fee_bps=-1)


# =============================================================================
# SIMULATION ERRORS
# =============================================================================


class TestSimulationErrors:
    """Aborts at a tick preserve history up to the last completed tick"""

    def test_strategy_failure(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        def explode(strategy, view, tick):
            raise RuntimeError("oracle unavailable")

        strategy = ScriptedStrategy({0: buy(10), 2: explode})

        with pytest.raises(SimulationError) as exc_info:
            engine.run(strategy, make_ticks([5.0, 6.0, 7.0, 8.0]), portfolio)

        error = exc_info.value
        assert error.tick_index == 2
        assert isinstance(error.__cause__, RuntimeError)
        assert "oracle unavailable" in error.reason
        assert engine.state == EngineState.ABORTED

        partial = error.partial_result
        assert partial.status == EngineState.ABORTED
        assert partial.processed_ticks == 2
        assert partial.last_completed_tick == 1
        assert partial.historical_values == pytest.approx((1000.0, 1010.0))
        assert len(partial.trades) == 1
        assert partial.abort_reason == error.reason

    def test_failed_tick_leaves_no_partial_mutation(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        def explode(strategy, view, tick):
            raise ValueError("bad state")

        first = ScriptedStrategy({0: buy(10)}, strategy_id="s1")
        second = ScriptedStrategy({0: explode}, strategy_id="s2")

        with pytest.raises(SimulationError) as exc_info:
            engine.run_many([(first, None), (second, None)], make_ticks([5.0]), portfolio)

        partial = exc_info.value.partial_result
        assert partial.trades == ()
        assert partial.positions == ()

    def test_failing_observer_aborts_before_commit(self, portfolio: Portfolio) -> None:
        bus = DomainEventBus(raise_on_handler_error=True)
        second_tick = START + timedelta(days=1)

        def fragile(event: TradeExecuted) -> None:
            if event.occurred_on == second_tick:
                raise RuntimeError("report sink down")

        bus.subscribe(TradeExecuted, fragile)
        engine = BacktestEngine(event_bus=bus)

        with pytest.raises(SimulationError) as exc_info:
            engine.run(ScriptedStrategy({0: buy(10), 1: buy(10)}), make_ticks([5.0, 6.0, 7.0]), portfolio)

        error = exc_info.value
        assert error.tick_index == 1
        assert isinstance(error.__cause__, RuntimeError)

        partial = error.partial_result
        assert partial.last_completed_tick == 0
        assert partial.processed_ticks == 1
        assert len(partial.trades) == 1
        assert partial.positions[0].amount.value == 10.0

    def test_negative_cash_rejected(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        with pytest.raises(SimulationError, match="negative cash") as exc_info:
            engine.run(ScriptedStrategy({1: buy(300)}), make_ticks([5.0, 5.0]), portfolio)

        assert exc_info.value.tick_index == 1
        assert exc_info.value.partial_result.processed_ticks == 1

    def test_negative_cash_allowed(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(allow_negative_cash=True)
        result = engine.run(ScriptedStrategy({0: buy(300)}), make_ticks([5.0]), portfolio, config=config)

        assert result.metrics.final_value == pytest.approx(1000.0)
        assert result.status == EngineState.COMPLETED

    def test_invalid_result_type(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        strategy = ScriptedStrategy({0: lambda s, view, tick: None})

        with pytest.raises(SimulationError, match="expected StrategyResult"):
            engine.run(strategy, make_ticks([5.0]), portfolio)

    def test_cannot_start_while_running(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        class Reentrant(ScriptedStrategy):
            async def execute(self, view, market_data, config):
                return await engine.run_async(ScriptedStrategy(), [market_data], view)

        with pytest.raises(SimulationError) as exc_info:
            engine.run(Reentrant(), make_ticks([5.0]), portfolio)

        assert exc_info.value.reason == "engine is already running"


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancellation:
    """Stop signal and iteration cap"""

    def test_stop_event_returns_partial_result(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        stop = threading.Event()

        def request_stop(strategy, view, tick):
            stop.set()
            return StrategyResult.empty()

        result = engine.run(
            ScriptedStrategy({1: request_stop}), make_ticks([5.0, 6.0, 7.0, 8.0]), portfolio, stop_event=stop
        )

        assert result.status == EngineState.ABORTED
        assert result.processed_ticks == 2
        assert not result.is_complete
        assert "stop signal" in result.abort_reason
        assert engine.state == EngineState.ABORTED

    def test_stop_event_set_before_start(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        stop = threading.Event()
        stop.set()
        strategy = ScriptedStrategy()
        result = engine.run(strategy, make_ticks([5.0]), portfolio, stop_event=stop)

        assert result.processed_ticks == 0
        assert strategy.calls == 0

    def test_max_ticks(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(max_ticks=2)
        result = engine.run(ScriptedStrategy(), make_ticks([5.0, 6.0, 7.0]), portfolio, config=config)

        assert result.status == EngineState.ABORTED
        assert result.processed_ticks == 2
        assert "max_ticks" in result.abort_reason

    def test_max_ticks_equal_to_stream(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(max_ticks=2)
        result = engine.run(ScriptedStrategy(), make_ticks([5.0, 6.0]), portfolio, config=config)

        assert result.status == EngineState.COMPLETED


# =============================================================================
# DATA GAPS
# =============================================================================


class TestDataGaps:
    """Ticks missing required fields"""

    def test_gap_is_skipped_and_carried_forward(
        self, engine: BacktestEngine, portfolio: Portfolio, caplog
    ) -> None:
        strategy = ScriptedStrategy({0: buy(10)}, required_fields=("iv",))
        ticks = make_ticks([5.0, 9.0, 6.0], iv=[50.0, None, 50.0])

        with caplog.at_level(logging.WARNING, logger="yieldsim.backtest.engine"):
            result = engine.run(strategy, ticks, portfolio)

        assert result.status == EngineState.COMPLETED
        assert result.data_gaps == (1,)
        assert result.historical_values == pytest.approx((1000.0, 1000.0, 1010.0))
        assert result.historical_returns[1] == 0.0
        assert strategy.calls == 2
        assert "Data gap at tick 1" in caplog.text

    def test_consecutive_gaps_reset(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(max_consecutive_data_gaps=1)
        strategy = ScriptedStrategy(required_fields=("iv",))
        ticks = make_ticks([5.0] * 5, iv=[50.0, None, 50.0, None, 50.0])

        result = engine.run(strategy, ticks, portfolio, config=config)
        assert result.data_gaps == (1, 3)

    def test_too_many_gaps_abort(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(max_consecutive_data_gaps=1)
        strategy = ScriptedStrategy(required_fields=("iv",))
        ticks = make_ticks([5.0] * 4, iv=[50.0, None, None, 50.0])

        with pytest.raises(DataGapError) as exc_info:
            engine.run(strategy, ticks, portfolio, config=config)

        error = exc_info.value
        assert error.tick_index == 2
        assert error.missing_fields == ("iv",)
        assert error.partial_result.processed_ticks == 2
        assert error.partial_result.data_gaps == (1,)
        assert engine.state == EngineState.ABORTED
        assert engine.last_result is error.partial_result

    def test_gap_error_is_simulation_error(self) -> None:
        assert issubclass(DataGapError, SimulationError)


# =============================================================================
# TRADE APPLICATION
# =============================================================================


class TestTradeApplication:
    """Cash and position merge rules"""

    def run_script(self, engine: BacktestEngine, portfolio: Portfolio, script: dict, prices: list[float]):
        return engine.run(ScriptedStrategy(script), make_ticks(prices), portfolio)

    def test_same_direction_averages_entry(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = self.run_script(engine, portfolio, {0: buy(10), 1: buy(10)}, [5.0, 7.0])

        (position,) = result.positions
        assert position.id == "s1:ETH"
        assert position.amount.value == 20.0
        assert position.entry_price.value == pytest.approx(6.0)
        assert position.current_price.value == 7.0

    def test_reduction_keeps_entry(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = self.run_script(engine, portfolio, {0: buy(10), 1: sell(4)}, [5.0, 7.0])

        (position,) = result.positions
        assert position.amount.value == 6.0
        assert position.entry_price.value == 5.0
        assert result.metrics.final_value == pytest.approx(1000.0 - 50.0 + 28.0 + 42.0)

    def test_full_close_removes_position(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = self.run_script(engine, portfolio, {0: buy(10), 1: sell(10)}, [5.0, 7.0])

        assert result.positions == ()
        assert result.metrics.final_value == pytest.approx(1020.0)

    def test_flip_reenters_at_trade_price(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = self.run_script(engine, portfolio, {0: buy(10), 1: sell(15)}, [5.0, 8.0])

        (position,) = result.positions
        assert position.amount.value == -5.0
        assert position.entry_price.value == 8.0

    def test_flip_clears_margin_data(self, engine: BacktestEngine, recorder) -> None:
        long_perp = perp_position(liquidation_price=80.0).model_copy(
            update={"id": "s1:ETH", "borrowed_amount": Amount.create(4.0)}
        )
        start = Portfolio("p1", Amount.create(1000.0), [long_perp])

        result = engine.run(ScriptedStrategy({0: sell(3)}), make_ticks([100.0]), start)

        (position,) = result.positions
        assert position.side == PositionSide.SHORT
        assert position.amount.value == -2.0
        assert position.kind == PositionKind.PERP
        assert position.liquidation_price is None
        assert position.leverage == 1.0
        assert position.borrowed_amount.is_zero()
        assert recorder.of_type(RiskLimitBreached) == []
        assert result.metrics.risk_breach_count == 0

    def test_short_sale_credits_cash(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = self.run_script(engine, portfolio, {0: sell(10)}, [5.0, 4.0])

        (position,) = result.positions
        assert position.amount.value == -10.0
        # cash 1050, short marked at 4 → 1050 - 40
        assert result.metrics.final_value == pytest.approx(1010.0)

    def test_cost_model_applied(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        config = BacktestConfig(cost_model=CostModel(slippage_bps=20, fee_bps=10, fixed_fee=1.0))
        result = engine.run(ScriptedStrategy({0: buy(10)}), make_ticks([5.0]), portfolio, config=config)

        (trade,) = result.trades
        assert trade.fees.value == pytest.approx(1.05)
        assert trade.slippage.value == pytest.approx(0.1)
        assert result.metrics.final_value == pytest.approx(1000.0 - 1.15)

    def test_cost_model_keeps_explicit_costs(self) -> None:
        strategy = ScriptedStrategy()
        trade = strategy.create_trade(
            "ETH", TradeSide.BUY, Amount.create(1.0), Price.create(5.0), START, fees=Amount.create(0.3)
        )

        assert CostModel(fee_bps=100).apply(trade) is trade

    def test_returned_positions_are_upserted(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        def declare(strategy, view, tick):
            return StrategyResult(positions=(perp_position(liquidation_price=50.0),))

        result = engine.run(ScriptedStrategy({0: declare}), make_ticks([100.0, 110.0]), portfolio)

        (position,) = result.positions
        assert position.id == "s1:ETH-PERP"
        assert position.current_price.value == 110.0


# =============================================================================
# EVENTS AND RISK
# =============================================================================


class TestEventsAndRisk:
    """Per-tick event publication"""

    def test_event_order_within_tick(self, portfolio: Portfolio) -> None:
        log: list[str] = []
        bus = DomainEventBus()
        bus.subscribe_all(lambda e: log.append(e.event_type))
        engine = BacktestEngine(event_bus=bus)

        class Logged(ScriptedStrategy):
            def execute(self, view, market_data, config):
                log.append("execute")
                return super().execute(view, market_data, config)

        def step(strategy, view, tick):
            trade = strategy.create_trade("ETH", TradeSide.BUY, Amount.create(1.0), tick.price, tick.timestamp)
            return StrategyResult(
                trades=(trade,),
                positions=(perp_position(),),
                should_rebalance=True,
                rebalance_reason="drift",
            )

        engine.run(Logged({0: step}), make_ticks([100.0, 100.0]), portfolio)

        assert log == [
            "execute",
            "TradeExecuted",
            "RebalanceTriggered",
            "RiskLimitBreached",
            "execute",
            "RiskLimitBreached",
        ]

    def test_events_carry_tick_time(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        engine.run(ScriptedStrategy({1: buy(1)}), make_ticks([5.0, 6.0]), portfolio)

        (event,) = recorder.of_type(TradeExecuted)
        assert event.occurred_on == START + timedelta(days=1)

    def test_rebalance_event(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        def signal(strategy, view, tick):
            return StrategyResult(should_rebalance=True, rebalance_reason="apr drop")

        result = engine.run(ScriptedStrategy({0: signal}), make_ticks([5.0]), portfolio)

        (event,) = recorder.of_type(RebalanceTriggered)
        assert event.strategy_id == "s1"
        assert event.reason == "apr drop"
        assert result.metrics.rebalance_count == 1

    def test_risk_limit_breached(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        def declare(strategy, view, tick):
            return StrategyResult(positions=(perp_position(liquidation_price=95.0),))

        result = engine.run(ScriptedStrategy({0: declare}), make_ticks([100.0, 100.0]), portfolio)

        events = recorder.of_type(RiskLimitBreached)
        assert len(events) == 2
        assert events[0].limit_type == LIQUIDATION_PROXIMITY_LIMIT
        assert events[0].current_value == pytest.approx(0.95)
        assert events[0].threshold == 0.7
        assert events[0].position_id == "s1:ETH-PERP"
        assert result.metrics.risk_breach_count == 2
        # No automatic close
        assert len(result.positions) == 1
        assert result.trades == ()

    def test_safe_position_no_breach(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        def declare(strategy, view, tick):
            return StrategyResult(positions=(perp_position(liquidation_price=50.0),))

        engine.run(ScriptedStrategy({0: declare}), make_ticks([100.0]), portfolio)
        assert recorder.of_type(RiskLimitBreached) == []

    def test_spot_positions_never_breach(self, engine: BacktestEngine, portfolio: Portfolio, recorder) -> None:
        config = BacktestConfig(emergency_close_threshold=0.0)
        engine.run(ScriptedStrategy({0: buy(10)}), make_ticks([5.0, 5.0]), portfolio, config=config)

        assert recorder.of_type(RiskLimitBreached) == []


# =============================================================================
# ASYNC / MULTI-STRATEGY
# =============================================================================


class TestAsyncAndMultiStrategy:
    """Async execution and several strategies per tick"""

    def test_async_strategy(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = engine.run(AsyncScriptedStrategy({0: buy(10, 5.0)}), make_ticks([5.0, 6.0]), portfolio)
        assert result.metrics.final_value == pytest.approx(1010.0)

    def test_run_async(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = asyncio.run(
            engine.run_async(AsyncScriptedStrategy({0: buy(10, 5.0)}), make_ticks([5.0, 6.0]), portfolio)
        )
        assert result.status == EngineState.COMPLETED
        assert result.metrics.final_value == pytest.approx(1010.0)

    def test_run_many(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        first = ScriptedStrategy({0: buy(10)}, strategy_id="s1", apr=5.0)
        second = AsyncScriptedStrategy({0: sell(4)}, strategy_id="s2", apr=7.0)

        result = engine.run_many([(first, None), (second, {})], make_ticks([5.0, 6.0]), portfolio)

        assert [p.id for p in result.positions] == ["s1:ETH", "s2:ETH"]
        assert result.expected_yields == {"s1": 5.0, "s2": 7.0}
        assert [t.strategy_id for t in result.trades] == ["s1", "s2"]
        # 1000 - 50 + 20 + 10*6 - 4*6
        assert result.metrics.final_value == pytest.approx(1006.0)

    def test_strategies_see_earlier_trades_of_the_tick(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        first = ScriptedStrategy({0: buy(10)}, strategy_id="s1")
        second = ScriptedStrategy(strategy_id="s2")

        engine.run_many([(first, None), (second, None)], make_ticks([5.0]), portfolio)

        assert second.seen_cash == [950.0]


# =============================================================================
# VALUATION / PORTFOLIO HEALTH
# =============================================================================


def holding(kind: PositionKind, amount: float = 10.0, **fields) -> Position:
    return Position(
        id=f"s1:ETH-{kind.value}",
        strategy_id="s1",
        asset="ETH",
        kind=kind,
        amount=Amount.create(amount),
        entry_price=Price.create(100.0),
        current_price=Price.create(100.0),
        **fields,
    )


class TestValuation:
    """Impermanent loss on LP holdings and end-of-run exposure metrics"""

    @pytest.mark.parametrize("apply_il,final_value", [(False, 5000.0), (True, 4200.0)])
    def test_lp_valued_net_of_impermanent_loss(
        self, engine: BacktestEngine, apply_il: bool, final_value: float
    ) -> None:
        start = Portfolio("p1", Amount.create(1000.0), [holding(PositionKind.LP)])
        config = BacktestConfig(apply_il=apply_il)

        result = engine.run(ScriptedStrategy(), make_ticks([100.0, 400.0]), start, config=config)

        # Price ratio 4 → IL of -20% on the 4000 LP value
        assert result.initial_value == pytest.approx(2000.0)
        assert result.metrics.final_value == pytest.approx(final_value)

    def test_apply_il_leaves_spot_untouched(self, engine: BacktestEngine) -> None:
        start = Portfolio("p1", Amount.create(1000.0), [holding(PositionKind.SPOT)])
        config = BacktestConfig(apply_il=True)

        result = engine.run(ScriptedStrategy(), make_ticks([400.0]), start, config=config)
        assert result.metrics.final_value == pytest.approx(5000.0)

    def test_exposure_leverage_and_health(self, engine: BacktestEngine) -> None:
        leveraged = holding(
            PositionKind.PERP,
            amount=-10.0,
            leverage=2.0,
            collateral_amount=Amount.create(2.0),
            borrowed_amount=Amount.create(1.0),
        )
        start = Portfolio("p1", Amount.create(3000.0), [leveraged])

        result = engine.run(ScriptedStrategy(), make_ticks([100.0]), start)

        # Short of 10 @100: exposure 1000 on a total value of 2000
        assert result.metrics.total_exposure == pytest.approx(1000.0)
        assert result.metrics.leverage == pytest.approx(0.5)
        assert result.metrics.health_factor == pytest.approx(2.0)

    def test_unleveraged_portfolio_has_no_health_factor(self, engine: BacktestEngine, portfolio: Portfolio) -> None:
        result = engine.run(ScriptedStrategy({0: buy(10)}), make_ticks([5.0]), portfolio)

        assert result.metrics.health_factor is None
        assert result.metrics.total_exposure == pytest.approx(50.0)
        assert result.metrics.leverage == pytest.approx(0.05)
