import pytest
from unittest.mock import AsyncMock, MagicMock

from models.market import Quote
from models.trade import ClosedTrade, OrderReceipt, OrderStatus, Rejected, RejectReason
from modules.executor import ExecutionError, PaperExecutor
from modules.exit_monitor import ExitMonitor
from modules.position_ledger import PositionLedger
from utils.event_bus import POSITION_CLOSED


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return PositionLedger(max_open_positions=10, cooldown_seconds=60, clock=clock)


@pytest.fixture
def market_cache():
    cache = MagicMock()
    cache.get_mid_price = AsyncMock(return_value=None)
    return cache


@pytest.fixture
def bus():
    return MagicMock()


def make_monitor(ledger, market_cache, clock, bus=None, executor=None, **kw):
    params = dict(max_position_age=300, stale_notice_age=30, profit_target=0.025, stop_loss=0.12, pnl_log_delta=0.5)
    params.update(kw)
    return ExitMonitor(ledger, market_cache, executor or PaperExecutor(), bus, clock=clock, **params)


# ------------------------- Exit rules ------------------------- #

def test_exit_reason_priority(ledger, market_cache, clock):
    monitor = make_monitor(ledger, market_cache, clock, profit_target=0.025, stop_loss=0.12)
    assert monitor.exit_reason(3.0).startswith("Profit target reached")
    assert monitor.exit_reason(-12.5).startswith("Stop loss hit")
    assert monitor.exit_reason(1.0) is None


def test_exit_reason_profit_target_wins_when_both_fire(ledger, market_cache, clock):
    # a negative stop loss makes every pnl satisfy the stop rule too
    monitor = make_monitor(ledger, market_cache, clock, profit_target=0.01, stop_loss=-0.5)
    assert monitor.exit_reason(5.0).startswith("Profit target reached")


def test_exit_reason_disabled_rules(ledger, market_cache, clock):
    monitor = make_monitor(ledger, market_cache, clock, profit_target=None, stop_loss=None)
    assert monitor.exit_reason(500.0) is None
    assert monitor.exit_reason(-99.0) is None


# ------------------------- Cycle ------------------------- #

@pytest.mark.asyncio
async def test_profit_target_closes_position(ledger, market_cache, clock, bus):
    ledger.open("MKT-A", "yes", 50, 1.0, "t1")
    market_cache.get_mid_price.return_value = Quote(yes_price=51.5, no_price=48.5)
    monitor = make_monitor(ledger, market_cache, clock, bus)

    closed = await monitor.check_positions()

    assert len(closed) == 1
    assert "Profit target reached" in closed[0].reason
    assert closed[0].exit_price == 51.5
    assert "MKT-A" not in ledger
    bus.publish.assert_called_once_with(POSITION_CLOSED, closed[0])


@pytest.mark.asyncio
async def test_stop_loss_closes_position(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 40, 1.0, "t1")
    market_cache.get_mid_price.return_value = Quote(yes_price=35, no_price=65)  # -12.5 %
    monitor = make_monitor(ledger, market_cache, clock)

    closed = await monitor.check_positions()

    assert "Stop loss hit" in closed[0].reason
    assert closed[0].pnl_percent == pytest.approx(-12.5)


@pytest.mark.asyncio
async def test_no_side_uses_no_price(ledger, market_cache, clock):
    ledger.open("MKT-A", "no", 40, 1.0, "t1")
    # no mid unchanged, yes mid moved a lot: nothing should fire
    market_cache.get_mid_price.return_value = Quote(yes_price=90, no_price=40)
    monitor = make_monitor(ledger, market_cache, clock)

    assert await monitor.check_positions() == []
    assert "MKT-A" in ledger


@pytest.mark.asyncio
async def test_stale_position_force_closed_at_entry(ledger, market_cache, clock, bus):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    clock.now += 301
    monitor = make_monitor(ledger, market_cache, clock, bus)

    closed = await monitor.check_positions()

    assert len(closed) == 1
    trade = closed[0]
    assert trade.pnl == 0
    assert trade.exit_price == 14
    assert trade.reason.startswith("Stale data")
    assert "MKT-A" not in ledger


@pytest.mark.asyncio
async def test_young_position_without_price_is_kept(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    clock.now += 299
    monitor = make_monitor(ledger, market_cache, clock)

    assert await monitor.check_positions() == []
    assert "MKT-A" in ledger


@pytest.mark.asyncio
async def test_stale_notice_logged_once(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    clock.now += 40
    logger = MagicMock()
    monitor = ExitMonitor(ledger, market_cache, PaperExecutor(), None, logger, clock=clock)

    await monitor.check_positions()
    await monitor.check_positions()

    assert logger.warning.call_count == 1


@pytest.mark.asyncio
async def test_progress_logged_only_past_delta(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 50, 1.0, "t1")
    monitor = make_monitor(ledger, market_cache, clock, profit_target=None, stop_loss=None)

    market_cache.get_mid_price.return_value = Quote(yes_price=50.1, no_price=49.9)  # +0.2 %
    await monitor.check_positions()
    assert ledger.get("MKT-A").last_logged_pnl_percent is None

    market_cache.get_mid_price.return_value = Quote(yes_price=50.5, no_price=49.5)  # +1.0 %
    await monitor.check_positions()
    assert ledger.get("MKT-A").last_logged_pnl_percent == pytest.approx(1.0)

    market_cache.get_mid_price.return_value = Quote(yes_price=50.6, no_price=49.4)  # +1.2 %
    await monitor.check_positions()
    assert ledger.get("MKT-A").last_logged_pnl_percent == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_close_failure_keeps_position_for_retry(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 50, 1.0, "t1")
    market_cache.get_mid_price.return_value = Quote(yes_price=60, no_price=40)
    executor = MagicMock()
    executor.submit_exit_order = AsyncMock(side_effect=ExecutionError("boom"))
    monitor = make_monitor(ledger, market_cache, clock, executor=executor)

    assert await monitor.check_positions() == []
    position = ledger.get("MKT-A")
    assert position is not None
    assert position.closing is False


@pytest.mark.asyncio
async def test_positions_being_closed_are_skipped(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 50, 1.0, "t1")
    ledger.mark_closing("MKT-A")
    monitor = make_monitor(ledger, market_cache, clock)

    await monitor.check_positions()
    market_cache.get_mid_price.assert_not_called()


# ------------------------- Live entries ------------------------- #

@pytest.mark.asyncio
async def test_unfilled_entry_is_polled_then_marked_filled(ledger, market_cache, clock):
    contracts = ledger.reserve("MKT-A", 50, 1.0)
    ledger.commit("MKT-A", "yes", 50, contracts, "t1", tx_ref="tx-1", filled=False)
    executor = MagicMock()
    executor.check_order_status = AsyncMock(return_value=OrderStatus(status="closed"))
    monitor = make_monitor(ledger, market_cache, clock, executor=executor)

    await monitor.check_positions()

    executor.check_order_status.assert_awaited_once_with("tx-1")
    assert ledger.get("MKT-A").entry_filled is True
    market_cache.get_mid_price.assert_not_called()


@pytest.mark.asyncio
async def test_failed_entry_is_discarded(ledger, market_cache, clock):
    contracts = ledger.reserve("MKT-A", 50, 1.0)
    ledger.commit("MKT-A", "yes", 50, contracts, "t1", tx_ref="tx-1", filled=False)
    executor = MagicMock()
    executor.check_order_status = AsyncMock(return_value=OrderStatus(status="failed"))
    monitor = make_monitor(ledger, market_cache, clock, executor=executor)

    await monitor.check_positions()

    assert "MKT-A" not in ledger
    assert ledger.cooldown("MKT-A") is None


@pytest.mark.asyncio
async def test_unfilled_entry_past_max_age_warns_once(ledger, market_cache, clock):
    contracts = ledger.reserve("MKT-A", 50, 1.0)
    ledger.commit("MKT-A", "yes", 50, contracts, "t1", tx_ref="tx-1", filled=False)
    executor = MagicMock()
    executor.check_order_status = AsyncMock(return_value=OrderStatus(status="open"))
    logger = MagicMock()
    monitor = ExitMonitor(ledger, market_cache, executor, None, logger, max_position_age=300, clock=clock)

    clock.now += 100
    await monitor.check_positions()
    assert logger.warning.call_count == 0

    clock.now += 250
    await monitor.check_positions()
    await monitor.check_positions()

    assert logger.warning.call_count == 1
    assert "still unfilled" in logger.warning.call_args.args[0]
    # never force closed while the entry is pending
    assert "MKT-A" in ledger
    market_cache.get_mid_price.assert_not_called()
    assert ledger.closed_trades() == []


# ------------------------- Manual close path ------------------------- #

@pytest.mark.asyncio
async def test_close_position_submits_exit_then_records(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    executor = MagicMock()
    executor.submit_exit_order = AsyncMock(return_value=OrderReceipt("tx-9"))
    monitor = make_monitor(ledger, market_cache, clock, executor=executor)

    trade = await monitor.close_position("MKT-A", 15, "Manual close")

    assert isinstance(trade, ClosedTrade)
    executor.submit_exit_order.assert_awaited_once_with("yes", "MKT-A", 7)


@pytest.mark.asyncio
async def test_close_position_missing(ledger, market_cache, clock):
    monitor = make_monitor(ledger, market_cache, clock)
    result = await monitor.close_position("NOPE", 15, "Manual close")
    assert isinstance(result, Rejected)
    assert result.reason is RejectReason.NOT_FOUND


@pytest.mark.asyncio
async def test_close_position_raises_execution_error(ledger, market_cache, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    executor = MagicMock()
    executor.submit_exit_order = AsyncMock(side_effect=ExecutionError("nope"))
    monitor = make_monitor(ledger, market_cache, clock, executor=executor)

    with pytest.raises(ExecutionError):
        await monitor.close_position("MKT-A", 15, "Manual close")
    assert ledger.get("MKT-A").closing is False
