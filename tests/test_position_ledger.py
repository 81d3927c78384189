from concurrent.futures import ThreadPoolExecutor

import pytest

from models.trade import ClosedTrade, Position, Rejected, RejectReason
from modules.position_ledger import PositionLedger, contracts_for


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
    return PositionLedger(max_open_positions=2, cooldown_seconds=60, clock=clock)


# ------------------------- Sizing ------------------------- #

@pytest.mark.parametrize(
    "size,price,expected",
    [(1.0, 14, 7), (1.0, 50, 2), (1.0, 100, 1), (1.0, 101, 0), (0.5, 14, 3), (1.0, 0, 0), (0.29, 29, 1)],
)
def test_contracts_for(size, price, expected):
    assert contracts_for(size, price) == expected


# ------------------------- Opening ------------------------- #

def test_open_creates_position(ledger, clock):
    pos = ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    assert isinstance(pos, Position)
    assert pos.contracts == 7
    assert pos.entry_time == clock.now
    assert pos.entry_trade_id == "t1"
    assert "MKT-A" in ledger
    assert len(ledger) == 1


def test_duplicate_open_rejected(ledger):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    result = ledger.open("MKT-A", "no", 20, 1.0, "t2")
    assert isinstance(result, Rejected)
    assert result.reason is RejectReason.DUPLICATE
    assert not result
    assert len(ledger) == 1


def test_max_positions_never_exceeded(ledger):
    ledger.open("A", "yes", 10, 1.0, "1")
    ledger.open("B", "yes", 10, 1.0, "2")
    result = ledger.open("C", "yes", 10, 1.0, "3")
    assert result.reason is RejectReason.MAX_POSITIONS
    assert len(ledger) == 2


def test_zero_contracts_rejected(ledger):
    result = ledger.open("MKT-A", "yes", 150, 1.0, "t1")
    assert result.reason is RejectReason.ZERO_CONTRACTS
    assert "MKT-A" not in ledger


# ------------------------- Closing ------------------------- #

def test_close_scenario_yes(ledger, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    clock.now += 30
    trade = ledger.close("MKT-A", 15, "Profit target reached")

    assert isinstance(trade, ClosedTrade)
    assert trade.contracts == 7
    assert trade.pnl == pytest.approx(0.07)
    assert trade.pnl_percent == pytest.approx(7.142857, rel=1e-5)
    assert trade.duration == 30
    assert trade.reason == "Profit target reached"
    assert "MKT-A" not in ledger
    assert ledger.closed_trades() == [trade]


def test_close_no_side_pnl_sign(ledger):
    ledger.open("MKT-A", "no", 20, 1.0, "t1")
    trade = ledger.close("MKT-A", 18, "x")
    # (entry - exit) * contracts = 2 * 5 cents
    assert trade.pnl == pytest.approx(0.10)
    assert trade.was_profitable


def test_close_missing_returns_not_found(ledger):
    result = ledger.close("NOPE", 10, "x")
    assert result.reason is RejectReason.NOT_FOUND
    assert ledger.closed_trades() == []


def test_every_close_sets_exactly_one_cooldown(ledger, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    ledger.close("MKT-A", 10, "loss")
    first = ledger.cooldown("MKT-A")
    assert first is not None
    assert first.was_profitable is False

    clock.now += 61
    ledger.open("MKT-A", "yes", 14, 1.0, "t2")
    ledger.close("MKT-A", 20, "win")
    second = ledger.cooldown("MKT-A")
    assert second.was_profitable is True
    assert second.timestamp == clock.now


def test_cooldown_blocks_reentry_until_expired(ledger, clock):
    ledger.open("MKT-A", "yes", 14, 1.0, "t1")
    ledger.close("MKT-A", 20, "win")

    clock.now += 59
    result = ledger.open("MKT-A", "yes", 14, 1.0, "t2")
    assert result.reason is RejectReason.COOLDOWN
    assert ledger.in_cooldown("MKT-A")

    clock.now += 1
    assert isinstance(ledger.open("MKT-A", "yes", 14, 1.0, "t3"), Position)
    # expired entry is dropped lazily on the open attempt
    assert ledger.cooldown("MKT-A") is None


def test_cooldown_is_per_ticker(ledger):
    ledger.open("A", "yes", 14, 1.0, "t1")
    ledger.close("A", 20, "win")
    assert isinstance(ledger.open("B", "yes", 14, 1.0, "t2"), Position)


# ------------------------- Reservations ------------------------- #

def test_reserve_counts_against_cap_and_duplicates(ledger):
    assert ledger.reserve("A", 10, 1.0) == 10
    assert ledger.open("A", "yes", 10, 1.0, "x").reason is RejectReason.DUPLICATE
    ledger.open("B", "yes", 10, 1.0, "y")
    assert ledger.open("C", "yes", 10, 1.0, "z").reason is RejectReason.MAX_POSITIONS


def test_commit_and_release(ledger):
    contracts = ledger.reserve("A", 10, 1.0)
    pos = ledger.commit("A", "yes", 10, contracts, "t1", tx_ref="abc", filled=False)
    assert pos.entry_tx_ref == "abc"
    assert pos.entry_filled is False

    ledger.reserve("B", 10, 1.0)
    ledger.release("B")
    assert isinstance(ledger.open("B", "yes", 10, 1.0, "t2"), Position)


def test_commit_without_reservation_raises(ledger):
    with pytest.raises(KeyError):
        ledger.commit("A", "yes", 10, 10, "t1")


def test_unfilled_position_cannot_close_and_can_be_discarded(ledger):
    contracts = ledger.reserve("A", 10, 1.0)
    ledger.commit("A", "yes", 10, contracts, "t1", tx_ref="abc", filled=False)

    assert ledger.close("A", 12, "x").reason is RejectReason.ENTRY_UNFILLED
    assert ledger.discard("A") is not None
    assert "A" not in ledger
    assert ledger.cooldown("A") is None
    assert ledger.closed_trades() == []


def test_mark_filled_allows_close(ledger):
    contracts = ledger.reserve("A", 10, 1.0)
    ledger.commit("A", "yes", 10, contracts, "t1", tx_ref="abc", filled=False)
    assert ledger.mark_filled("A") is True
    assert isinstance(ledger.close("A", 12, "x"), ClosedTrade)


def test_discard_ignores_filled_positions(ledger):
    ledger.open("A", "yes", 10, 1.0, "t1")
    assert ledger.discard("A") is None
    assert "A" in ledger


# ------------------------- Close claims ------------------------- #

def test_mark_closing_is_exclusive(ledger):
    ledger.open("A", "yes", 10, 1.0, "t1")
    assert isinstance(ledger.mark_closing("A"), Position)
    assert ledger.mark_closing("A").reason is RejectReason.CLOSING
    ledger.clear_closing("A")
    assert isinstance(ledger.mark_closing("A"), Position)


def test_record_logged_pnl(ledger):
    ledger.open("A", "yes", 10, 1.0, "t1")
    ledger.record_logged_pnl("A", 2.5)
    assert ledger.get("A").last_logged_pnl_percent == 2.5


def test_open_positions_returns_copy(ledger):
    ledger.open("A", "yes", 10, 1.0, "t1")
    snapshot = ledger.open_positions()
    snapshot.clear()
    assert len(ledger.open_positions()) == 1


def test_returned_positions_are_detached(ledger):
    opened = ledger.open("A", "yes", 10, 1.0, "t1")
    opened.closing = True

    listed = ledger.open_positions()[0]
    listed.entry_price = 99
    listed.last_logged_pnl_percent = 50.0
    fetched = ledger.get("A")
    fetched.entry_filled = False

    current = ledger.get("A")
    assert current.entry_price == 10
    assert current.closing is False
    assert current.entry_filled is True
    assert current.last_logged_pnl_percent is None
    assert isinstance(ledger.close("A", 12, "test"), ClosedTrade)


# ------------------------- Threaded burst ------------------------- #

def test_threaded_open_close_burst_keeps_cap_and_uniqueness():
    ledger = PositionLedger(max_open_positions=3, cooldown_seconds=0)
    tickers = [f"MKT-{i}" for i in range(5)]
    violations = []
    opens = []
    close_failures = []

    def worker(seed):
        for n in range(200):
            ticker = tickers[(seed + n) % len(tickers)]
            result = ledger.open(ticker, "yes", 10, 1.0, f"{seed}-{n}")
            if not isinstance(result, Position):
                continue
            opens.append(ticker)
            held = [p.ticker for p in ledger.open_positions()]
            if len(held) > 3 or len(held) != len(set(held)):
                violations.append(held)
            if not isinstance(ledger.close(ticker, 11, "burst"), ClosedTrade):
                close_failures.append(ticker)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(worker, range(8)))

    assert violations == []
    assert close_failures == []
    assert opens
    assert len(ledger) == 0
    assert len(ledger.closed_trades()) == len(opens)
