"""
chainbasis/tests/test_cost_basis.py

FIFO / LIFO lot matching.

Scenarios:
1. Buy 2 ETH @ $2000 then 1.5 ETH @ $2500, sell 1 @ $3000:
   FIFO realizes $1000, LIFO realizes $500.
2. Partial disposal shrinks the lot proportionally and leaves it open.
3. Tokens never share lots.
4. Over-disposal stops once lots run out.
5. Dispositions are matched in the order they were given, not by date.
"""

from datetime import datetime, timezone

from chainbasis.constants import CostBasisMethod
from chainbasis.schemas.cost_basis import CostBasisOptions
from chainbasis.services.cost_basis import CostBasisEngine
from chainbasis.utils.units import calculate_tax_year

from conftest import make_tx


def run(transactions, method="FIFO", tax_year=2024):
    options = CostBasisOptions(method=method, tax_year=tax_year)
    return CostBasisEngine().calculate_cost_basis(transactions, options)


def entry(result, entry_id):
    return next(e for e in result.entries if e.id == entry_id)


# =============================================================================
# Method ordering
# =============================================================================

class TestMethods:

    def _lots_and_sale(self):
        return [
            make_tx(1, "buy", "2", 2000, day=1),
            make_tx(2, "buy", "1.5", 2500, day=2),
            make_tx(3, "sell", "-1", 3000, day=3),
        ]

    def test_fifo_uses_oldest_lot(self):
        (result,) = run(self._lots_and_sale(), "FIFO")
        assert result.realized_gain_loss == "1000"
        assert entry(result, "disp-3-0-partial").cost_basis_usd == "1000"

    def test_lifo_uses_newest_lot(self):
        (result,) = run(self._lots_and_sale(), "LIFO")
        assert result.realized_gain_loss == "500"
        # LIFO puts the 2024-01-02 lot at index 0
        assert entry(result, "disp-3-0-partial").cost_basis_usd == "500"

    def test_totals_do_not_depend_on_method(self):
        (fifo,) = run(self._lots_and_sale(), "FIFO")
        (lifo,) = run(self._lots_and_sale(), "LIFO")
        for field in ("total_acquired", "total_disposed", "remaining_quantity"):
            assert getattr(fifo, field) == getattr(lifo, field)
        assert fifo.total_acquired == "3.5"
        assert fifo.remaining_quantity == "2.5"

    def test_method_is_recorded_on_entries(self):
        (result,) = run(self._lots_and_sale(), "LIFO")
        assert all(e.method == CostBasisMethod.LIFO for e in result.entries)


# =============================================================================
# Lot consumption
# =============================================================================

class TestLotConsumption:

    def test_end_to_end_partial_sale(self):
        """Buy 1.0 @ 2000, sell 0.5 @ 2500."""
        (result,) = run([
            make_tx("a", "buy", "1.0", 2000, day=1),
            make_tx("b", "sell", "-0.5", 2500, day=2),
        ])
        assert result.token_symbol == "ETH"
        assert result.total_acquired == "1"
        assert result.total_disposed == "0.5"
        assert result.remaining_quantity == "0.5"
        assert result.realized_gain_loss == "250"
        assert result.cost_basis == "1000"

    def test_partial_disposal_shrinks_lot(self):
        (result,) = run([
            make_tx(1, "buy", "1", 1000, day=1),
            make_tx(2, "sell", "-0.5", 1200, day=2),
        ])
        lot = entry(result, "acq-1")
        assert lot.amount == "0.5"
        assert lot.cost_basis_usd == "500"
        assert lot.is_disposed is False

        disposal = entry(result, "disp-2-0-partial")
        assert disposal.amount == "-0.5"
        assert disposal.cost_basis_usd == "100"
        assert disposal.is_disposed is True
        assert disposal.disposal_txn_id == "2"

    def test_whole_lot_consumption(self):
        (result,) = run([
            make_tx(1, "buy", "1", 1000, day=1),
            make_tx(2, "buy", "1", 1500, day=2),
            make_tx(3, "sell", "-1", 2000, day=3),
        ])
        disposal = entry(result, "disp-3-0")
        assert disposal.amount == "-1"
        assert disposal.cost_basis_usd == "1000"

        consumed = entry(result, "acq-1")
        assert consumed.is_disposed is True
        assert consumed.amount == "0"

        assert result.realized_gain_loss == "1000"
        assert result.cost_basis == "1500"

    def test_disposal_spanning_two_lots(self):
        (result,) = run([
            make_tx(1, "buy", "1", 100, day=1),
            make_tx(2, "buy", "1", 200, day=2),
            make_tx(3, "sell", "-1.5", 300, day=3),
        ])
        ids = [e.id for e in result.entries]
        assert ids == ["acq-1", "acq-2", "disp-3-0", "disp-3-1-partial"]
        assert entry(result, "disp-3-0").cost_basis_usd == "200"
        assert entry(result, "disp-3-1-partial").cost_basis_usd == "50"
        assert result.realized_gain_loss == "250"
        assert result.cost_basis == "100"

    def test_over_disposal_is_truncated(self):
        (result,) = run([
            make_tx(1, "buy", "1", 100, day=1),
            make_tx(2, "sell", "-3", 150, day=2),
        ])
        disposals = [e for e in result.entries if e.id.startswith("disp-")]
        assert len(disposals) == 1
        assert disposals[0].amount == "-1"
        assert result.total_disposed == "3"
        assert result.remaining_quantity == "-2"
        assert result.realized_gain_loss == "50"

    def test_dispositions_follow_caller_order(self):
        """The later-dated sale is listed first, so it takes the first lot."""
        (result,) = run([
            make_tx(1, "buy", "1", 100, day=1),
            make_tx(2, "buy", "1", 200, day=2),
            make_tx(4, "sell", "-1", 400, day=10),
            make_tx(3, "sell", "-1", 300, day=5),
        ])
        assert entry(result, "disp-4-0").cost_basis_usd == "300"
        assert entry(result, "disp-3-1").cost_basis_usd == "100"

    def test_missing_prices_count_as_zero(self):
        (result,) = run([
            make_tx(1, "airdrop", "10", None, day=1),
            make_tx(2, "sell", "-4", None, day=2),
        ])
        assert entry(result, "acq-1").cost_basis_usd == "0"
        assert result.realized_gain_loss == "0"
        assert result.remaining_quantity == "6"

    def test_positive_transfer_is_not_a_disposition(self):
        (result,) = run([
            make_tx(1, "buy", "1", 100, day=1),
            make_tx(2, "transfer", "0.5", 100, day=2),
            make_tx(3, "fee", "-0.1", 100, day=3),
        ])
        assert result.total_disposed == "0"
        assert [e.id for e in result.entries] == ["acq-1"]

    def test_reward_and_mining_are_acquisitions(self):
        (result,) = run([
            make_tx(1, "reward", "0.2", 10, day=1),
            make_tx(2, "buy", "0.3", 10, day=2),
        ])
        assert result.total_acquired == "0.5"
        assert result.cost_basis == "5"


# =============================================================================
# Grouping and options
# =============================================================================

class TestGrouping:

    def test_tokens_are_isolated(self):
        results = run([
            make_tx(1, "buy", "1", 2000, day=1, token="ETH"),
            make_tx(2, "buy", "100", 1, day=1, token="USDC"),
            make_tx(3, "sell", "-50", 1, day=2, token="USDC"),
        ])
        assert [r.token_symbol for r in results] == ["ETH", "USDC"]
        eth, usdc = results
        assert eth.total_disposed == "0"
        assert eth.cost_basis == "2000"
        assert usdc.remaining_quantity == "50"
        assert all(e.token_symbol == "USDC" for e in usdc.entries)

    def test_empty_input(self):
        assert run([]) == []

    def test_explicit_tax_year(self):
        (result,) = run([make_tx(1, "buy", "1", 1, day=1)], tax_year=2021)
        assert result.entries[0].tax_year == 2021

    def test_default_tax_year_follows_jurisdiction(self):
        options = CostBasisOptions(jurisdiction="UK")
        (result,) = CostBasisEngine().calculate_cost_basis([make_tx(1, "buy", "1", 1)], options)
        assert result.entries[0].tax_year == calculate_tax_year(datetime.now(timezone.utc), "UK")

    def test_default_options_are_fifo(self):
        (result,) = CostBasisEngine().calculate_cost_basis([make_tx(1, "buy", "1", 1)])
        assert result.entries[0].method == CostBasisMethod.FIFO
