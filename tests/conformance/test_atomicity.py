"""
Atomicity Conformance Tests

INVARIANT: Contract operations are all-or-nothing.

    ∀ operation op:
        op raises ⟹ balances, allowances, tranches, cursors and the event
                     log are exactly as before op

Failures can happen after value has already moved (the source pull, the
exchange's pull, a late slippage check); none of those moves may survive.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from buynlock import (
    BuyNLock, LedgerError, SlippageExceeded, InsufficientBalance,
    NoUnlockableAmount, Paused, InvalidRoute, Expired,
)

from tests.fake_exchange import FakeExchange, ShortchangingExchange
from tests.market import USERS, build_ledger, build_market, buy, advance, deadline, balances_snapshot


def contract_state(contract):
    return (
        balances_snapshot(contract.ledger),
        {u: (contract.get_tranches(u), contract.get_cursor(u)) for u in USERS},
        contract.events,
        len(contract.ledger.transaction_log),
    )


class TestFailedPurchases:

    def test_late_slippage_rolls_back_pulls(self):
        """Exchange pulls the input, then the adapter finds the delivery short."""
        ledger = build_ledger()
        exchange = ShortchangingExchange(ledger, delivered_fraction=Decimal("0.5"))
        exchange.fund("LOCK", Decimal("1000"))
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        ledger.approve("user1", contract.wallet_id, "USDC", Decimal("10"))
        before = contract_state(contract)

        with pytest.raises(SlippageExceeded):
            contract.buy_with_asset("user1", Decimal("10"), Decimal("20"), ("USDC", "LOCK"), deadline(ledger))

        assert contract_state(contract) == before
        assert ledger.get_allowance("user1", contract.wallet_id, "USDC") == Decimal("10")

    def test_exchange_out_of_inventory(self):
        ledger = build_ledger()
        exchange = FakeExchange(ledger)
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        ledger.approve("user1", contract.wallet_id, "USDC", Decimal("10"))
        before = contract_state(contract)
        with pytest.raises(InsufficientBalance):
            contract.buy_with_asset("user1", Decimal("10"), Decimal("0"), ("USDC", "LOCK"), deadline(ledger))
        assert contract_state(contract) == before

    def test_native_value_returned_on_failure(self):
        ledger, exchange = build_market()
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner", native_asset="ETH")
        before = contract_state(contract)
        with pytest.raises(SlippageExceeded):
            contract.buy_with_native_currency("user1", Decimal("1000000"), ("ETH", "LOCK"),
                                              deadline(ledger), Decimal("1"))
        assert contract_state(contract) == before
        assert ledger.get_balance("user1", "ETH") == Decimal("10")

    @given(
        failure=st.sampled_from(["paused", "route", "expired", "slippage", "allowance"]),
        amount=st.decimals(min_value=Decimal("1"), max_value=Decimal("500"), places=6,
                           allow_nan=False, allow_infinity=False),
    )
    @settings(max_examples=40, deadline=None)
    def test_any_failed_purchase_leaves_no_trace(self, failure, amount):
        """
        PROPERTY: Whatever makes a purchase fail, the market and the
        contract are unchanged.
        """
        ledger, exchange = build_market()
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        buy(contract, "user2", Decimal("5"))
        route = ("USDC", "LOCK")
        min_out = Decimal("0")
        due = deadline(ledger)
        ledger.approve("user1", contract.wallet_id, "USDC", amount)
        if failure == "paused":
            contract.pause("owner")
        elif failure == "route":
            route = ("USDC", "ETH")
        elif failure == "expired":
            due = ledger.current_time - timedelta(seconds=1)
        elif failure == "slippage":
            min_out = contract.quote(amount, route) + Decimal("1")
        elif failure == "allowance":
            ledger.approve("user1", contract.wallet_id, "USDC", amount - Decimal("0.000001"))
        before = contract_state(contract)

        with pytest.raises((Paused, InvalidRoute, Expired, SlippageExceeded, LedgerError)):
            contract.buy_with_asset("user1", amount, min_out, route, due)

        assert contract_state(contract) == before
        assert ledger.verify_double_entry()['valid']


class TestFailedClaims:

    def test_claim_with_empty_custody_rolls_back(self):
        """Custody drained behind the contract's back: the claim fails and the cursor stays."""
        ledger = build_ledger()
        exchange = FakeExchange(ledger)
        exchange.fund("LOCK", Decimal("1000"))
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        buy(contract, "user1", Decimal("10"))
        ledger.set_balance(contract.wallet_id, "LOCK", Decimal("0"))
        advance(ledger, days=1)
        before = contract_state(contract)

        with pytest.raises(InsufficientBalance):
            contract.claim("user1")

        assert contract_state(contract) == before
        assert contract.get_unlockable_amount("user1") == (Decimal("20"), 1)

    def test_failed_batch_claim_rolls_back_earlier_members(self):
        """A transfer failing for the second principal undoes the first principal's payout."""
        ledger = build_ledger()
        exchange = FakeExchange(ledger)
        exchange.fund("LOCK", Decimal("1000"))
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        buy(contract, "user1", Decimal("10"))
        buy(contract, "user2", Decimal("10"))
        ledger.set_balance(contract.wallet_id, "LOCK", Decimal("30"))
        advance(ledger, days=1)
        before = contract_state(contract)

        with pytest.raises(InsufficientBalance):
            contract.claim_many(["user1", "user2"])

        assert contract_state(contract) == before

    def test_no_unlockable_leaves_no_trace(self):
        ledger = build_ledger()
        exchange = FakeExchange(ledger)
        exchange.fund("LOCK", Decimal("1000"))
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner")
        buy(contract, "user1", Decimal("10"))
        before = contract_state(contract)
        with pytest.raises(NoUnlockableAmount):
            contract.claim("user1")
        assert contract_state(contract) == before
