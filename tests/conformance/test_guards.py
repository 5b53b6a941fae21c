"""
Guard Conformance Tests

INVARIANTS:

    Pause scope:
        paused ⟹ every purchase fails with Paused
        paused ⟹ claims behave exactly as when unpaused

    Re-entrancy:
        a call into the contract while another contract call is in
        progress fails with ReentrantCall, and the outer call is aborted
        with no state change

    Authority:
        only the authority changes configuration
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from buynlock import (
    BuyNLock, Paused, ReentrantCall, AccessDenied,
)

from tests.fake_exchange import FakeExchange, ReentrantExchange
from tests.market import USERS, build_ledger, buy, advance, deadline, balances_snapshot


def fake_contract(exchange_cls=FakeExchange):
    ledger = build_ledger()
    exchange = exchange_cls(ledger)
    exchange.fund("LOCK", Decimal("1000000"))
    contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=1), authority="owner", native_asset="ETH")
    return contract, exchange


class TestPauseScope:

    @given(st.lists(st.tuples(st.sampled_from(USERS), st.integers(min_value=0, max_value=36)),
                    min_size=1, max_size=8))
    @settings(max_examples=30, deadline=None)
    def test_claims_identical_paused_or_not(self, purchases):
        """
        PROPERTY: The same history claimed with and without a pause in
        between pays out the same amounts.
        """
        results = []
        for paused in (False, True):
            contract, _ = fake_contract()
            for user, wait_hours in purchases:
                buy(contract, user, Decimal("3"))
                advance(contract.ledger, hours=wait_hours)
            if paused:
                contract.pause("owner")
            results.append(contract.claim_many(USERS))
        assert results[0] == results[1]

    def test_all_purchase_paths_paused(self):
        contract, _ = fake_contract()
        ledger = contract.ledger
        contract.pause("owner")
        ledger.approve("user1", contract.wallet_id, "USDC", Decimal("1"))
        with pytest.raises(Paused):
            contract.buy_with_asset("user1", Decimal("1"), Decimal("0"), ("USDC", "LOCK"), deadline(ledger))
        with pytest.raises(Paused):
            contract.buy_with_native_currency("user1", Decimal("0"), ("ETH", "LOCK"), deadline(ledger), Decimal("1"))
        assert contract.get_tranches("user1") == ()


class TestReentrancy:

    def test_claim_from_inside_swap_aborts_purchase(self):
        contract, exchange = fake_contract(ReentrantExchange)
        ledger = contract.ledger
        buy(contract, "user2", Decimal("5"))
        advance(ledger, days=1)
        exchange.on_swap = lambda: contract.claim("user2")
        ledger.approve("user1", contract.wallet_id, "USDC", Decimal("10"))
        before = balances_snapshot(ledger), contract.events

        with pytest.raises(ReentrantCall):
            contract.buy_with_asset("user1", Decimal("10"), Decimal("0"), ("USDC", "LOCK"), deadline(ledger))

        assert (balances_snapshot(ledger), contract.events) == before
        assert contract.get_tranches("user1") == ()
        assert contract.get_unlockable_amount("user2") == (Decimal("10"), 1)

    @pytest.mark.parametrize("reenter", ["buy", "claim_many", "pause", "set_lock_duration"])
    def test_every_entry_point_guarded(self, reenter):
        contract, exchange = fake_contract(ReentrantExchange)
        ledger = contract.ledger
        calls = {
            "buy": lambda: contract.buy_with_asset("user2", Decimal("1"), Decimal("0"), ("USDC", "LOCK"), deadline(ledger)),
            "claim_many": lambda: contract.claim_many(USERS),
            "pause": lambda: contract.pause("owner"),
            "set_lock_duration": lambda: contract.set_lock_duration("owner", timedelta(0)),
        }
        exchange.on_swap = calls[reenter]
        with pytest.raises(ReentrantCall):
            buy(contract, "user1", Decimal("1"))
        assert contract.paused is False
        assert contract.lock_duration == timedelta(days=1)

    def test_guard_released_after_failure(self):
        contract, exchange = fake_contract(ReentrantExchange)
        exchange.on_swap = lambda: contract.pause("owner")
        with pytest.raises(ReentrantCall):
            buy(contract, "user1", Decimal("1"))
        exchange.on_swap = None
        assert buy(contract, "user1", Decimal("1")) == Decimal("2")

    def test_read_only_queries_allowed_mid_swap(self):
        contract, exchange = fake_contract(ReentrantExchange)
        exchange.on_swap = lambda: contract.get_locked_amount("user1")
        buy(contract, "user1", Decimal("1"))
        buy(contract, "user1", Decimal("1"))
        assert exchange.callback_results == [Decimal("0"), Decimal("2")]


class TestAuthority:

    @given(st.sampled_from(USERS))
    @settings(max_examples=10, deadline=None)
    def test_only_authority_configures(self, caller):
        contract, _ = fake_contract()
        with pytest.raises(AccessDenied):
            contract.set_lock_duration(caller, timedelta(days=2))
        with pytest.raises(AccessDenied):
            contract.pause(caller)
        with pytest.raises(AccessDenied):
            contract.unpause(caller)
        with pytest.raises(AccessDenied):
            contract.transfer_authority(caller, caller)
        assert contract.authority == "owner"
        assert contract.events == []
