"""
Temporal Conformance Tests

INVARIANTS:

    ∀ tranche t created at time T under lock duration D:
        t.matures_at = T + D, and never changes afterwards

    ∀ principal p, time now:
        unlockable(p, now) = Σ of the longest prefix of tranches[cursor:]
                             with matures_at <= now

    Time only moves forward; maturity is monotone in time.
"""

import pytest
from hypothesis import given, settings, note
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from buynlock import BuyNLock, NoUnlockableAmount

from tests.fake_exchange import FakeExchange
from tests.market import START, build_ledger, buy, advance


def fake_contract(lock_days: int = 10):
    ledger = build_ledger()
    exchange = FakeExchange(ledger)
    exchange.fund("LOCK", Decimal("1000000"))
    return BuyNLock(ledger, exchange, "LOCK", timedelta(days=lock_days), authority="owner")


purchase_plan = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=72),   # hours to wait before buying
        st.integers(min_value=0, max_value=30),   # lock duration in days for this purchase
    ),
    min_size=1, max_size=12,
)


class TestNonRetroactivity:

    @given(purchase_plan)
    @settings(max_examples=50, deadline=None)
    def test_maturities_fixed_at_purchase(self, plan):
        """
        PROPERTY: Each tranche matures at its purchase time plus the lock
        duration in force at that moment, however often the duration
        changes later.
        """
        contract = fake_contract()
        expected = []
        for wait_hours, lock_days in plan:
            advance(contract.ledger, hours=wait_hours)
            contract.set_lock_duration("owner", timedelta(days=lock_days))
            buy(contract, "user1", Decimal("1"))
            expected.append(contract.ledger.current_time + timedelta(days=lock_days))
            contract.set_lock_duration("owner", timedelta(days=(lock_days + 7) % 31))
        assert [t.matures_at for t in contract.get_tranches("user1")] == expected

    def test_duration_change_does_not_touch_existing_tranche(self):
        contract = fake_contract(lock_days=10)
        buy(contract, "user1", Decimal("1"))
        contract.set_lock_duration("owner", timedelta(0))
        assert contract.get_tranches("user1")[0].matures_at == START + timedelta(days=10)
        assert contract.get_unlockable_amount("user1") == (Decimal("0"), 0)


class TestMaturityScan:

    @given(purchase_plan, st.integers(min_value=0, max_value=40 * 24))
    @settings(max_examples=60, deadline=None)
    def test_unlockable_is_matured_prefix(self, plan, probe_hours):
        """
        PROPERTY: unlockable amount and count equal the matured prefix of
        the unsettled tranches.
        """
        contract = fake_contract()
        for wait_hours, lock_days in plan:
            advance(contract.ledger, hours=wait_hours)
            contract.set_lock_duration("owner", timedelta(days=lock_days))
            buy(contract, "user1", Decimal("1"))
        advance(contract.ledger, hours=probe_hours)
        now = contract.ledger.current_time

        prefix = []
        for tranche in contract.get_tranches("user1"):
            if tranche.matures_at > now:
                break
            prefix.append(tranche.amount)
        note(f"prefix length {len(prefix)}")
        assert contract.get_unlockable_amount("user1") == (sum(prefix, Decimal("0")), len(prefix))

    @given(st.lists(st.integers(min_value=0, max_value=48), min_size=1, max_size=20))
    @settings(max_examples=40, deadline=None)
    def test_unlockable_never_decreases_without_claims(self, waits):
        """PROPERTY: with a constant lock duration, advancing time never shrinks the unlockable amount."""
        contract = fake_contract(lock_days=1)
        for _ in range(5):
            buy(contract, "user1", Decimal("2"))
            advance(contract.ledger, hours=7)
        previous = contract.get_unlockable_amount("user1")
        for hours in waits:
            advance(contract.ledger, hours=hours)
            current = contract.get_unlockable_amount("user1")
            assert current[0] >= previous[0]
            assert current[1] >= previous[1]
            previous = current

    def test_maturity_boundary_is_inclusive(self):
        contract = fake_contract(lock_days=10)
        buy(contract, "user1", Decimal("1"))
        advance(contract.ledger, days=10, microseconds=-1)
        with pytest.raises(NoUnlockableAmount):
            contract.claim("user1")
        advance(contract.ledger, microseconds=1)
        assert contract.claim("user1") == Decimal("2")


class TestEventOrdering:

    def test_events_follow_ledger_time(self):
        contract = fake_contract(lock_days=1)
        for _ in range(3):
            buy(contract, "user1", Decimal("1"))
            advance(contract.ledger, days=1)
            contract.claim("user1")
        stamps = [e.timestamp for e in contract.events]
        assert stamps == sorted(stamps)

    def test_transaction_log_timestamps_non_decreasing(self):
        contract = fake_contract(lock_days=1)
        buy(contract, "user1", Decimal("1"))
        advance(contract.ledger, days=2)
        buy(contract, "user2", Decimal("1"))
        contract.claim("user1")
        times = [tx.execution_time for tx in contract.ledger.transaction_log]
        assert times == sorted(times)
