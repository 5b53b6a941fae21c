"""
conftest.py - Shared pytest fixtures for buy-and-lock tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, with units and funded users)
- A market: ledger plus constant-product pools USDC/LOCK, ETH/LOCK, ETH/USDC
- Deployed contracts over the market and over a fixed-rate fake exchange
"""

import pytest
from decimal import Decimal

from buynlock import Ledger, BuyNLock

from tests.fake_exchange import FakeExchange
from tests.market import START, LOCK_DURATION, build_ledger, build_market


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with USDC, LOCK, ETH and funded users, no exchange."""
    return build_ledger()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market():
    """(ledger, exchange) with USDC/LOCK, ETH/LOCK and ETH/USDC pools."""
    return build_market()


@pytest.fixture
def contract(market):
    """BuyNLock over the constant-product market, 10 day lock, native ETH enabled."""
    ledger, exchange = market
    return BuyNLock(
        ledger, exchange, "LOCK", LOCK_DURATION,
        authority="owner", native_asset="ETH",
    )


# =============================================================================
# FAKE EXCHANGE FIXTURES
# =============================================================================

@pytest.fixture
def fake_exchange(ledger):
    """Fixed-rate exchange (1 in -> 2 out) stocked with 1,000,000 LOCK."""
    exchange = FakeExchange(ledger, rate=Decimal("2"))
    exchange.fund("LOCK", Decimal("1000000"))
    return exchange


@pytest.fixture
def fake_contract(ledger, fake_exchange):
    """BuyNLock over the fixed-rate exchange, so every purchase locks exactly 2x its input."""
    return BuyNLock(
        ledger, fake_exchange, "LOCK", LOCK_DURATION,
        authority="owner", native_asset="ETH",
    )
