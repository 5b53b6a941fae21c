"""
market.py - Test Helpers for building funded ledgers and markets

Used by conftest.py fixtures and directly by hypothesis tests, which cannot
take function-scoped fixtures.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence, Tuple

from buynlock import (
    Ledger, ConstantProductExchange,
    token, native, issue,
)


START = datetime(2025, 1, 1)
LOCK_DURATION = timedelta(days=10)
USERS = ("user1", "user2", "user3")


def build_ledger(name: str = "test") -> Ledger:
    """Ledger with USDC (6 dp), LOCK and native ETH, owner/lp and three funded users."""
    ledger = Ledger(name, START, verbose=False, test_mode=True)
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("LOCK", "Lock Token", decimal_places=18))
    ledger.register_unit(native("ETH", "Ether", decimal_places=18))
    for wallet in ("owner", "lp") + USERS:
        ledger.register_wallet(wallet)
    for user in USERS:
        issue(ledger, user, "USDC", Decimal("10000"))
        issue(ledger, user, "ETH", Decimal("10"))
    return ledger


def build_market(name: str = "market") -> Tuple[Ledger, ConstantProductExchange]:
    """build_ledger() plus a constant-product exchange with three funded pools."""
    ledger = build_ledger(name)
    issue(ledger, "lp", "USDC", Decimal("4000000"))
    issue(ledger, "lp", "LOCK", Decimal("2000000"))
    issue(ledger, "lp", "ETH", Decimal("2000"))
    exchange = ConstantProductExchange(ledger)
    exchange.add_liquidity("lp", "USDC", "LOCK", Decimal("1000000"), Decimal("500000"))
    exchange.add_liquidity("lp", "ETH", "LOCK", Decimal("1000"), Decimal("1500000"))
    exchange.add_liquidity("lp", "ETH", "USDC", Decimal("1000"), Decimal("3000000"))
    return ledger, exchange


def deadline(ledger: Ledger, minutes: int = 5) -> datetime:
    return ledger.current_time + timedelta(minutes=minutes)


def buy(contract, user: str, amount_in: Decimal, route: Sequence[str] = ("USDC", "LOCK"),
        min_amount_out: Decimal = Decimal("0")) -> Decimal:
    """Approve the contract for amount_in and buy along route."""
    contract.ledger.approve(user, contract.wallet_id, route[0], amount_in)
    return contract.buy_with_asset(user, amount_in, min_amount_out, route, deadline(contract.ledger))


def advance(ledger: Ledger, **kwargs) -> datetime:
    """Move the ledger clock forward by a timedelta given as keyword arguments."""
    ledger.advance_time(ledger.current_time + timedelta(**kwargs))
    return ledger.current_time


def balances_snapshot(ledger: Ledger):
    """Every wallet's non-zero balances plus all allowances, for before/after comparisons."""
    balances = {
        wallet: {u: q for u, q in ledger.get_wallet_balances(wallet).items() if q != 0}
        for wallet in sorted(ledger.list_wallets())
    }
    return balances, dict(ledger.allowances)
