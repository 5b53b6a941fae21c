#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Buy, Lock, Claim

A step-by-step walkthrough of the buy-and-lock contract running on the
in-process asset ledger and constant-product exchange. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup       - The ledger, the market, deploying the contract
  4-6:  Purchases   - Buying with a token, with native currency, multi-hop
  7-9:  Time        - Maturity, claims, batch claims
  10-12: Controls   - Lock duration changes, pause, failures that leave no trace

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from buynlock import (
    Ledger, ConstantProductExchange, BuyNLock,
    token, native, issue,
    SYSTEM_WALLET,
    LedgerError, NoUnlockableAmount, Paused, SlippageExceeded,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    lock_duration: timedelta = timedelta(days=5)

    # Liquidity
    pool_usdc: Decimal = Decimal("1000000")
    pool_lock: Decimal = Decimal("500000")
    pool_eth: Decimal = Decimal("1000")
    eth_price_usdc: Decimal = Decimal("3000")

    # Users
    alice_usdc: Decimal = Decimal("10000")
    bob_eth: Decimal = Decimal("5")

    # Purchases
    purchase_usdc: Decimal = Decimal("1000")
    purchase_eth: Decimal = Decimal("0.5")
    slippage_tolerance: Decimal = Decimal("0.005")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def show_position(contract: BuyNLock, principal: str):
    locked = contract.get_locked_amount(principal)
    unlockable, count = contract.get_unlockable_amount(principal)
    held = contract.ledger.get_balance(principal, contract.target_asset)
    print(f"  {principal:<6} locked={locked:.6f}  unlockable={unlockable:.6f} ({count} tranches)  wallet={held:.6f}")


def min_out(contract: BuyNLock, amount_in: Decimal, route) -> Decimal:
    """Quote with slippage tolerance, rounded down to the target unit."""
    quoted = contract.quote(amount_in, route)
    unit = contract.ledger.get_unit(contract.target_asset)
    return unit.round(quoted * (Decimal("1") - CONFIG.slippage_tolerance))


def deadline(ledger: Ledger) -> datetime:
    return ledger.current_time + timedelta(minutes=5)


# ============================================================================
# PHASE 1: SETUP
# ============================================================================

def step_01_ledger():
    step_header(1, "The Asset Ledger",
        "Register assets and wallets; issue value from the system wallet.")
    ledger = Ledger("demo", CONFIG.start_time, verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("LOCK", "Lock Token", decimal_places=18))
    ledger.register_unit(native("ETH", "Ether"))
    for wallet in ("lp", "alice", "bob", "owner"):
        ledger.register_wallet(wallet)

    issue(ledger, "alice", "USDC", CONFIG.alice_usdc)
    issue(ledger, "bob", "ETH", CONFIG.bob_eth)
    print(f"  alice: {ledger.get_balance('alice', 'USDC')} USDC")
    print(f"  bob:   {ledger.get_balance('bob', 'ETH')} ETH")
    print(f"  {SYSTEM_WALLET}: {ledger.get_balance(SYSTEM_WALLET, 'USDC')} USDC (issuance is a negative balance)")
    wait_for_enter()
    return ledger


def step_02_market(ledger: Ledger) -> ConstantProductExchange:
    step_header(2, "The Market",
        "Seed constant-product pools the contract will buy through.")
    issue(ledger, "lp", "USDC", CONFIG.pool_usdc + CONFIG.pool_eth * CONFIG.eth_price_usdc)
    issue(ledger, "lp", "LOCK", CONFIG.pool_lock)
    issue(ledger, "lp", "ETH", CONFIG.pool_eth)
    exchange = ConstantProductExchange(ledger)
    exchange.add_liquidity("lp", "USDC", "LOCK", CONFIG.pool_usdc, CONFIG.pool_lock)
    exchange.add_liquidity("lp", "ETH", "USDC", CONFIG.pool_eth, CONFIG.pool_eth * CONFIG.eth_price_usdc)
    for pool in exchange.pools:
        print(f"  {pool}: {ledger.get_wallet_balances(pool)}")
    print(f"\n  quote 100 USDC -> {exchange.quote(Decimal('100'), ('USDC', 'LOCK'))} LOCK")
    wait_for_enter()
    return exchange


def step_03_deploy(ledger: Ledger, exchange: ConstantProductExchange) -> BuyNLock:
    step_header(3, "Deploy the Contract",
        "One target asset, one authority, one lock duration.")
    contract = BuyNLock(
        ledger, exchange, "LOCK", CONFIG.lock_duration,
        authority="owner", native_asset="ETH",
    )
    contract.verbose = True
    print(f"  target={contract.target_asset} lock={contract.lock_duration} authority={contract.authority}")
    wait_for_enter()
    return contract


# ============================================================================
# PHASE 2: PURCHASES
# ============================================================================

def step_04_buy_with_token(contract: BuyNLock):
    step_header(4, "Buy with a Token",
        "Approve the contract, then buy; the output is locked, not delivered.")
    ledger = contract.ledger
    route = ("USDC", "LOCK")
    for day in range(3):
        ledger.approve("alice", contract.wallet_id, "USDC", CONFIG.purchase_usdc)
        contract.buy_with_asset("alice", CONFIG.purchase_usdc,
                                min_out(contract, CONFIG.purchase_usdc, route), route, deadline(ledger))
        ledger.advance_time(ledger.current_time + timedelta(days=1))
    show_position(contract, "alice")
    wait_for_enter()


def step_05_buy_with_native(contract: BuyNLock):
    step_header(5, "Buy with Native Currency",
        "Attached value goes straight into custody; the route must start in ETH.")
    ledger = contract.ledger
    route = ("ETH", "USDC", "LOCK")
    contract.buy_with_native_currency("bob", min_out(contract, CONFIG.purchase_eth, route),
                                      route, deadline(ledger), value=CONFIG.purchase_eth)
    show_position(contract, "bob")
    wait_for_enter()


def step_06_slippage(contract: BuyNLock):
    step_header(6, "Slippage Protection",
        "Ask for more than the market gives and nothing happens.")
    ledger = contract.ledger
    route = ("USDC", "LOCK")
    ledger.approve("alice", contract.wallet_id, "USDC", Decimal("100"))
    greedy = contract.quote(Decimal("100"), route) * 2
    try:
        contract.buy_with_asset("alice", Decimal("100"), greedy, route, deadline(ledger))
    except SlippageExceeded as e:
        print(f"  ✗ {e.code}: {e}")
    print(f"  alice still holds {ledger.get_balance('alice', 'USDC')} USDC")
    wait_for_enter()


# ============================================================================
# PHASE 3: TIME
# ============================================================================

def step_07_early_claim(contract: BuyNLock):
    step_header(7, "Too Early",
        "Nothing is claimable before the first tranche matures.")
    try:
        contract.claim("alice")
    except NoUnlockableAmount as e:
        print(f"  ✗ {e.code}: {e}")
    wait_for_enter()


def step_08_partial_claim(contract: BuyNLock):
    step_header(8, "Maturity",
        "Tranches mature one by one; a claim pays every matured one at once.")
    ledger = contract.ledger
    ledger.advance_time(CONFIG.start_time + CONFIG.lock_duration + timedelta(days=1))
    show_position(contract, "alice")
    contract.claim("alice")
    show_position(contract, "alice")
    wait_for_enter()


def step_09_batch_claim(contract: BuyNLock):
    step_header(9, "Batch Claims",
        "Anyone can settle several principals; those with nothing matured are skipped.")
    ledger = contract.ledger
    ledger.advance_time(ledger.current_time + CONFIG.lock_duration)
    paid = contract.claim_many(["alice", "bob", "owner"])
    for principal, amount in paid.items():
        print(f"  paid {principal}: {amount}")
    show_position(contract, "alice")
    show_position(contract, "bob")
    wait_for_enter()


# ============================================================================
# PHASE 4: CONTROLS
# ============================================================================

def step_10_lock_duration(contract: BuyNLock):
    step_header(10, "Changing the Lock Duration",
        "New purchases use the new duration; existing tranches keep theirs.")
    ledger = contract.ledger
    contract.set_lock_duration("owner", timedelta(0))
    route = ("USDC", "LOCK")
    ledger.approve("alice", contract.wallet_id, "USDC", Decimal("100"))
    contract.buy_with_asset("alice", Decimal("100"), Decimal("0"), route, deadline(ledger))
    show_position(contract, "alice")
    contract.claim("alice")
    wait_for_enter()


def step_11_pause(contract: BuyNLock):
    step_header(11, "Pause",
        "The authority can stop purchases. Claims keep working.")
    ledger = contract.ledger
    contract.pause("owner")
    try:
        contract.buy_with_native_currency("bob", Decimal("0"), ("ETH", "USDC", "LOCK"),
                                          deadline(ledger), value=Decimal("0.1"))
    except Paused as e:
        print(f"  ✗ {e.code}: {e}")
    contract.unpause("owner")
    wait_for_enter()


def step_12_conservation(contract: BuyNLock):
    step_header(12, "Conservation",
        "Custody equals the sum of locked amounts; every unit still sums to zero.")
    ledger = contract.ledger
    custody = ledger.get_balance(contract.wallet_id, "LOCK")
    print(f"  custody={custody}  total_locked={contract.total_locked()}")
    result = ledger.verify_double_entry()
    print(f"  double entry valid: {result['valid']}")
    print(f"  events emitted: {len(contract.events)}, ledger transactions: {len(ledger.transaction_log)}")
    if not result['valid'] or custody != contract.total_locked():
        raise LedgerError(f"Conservation violated: {result['discrepancies']}")


def main():
    print("=" * 70)
    print("       BUY, LOCK, CLAIM")
    print("=" * 70)

    ledger = step_01_ledger()
    exchange = step_02_market(ledger)
    contract = step_03_deploy(ledger, exchange)

    step_04_buy_with_token(contract)
    step_05_buy_with_native(contract)
    step_06_slippage(contract)

    step_07_early_claim(contract)
    step_08_partial_claim(contract)
    step_09_batch_claim(contract)

    step_10_lock_duration(contract)
    step_11_pause(contract)
    step_12_conservation(contract)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See buynlock/vesting.py for the tranche scan
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
