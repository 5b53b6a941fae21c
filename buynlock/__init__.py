"""
buynlock - Buy-and-Lock Vesting

Buy a target asset through an exchange and hold it in a time lock before it
can be claimed. Every purchase becomes its own tranche; matured tranches are
claimed per principal or in batches.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from buynlock import (
        Ledger, ConstantProductExchange, BuyNLock, token, issue, SYSTEM_WALLET,
    )

    ledger = Ledger("main", datetime(2025, 1, 1))
    ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(token("LOCK", "Lock Token"))
    ledger.register_wallet("lp")
    ledger.register_wallet("alice")
    issue(ledger, "lp", "USDC", Decimal("1000000"))
    issue(ledger, "lp", "LOCK", Decimal("500000"))
    issue(ledger, "alice", "USDC", Decimal("1000"))

    exchange = ConstantProductExchange(ledger)
    exchange.add_liquidity("lp", "USDC", "LOCK", Decimal("1000000"), Decimal("500000"))

    contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=10), authority="owner")
    ledger.approve("alice", contract.wallet_id, "USDC", Decimal("100"))
    contract.buy_with_asset("alice", Decimal("100"), Decimal("0"), ("USDC", "LOCK"),
                            deadline=ledger.current_time + timedelta(minutes=5))

    ledger.advance_time(ledger.current_time + timedelta(days=10))
    contract.claim("alice")
"""

# Core types
from .core import (
    LedgerView,
    Exchange,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    RouteError,
    Route,
    build_transaction,
    Unit,
    token,
    native,
    to_decimal,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_NATIVE,
    QUANTITY_EPSILON,
    MAX_LOCK_DURATION,
    DEFAULT_LOCK_DURATION,
    # Errors
    LedgerError,
    InsufficientBalance,
    InsufficientAuthorization,
    UnitNotRegistered,
    WalletNotRegistered,
    AccessDenied,
    InvalidLockDuration,
    Paused, NotPaused,
    InvalidRoute,
    NoUnlockableAmount,
    ReentrantCall,
    ExchangeError,
    Expired,
    SlippageExceeded,
    InsufficientInputAmount,
    InsufficientLiquidity,
)

# Ledger
from .ledger import Ledger, issue

# Exchange
from .exchange import ConstantProductExchange, pool_id, get_amount_out

# Contract components
from .controller import Controller, validate_lock_duration
from .adapter import ExchangeAdapter, validate_route
from .vesting import VestingLedger, Tranche, PrincipalLedger
from .events import (
    TokensBought,
    TokensUnlocked,
    LockDurationChanged,
    PurchasesPaused,
    PurchasesUnpaused,
    AuthorityTransferred,
)
from .config import BuyNLockConfig
from .contract import LockingContract, BuyNLock, FixedRouteBuyNLock

__all__ = [
    'LedgerView', 'Exchange', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'RouteError', 'Route', 'build_transaction',
    'Unit', 'token', 'native', 'to_decimal',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_NATIVE', 'QUANTITY_EPSILON',
    'MAX_LOCK_DURATION', 'DEFAULT_LOCK_DURATION',
    'LedgerError', 'InsufficientBalance', 'InsufficientAuthorization',
    'UnitNotRegistered', 'WalletNotRegistered', 'AccessDenied', 'InvalidLockDuration',
    'Paused', 'NotPaused', 'InvalidRoute', 'NoUnlockableAmount', 'ReentrantCall',
    'ExchangeError', 'Expired', 'SlippageExceeded', 'InsufficientInputAmount',
    'InsufficientLiquidity',
    'Ledger', 'issue',
    'ConstantProductExchange', 'pool_id', 'get_amount_out',
    'Controller', 'validate_lock_duration',
    'ExchangeAdapter', 'validate_route',
    'VestingLedger', 'Tranche', 'PrincipalLedger',
    'TokensBought', 'TokensUnlocked', 'LockDurationChanged',
    'PurchasesPaused', 'PurchasesUnpaused', 'AuthorityTransferred',
    'BuyNLockConfig',
    'LockingContract', 'BuyNLock', 'FixedRouteBuyNLock',
]
