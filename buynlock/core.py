"""
Core types and pure functions for the buy-and-lock system.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only asset access, Exchange for swaps
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and domain-specific error types
4. Type aliases: Positions, BalanceMap, Route
5. Unit factories: Functions to create token and native-currency units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, Sequence, runtime_checkable
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Quantities are Decimal and must be computed deterministically.
# The global context is configured at module load time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
# Context parameters:
#   - prec=50: enough for 18-decimal token amounts times pool reserves
#   - rounding=ROUND_HALF_EVEN: Banker's rounding (unbiased)
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_NATIVE = "NATIVE"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# Upper bound for the lock duration the authority may configure.
MAX_LOCK_DURATION = timedelta(days=30)

# Lock duration used when a deployment does not specify one.
DEFAULT_LOCK_DURATION = timedelta(days=10)

# Token amounts are integers of the smallest unit on-chain, so every
# balance change truncates to the unit's decimal places.
DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
    UNIT_TYPE_NATIVE: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Ordered unit symbols an exchange converts along, source first, target last.
Route = Tuple[str, ...]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to asset ledger state.

    Functions accepting a LedgerView parameter declare their read-only intent.
    The Ledger class implements this protocol but also provides mutation
    methods.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a specific unit in a wallet."""
        ...

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Return how much of a unit `spender` may still pull from `owner`."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


@runtime_checkable
class Exchange(Protocol):
    """
    The external exchange capability consumed by the exchange adapter.

    Implementations pull `amount_in` of `route[0]` from `payer` through an
    allowance granted to `wallet_id`, convert it hop by hop along the route,
    and deliver the final asset to `recipient`. Deadline and slippage are
    enforced here, not by callers.
    """

    @property
    def wallet_id(self) -> str:
        """Identity the exchange uses when pulling funds."""
        ...

    def quote(self, amount_in: Decimal, route: Sequence[str]) -> Decimal:
        """Return the amount of route[-1] a swap of `amount_in` would yield."""
        ...

    def swap(
        self,
        amount_in: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        recipient: str,
        deadline: datetime,
        payer: str,
    ) -> Decimal:
        """
        Execute the swap and return the amount of route[-1] delivered.

        Raises:
            Expired: If the ledger time is past `deadline`.
            InsufficientInputAmount: If `amount_in` is not positive.
            SlippageExceeded: If the output is below `min_amount_out`.
        """
        ...


# ============================================================================
# ENUMS
# ============================================================================

class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Manual user-initiated transfer
    CONTRACT = "contract"                 # Buy-and-lock contract (purchase, claim)
    EXCHANGE = "exchange"                 # Exchange swap legs and liquidity
    SYSTEM = "system"                     # Issuance and initial setup


class RouteError(Enum):
    """Why a conversion route was rejected."""
    TOO_SHORT = "too_short"
    WRONG_OUTPUT_ASSET = "wrong_output_asset"
    INPUT_EQUALS_OUTPUT = "input_equals_output"
    WRONG_INPUT_ASSET = "wrong_input_asset"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    code = "LEDGER_ERROR"


class InsufficientBalance(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    code = "INSUFFICIENT_BALANCE"


class InsufficientAuthorization(LedgerError):
    """Raised when a pull transfer exceeds the allowance granted by the owner."""
    code = "INSUFFICIENT_AUTHORIZATION"


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    code = "UNIT_NOT_REGISTERED"


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    code = "WALLET_NOT_REGISTERED"


class AccessDenied(LedgerError):
    """Raised when a non-authority identity calls an authority-only operation."""
    code = "ACCESS_DENIED"


class InvalidLockDuration(LedgerError):
    """Raised when a lock duration is negative or exceeds the maximum."""
    code = "INVALID_LOCK_DURATION"


class Paused(LedgerError):
    """Raised when a purchase is attempted, or pause() called, while purchases are paused."""
    code = "PAUSED"


class NotPaused(LedgerError):
    """Raised when unpause() is called while purchases are not paused."""
    code = "NOT_PAUSED"


class InvalidRoute(LedgerError):
    """
    Raised when a conversion route fails validation.

    Attributes:
        reason: Which route check failed.
    """
    code = "INVALID_ROUTE"

    def __init__(self, reason: RouteError, message: str = ""):
        self.reason = reason
        super().__init__(message or f"Invalid route: {reason.value}")


class NoUnlockableAmount(LedgerError):
    """Raised when a claim finds no matured, unsettled tranche."""
    code = "NO_UNLOCKABLE_AMOUNT"


class ReentrantCall(LedgerError):
    """Raised when a guarded operation is entered while another is in progress."""
    code = "REENTRANT_CALL"


class ExchangeError(LedgerError):
    """Base exception for failures reported by the exchange."""
    code = "EXCHANGE_ERROR"


class Expired(ExchangeError):
    """Raised when a swap is submitted after its deadline."""
    code = "EXPIRED"


class SlippageExceeded(ExchangeError):
    """Raised when the swap output is below the caller's minimum."""
    code = "SLIPPAGE_EXCEEDED"


class InsufficientInputAmount(ExchangeError):
    """Raised when a swap is requested for a non-positive input amount."""
    code = "INSUFFICIENT_INPUT_AMOUNT"


class InsufficientLiquidity(ExchangeError):
    """Raised when a route hop has no pool or an empty pool."""
    code = "INSUFFICIENT_LIQUIDITY"


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source (USER, CONTRACT, EXCHANGE, SYSTEM)
        source_id: Identifier of the specific source (contract wallet, exchange, user ID)
        event_type: Specific event within the source (e.g., "BUY", "CLAIM", "SWAP")
    """
    origin_type: OriginType
    source_id: str
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred (e.g., "USDC", "ETH").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.

    This class is immutable (frozen=True) and memory-optimized (slots=True).
    All fields are validated in __post_init__.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A batch of moves before execution - represents INTENT.

    Created by build_transaction() and submitted to Ledger.execute().
    Validation covers the whole batch before any move is applied.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        origin: Transaction origin (defaults to USER_ACTION origin)

    Returns:
        A PendingTransaction ready for execution

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "USDC", "alice", "bob", "payment_001")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )
    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of balance changes - represents FACT.

    Created by the ledger when executing a PendingTransaction.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   contract_ids   : ' + str(sorted(self.contract_ids)))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a transferable asset in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "ETH").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (TOKEN or NATIVE).
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision using quantize.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimal_places: int = 18) -> Unit:
    """
    Create a fungible token unit.

    Args:
        symbol: Token symbol (e.g., "USDC", "LOCK").
        name: Full name of the token.
        decimal_places: Number of decimals of the smallest unit (default: 18).

    Returns:
        A Unit that cannot go negative outside the system wallet.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=decimal_places,
    )


def native(symbol: str = "ETH", name: str = "Ether", decimal_places: int = 18) -> Unit:
    """
    Create the native-currency unit, the value attached to a call.

    Native currency moves push-style from the caller; it is never pulled
    through an allowance by the contract.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_NATIVE,
        decimal_places=decimal_places,
    )


def to_decimal(value: Any) -> Decimal:
    """Convert an int, str or Decimal amount to Decimal; floats go through str."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Amount cannot be a bool")
    if isinstance(value, (int, str)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    raise ValueError(f"Amount must be numeric, got {type(value)}")
