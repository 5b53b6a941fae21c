"""
ledger.py - Stateful Asset Ledger

The Ledger class is the host environment the buy-and-lock contract runs in:
it holds every wallet's balances, the allowances owners grant to spenders,
and the logical clock. It is the only module that mutates balances.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access
    - Executes transfer batches atomically (all moves succeed or all fail)
    - Push transfers (transfer) and allowance-based pull transfers (transfer_from)
    - Tracks time; time only moves forward
    - atomic() restores the whole ledger if a multi-step operation fails
    - Always validates and always logs
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Set, Tuple, Any

from .core import (
    # Types
    Move, Transaction, Unit,
    PendingTransaction, TransactionOrigin, OriginType,
    Positions, BalanceMap,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientBalance, InsufficientAuthorization,
    UnitNotRegistered, WalletNotRegistered,
    # Helper functions
    build_transaction, to_decimal,
)


# (owner, spender, unit_symbol) -> remaining allowance
AllowanceMap = Dict[Tuple[str, str, str], Decimal]


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Mutable ledger state captured by atomic(); the log is kept by length."""
    units: Dict[str, Unit]
    registered_wallets: Set[str]
    allowances: AllowanceMap
    balances: Dict[str, Dict[str, Decimal]]
    positions_by_unit: Dict[str, Positions]
    next_sequence: int
    log_length: int


class Ledger:
    """
    Asset ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    functions that only read balances, allowances and time.

    Design Principles:
        - Always validates: Every batch is validated against registration,
          balance constraints and timestamps before any move is applied.
        - Always logs: Every applied batch is recorded in transaction_log.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main")
        ledger.register_unit(token("USDC", "USD Coin", decimal_places=6))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")

        ledger.transfer(SYSTEM_WALLET, "alice", "USDC", Decimal("100"), "issuance")
        ledger.approve("alice", "bob", "USDC", Decimal("40"))
        ledger.transfer_from("bob", "alice", "bob", "USDC", Decimal("40"), "pull")
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print applied and rejected transactions (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.allowances: AllowanceMap = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Inverted index mapping unit -> {wallet -> quantity} for O(1) position lookups
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Args:
            wallet_id: Wallet identifier
            unit_symbol: Unit symbol

        Returns:
            Current balance (Decimal("0") if wallet has no balance for this unit)

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Remaining amount of `unit_symbol` that `spender` may pull from `owner`."""
        return self.allowances.get((owner, spender, unit_symbol), Decimal("0"))

    def get_positions(self, unit_symbol: str) -> Positions:
        """
        Get all non-zero positions for a specific unit across all wallets.

        Uses an inverted index for O(1) lookup performance.
        """
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Calculate total supply of a unit across all wallets.

        Wallets are sorted before summation to ensure deterministic
        accumulation order. Issuance leaves the system wallet negative,
        so the total over all wallets is always zero.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def circulating_supply(self, unit_symbol: str) -> Decimal:
        """Total held outside the system wallet (the amount ever issued, net of redemptions)."""
        return -self.get_balance(SYSTEM_WALLET, unit_symbol)

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = Decimal("1e-18")
    ) -> Dict[str, Any]:
        """
        Verify that conservation laws hold for all units.

        For every unit, the sum of all balances across all wallets
        (system wallet included) must equal the expected total, zero by
        default since value only enters through the system wallet.

        Args:
            expected_supplies: Optional dict mapping unit symbols to expected totals.
            tolerance: Maximum allowed difference for decimal comparisons.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Current total for each unit
            - 'discrepancies': List[Dict] - unit, expected, actual, difference

        Example:
            result = ledger.verify_double_entry()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        expected_supplies = expected_supplies or {}
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply
            expected = expected_supplies.get(unit_symbol, Decimal("0"))
            difference = abs(current_supply - expected)
            if difference > tolerance:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': current_supply,
                    'difference': difference,
                })

        for unit_symbol, expected in expected_supplies.items():
            if unit_symbol not in supplies:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': Decimal("0"),
                    'difference': abs(expected),
                    'error': 'unit not registered',
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered or the id is empty
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (asset type) in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}, {unit.decimal_places} dp]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: This method bypasses double-entry accounting and is only
        available in test mode. Use transfer() from SYSTEM_WALLET to issue
        value otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use transfer() from SYSTEM_WALLET to issue value. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        quantity = self.units[unit_symbol].round(to_decimal(quantity))
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # ALLOWANCES AND TRANSFERS (Mutating)
    # ========================================================================

    def approve(self, owner: str, spender: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Authorize `spender` to pull up to `quantity` of a unit from `owner`.

        Replaces any previous allowance for the same (owner, spender, unit).
        Decimal("Infinity") grants an allowance that is never consumed.

        Raises:
            WalletNotRegistered: If owner is not registered
            UnitNotRegistered: If unit is not registered
            ValueError: If quantity is negative or NaN
        """
        if owner not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {owner} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not spender or not spender.strip():
            raise ValueError("Spender cannot be empty")
        quantity = to_decimal(quantity)
        if quantity.is_nan() or quantity < 0:
            raise ValueError(f"Allowance must be non-negative, got {quantity}")
        self.allowances[(owner, spender, unit_symbol)] = quantity

    def transfer(
        self,
        source: str,
        dest: str,
        unit_symbol: str,
        quantity: Decimal,
        contract_id: str,
        origin: Optional[TransactionOrigin] = None,
    ) -> Transaction:
        """
        Push `quantity` of a unit from `source` to `dest`.

        Raises:
            InsufficientBalance: If source would fall below the unit's minimum
            WalletNotRegistered / UnitNotRegistered: On unknown ids
        """
        move = Move(to_decimal(quantity), unit_symbol, source, dest, contract_id)
        return self.execute(build_transaction(self, [move], origin))

    def transfer_from(
        self,
        spender: str,
        owner: str,
        dest: str,
        unit_symbol: str,
        quantity: Decimal,
        contract_id: str,
        origin: Optional[TransactionOrigin] = None,
    ) -> Transaction:
        """
        Pull `quantity` of a unit from `owner` to `dest` on behalf of `spender`.

        The allowance is checked first, then the batch is executed, then the
        allowance is reduced. A failed transfer leaves the allowance intact.

        Raises:
            InsufficientAuthorization: If owner has not approved enough for spender
            InsufficientBalance: If owner does not hold enough
        """
        quantity = to_decimal(quantity)
        key = (owner, spender, unit_symbol)
        allowance = self.allowances.get(key, Decimal("0"))
        if allowance < quantity:
            raise InsufficientAuthorization(
                f"{spender} may pull {allowance} {unit_symbol} from {owner}, requested {quantity}"
            )
        tx = self.transfer(owner, dest, unit_symbol, quantity, contract_id, origin)
        if not allowance.is_infinite():
            self.allowances[key] = allowance - quantity
        return tx

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> Transaction:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together: the whole batch is
        validated against registration, balance constraints and timestamp
        before any balance is touched.

        Returns:
            The logged Transaction record

        Raises:
            WalletNotRegistered, UnitNotRegistered: On unknown ids
            InsufficientBalance: If a wallet would fall below the unit minimum
            LedgerError: On an empty batch or a future timestamp
            ValueError: If a quantity is finer than its unit's decimal places
        """
        if pending.is_empty():
            raise LedgerError("Cannot execute an empty transaction")

        try:
            self._validate_pending(pending)
        except LedgerError as e:
            if self.verbose:
                print(f"✗ REJECTED [{e.code}]: {e}")
            raise

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """
        Print transaction details and result.

        Uses Transaction.__repr__ and appends a result line.
        """
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Balance constraint validation on the net effect per wallet

        Raises the first violation found.
        """
        if pending.timestamp > self._current_time:
            raise LedgerError("future timestamp")

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {move.unit_symbol} not registered")
            if not self.is_registered(move.source):
                raise WalletNotRegistered(f"Wallet {move.source} not registered")
            if not self.is_registered(move.dest):
                raise WalletNotRegistered(f"Wallet {move.dest} not registered")
            if self.units[move.unit_symbol].round(move.quantity) != move.quantity:
                raise ValueError(
                    f"{move.quantity} {move.unit_symbol} exceeds the unit's "
                    f"{self.units[move.unit_symbol].decimal_places} decimal places"
                )

        # Net balance changes with unit rounding, matching execution
        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue

            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)

            if proposed < unit.min_balance:
                raise InsufficientBalance(
                    f"{wallet} {unit_sym}: balance {current} cannot cover {-delta}"
                )
            if proposed > unit.max_balance:
                raise InsufficientBalance(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Update the inverted position index after a balance change.

        Zero or near-zero balances are removed from the index to keep it compact.
        """
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance
            self._update_position_index(move.source, move.unit_symbol, new_src_balance)
            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.unit_symbol, new_dst_balance)

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: modifications to the clone will not
        affect the original ledger, and vice versa. Units are immutable and
        shared; transactions are immutable and the log list is copied.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.transaction_log = list(self.transaction_log)
        cloned._adopt(self._snapshot())
        return cloned

    def _snapshot(self) -> LedgerSnapshot:
        """Copy of the mutable state; the log is recorded by length only."""
        balances = {}
        for wallet, bals in self.balances.items():
            balances[wallet] = defaultdict(lambda: Decimal("0"), bals)
        positions = defaultdict(dict)
        for unit_symbol, unit_positions in self._positions_by_unit.items():
            positions[unit_symbol] = dict(unit_positions)
        return LedgerSnapshot(
            units=dict(self.units),
            registered_wallets=self.registered_wallets.copy(),
            allowances=dict(self.allowances),
            balances=balances,
            positions_by_unit=positions,
            next_sequence=self._next_sequence,
            log_length=len(self.transaction_log),
        )

    def _adopt(self, snapshot: LedgerSnapshot) -> None:
        self.units = snapshot.units
        self.registered_wallets = snapshot.registered_wallets
        self.allowances = snapshot.allowances
        self.balances = snapshot.balances
        self._positions_by_unit = snapshot.positions_by_unit
        self._next_sequence = snapshot.next_sequence

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run a multi-step operation all-or-nothing.

        A snapshot of balances, allowances and registrations is taken on
        entry; if the block raises, they are restored, transactions logged
        inside the block are dropped, and the exception propagates. The
        clock is not part of the snapshot. The cost of a snapshot grows with
        the number of wallets, not with the length of the log.

        Example:
            with ledger.atomic():
                ledger.transfer_from("router", "alice", "pool", "USDC", qty, "swap_in")
                ledger.transfer("pool", "alice", "LOCK", out, "swap_out")
        """
        snapshot = self._snapshot()
        try:
            yield self
        except Exception:
            self._restore(snapshot)
            raise

    def _restore(self, snapshot: LedgerSnapshot) -> None:
        """Return to a snapshot taken by _snapshot()."""
        self._adopt(snapshot)
        del self.transaction_log[snapshot.log_length:]


def issue(ledger: Ledger, wallet_id: str, unit_symbol: str, quantity: Decimal) -> Transaction:
    """Issue new value of a unit into a wallet from SYSTEM_WALLET."""
    return ledger.transfer(
        SYSTEM_WALLET, wallet_id, unit_symbol, quantity, f"issue_{unit_symbol}",
        origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, "ISSUE"),
    )
