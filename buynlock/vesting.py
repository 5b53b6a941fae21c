"""
vesting.py - Time-Locked Vesting Ledger

Tracks, per principal, the target-asset amounts bought through the contract
and the time each becomes claimable. This is deferred settlement in the same
spirit as a T+n obligation: value is already in custody on the trade date,
and delivery to the principal fires on or after the maturity date.

Model:
    Every purchase appends one Tranche(amount, matures_at) to the
    principal's list. Tranches are never reordered or removed; a cursor
    marks how many of them have been paid out.

        tranches:  [t0  t1  t2 | t3  t4]
                               ^ cursor = 3
        t0..t2 settled, t3..t4 still locked (matured or not)

Settlement scans forward from the cursor and stops at the first tranche
that has not matured, so with a constant lock duration the scan touches
only the tranches it pays out. If the lock duration was shortened between
purchases, a later tranche can mature before an earlier one; it is paid
only once the scan reaches it, i.e. after the earlier tranche matures.

Custody:
    All locked amounts sit in the custody wallet of the asset ledger. The
    custody balance of the target asset equals the sum of every
    principal's locked_amount().
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .core import (
    TransactionOrigin, OriginType,
    NoUnlockableAmount,
)
from .ledger import Ledger


@dataclass(frozen=True, slots=True)
class Tranche:
    """
    One purchased-and-locked amount of the target asset.

    Attributes:
        amount: Target-asset quantity (positive)
        matures_at: Ledger time from which the amount is claimable
    """
    amount: Decimal
    matures_at: datetime

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            raise ValueError(f"Tranche amount must be Decimal, got {type(self.amount)}")
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValueError(f"Tranche amount must be positive, got {self.amount}")

    def is_matured(self, now: datetime) -> bool:
        return self.matures_at <= now


@dataclass(slots=True)
class PrincipalLedger:
    """
    Tranches of one principal in purchase order, plus the settlement cursor.

    Invariant: 0 <= cursor <= len(tranches); tranches[:cursor] are settled.
    """
    tranches: List[Tranche] = field(default_factory=list)
    cursor: int = 0

    def locked_amount(self) -> Decimal:
        """Sum of unsettled tranches, matured or not."""
        return sum((t.amount for t in self.tranches[self.cursor:]), Decimal("0"))

    def unlockable(self, now: datetime) -> Tuple[Decimal, int]:
        """
        Sum and count of the matured prefix of the unsettled tranches.

        The scan stops at the first tranche with matures_at > now.
        """
        total = Decimal("0")
        count = 0
        for tranche in self.tranches[self.cursor:]:
            if not tranche.is_matured(now):
                break
            total += tranche.amount
            count += 1
        return total, count


# principal -> (number of tranches, cursor) at checkpoint time
VestingCheckpoint = Dict[str, Tuple[int, int]]


class VestingLedger:
    """
    Per-principal tranche storage and settlement out of a custody wallet.

    Every operation takes `now` from the caller, who reads the ledger clock
    once per operation.

    Thread Safety:
        Not thread-safe.

    Example:
        vesting = VestingLedger(ledger, "LOCK", "buynlock")
        vesting.append("alice", Decimal("5"), ledger.current_time, timedelta(days=10))
        ...
        ledger.advance_time(ledger.current_time + timedelta(days=10))
        vesting.settle("alice", ledger.current_time)   # pays 5 LOCK to alice
    """

    def __init__(self, ledger: Ledger, target_asset: str, custody_wallet: str):
        self.ledger = ledger
        self.target_asset = target_asset
        self.custody_wallet = custody_wallet
        self._principals: Dict[str, PrincipalLedger] = {}

    # ========================================================================
    # QUERIES (pure)
    # ========================================================================

    def tranches(self, principal: str) -> Tuple[Tranche, ...]:
        """All tranches of a principal, settled ones included."""
        entry = self._principals.get(principal)
        return tuple(entry.tranches) if entry else ()

    def cursor(self, principal: str) -> int:
        """Index of the principal's first unsettled tranche."""
        entry = self._principals.get(principal)
        return entry.cursor if entry else 0

    def principals(self) -> List[str]:
        """Principals that have made at least one purchase, in first-purchase order."""
        return list(self._principals)

    def locked_amount(self, principal: str) -> Decimal:
        """Unsettled amount of a principal; 0 for unknown principals."""
        entry = self._principals.get(principal)
        return entry.locked_amount() if entry else Decimal("0")

    def unlockable_amount(self, principal: str, now: datetime) -> Tuple[Decimal, int]:
        """
        Amount claimable at `now` and the number of tranches it spans.

        Returns:
            (amount, count); (0, 0) for unknown principals
        """
        entry = self._principals.get(principal)
        if entry is None:
            return Decimal("0"), 0
        return entry.unlockable(now)

    def total_locked(self) -> Decimal:
        """Sum of every principal's locked amount."""
        return sum(
            (entry.locked_amount() for entry in self._principals.values()),
            Decimal("0"),
        )

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def append(self, principal: str, amount: Decimal, now: datetime, lock_duration: timedelta) -> Tranche:
        """
        Record a new tranche maturing at now + lock_duration.

        The principal's ledger is created on first use.

        Raises:
            ValueError: If principal is empty or amount is not positive
        """
        if not principal or not principal.strip():
            raise ValueError("Principal cannot be empty")
        tranche = Tranche(amount, now + lock_duration)
        self._principals.setdefault(principal, PrincipalLedger()).tranches.append(tranche)
        return tranche

    def settle(self, principal: str, now: datetime) -> Decimal:
        """
        Pay out every matured unsettled tranche of a principal.

        The cursor is advanced before the custody transfer; if the transfer
        fails the cursor is put back and the error propagates.

        Returns:
            The amount transferred to the principal

        Raises:
            NoUnlockableAmount: If nothing is claimable at `now`
        """
        amount, count = self.unlockable_amount(principal, now)
        if count == 0:
            raise NoUnlockableAmount(f"{principal} has no unlockable {self.target_asset}")

        entry = self._principals[principal]
        previous_cursor = entry.cursor
        entry.cursor += count
        try:
            self.ledger.transfer(
                self.custody_wallet, principal, self.target_asset, amount,
                f"unlock_{principal}",
                TransactionOrigin(OriginType.CONTRACT, self.custody_wallet, "CLAIM"),
            )
        except Exception:
            entry.cursor = previous_cursor
            raise
        return amount

    def settle_many(self, principals: Iterable[str], now: datetime) -> Dict[str, Decimal]:
        """
        Settle several principals in the given order.

        Principals with nothing claimable are skipped, so a repeated
        principal is paid once.

        Returns:
            principal -> amount paid, for the principals actually paid
        """
        paid: Dict[str, Decimal] = {}
        for principal in principals:
            amount, count = self.unlockable_amount(principal, now)
            if count == 0:
                continue
            paid[principal] = self.settle(principal, now)
        return paid

    # ========================================================================
    # CHECKPOINTS
    # ========================================================================

    def checkpoint(self) -> VestingCheckpoint:
        """Capture tranche counts and cursors so a failed operation can be undone."""
        return {
            principal: (len(entry.tranches), entry.cursor)
            for principal, entry in self._principals.items()
        }

    def restore(self, checkpoint: VestingCheckpoint) -> None:
        """
        Return to a checkpoint taken earlier.

        Tranches are append-only, so truncating each list to its recorded
        length undoes any append made since.
        """
        for principal in list(self._principals):
            if principal not in checkpoint:
                del self._principals[principal]
        for principal, (length, cursor) in checkpoint.items():
            entry = self._principals[principal]
            del entry.tranches[length:]
            entry.cursor = cursor
