"""
contract.py - Buy-and-Lock Contract

Entry points that tie the controller, exchange adapter and vesting ledger
together:

    purchase:  not paused? -> validate route -> pull source value -> swap
               -> append tranche (now + lock duration) -> TokensBought
    claim:     scan matured tranches -> advance cursor -> pay principal
               -> TokensUnlocked

Two variants share the claim side:
    BuyNLock            - caller chooses the route on every purchase
    FixedRouteBuyNLock  - route fixed at deployment

Every mutating entry point is all-or-nothing and non-reentrant: ledger
balances and allowances, tranches and cursors, and the event log are
restored if anything raises, and a call arriving while another is in
progress (e.g. from the exchange mid-swap) raises ReentrantCall.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from functools import wraps
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .core import (
    Exchange, Route, ReentrantCall,
    DEFAULT_LOCK_DURATION, MAX_LOCK_DURATION,
)
from .ledger import Ledger
from .controller import Controller
from .adapter import ExchangeAdapter, validate_route
from .vesting import VestingLedger, Tranche
from .config import BuyNLockConfig
from .events import (
    TokensBought, TokensUnlocked, LockDurationChanged,
    PurchasesPaused, PurchasesUnpaused, AuthorityTransferred,
)


def non_reentrant(method):
    """Run a contract method atomically and reject nested entry."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._entered:
            raise ReentrantCall(f"{method.__name__} called while another operation is in progress")
        self._entered = True
        try:
            with self._atomic():
                return method(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper


class LockingContract:
    """
    State and operations shared by both contract variants.

    Thread Safety:
        Not thread-safe. One instance per ledger, used from one thread.
    """

    def __init__(
        self,
        ledger: Ledger,
        exchange: Exchange,
        target_asset: str,
        lock_duration: timedelta = DEFAULT_LOCK_DURATION,
        authority: str = "owner",
        wallet_id: str = "buynlock",
        native_asset: Optional[str] = None,
        max_lock_duration: timedelta = MAX_LOCK_DURATION,
    ):
        ledger.get_unit(target_asset)
        if native_asset is not None:
            ledger.get_unit(native_asset)
            if native_asset == target_asset:
                raise ValueError("native_asset cannot be the target asset")
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")

        self.ledger = ledger
        self.verbose = ledger.verbose
        self._controller = Controller(authority, lock_duration, max_lock_duration)
        if not ledger.is_registered(wallet_id):
            ledger.register_wallet(wallet_id)
        self._adapter = ExchangeAdapter(ledger, exchange, target_asset, wallet_id, native_asset)
        self._vesting = VestingLedger(ledger, target_asset, wallet_id)
        self._events: List[Any] = []
        self._entered = False

    @classmethod
    def from_config(cls, ledger: Ledger, exchange: Exchange, config: BuyNLockConfig, **kwargs):
        """Deploy an instance from a BuyNLockConfig."""
        return cls(
            ledger,
            exchange,
            target_asset=config.target_asset,
            lock_duration=config.lock_duration,
            authority=config.authority,
            wallet_id=config.wallet_id,
            native_asset=config.native_asset,
            max_lock_duration=config.max_lock_duration,
            **kwargs,
        )

    # ========================================================================
    # CONFIGURATION (read-only)
    # ========================================================================

    @property
    def authority(self) -> str:
        return self._controller.authority

    @property
    def paused(self) -> bool:
        return self._controller.paused

    @property
    def lock_duration(self) -> timedelta:
        return self._controller.lock_duration

    @property
    def max_lock_duration(self) -> timedelta:
        return self._controller.max_lock_duration

    @property
    def target_asset(self) -> str:
        return self._adapter.target_asset

    @property
    def native_asset(self) -> Optional[str]:
        return self._adapter.native_asset

    @property
    def exchange(self) -> Exchange:
        return self._adapter.exchange

    @property
    def wallet_id(self) -> str:
        """Custody wallet holding every locked amount."""
        return self._adapter.custody_wallet

    @property
    def events(self) -> List[Any]:
        """Emitted events, oldest first."""
        return list(self._events)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_locked_amount(self, principal: str) -> Decimal:
        """Target asset held for principal and not yet claimed, matured or not."""
        return self._vesting.locked_amount(principal)

    def get_unlockable_amount(self, principal: str) -> Tuple[Decimal, int]:
        """Amount principal could claim right now and how many tranches it spans."""
        return self._vesting.unlockable_amount(principal, self.ledger.current_time)

    def get_tranches(self, principal: str) -> Tuple[Tranche, ...]:
        """Every tranche of principal in purchase order, settled ones included."""
        return self._vesting.tranches(principal)

    def get_cursor(self, principal: str) -> int:
        return self._vesting.cursor(principal)

    def total_locked(self) -> Decimal:
        return self._vesting.total_locked()

    def quote(self, amount_in: Decimal, route: Sequence[str]) -> Decimal:
        """Target-asset output the exchange would give for amount_in along route."""
        return self._adapter.quote(amount_in, route)

    # ========================================================================
    # CLAIMS (never paused)
    # ========================================================================

    @non_reentrant
    def claim(self, principal: str) -> Decimal:
        """
        Pay principal every matured tranche not yet claimed.

        Anyone may call this; the funds always go to principal.

        Raises:
            NoUnlockableAmount: If nothing has matured since the last claim
        """
        now = self.ledger.current_time
        cursor = self._vesting.cursor(principal)
        amount = self._vesting.settle(principal, now)
        self._emit(TokensUnlocked(principal, amount, self._vesting.cursor(principal) - cursor, now))
        return amount

    @non_reentrant
    def claim_many(self, principals: Iterable[str]) -> Dict[str, Decimal]:
        """
        Claim for several principals in order, skipping those with nothing matured.

        Returns:
            principal -> amount paid, for the principals actually paid
        """
        principals = list(principals)
        now = self.ledger.current_time
        cursors = {p: self._vesting.cursor(p) for p in principals}
        paid = self._vesting.settle_many(principals, now)
        for principal, amount in paid.items():
            count = self._vesting.cursor(principal) - cursors[principal]
            self._emit(TokensUnlocked(principal, amount, count, now))
        return paid

    # ========================================================================
    # AUTHORITY OPERATIONS
    # ========================================================================

    @non_reentrant
    def set_lock_duration(self, caller: str, duration: timedelta) -> None:
        """Change the lock duration for purchases made from now on."""
        previous = self._controller.set_lock_duration(caller, duration)
        self._emit(LockDurationChanged(previous, duration, self.ledger.current_time))

    @non_reentrant
    def pause(self, caller: str) -> None:
        self._controller.pause(caller)
        self._emit(PurchasesPaused(caller, self.ledger.current_time))

    @non_reentrant
    def unpause(self, caller: str) -> None:
        self._controller.unpause(caller)
        self._emit(PurchasesUnpaused(caller, self.ledger.current_time))

    @non_reentrant
    def transfer_authority(self, caller: str, new_authority: str) -> None:
        previous = self._controller.transfer_authority(caller, new_authority)
        self._emit(AuthorityTransferred(previous, new_authority, self.ledger.current_time))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _purchase(
        self,
        caller: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        deadline: datetime,
        native: bool,
    ) -> Decimal:
        """Acquire the target asset for caller and lock it as a new tranche."""
        if not caller or not caller.strip():
            raise ValueError("Caller cannot be empty")
        now = self.ledger.current_time
        self._controller.require_not_paused()
        route = tuple(route)
        if native:
            amount = self._adapter.acquire_with_native(caller, amount_in, min_amount_out, route, deadline)
        else:
            amount = self._adapter.acquire_with_asset(caller, amount_in, min_amount_out, route, deadline)
        tranche = self._vesting.append(caller, amount, now, self._controller.lock_duration)
        self._emit(TokensBought(caller, amount_in, route[0], amount, tranche.matures_at, route, now))
        return amount

    def _emit(self, event: Any) -> None:
        self._events.append(event)
        if self.verbose:
            print(f"📣 {event}")

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Restore ledger, vesting state and event log if the block raises."""
        vesting_checkpoint = self._vesting.checkpoint()
        event_count = len(self._events)
        try:
            with self.ledger.atomic():
                yield
        except Exception:
            self._vesting.restore(vesting_checkpoint)
            del self._events[event_count:]
            raise


class BuyNLock(LockingContract):
    """
    Buy the target asset along any valid route and lock it for the lock duration.

    Example:
        contract = BuyNLock(ledger, exchange, "LOCK", timedelta(days=10), authority="owner")
        ledger.approve("alice", contract.wallet_id, "USDC", Decimal("100"))
        contract.buy_with_asset("alice", Decimal("100"), Decimal("0"),
                                ("USDC", "LOCK"), deadline)
        ...
        contract.claim("alice")
    """

    @non_reentrant
    def buy_with_asset(
        self,
        caller: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        deadline: datetime,
    ) -> Decimal:
        """
        Swap amount_in of route[0] into the target asset and lock the output.

        The caller must have approved the contract's wallet_id for amount_in.

        Returns:
            Target-asset amount locked

        Raises:
            Paused, InvalidRoute, InsufficientAuthorization, InsufficientBalance,
            Expired, InsufficientInputAmount, SlippageExceeded, ReentrantCall
        """
        return self._purchase(caller, amount_in, min_amount_out, route, deadline, native=False)

    @non_reentrant
    def buy_with_native_currency(
        self,
        caller: str,
        min_amount_out: Decimal,
        route: Sequence[str],
        deadline: datetime,
        value: Decimal,
    ) -> Decimal:
        """
        Swap `value` of the native asset attached to the call and lock the output.

        route[0] must be the native asset.
        """
        return self._purchase(caller, value, min_amount_out, route, deadline, native=True)


class FixedRouteBuyNLock(LockingContract):
    """
    Buy-and-lock with the source asset and route fixed at deployment.

    The route is validated once at construction.
    """

    def __init__(self, ledger: Ledger, exchange: Exchange, target_asset: str, route: Sequence[str], **kwargs):
        self.route: Route = validate_route(route, target_asset)
        super().__init__(ledger, exchange, target_asset, **kwargs)
        for symbol in self.route:
            ledger.get_unit(symbol)

    @property
    def source_asset(self) -> str:
        return self.route[0]

    @non_reentrant
    def buy(self, caller: str, amount_in: Decimal, min_amount_out: Decimal, deadline: datetime) -> Decimal:
        """Swap amount_in of the source asset along the fixed route and lock the output."""
        return self._purchase(caller, amount_in, min_amount_out, self.route, deadline, native=False)

    @non_reentrant
    def buy_with_native_currency(self, caller: str, min_amount_out: Decimal, deadline: datetime, value: Decimal) -> Decimal:
        """Swap attached native value along the fixed route; the route must start in the native asset."""
        return self._purchase(caller, value, min_amount_out, self.route, deadline, native=True)

    def quote(self, amount_in: Decimal, route: Optional[Sequence[str]] = None) -> Decimal:
        return super().quote(amount_in, route or self.route)
