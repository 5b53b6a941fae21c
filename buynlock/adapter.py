"""
adapter.py - Exchange Adapter

Turns a caller's source asset into the contract's target asset through an
external exchange. The adapter validates the route before anything moves,
brings the source value into custody, authorizes the exchange to pull it,
and reports the output actually received by custody.

Deadline, zero-input and slippage checks belong to the exchange; the
adapter lets its errors propagate unchanged.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from .core import (
    Exchange, Route, RouteError, TransactionOrigin, OriginType,
    InvalidRoute, SlippageExceeded,
    to_decimal,
)
from .ledger import Ledger


def validate_route(route: Sequence[str], target_asset: str, native_asset: Optional[str] = None) -> Route:
    """
    Check a conversion route for a purchase of target_asset.

    Checks, in order:
        1. at least two units
        2. ends in target_asset
        3. does not start in target_asset
        4. starts in native_asset (native purchases only)

    Returns:
        The route as a tuple

    Raises:
        InvalidRoute: With the reason of the first failing check
    """
    route = tuple(route)
    if len(route) < 2:
        raise InvalidRoute(RouteError.TOO_SHORT, f"Route {route} needs at least two units")
    if route[-1] != target_asset:
        raise InvalidRoute(
            RouteError.WRONG_OUTPUT_ASSET,
            f"Route must end in {target_asset}, ends in {route[-1]}",
        )
    if route[0] == target_asset:
        raise InvalidRoute(
            RouteError.INPUT_EQUALS_OUTPUT,
            f"Route cannot start in the target asset {target_asset}",
        )
    if native_asset is not None and route[0] != native_asset:
        raise InvalidRoute(
            RouteError.WRONG_INPUT_ASSET,
            f"Native purchase route must start in {native_asset}, starts in {route[0]}",
        )
    return route


def _require_non_negative(name: str, value) -> Decimal:
    value = to_decimal(value)
    if value.is_nan() or value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")
    return value


class ExchangeAdapter:
    """
    Route validation plus swap execution into a custody wallet.

    Attributes:
        ledger: Asset ledger the custody wallet lives in
        exchange: External exchange (untrusted)
        target_asset: Unit every route must end in
        custody_wallet: Wallet that receives both the source value and the output
        native_asset: Unit attached as call value, or None if unsupported
    """

    def __init__(
        self,
        ledger: Ledger,
        exchange: Exchange,
        target_asset: str,
        custody_wallet: str,
        native_asset: Optional[str] = None,
    ):
        self.ledger = ledger
        self.exchange = exchange
        self.target_asset = target_asset
        self.custody_wallet = custody_wallet
        self.native_asset = native_asset

    def _origin(self, event_type: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.CONTRACT, self.custody_wallet, event_type)

    def validate_route(self, route: Sequence[str], native: bool = False) -> Route:
        """Validate a route for this adapter's target asset (and native asset when native=True)."""
        if native and self.native_asset is None:
            raise ValueError("Native-currency purchases are not enabled")
        return validate_route(route, self.target_asset, self.native_asset if native else None)

    def quote(self, amount_in: Decimal, route: Sequence[str]) -> Decimal:
        """Preview the target-asset output of a purchase."""
        route = self.validate_route(route)
        return self.exchange.quote(_require_non_negative("amount_in", amount_in), route)

    def acquire_with_asset(
        self,
        caller: str,
        amount_in: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        deadline: datetime,
    ) -> Decimal:
        """
        Pull amount_in of route[0] from caller and swap it into the target asset.

        The caller must have approved the custody wallet for amount_in.

        Returns:
            Target-asset amount received by custody

        Raises:
            InvalidRoute: If the route fails validation (nothing moves)
            InsufficientAuthorization / InsufficientBalance: If the pull fails
            Expired, InsufficientInputAmount, SlippageExceeded: From the exchange
        """
        route = self.validate_route(route)
        amount_in = _require_non_negative("amount_in", amount_in)
        min_amount_out = _require_non_negative("min_amount_out", min_amount_out)
        if amount_in > 0:
            self.ledger.transfer_from(
                self.custody_wallet, caller, self.custody_wallet, route[0], amount_in,
                f"buy_in_{caller}", self._origin("BUY"),
            )
        return self._swap(amount_in, min_amount_out, route, deadline)

    def acquire_with_native(
        self,
        caller: str,
        value: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        deadline: datetime,
    ) -> Decimal:
        """
        Accept `value` of the native asset from caller and swap it into the target asset.

        The value is pushed from the caller into custody, the way call value
        arrives with a call, so no allowance is involved on the caller's side.

        Returns:
            Target-asset amount received by custody

        Raises:
            InvalidRoute: If the route fails validation, including WRONG_INPUT_ASSET
            InsufficientBalance: If the caller cannot cover value
            Expired, InsufficientInputAmount, SlippageExceeded: From the exchange
        """
        route = self.validate_route(route, native=True)
        value = _require_non_negative("value", value)
        min_amount_out = _require_non_negative("min_amount_out", min_amount_out)
        if value > 0:
            self.ledger.transfer(
                caller, self.custody_wallet, route[0], value,
                f"buy_value_{caller}", self._origin("BUY"),
            )
        return self._swap(value, min_amount_out, route, deadline)

    def _swap(self, amount_in: Decimal, min_amount_out: Decimal, route: Route, deadline: datetime) -> Decimal:
        """Authorize the exchange, swap, and measure what custody received."""
        if amount_in > 0:
            self.ledger.approve(self.custody_wallet, self.exchange.wallet_id, route[0], amount_in)
        before = self.ledger.get_balance(self.custody_wallet, self.target_asset)
        self.exchange.swap(
            amount_in, min_amount_out, route,
            recipient=self.custody_wallet, deadline=deadline, payer=self.custody_wallet,
        )
        received = self.ledger.get_balance(self.custody_wallet, self.target_asset) - before
        if amount_in > 0:
            # clear any allowance the exchange left unused
            self.ledger.approve(self.custody_wallet, self.exchange.wallet_id, route[0], Decimal("0"))
        if received <= 0:
            raise SlippageExceeded(f"Exchange delivered no {self.target_asset}")
        if received < min_amount_out:
            raise SlippageExceeded(
                f"Custody received {received} {self.target_asset}, minimum {min_amount_out}"
            )
        return received
