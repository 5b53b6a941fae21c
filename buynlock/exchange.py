"""
exchange.py - Constant-Product Exchange

An in-process exchange implementing the Exchange protocol over the asset
ledger. Each unordered pair of units has one pool, held as an ordinary ledger
wallet named "pool:{A}/{B}" (symbols sorted), so reserves are just that
wallet's balances and every swap leg is an audited ledger transfer.

Pricing follows the constant-product rule with a fee taken on the input:

    amount_out = amount_in * (1 - fee) * reserve_out / (reserve_in + amount_in * (1 - fee))

rounded down to the output unit's decimal places.

Swaps pull the input from the payer through the allowance the payer granted
to the exchange's wallet id, then pass each hop's output straight into the
next hop's pool and the last output to the recipient. Hops are priced one
after another, so a route may pass through the same pool more than once.
The exchange follows the route it is given; it never searches for one.
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from .core import (
    Move, TransactionOrigin, OriginType, RouteError,
    InvalidRoute, Expired, SlippageExceeded,
    InsufficientInputAmount, InsufficientLiquidity,
    build_transaction, to_decimal,
)
from .ledger import Ledger


DEFAULT_FEE = Decimal("0.003")


def pool_id(unit_a: str, unit_b: str) -> str:
    """Wallet id of the pool for an unordered pair of units."""
    first, second = sorted((unit_a, unit_b))
    return f"pool:{first}/{second}"


def get_amount_out(
    amount_in: Decimal,
    reserve_in: Decimal,
    reserve_out: Decimal,
    fee: Decimal = DEFAULT_FEE,
) -> Decimal:
    """
    Output of a single constant-product hop, before unit rounding.

    Raises:
        InsufficientInputAmount: If amount_in is not positive
        InsufficientLiquidity: If either reserve is empty
    """
    if amount_in <= 0:
        raise InsufficientInputAmount(f"Input amount must be positive, got {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidity(
            f"Pool is empty (reserves {reserve_in}/{reserve_out})"
        )
    amount_in_with_fee = amount_in * (Decimal("1") - fee)
    return amount_in_with_fee * reserve_out / (reserve_in + amount_in_with_fee)


class ConstantProductExchange:
    """
    Pairwise constant-product pools living in an asset ledger.

    Thread Safety:
        Not thread-safe; shares the ledger's single-threaded model.

    Example:
        exchange = ConstantProductExchange(ledger)
        exchange.add_liquidity("lp", "USDC", "LOCK", Decimal("100000"), Decimal("50000"))
        ledger.approve("alice", exchange.wallet_id, "USDC", Decimal("100"))
        out = exchange.swap(Decimal("100"), Decimal("0"), ("USDC", "LOCK"),
                            recipient="alice", deadline=deadline, payer="alice")
    """

    def __init__(self, ledger: Ledger, wallet_id: str = "exchange", fee: Decimal = DEFAULT_FEE):
        fee = to_decimal(fee)
        if fee < 0 or fee >= 1:
            raise ValueError(f"Fee must be in [0, 1), got {fee}")
        self.ledger = ledger
        self.fee = fee
        self._wallet_id = wallet_id
        self._pools: Dict[str, Tuple[str, str]] = {}
        if not ledger.is_registered(wallet_id):
            ledger.register_wallet(wallet_id)

    @property
    def wallet_id(self) -> str:
        return self._wallet_id

    @property
    def pools(self) -> Dict[str, Tuple[str, str]]:
        """Pool wallet id -> sorted unit pair."""
        return dict(self._pools)

    def _origin(self, event_type: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.EXCHANGE, self._wallet_id, event_type)

    # ========================================================================
    # POOLS
    # ========================================================================

    def create_pool(self, unit_a: str, unit_b: str) -> str:
        """
        Create the (empty) pool for a pair of registered units.

        Returns:
            The pool's wallet id

        Raises:
            ValueError: If both units are the same or the pool exists
            UnitNotRegistered: If either unit is unknown
        """
        if unit_a == unit_b:
            raise ValueError(f"Cannot pool {unit_a} with itself")
        self.ledger.get_unit(unit_a)
        self.ledger.get_unit(unit_b)
        pid = pool_id(unit_a, unit_b)
        if pid in self._pools:
            raise ValueError(f"Pool {pid} already exists")
        if not self.ledger.is_registered(pid):
            self.ledger.register_wallet(pid)
        self._pools[pid] = tuple(sorted((unit_a, unit_b)))
        return pid

    def add_liquidity(
        self,
        provider: str,
        unit_a: str,
        unit_b: str,
        amount_a: Decimal,
        amount_b: Decimal,
    ) -> str:
        """
        Deposit both sides of a pair into its pool, creating the pool if needed.

        Deposits are pushed from the provider's wallet in a single batch.
        No liquidity shares are issued.

        Raises:
            ValueError: If either amount is not positive
            InsufficientBalance: If the provider cannot cover a deposit
        """
        amount_a = to_decimal(amount_a)
        amount_b = to_decimal(amount_b)
        if amount_a <= 0 or amount_b <= 0:
            raise ValueError("Liquidity amounts must be positive")
        pid = pool_id(unit_a, unit_b)
        if pid not in self._pools:
            self.create_pool(unit_a, unit_b)
        moves = [
            Move(amount_a, unit_a, provider, pid, f"liquidity_{pid}"),
            Move(amount_b, unit_b, provider, pid, f"liquidity_{pid}"),
        ]
        self.ledger.execute(build_transaction(self.ledger, moves, self._origin("ADD_LIQUIDITY")))
        return pid

    def get_reserves(self, unit_a: str, unit_b: str) -> Tuple[Decimal, Decimal]:
        """
        Reserves of the pair's pool, ordered as (unit_a, unit_b).

        Raises:
            InsufficientLiquidity: If no pool exists for the pair
        """
        pid = pool_id(unit_a, unit_b)
        if pid not in self._pools:
            raise InsufficientLiquidity(f"No pool for {unit_a}/{unit_b}")
        return (
            self.ledger.get_balance(pid, unit_a),
            self.ledger.get_balance(pid, unit_b),
        )

    # ========================================================================
    # PRICING
    # ========================================================================

    def get_amounts_out(self, amount_in: Decimal, route: Sequence[str]) -> List[Decimal]:
        """
        Amounts along a route: element 0 is amount_in, element i the output of hop i.

        Hops are priced in order, each on the reserves left by the hops
        before it, so a route that passes through the same pool twice sees
        the first pass's effect. Every hop's output is rounded down to its
        unit's decimal places.

        Raises:
            InvalidRoute: If the route has fewer than two units
            InsufficientInputAmount: If amount_in (or a hop's output) is not positive
            InsufficientLiquidity: If a hop has no pool or an empty one
        """
        if len(route) < 2:
            raise InvalidRoute(RouteError.TOO_SHORT)
        amounts = [to_decimal(amount_in)]
        # (pool, unit) -> change in that pool's reserve from earlier hops
        deltas: Dict[Tuple[str, str], Decimal] = defaultdict(Decimal)
        for unit_in, unit_out in zip(route, route[1:]):
            pid = pool_id(unit_in, unit_out)
            reserve_in, reserve_out = self.get_reserves(unit_in, unit_out)
            reserve_in += deltas[(pid, unit_in)]
            reserve_out += deltas[(pid, unit_out)]
            raw = get_amount_out(amounts[-1], reserve_in, reserve_out, self.fee)
            amount_out = self.ledger.get_unit(unit_out).round(raw)
            deltas[(pid, unit_in)] += amounts[-1]
            deltas[(pid, unit_out)] -= amount_out
            amounts.append(amount_out)
        return amounts

    def quote(self, amount_in: Decimal, route: Sequence[str]) -> Decimal:
        """Amount of route[-1] a swap of amount_in would deliver right now."""
        return self.get_amounts_out(amount_in, route)[-1]

    # ========================================================================
    # SWAPS
    # ========================================================================

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
        Swap amount_in of route[0] from payer into route[-1] for recipient.

        Checks run in order: deadline, input amount, route and liquidity,
        slippage. Nothing moves unless every check passes; the pull and
        all hop transfers then run inside one ledger.atomic() block.

        Returns:
            Amount of route[-1] delivered to recipient

        Raises:
            Expired: If the ledger time is past deadline
            InsufficientInputAmount: If amount_in is not positive
            InsufficientLiquidity: If a hop has no usable pool
            SlippageExceeded: If the output is zero or below min_amount_out
            InsufficientAuthorization: If payer's allowance to the exchange is short
        """
        route = tuple(route)
        amount_in = to_decimal(amount_in)
        min_amount_out = to_decimal(min_amount_out)
        now = self.ledger.current_time
        if now > deadline:
            raise Expired(f"Swap deadline {deadline} passed (now {now})")
        if amount_in <= 0:
            raise InsufficientInputAmount(f"Input amount must be positive, got {amount_in}")

        try:
            amounts = self.get_amounts_out(amount_in, route)
        except InsufficientInputAmount as e:
            # a hop rounded down to nothing
            raise SlippageExceeded(f"Route {'->'.join(route)} yields nothing: {e}") from e
        amount_out = amounts[-1]
        if amount_out <= 0 or amount_out < min_amount_out:
            raise SlippageExceeded(
                f"Output {amount_out} {route[-1]} below minimum {min_amount_out}"
            )

        hops = list(zip(route, route[1:]))
        pools = [pool_id(a, b) for a, b in hops]
        with self.ledger.atomic():
            self.ledger.transfer_from(
                self._wallet_id, payer, pools[0], route[0], amount_in,
                f"swap_in_{pools[0]}", self._origin("SWAP"),
            )
            moves = []
            for i, (_, unit_out) in enumerate(hops):
                dest = pools[i + 1] if i + 1 < len(pools) else recipient
                if dest == pools[i]:
                    # next hop trades in the same pool; the output never leaves it
                    continue
                moves.append(Move(amounts[i + 1], unit_out, pools[i], dest, f"swap_out_{pools[i]}"))
            self.ledger.execute(build_transaction(self.ledger, moves, self._origin("SWAP")))
        return amount_out
