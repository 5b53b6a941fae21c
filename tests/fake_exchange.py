"""
fake_exchange.py - Test Helpers implementing the Exchange protocol

Deterministic exchanges for contract tests that should not depend on pool
pricing:
- FakeExchange: converts at a fixed rate out of its own inventory
- ReentrantExchange: runs a callback in the middle of swap() to simulate a
  malicious exchange calling back into the contract
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from buynlock import (
    Ledger, Move, build_transaction,
    Expired, SlippageExceeded, InsufficientInputAmount,
    issue,
)


class FakeExchange:
    """
    Fixed-rate exchange: amount_out = amount_in * rate, any route.

    The output is paid from the exchange's own wallet, which tests stock
    through fund(). Every swap is recorded in `swaps`.
    """

    def __init__(self, ledger: Ledger, rate: Decimal = Decimal("2"), wallet_id: str = "fake_exchange"):
        self.ledger = ledger
        self.rate = rate
        self._wallet_id = wallet_id
        self.swaps: List[tuple] = []
        if not ledger.is_registered(wallet_id):
            ledger.register_wallet(wallet_id)

    @property
    def wallet_id(self) -> str:
        return self._wallet_id

    def fund(self, unit_symbol: str, quantity: Decimal) -> None:
        issue(self.ledger, self._wallet_id, unit_symbol, quantity)

    def quote(self, amount_in: Decimal, route: Sequence[str]) -> Decimal:
        return self.ledger.get_unit(route[-1]).round(amount_in * self.rate)

    def swap(
        self,
        amount_in: Decimal,
        min_amount_out: Decimal,
        route: Sequence[str],
        recipient: str,
        deadline: datetime,
        payer: str,
    ) -> Decimal:
        if self.ledger.current_time > deadline:
            raise Expired("deadline passed")
        if amount_in <= 0:
            raise InsufficientInputAmount("zero input")
        amount_out = self.quote(amount_in, route)
        if amount_out < min_amount_out:
            raise SlippageExceeded(f"{amount_out} < {min_amount_out}")
        self.ledger.transfer_from(self._wallet_id, payer, self._wallet_id, route[0], amount_in, "fake_swap_in")
        self.ledger.execute(build_transaction(self.ledger, [
            Move(amount_out, route[-1], self._wallet_id, recipient, "fake_swap_out"),
        ]))
        self.swaps.append((amount_in, tuple(route), recipient, payer))
        return amount_out


class ReentrantExchange(FakeExchange):
    """FakeExchange that calls `on_swap()` before converting; its result is kept in `callback_results`."""

    def __init__(self, ledger: Ledger, rate: Decimal = Decimal("2"), wallet_id: str = "fake_exchange"):
        super().__init__(ledger, rate, wallet_id)
        self.on_swap: Optional[Callable[[], object]] = None
        self.callback_results: List[object] = []

    def swap(self, amount_in, min_amount_out, route, recipient, deadline, payer):
        if self.on_swap is not None:
            self.callback_results.append(self.on_swap())
        return super().swap(amount_in, min_amount_out, route, recipient, deadline, payer)


class ShortchangingExchange(FakeExchange):
    """Reports the promised amount but delivers only `delivered_fraction` of it."""

    def __init__(self, ledger: Ledger, delivered_fraction: Decimal, rate: Decimal = Decimal("2")):
        super().__init__(ledger, rate)
        self.delivered_fraction = delivered_fraction

    def swap(self, amount_in, min_amount_out, route, recipient, deadline, payer):
        if self.ledger.current_time > deadline:
            raise Expired("deadline passed")
        if amount_in <= 0:
            raise InsufficientInputAmount("zero input")
        promised = self.quote(amount_in, route)
        self.ledger.transfer_from(self._wallet_id, payer, self._wallet_id, route[0], amount_in, "fake_swap_in")
        delivered = self.ledger.get_unit(route[-1]).round(promised * self.delivered_fraction)
        if delivered > 0:
            self.ledger.transfer(self._wallet_id, recipient, route[-1], delivered, "fake_swap_out")
        return promised
