"""
events.py - Contract Events

Immutable records the contract appends to its event log after each
successful state change, the way a chain contract emits logs. Events are
audit data only; no contract logic reads them back.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Tuple


@dataclass(frozen=True, slots=True)
class TokensBought:
    """A purchase locked `amount` of the target asset for `principal`."""
    principal: str
    amount_in: Decimal
    source_asset: str
    amount: Decimal
    matures_at: datetime
    route: Tuple[str, ...]
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class TokensUnlocked:
    """A claim paid `amount` of the target asset to `principal`."""
    principal: str
    amount: Decimal
    tranches: int
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class LockDurationChanged:
    previous: timedelta
    current: timedelta
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class PurchasesPaused:
    authority: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class PurchasesUnpaused:
    authority: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class AuthorityTransferred:
    previous: str
    current: str
    timestamp: datetime
