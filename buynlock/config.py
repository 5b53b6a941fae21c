"""
config.py - Deployment configuration for a BuyNLock instance.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .core import DEFAULT_LOCK_DURATION, MAX_LOCK_DURATION, InvalidLockDuration
from .controller import validate_lock_duration


@dataclass(frozen=True)
class BuyNLockConfig:
    """
    Parameters fixed at deployment.

    Attributes:
        target_asset: Unit symbol every purchase ends in and every claim pays
        authority: Identity allowed to change configuration and pause purchases
        lock_duration: Initial delay between purchase and maturity
        wallet_id: Custody wallet holding all locked target asset
        native_asset: Unit accepted as call value, or None to disable native purchases
        max_lock_duration: Upper bound for lock_duration
    """
    target_asset: str
    authority: str
    lock_duration: timedelta = DEFAULT_LOCK_DURATION
    wallet_id: str = "buynlock"
    native_asset: Optional[str] = None
    max_lock_duration: timedelta = MAX_LOCK_DURATION

    def __post_init__(self):
        if not self.target_asset or not self.target_asset.strip():
            raise ValueError("target_asset cannot be empty")
        if not self.authority or not self.authority.strip():
            raise ValueError("authority cannot be empty")
        if not self.wallet_id or not self.wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if self.native_asset is not None and self.native_asset == self.target_asset:
            raise ValueError("native_asset cannot be the target asset")
        if not isinstance(self.max_lock_duration, timedelta) or self.max_lock_duration < timedelta(0):
            raise InvalidLockDuration(f"Invalid maximum lock duration {self.max_lock_duration}")
        validate_lock_duration(self.lock_duration, self.max_lock_duration)
