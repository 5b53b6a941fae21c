"""
controller.py - Access & Parameter Controller

Holds the contract's global configuration: the authority identity, the
purchase pause flag and the lock duration applied to new purchases. Every
mutation is authority-only. The pause flag gates purchases only; claims are
never consulted against it.
"""

from __future__ import annotations
from datetime import timedelta

from .core import (
    AccessDenied, InvalidLockDuration, Paused, NotPaused,
    MAX_LOCK_DURATION,
)


def validate_lock_duration(duration: timedelta, max_lock_duration: timedelta = MAX_LOCK_DURATION) -> timedelta:
    """
    Check a lock duration against [0, max_lock_duration].

    Raises:
        InvalidLockDuration: If duration is not a timedelta, is negative, or exceeds the maximum
    """
    if not isinstance(duration, timedelta):
        raise InvalidLockDuration(f"Lock duration must be a timedelta, got {type(duration)}")
    if duration < timedelta(0):
        raise InvalidLockDuration(f"Lock duration cannot be negative, got {duration}")
    if duration > max_lock_duration:
        raise InvalidLockDuration(
            f"Lock duration {duration} exceeds maximum {max_lock_duration}"
        )
    return duration


class Controller:
    """
    Authority-gated configuration.

    Attributes:
        authority: The single identity allowed to change configuration
        paused: Whether purchases are currently rejected
        lock_duration: Delay applied to purchases made from now on
        max_lock_duration: Upper bound for lock_duration
    """

    def __init__(
        self,
        authority: str,
        lock_duration: timedelta,
        max_lock_duration: timedelta = MAX_LOCK_DURATION,
    ):
        if not authority or not authority.strip():
            raise ValueError("Authority cannot be empty")
        if not isinstance(max_lock_duration, timedelta) or max_lock_duration < timedelta(0):
            raise InvalidLockDuration(f"Invalid maximum lock duration {max_lock_duration}")
        self.max_lock_duration = max_lock_duration
        self.lock_duration = validate_lock_duration(lock_duration, max_lock_duration)
        self.authority = authority
        self.paused = False

    # ========================================================================
    # GUARDS
    # ========================================================================

    def require_authority(self, caller: str) -> None:
        """Raise AccessDenied unless caller is the authority."""
        if caller != self.authority:
            raise AccessDenied(f"{caller} is not the authority")

    def require_not_paused(self) -> None:
        """Raise Paused while purchases are paused."""
        if self.paused:
            raise Paused("Purchases are paused")

    # ========================================================================
    # AUTHORITY OPERATIONS
    # ========================================================================

    def set_lock_duration(self, caller: str, duration: timedelta) -> timedelta:
        """
        Change the lock duration for subsequent purchases.

        Existing tranches keep the maturity they were created with.

        Returns:
            The previous lock duration
        """
        self.require_authority(caller)
        validate_lock_duration(duration, self.max_lock_duration)
        previous = self.lock_duration
        self.lock_duration = duration
        return previous

    def pause(self, caller: str) -> None:
        """
        Stop purchases. Claims are unaffected.

        Raises:
            AccessDenied: If caller is not the authority
            Paused: If purchases are already paused
        """
        self.require_authority(caller)
        self.require_not_paused()
        self.paused = True

    def unpause(self, caller: str) -> None:
        self.require_authority(caller)
        if not self.paused:
            raise NotPaused("Purchases are not paused")
        self.paused = False

    def transfer_authority(self, caller: str, new_authority: str) -> str:
        """
        Hand the authority role to another identity.

        Returns:
            The previous authority
        """
        self.require_authority(caller)
        if not new_authority or not new_authority.strip():
            raise ValueError("New authority cannot be empty")
        previous = self.authority
        self.authority = new_authority
        return previous
