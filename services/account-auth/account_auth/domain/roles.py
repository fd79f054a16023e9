"""Closed set of privilege tiers shared across the inventory system."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Privilege tier attached to an account.

    ``NONE`` is the unset sentinel and is never valid on an account.
    ``SUPER_ADMIN`` is provisioned once at bootstrap and cannot be assigned
    through a role change.
    """

    NONE = "None"
    SUPER_ADMIN = "SuperAdmin"
    MANAGER = "Manager"
    CASHIER = "Cashier"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Return the member for ``value`` or raise ``ValueError``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value)
        raise ValueError(f"{value!r} is not a valid {cls.__name__}")
