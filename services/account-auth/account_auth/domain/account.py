from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from .results import GuardViolation
from .roles import Role


class AccountValidationError(ValueError):
    """Raised when an account cannot be constructed from the supplied fields."""


class Account:
    """Aggregate root for an authenticated principal.

    State is only reachable through read-only properties and changed through
    the transition methods below. Transitions return a
    :class:`~account_auth.domain.results.GuardViolation` when rejected and
    ``None`` when applied; a rejected transition leaves the account untouched.
    Persisting the result is the caller's responsibility.
    """

    __slots__ = (
        "_account_id",
        "_username",
        "_full_name",
        "_email",
        "_phone_number",
        "_identity_image_url",
        "_created_at",
        "_role",
        "_last_login_at",
        "_is_deleted",
        "_deleted_at",
        "_must_change_password",
        "_refresh_token",
        "_refresh_token_expires_at",
    )

    def __init__(
        self,
        username: str,
        full_name: str,
        email: str,
        phone_number: str,
        role: Role | str,
        *,
        identity_image_url: str = "",
        account_id: str | None = None,
        created_at: datetime | None = None,
    ) -> None:
        _require(username, "Username is required")
        _require(full_name, "Full name is required")
        _require(email, "Email is required")
        _require(phone_number, "Phone number is required")
        try:
            parsed_role = Role.parse(role)
        except ValueError as exc:
            raise AccountValidationError("Invalid user role") from exc
        if parsed_role is Role.NONE:
            raise AccountValidationError("User role cannot be None")

        self._account_id = account_id or str(uuid.uuid4())
        self._username = username
        self._full_name = full_name
        self._email = email
        self._phone_number = phone_number
        self._identity_image_url = identity_image_url
        self._created_at = created_at or datetime.now(timezone.utc)
        self._role = parsed_role
        self._last_login_at: Optional[datetime] = None
        self._is_deleted = False
        self._deleted_at: Optional[datetime] = None
        self._must_change_password = True
        self._refresh_token: Optional[str] = None
        self._refresh_token_expires_at: Optional[datetime] = None

    @classmethod
    def rehydrate(
        cls,
        *,
        account_id: str,
        username: str,
        full_name: str,
        email: str,
        phone_number: str,
        role: Role | str,
        created_at: datetime,
        identity_image_url: str = "",
        last_login_at: datetime | None = None,
        deleted_at: datetime | None = None,
        must_change_password: bool = True,
        refresh_token: str | None = None,
        refresh_token_expires_at: datetime | None = None,
    ) -> "Account":
        """Rebuild a stored account, keeping its persisted lifecycle state."""
        if (refresh_token is None) != (refresh_token_expires_at is None):
            raise AccountValidationError("Refresh token and its expiry must be stored together")
        if deleted_at is not None and refresh_token is not None:
            raise AccountValidationError("A deleted account cannot hold a refresh token")

        account = cls(
            username,
            full_name,
            email,
            phone_number,
            role,
            identity_image_url=identity_image_url,
            account_id=account_id,
            created_at=created_at,
        )
        account._last_login_at = last_login_at
        account._is_deleted = deleted_at is not None
        account._deleted_at = deleted_at
        account._must_change_password = must_change_password
        account._refresh_token = refresh_token
        account._refresh_token_expires_at = refresh_token_expires_at
        return account

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def username(self) -> str:
        return self._username

    @property
    def full_name(self) -> str:
        return self._full_name

    @property
    def email(self) -> str:
        return self._email

    @property
    def phone_number(self) -> str:
        return self._phone_number

    @property
    def identity_image_url(self) -> str:
        return self._identity_image_url

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def role(self) -> Role:
        return self._role

    @property
    def last_login_at(self) -> Optional[datetime]:
        return self._last_login_at

    @property
    def is_deleted(self) -> bool:
        return self._is_deleted

    @property
    def deleted_at(self) -> Optional[datetime]:
        return self._deleted_at

    @property
    def must_change_password(self) -> bool:
        return self._must_change_password

    @property
    def refresh_token(self) -> Optional[str]:
        """Digest of the outstanding refresh token; the raw token is only handed to the caller."""
        return self._refresh_token

    @property
    def refresh_token_expires_at(self) -> Optional[datetime]:
        return self._refresh_token_expires_at

    def login(self, now: datetime) -> GuardViolation | None:
        """Record a successful sign-in."""
        if self._is_deleted:
            return GuardViolation.invalid_operation("Cannot login a deleted user.")
        self._last_login_at = now
        return None

    def mark_deleted(self, now: datetime) -> None:
        """Soft-delete the account and drop its outstanding refresh token."""
        self._is_deleted = True
        self._deleted_at = now
        self.revoke_refresh_token()

    def restore(self) -> None:
        """Undo a soft delete. A previously revoked refresh token stays revoked."""
        self._is_deleted = False
        self._deleted_at = None

    def change_role(self, new_role: Role | str) -> GuardViolation | None:
        """Replace the role, refusing deleted accounts and the bootstrap-only tier."""
        if self._is_deleted:
            return GuardViolation.invalid_operation("Cannot change role of a deleted user.")
        try:
            role = Role.parse(new_role)
        except ValueError:
            return GuardViolation.invalid_argument("Invalid user role")
        if role is Role.SUPER_ADMIN:
            return GuardViolation.invalid_operation("Cannot assign the SuperAdmin role.")
        if role is Role.NONE:
            return GuardViolation.invalid_argument("User role cannot be None.")
        self._role = role
        return None

    def password_changed(self) -> None:
        self._must_change_password = False

    def set_refresh_token(self, token: str, expires_at: datetime) -> GuardViolation | None:
        if self._is_deleted:
            return GuardViolation.invalid_operation("Cannot set refresh token for a deleted user.")
        self._refresh_token = token
        self._refresh_token_expires_at = expires_at
        return None

    def revoke_refresh_token(self) -> None:
        self._refresh_token = None
        self._refresh_token_expires_at = None

    def refresh_token_expired(self, now: datetime) -> bool:
        """Return ``True`` when a stored refresh token has reached its expiry."""
        expires_at = self._refresh_token_expires_at
        return expires_at is not None and expires_at <= now

    def __repr__(self) -> str:
        return (
            f"Account(account_id={self._account_id!r}, username={self._username!r}, "
            f"role={self._role.value!r}, is_deleted={self._is_deleted!r})"
        )


def _require(value: str | None, message: str) -> None:
    if value is None or not value.strip():
        raise AccountValidationError(message)
