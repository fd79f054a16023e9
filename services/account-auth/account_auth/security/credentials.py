"""Password credential verification, rotation, and lockout tracking."""

from __future__ import annotations

import logging
from typing import Protocol

import bcrypt

from ..domain.account import Account

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of input.
BCRYPT_MAX_BYTES = 72

INCORRECT_PASSWORD = "Incorrect password."


class CredentialStore(Protocol):
    """Durable home of password hashes, keyed by account id."""

    def get_password_hash(self, account_id: str) -> str | None: ...

    def set_password_hash(self, account_id: str, password_hash: str) -> None: ...


class LockoutBackend(Protocol):
    def is_locked_out(self, key: str) -> bool: ...

    def record_failure(self, key: str) -> bool: ...

    def reset(self, key: str) -> None: ...


class PasswordPolicy:
    """Complexity rules applied whenever a password is set or rotated."""

    def __init__(
        self,
        *,
        min_length: int = 6,
        require_digit: bool = True,
        require_lowercase: bool = True,
        require_uppercase: bool = True,
        require_non_alphanumeric: bool = True,
    ) -> None:
        self.min_length = min_length
        self.require_digit = require_digit
        self.require_lowercase = require_lowercase
        self.require_uppercase = require_uppercase
        self.require_non_alphanumeric = require_non_alphanumeric

    def validate(self, password: str) -> list[str]:
        """Return every rule ``password`` breaks; an empty list means it is acceptable."""
        errors: list[str] = []
        if len(password) < self.min_length:
            errors.append(f"Passwords must be at least {self.min_length} characters.")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            errors.append(f"Passwords must not exceed {BCRYPT_MAX_BYTES} bytes.")
        if self.require_non_alphanumeric and password.isalnum():
            errors.append("Passwords must have at least one non alphanumeric character.")
        if self.require_digit and not any(ch.isdigit() for ch in password):
            errors.append("Passwords must have at least one digit ('0'-'9').")
        if self.require_lowercase and not any(ch.islower() for ch in password):
            errors.append("Passwords must have at least one lowercase ('a'-'z').")
        if self.require_uppercase and not any(ch.isupper() for ch in password):
            errors.append("Passwords must have at least one uppercase ('A'-'Z').")
        return errors


class PasswordCredentialVerifier:
    """Verifies bcrypt-hashed passwords and locks accounts after repeated failures."""

    def __init__(
        self,
        store: CredentialStore,
        lockout: LockoutBackend,
        *,
        policy: PasswordPolicy | None = None,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._store = store
        self._lockout = lockout
        self._policy = policy or PasswordPolicy()
        self._bcrypt_rounds = bcrypt_rounds

    def verify_secret(self, account: Account, secret: str) -> bool:
        """Return ``True`` when ``secret`` matches; a match clears the failure count."""
        if not self._matches(account, secret):
            return False
        self._lockout.reset(account.account_id)
        return True

    def is_locked_out(self, account: Account) -> bool:
        return self._lockout.is_locked_out(account.account_id)

    def record_failed_attempt(self, account: Account) -> None:
        if self._lockout.record_failure(account.account_id):
            logger.warning("account %s locked out after repeated failed sign-ins", account.account_id)

    def change_secret(self, account: Account, current: str, new: str) -> list[str]:
        """Rotate the password; return the reasons it was refused, if any."""
        if not self._matches(account, current):
            return [INCORRECT_PASSWORD]
        errors = self._policy.validate(new)
        if errors:
            return errors
        self._store.set_password_hash(account.account_id, self.hash_secret(new))
        return []

    def validate_secret(self, secret: str) -> list[str]:
        return self._policy.validate(secret)

    def hash_secret(self, secret: str) -> str:
        """Hash ``secret`` for storage alongside a new account."""
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(self._bcrypt_rounds)).decode("utf-8")

    def _matches(self, account: Account, secret: str) -> bool:
        stored = self._store.get_password_hash(account.account_id)
        if stored is None:
            return False
        encoded = secret.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            return False
        return bcrypt.checkpw(encoded, stored.encode("utf-8"))
